# Kettle/kettle1.0/kettle/toolchain.py
"""
Toolchain probe for kettle.

Source builds need a working C compiler. The configured candidates
(build.compilers) are tried in order with `<cc> --version`; the first that
runs successfully is used and exported to hooks as CC.
"""

from __future__ import annotations

import os
import shutil
import subprocess
from typing import Dict, List, Optional, Sequence, Tuple

from kettle.errors import MissingCompilerError
from kettle.logging import get_logger

logger = get_logger("toolchain")

_FOUND: Dict[Tuple[str, ...], str] = {}


def _run(cmd: List[str], cwd: Optional[str] = None, env: Optional[Dict[str,str]] = None) -> Tuple[int,str,str]:
    """Run cmd returning (rc, stdout, stderr)."""
    try:
        p = subprocess.Popen(cmd, cwd=cwd, stdout=subprocess.PIPE, stderr=subprocess.PIPE, env=(env or os.environ), text=True)
        out, err = p.communicate()
        return p.returncode, out or "", err or ""
    except OSError as e:
        return 127, "", str(e)


def check_compiler(candidates: Sequence[str]) -> str:
    """Return the path of the first working compiler; raise MissingCompilerError otherwise."""
    key = tuple(candidates)
    if key in _FOUND:
        return _FOUND[key]
    for name in candidates:
        path = shutil.which(name)
        if not path:
            logger.debug("compiler %s not on PATH", name)
            continue
        rc, out, err = _run([path, "--version"])
        if rc == 0:
            first = (out.splitlines() or [""])[0]
            logger.info("using compiler %s (%s)", path, first.strip())
            _FOUND[key] = path
            return path
        logger.warning("compiler %s is not working (exit %d): %s", path, rc, err.strip())
    raise MissingCompilerError(list(candidates))
