"""Configuration loading, derived paths and environment overrides."""

from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from kettle import config as config_mod


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for var in ("KETTLE_ROOT", "KETTLE_ARCH", "KETTLE_CONFIG"):
        monkeypatch.delenv(var, raising=False)


class TestConfig:
    def test_defaults_and_derived_paths(self) -> None:
        cfg = config_mod.from_mapping({})
        assert cfg.get("paths.prefix") == "/usr/local"
        assert cfg.get("paths.device_file") == "/usr/local/etc/kettle/device.json"
        assert cfg.get("paths.meta_dir") == "/usr/local/etc/kettle/meta"
        assert cfg.get("paths.dest_dir") == "/usr/local/tmp/kettle/dest"
        assert cfg.get("paths.packages_dir") == "/usr/local/lib/kettle/packages"
        assert cfg.get("build.compilers") == ["cc", "gcc", "clang"]
        assert cfg.get("no.such.key", "fallback") == "fallback"

    def test_overrides_and_coercion(self, tmp_path: Path) -> None:
        cfg = config_mod.from_mapping({
            "paths": {"config_path": str(tmp_path / "etc")},
            "build": {"keep_workdir": "yes", "compilers": "clang, gcc"},
        })
        assert cfg.get("paths.device_file") == str(tmp_path / "etc" / "device.json")
        assert cfg.get("build.keep_workdir") is True
        assert cfg.get("build.compilers") == ["clang", "gcc"]

    def test_environment_overrides(self, tmp_path: Path, monkeypatch) -> None:
        monkeypatch.setenv("KETTLE_ROOT", str(tmp_path))
        monkeypatch.setenv("KETTLE_ARCH", "armv7l")
        cfg = config_mod.from_mapping({})
        assert cfg.get("paths.root") == str(tmp_path)
        assert cfg.get("architecture") == "armv7l"

    def test_invalid_structure(self) -> None:
        with pytest.raises(ValueError, match="prefix"):
            config_mod.from_mapping({"paths": {"prefix": "relative"}}, fatal=True)
        # non-fatal by default
        assert config_mod.from_mapping({"bogus": 1}).get("bogus") == 1

    def test_load_yaml_file(self, tmp_path: Path) -> None:
        path = tmp_path / "kettle.yaml"
        path.write_text(yaml.safe_dump({"build": {"platform_tag": "chromeos"}, "install": {"assume_yes": True}}))
        seen = []
        config_mod.register_watch_callback(seen.append)
        try:
            cfg = config_mod.reload(str(path))
        finally:
            config_mod.unregister_watch_callback(seen.append)
        assert cfg.get("build.platform_tag") == "chromeos"
        assert cfg.get("install.assume_yes") is True
        assert config_mod.get_config() is cfg
        assert seen == [cfg]

    def test_detect_architecture(self, monkeypatch) -> None:
        monkeypatch.setattr(config_mod.platform, "machine", lambda: "AMD64")
        assert config_mod.detect_architecture() == "x86_64"
