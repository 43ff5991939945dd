import argparse
from pathlib import Path

import pytest

from vrmdeob import cli
from vrmdeob.config import Settings
from vrmdeob.errors import UnknownSchemeError
from vrmdeob.generator import load_object, load_plugin


def test_settings_from_env():
    s = Settings.from_env({"VRMDEOB_CACHE_DIR": "/tmp/c", "VRMDEOB_TIMEOUT": "5", "OTHER": "x"})
    assert s.cache_dir == Path("/tmp/c")
    assert s.timeout == 5.0
    assert s.api_base == "https://hub.vroid.com/api"


def test_override_ignores_none():
    s = Settings().override(output_dir="out", generator=None)
    assert s.output_dir == Path("out")
    assert s.generator is None


def test_load_plugin():
    assert load_plugin(None) is None
    assert load_object("pathlib:Path") is Path
    assert isinstance(load_plugin("collections:OrderedDict"), dict)
    with pytest.raises(ValueError):
        load_object("no-colon")


def test_validate_target():
    assert cli.validate_target("12345") == "12345"
    assert cli.validate_target("https://hub.vroid.com/characters/1/models/2").endswith("/2")
    with pytest.raises(argparse.ArgumentTypeError):
        cli.validate_target("hello")


def test_main_reports_pipeline_errors(monkeypatch):
    def boom(target, settings):
        raise UnknownSchemeError("Seed not found for timestamp: 1")

    monkeypatch.setattr(cli, "run", boom)
    monkeypatch.setattr(cli, "configure_logging", lambda verbose: None)
    assert cli.main(["123"]) == 1


def test_main_passes_flags(monkeypatch, tmp_path):
    seen = {}

    def fake_run(target, settings):
        seen["target"] = target
        seen["settings"] = settings
        return tmp_path / "123.deob.vrm"

    monkeypatch.setattr(cli, "run", fake_run)
    monkeypatch.setattr(cli, "configure_logging", lambda verbose: None)
    assert cli.main(["123", "--output-dir", str(tmp_path), "--debug-dir", "dbg", "--generator", "m:g"]) == 0
    assert seen["target"] == "123"
    assert seen["settings"].output_dir == tmp_path
    assert seen["settings"].debug_dir == Path("dbg")
    assert seen["settings"].generator == "m:g"
