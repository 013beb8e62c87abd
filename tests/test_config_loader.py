from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from nu_runtime.config.defaults import load_default_config_dict
from nu_runtime.config.loader import NuRuntimeConfig, load_config, load_config_dicts


def test_embedded_defaults_match_model_defaults() -> None:
    cfg = load_config_dicts([load_default_config_dict()])

    assert cfg == NuRuntimeConfig()
    assert cfg.interpreter.path == "nu"
    assert cfg.interpreter.dialect == "nu"
    assert cfg.exec.default_timeout_sec == 60
    assert cfg.exec.stdout_max_bytes == 200_000
    assert cfg.exec.stderr_max_bytes == 50_000
    assert cfg.jobs.stdout_max_bytes == 100_000
    assert cfg.jobs.monitor_timeout_sec == 300
    assert cfg.jobs.poll_interval_ms == 100


def test_overlay_files_deep_merge_in_order(tmp_path: Path) -> None:
    base = tmp_path / "base.yaml"
    base.write_text("exec:\n  default_timeout_sec: 10\n  stdout_max_bytes: 1000\n", encoding="utf-8")
    overlay = tmp_path / "overlay.yaml"
    overlay.write_text("exec:\n  default_timeout_sec: 20\ninterpreter:\n  dialect: POSIX\n", encoding="utf-8")

    cfg = load_config([base, overlay])

    assert cfg.exec.default_timeout_sec == 20
    assert cfg.exec.stdout_max_bytes == 1000
    assert cfg.exec.stderr_max_bytes == 50_000
    assert cfg.interpreter.dialect == "posix"


def test_unknown_fields_are_rejected() -> None:
    with pytest.raises(ValidationError):
        load_config_dicts([{"exec": {"default_timeout": 5}}])
    with pytest.raises(ValidationError):
        load_config_dicts([{"interpreter": {"dialect": "fish"}}])


def test_empty_overlay_file_is_allowed(tmp_path: Path) -> None:
    empty = tmp_path / "empty.yaml"
    empty.write_text("", encoding="utf-8")

    assert load_config([empty]) == NuRuntimeConfig()


def test_missing_or_non_mapping_file_fails(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        load_config([tmp_path / "missing.yaml"])

    bad = tmp_path / "list.yaml"
    bad.write_text("- a\n- b\n", encoding="utf-8")
    with pytest.raises(ValueError):
        load_config([bad])
