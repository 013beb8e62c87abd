from __future__ import annotations

from pathlib import Path

import pytest

from nu_runtime.bootstrap import discover_overlay_paths, resolve_config


def test_resolve_config_defaults_only(tmp_path: Path) -> None:
    resolved = resolve_config(env={}, base_dir=tmp_path)

    assert resolved.overlay_paths == []
    assert resolved.config.interpreter.path == "nu"
    assert resolved.sources["interpreter.path"] == "embedded_default"


def test_env_overlay_paths_then_explicit_overlays(tmp_path: Path) -> None:
    (tmp_path / "a.yaml").write_text("exec:\n  default_timeout_sec: 11\n", encoding="utf-8")
    (tmp_path / "b.yaml").write_text("exec:\n  default_timeout_sec: 22\n", encoding="utf-8")

    resolved = resolve_config(
        config_paths=["b.yaml"],
        env={"NU_RUNTIME_CONFIG_PATHS": " a.yaml ; "},
        base_dir=tmp_path,
    )

    assert resolved.overlay_paths == [str((tmp_path / "a.yaml").resolve()), str((tmp_path / "b.yaml").resolve())]
    assert resolved.config.exec.default_timeout_sec == 22
    assert resolved.sources["exec.default_timeout_sec"] == f"overlay:{(tmp_path / 'b.yaml').resolve()}"


def test_env_overrides_win_over_overlays(tmp_path: Path) -> None:
    (tmp_path / "o.yaml").write_text("interpreter:\n  path: /opt/nu\n", encoding="utf-8")

    resolved = resolve_config(
        config_paths=[tmp_path / "o.yaml"],
        env={"NU_PATH": "/usr/local/bin/nu", "NU_RUNTIME_DIALECT": "posix", "NU_RUNTIME_LOG_LEVEL": "debug", "NU_PATH_UNUSED": "x"},
        base_dir=tmp_path,
    )

    assert resolved.config.interpreter.path == "/usr/local/bin/nu"
    assert resolved.config.interpreter.dialect == "posix"
    assert resolved.config.logging.level == "DEBUG"
    assert resolved.sources["interpreter.path"] == "env:NU_PATH"
    assert resolved.sources["logging.level"] == "env:NU_RUNTIME_LOG_LEVEL"


def test_blank_env_values_are_ignored(tmp_path: Path) -> None:
    resolved = resolve_config(env={"NU_PATH": "   "}, base_dir=tmp_path)

    assert resolved.config.interpreter.path == "nu"


def test_overlay_paths_are_deduplicated(tmp_path: Path) -> None:
    (tmp_path / "a.yaml").write_text("{}\n", encoding="utf-8")

    paths = discover_overlay_paths(explicit=["a.yaml", str(tmp_path / "a.yaml")], env={}, base_dir=tmp_path)

    assert paths == [(tmp_path / "a.yaml").resolve()]


def test_missing_overlay_fails(tmp_path: Path) -> None:
    with pytest.raises(ValueError):
        resolve_config(config_paths=["nope.yaml"], env={}, base_dir=tmp_path)
