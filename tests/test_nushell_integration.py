"""
Nushell 端到端用例（需要 PATH 上有 `nu`；否则整体 skip）。
"""

from __future__ import annotations

import asyncio
import shutil
from pathlib import Path

import pytest

from nu_runtime.config.loader import load_config_dicts
from nu_runtime.core.executor import NuExecutor
from nu_runtime.core.session import SessionState

NU = shutil.which("nu")

pytestmark = pytest.mark.skipif(NU is None, reason="nushell (nu) is not installed")


def _executor(cwd: Path) -> NuExecutor:
    cfg = load_config_dicts([{"interpreter": {"path": NU, "dialect": "nu"}}])
    return NuExecutor(cfg, session=SessionState(cwd=str(cwd)))


def test_nu_pipeline_output(tmp_path: Path) -> None:
    ex = _executor(tmp_path)

    result = asyncio.run(ex.execute_blocking("[1 2 3] | math sum"))

    assert result.success is True
    assert result.stdout == "6"


def test_nu_cd_is_remembered_between_calls(tmp_path: Path) -> None:
    work = tmp_path / "it's here"
    work.mkdir()
    ex = _executor(tmp_path)

    async def _run() -> str:
        await ex.execute_blocking(f'cd "{work}"')
        second = await ex.execute_blocking("pwd")
        return second.stdout

    assert asyncio.run(_run()) == str(work)
    assert ex.session.get_cwd() == str(work)


def test_nu_error_is_non_zero_exit(tmp_path: Path) -> None:
    ex = _executor(tmp_path)

    result = asyncio.run(ex.execute_blocking("error make {msg: boom}"))

    assert result.success is False
    assert result.exit_code != 0
    assert "boom" in result.stderr


def test_nu_background_job(tmp_path: Path) -> None:
    ex = _executor(tmp_path)

    async def _run() -> None:
        started = await ex.execute_background("sleep 200ms; print done")
        final = await ex.read_output(started.id, block=True)
        assert final.status == "completed"
        assert "done" in final.stdout

    asyncio.run(_run())
