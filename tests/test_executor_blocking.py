from __future__ import annotations

import asyncio
import time
from pathlib import Path

import pytest

from nu_runtime.config.loader import load_config_dicts
from nu_runtime.core.buffer import TRUNCATION_MARKER
from nu_runtime.core.cwd_protocol import SENTINEL_PREFIX
from nu_runtime.core.errors import LaunchError
from nu_runtime.core.executor import NuExecutor
from nu_runtime.core.session import SessionState


def test_blocking_echo_ok(make_executor) -> None:  # type: ignore[no-untyped-def]
    ex = make_executor()
    result = asyncio.run(ex.execute_blocking("echo hi"))

    assert result.exit_code == 0
    assert result.success is True
    assert result.timed_out is False
    assert result.stdout == "hi"
    assert result.stderr == ""
    assert result.output == "hi"
    assert result.elapsed_ms >= 0
    assert SENTINEL_PREFIX not in result.stdout


def test_blocking_non_zero_exit_is_preserved(make_executor) -> None:  # type: ignore[no-untyped-def]
    ex = make_executor()
    result = asyncio.run(ex.execute_blocking("echo before; false"))

    assert result.exit_code == 1
    assert result.success is False
    assert result.stdout == "before"


def test_blocking_stderr_is_collected_and_labelled(make_executor) -> None:  # type: ignore[no-untyped-def]
    ex = make_executor()
    result = asyncio.run(ex.execute_blocking("echo out; echo oops 1>&2"))

    assert result.stdout == "out"
    assert result.stderr == "oops\n"
    assert result.output == "out\n[stderr]\noops\n"


def test_blocking_env_is_overlaid(make_executor) -> None:  # type: ignore[no-untyped-def]
    ex = make_executor()
    result = asyncio.run(ex.execute_blocking('echo "$NU_RUNTIME_TEST_VAR"', env={"NU_RUNTIME_TEST_VAR": "bar"}))

    assert result.stdout == "bar"


def test_blocking_cd_updates_session_cwd(make_executor, tmp_path: Path) -> None:  # type: ignore[no-untyped-def]
    ex = make_executor()

    async def _run() -> str:
        first = await ex.execute_blocking("cd /tmp && true")
        assert first.success is True
        assert first.cwd == "/tmp"
        second = await ex.execute_blocking("pwd")
        return second.stdout

    assert asyncio.run(_run()) == "/tmp"
    assert ex.session.get_cwd() == "/tmp"


def test_blocking_starts_in_session_cwd(make_executor, tmp_path: Path) -> None:  # type: ignore[no-untyped-def]
    work = tmp_path / "work"
    work.mkdir()
    ex = make_executor(cwd=work)

    result = asyncio.run(ex.execute_blocking("pwd"))

    assert result.stdout == str(work)


def test_blocking_explicit_cwd_applies_to_that_call(make_executor, tmp_path: Path) -> None:  # type: ignore[no-untyped-def]
    other = tmp_path / "other"
    other.mkdir()
    ex = make_executor()

    result = asyncio.run(ex.execute_blocking("pwd", cwd=str(other)))

    assert result.stdout == str(other)
    # 阻塞路径以 sentinel 披露的目录为准写回 session
    assert ex.session.get_cwd() == str(other)


def test_blocking_missing_session_dir_does_not_abort_command(make_executor, tmp_path: Path) -> None:  # type: ignore[no-untyped-def]
    ex = make_executor(cwd=tmp_path / "deleted")

    result = asyncio.run(ex.execute_blocking("echo still-runs"))

    assert result.success is True
    assert result.stdout == "still-runs"


def test_blocking_timeout_kills_and_keeps_session_cwd(make_executor, tmp_path: Path) -> None:  # type: ignore[no-untyped-def]
    ex = make_executor()
    before = ex.session.get_cwd()

    t0 = time.monotonic()
    result = asyncio.run(ex.execute_blocking("cd /; echo started; sleep 10", timeout_sec=0.5))
    elapsed = time.monotonic() - t0

    assert result.timed_out is True
    assert result.exit_code == -1
    assert result.success is False
    assert elapsed < 5
    assert ex.session.get_cwd() == before
    assert SENTINEL_PREFIX not in result.stdout


def test_blocking_timeout_also_kills_grandchildren(make_executor, tmp_path: Path) -> None:  # type: ignore[no-untyped-def]
    ex = make_executor()
    marker = tmp_path / "grandchild-survived"

    async def _run() -> None:
        result = await ex.execute_blocking(f"(sleep 1; touch {marker}) & wait", timeout_sec=0.3)
        assert result.timed_out is True
        await asyncio.sleep(1.5)

    asyncio.run(_run())
    assert not marker.exists()


def test_blocking_returns_on_exit_while_descendant_holds_pipes(make_executor, tmp_path: Path) -> None:  # type: ignore[no-untyped-def]
    """解释器退出即返回：后台子孙进程继承 stdout 不会把调用拖成超时。"""

    ex = make_executor({"exec": {"drain_flush_timeout_ms": 500}})
    work = tmp_path / "work"
    work.mkdir()

    t0 = time.monotonic()
    result = asyncio.run(ex.execute_blocking(f"cd {work}; sleep 5 & echo hi", timeout_sec=10))
    elapsed = time.monotonic() - t0

    assert result.timed_out is False
    assert result.exit_code == 0
    assert result.success is True
    assert result.stdout == "hi"
    assert elapsed < 4
    assert ex.session.get_cwd() == str(work)


def test_blocking_output_truncation(make_executor) -> None:  # type: ignore[no-untyped-def]
    ex = make_executor({"exec": {"stdout_max_bytes": 1000}})

    result = asyncio.run(ex.execute_blocking("i=0; while [ $i -lt 500 ]; do echo line-$i; i=$((i+1)); done"))

    assert result.truncated is True
    assert result.stdout.startswith("line-0\nline-1\n")
    assert result.stdout.endswith(TRUNCATION_MARKER)
    assert len(result.stdout.encode("utf-8")) <= 1000 + len(TRUNCATION_MARKER)


def test_blocking_long_line_is_read_in_chunks(make_executor) -> None:  # type: ignore[no-untyped-def]
    ex = make_executor({"exec": {"stream_limit_bytes": 1024}})

    result = asyncio.run(ex.execute_blocking("head -c 5000 /dev/zero | tr '\\0' x; echo"))

    assert result.success is True
    assert result.stdout.count("x") == 5000


def test_blocking_default_timeout_is_resolved(make_executor) -> None:  # type: ignore[no-untyped-def]
    ex = make_executor({"exec": {"default_timeout_sec": 42}})

    assert ex.resolve_timeout(None) == 42.0
    assert ex.resolve_timeout(0) == 42.0
    assert ex.resolve_timeout(5) == 5.0


def test_launch_failure_is_an_error_not_a_timeout(tmp_path: Path) -> None:
    cfg = load_config_dicts([{"interpreter": {"path": str(tmp_path / "no-such-nu"), "dialect": "posix"}}])
    ex = NuExecutor(cfg, session=SessionState(cwd=str(tmp_path)))

    with pytest.raises(LaunchError) as blocking:
        asyncio.run(ex.execute_blocking("echo hi"))
    assert blocking.value.code == "LAUNCH_FAILURE"

    with pytest.raises(LaunchError):
        asyncio.run(ex.execute_background("echo hi"))
