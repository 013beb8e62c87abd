"""
子进程 spawn 与终止（asyncio）。

对齐 Executor 的既有约定：
- stdin 关闭（DEVNULL），stdout/stderr 为管道；
- 子进程成为新的进程组 leader（`start_new_session=True`），超时/kill 时整组终止，
  避免解释器派生的外部命令残留；
- 本模块面向 macOS/Linux。

退出判定：
- `asyncio.subprocess.Process.wait()` 要等所有管道关闭才返回；后台派生的子孙进程继承了
  stdout 时，解释器早已退出而 `wait()` 仍会挂住；
- 因此 spawn 使用自定义 protocol，在 `process_exited()` 回调里置位事件，
  `InterpreterProcess.wait_exit()` 只等“解释器本身退出”。
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
from asyncio.subprocess import Process, SubprocessStreamProtocol
from typing import Mapping, Optional

from nu_runtime.core.errors import LaunchError

logger = logging.getLogger(__name__)


class _ExitAwareProtocol(SubprocessStreamProtocol):
    """在解释器退出时（而非管道关闭时）置位 `exited`。"""

    def __init__(self, limit: int, loop: asyncio.AbstractEventLoop) -> None:
        super().__init__(limit=limit, loop=loop)
        self.exited = asyncio.Event()

    def process_exited(self) -> None:
        super().process_exited()
        self.exited.set()


class InterpreterProcess(Process):
    """`Process` + `wait_exit()`：退出码在进程退出时即可取得，不等管道 EOF。"""

    def __init__(self, transport: asyncio.SubprocessTransport, protocol: _ExitAwareProtocol, loop: asyncio.AbstractEventLoop) -> None:
        super().__init__(transport, protocol, loop)
        self._exited = protocol.exited

    async def wait_exit(self) -> int:
        await self._exited.wait()
        returncode = self.returncode
        return -1 if returncode is None else int(returncode)


def merge_env(env: Optional[Mapping[str, str]]) -> dict[str, str]:
    """以当前进程环境为底，叠加调用方提供的环境变量（同名覆盖）。"""

    merged = dict(os.environ)
    if env:
        merged.update({str(k): str(v) for k, v in env.items()})
    return merged


async def spawn_interpreter(
    interpreter: str,
    script: str,
    *,
    env: Optional[Mapping[str, str]] = None,
    stream_limit: int = 64 * 1024,
) -> InterpreterProcess:
    """
    以 `<interpreter> -c <script>` 启动子进程。

    异常：
    - `LaunchError`：解释器不存在或不可执行
    """

    loop = asyncio.get_running_loop()
    try:
        transport, protocol = await loop.subprocess_exec(
            lambda: _ExitAwareProtocol(limit=stream_limit, loop=loop),
            interpreter,
            "-c",
            script,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=merge_env(env),
            start_new_session=(os.name != "nt"),
        )
    except (FileNotFoundError, PermissionError, NotADirectoryError) as e:
        raise LaunchError(str(e), interpreter=interpreter) from e
    except OSError as e:
        raise LaunchError(f"failed to launch interpreter: {e}", interpreter=interpreter) from e
    return InterpreterProcess(transport, protocol, loop)


def kill_process_group(process: Process) -> bool:
    """
    强制终止子进程所在的进程组（整组 SIGKILL）。

    说明：
    - leader（解释器）已退出时进程组里仍可能有子孙进程，所以总是先尝试 `killpg`；
      `ProcessLookupError` 表示组内已无进程；
    - `killpg` 不被允许时退化为 `Process.kill()`（仅在 leader 仍存活时）。

    返回：
    - True：信号已发出
    - False：组内已无进程 / leader 已退出

    异常：
    - OSError：终止系统调用失败（由调用方映射为 KillError）
    """

    if os.name != "nt":
        try:
            os.killpg(process.pid, signal.SIGKILL)
            return True
        except ProcessLookupError:
            return False
        except PermissionError:
            # 进程组可能已被其它进程复用；只终止子进程本身
            logger.debug("killpg(%s) not permitted; falling back to kill()", process.pid)
    if process.returncode is not None:
        return False
    try:
        process.kill()
        return True
    except ProcessLookupError:
        return False


async def reap(process: InterpreterProcess, *, timeout: float) -> Optional[int]:
    """有界等待解释器退出；超时返回 None。"""

    try:
        return await asyncio.wait_for(process.wait_exit(), timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning("Process %s did not exit within %.1fs after kill", process.pid, timeout)
        return None
