"""
Executor（解释器子进程执行引擎）。

两条路径：
- `NuExecutor.execute_blocking(...)`：spawn → 两路 drain + 超时竞速 → 收集输出 → 通过 sentinel 更新 session cwd
- `NuExecutor.execute_background(...)`：spawn → 注册 job → 派生 supervisor task → 立即返回 job id

说明：
- 输出缓冲采用“保留头部 + marker”的截断策略（见 `nu_runtime.core.buffer`），与 job 读取口径一致；
- 超时/取消时整组强杀子进程，并取消 drain（drain 在锁外被取消，不会遗留持有的锁）；
- 以解释器退出为准（不等管道关闭）：继承了管道的后台子孙进程不会把调用拖到超时；
  退出后每个 drain 有界 flush，flush 不完的 drain 被取消。
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import List, Mapping, Optional, Set

from nu_runtime.config.loader import NuRuntimeConfig
from nu_runtime.core.buffer import BoundedLineBuffer
from nu_runtime.core.contracts import (
    BackgroundStartResult,
    ExecResult,
    JobOutputResult,
    KillResult,
    combine_output,
)
from nu_runtime.core.cwd_protocol import ShellDialect, extract_cwd, get_dialect, new_sentinel
from nu_runtime.core.drain import drain_lines
from nu_runtime.core.errors import StreamAcquisitionError
from nu_runtime.core.jobs import JobRegistry
from nu_runtime.core.process import InterpreterProcess, kill_process_group, reap, spawn_interpreter
from nu_runtime.core.session import SessionState
from nu_runtime.core.supervisor import flush_drains, supervise

logger = logging.getLogger(__name__)


class NuExecutor:
    """
    解释器执行引擎（单事件循环内使用）。

    参数：
    - config：有效配置（缺省使用内置默认值）
    - session：共享 session 状态（缺省以当前进程目录初始化）
    - registry：后台 job 注册表（缺省按 `config.jobs` 创建）
    """

    def __init__(
        self,
        config: Optional[NuRuntimeConfig] = None,
        *,
        session: Optional[SessionState] = None,
        registry: Optional[JobRegistry] = None,
    ) -> None:
        self._config = config or NuRuntimeConfig()
        self._dialect: ShellDialect = get_dialect(self._config.interpreter.dialect)
        self._session = session or SessionState()
        jobs = self._config.jobs
        self._registry = registry or JobRegistry(
            poll_interval_ms=jobs.poll_interval_ms,
            block_timeout_sec=jobs.block_timeout_sec,
            kill_wait_timeout_ms=jobs.kill_wait_timeout_ms,
            id_prefix=jobs.id_prefix,
            id_length=jobs.id_length,
        )
        self._supervisors: Set["asyncio.Task[None]"] = set()

    @property
    def config(self) -> NuRuntimeConfig:
        return self._config

    @property
    def session(self) -> SessionState:
        return self._session

    @property
    def registry(self) -> JobRegistry:
        return self._registry

    @property
    def interpreter(self) -> str:
        return self._config.interpreter.path

    def resolve_timeout(self, timeout_sec: Optional[float]) -> float:
        """调用方 timeout 优先；缺省或非正数时回退到 `exec.default_timeout_sec`。"""

        if timeout_sec is None or timeout_sec <= 0:
            return float(self._config.exec.default_timeout_sec)
        return float(timeout_sec)

    async def _spawn(self, script: str, env: Optional[Mapping[str, str]]) -> InterpreterProcess:
        process = await spawn_interpreter(
            self.interpreter,
            script,
            env=env,
            stream_limit=self._config.exec.stream_limit_bytes,
        )
        if process.stdout is None or process.stderr is None:
            stream = "stdout" if process.stdout is None else "stderr"
            logger.error("Child %s spawned without a %s pipe", process.pid, stream)
            await self._discard(process)
            raise StreamAcquisitionError(stream)
        return process

    async def _discard(self, process: InterpreterProcess) -> None:
        """终止并回收一个不会再交给任何人的子进程。"""

        try:
            kill_process_group(process)
        except OSError as e:
            logger.warning("Failed to kill discarded process %s: %s", process.pid, e)
        await reap(process, timeout=self._config.exec.kill_wait_timeout_ms / 1000.0)

    async def _abort(self, process: InterpreterProcess, drains: List["asyncio.Task[None]"]) -> None:
        """强杀子进程并取消 drain（超时/取消路径）。"""

        try:
            kill_process_group(process)
        except OSError as e:
            logger.warning("Failed to kill timed-out process %s: %s", process.pid, e)
        for task in drains:
            task.cancel()
        await asyncio.gather(*drains, return_exceptions=True)
        await reap(process, timeout=self._config.exec.kill_wait_timeout_ms / 1000.0)

    async def execute_blocking(
        self,
        command: str,
        *,
        env: Optional[Mapping[str, str]] = None,
        cwd: Optional[str] = None,
        timeout_sec: Optional[float] = None,
    ) -> ExecResult:
        """
        阻塞执行一条命令。

        参数：
        - command：解释器管道文本（原样传给解释器）
        - env：叠加到当前进程环境上的变量
        - cwd：仅本次调用生效的工作目录（缺省使用 session cwd）
        - timeout_sec：超时秒数（缺省 `exec.default_timeout_sec`）

        返回：
        - ExecResult（超时以 `timed_out=True / exit_code=-1` 表示，不抛异常）

        异常：
        - LaunchError：解释器不存在或不可执行
        - StreamAcquisitionError：拿不到输出管道
        """

        exec_cfg = self._config.exec
        timeout = self.resolve_timeout(timeout_sec)
        start_cwd = str(cwd) if cwd else self._session.get_cwd()
        sentinel = new_sentinel()
        script = self._dialect.wrap_blocking(cwd=start_cwd, command=command, sentinel=sentinel)
        logger.debug("Executing (blocking, timeout=%.1fs) in %s: %s", timeout, start_cwd, command)

        t0 = time.monotonic()
        process = await self._spawn(script, env)

        lock = asyncio.Lock()
        stdout_buf = BoundedLineBuffer(exec_cfg.stdout_max_bytes)
        stderr_buf = BoundedLineBuffer(exec_cfg.stderr_max_bytes)
        assert process.stdout is not None and process.stderr is not None
        drains = [
            asyncio.create_task(drain_lines(process.stdout, stdout_buf, lock=lock, name="stdout")),
            asyncio.create_task(drain_lines(process.stderr, stderr_buf, lock=lock, name="stderr")),
        ]

        timed_out = False
        try:
            returncode = await asyncio.wait_for(process.wait_exit(), timeout=timeout)
        except asyncio.TimeoutError:
            timed_out = True
            returncode = None
            logger.info("Command timed out after %.1fs; killing process group %s", timeout, process.pid)
            await self._abort(process, drains)
        except asyncio.CancelledError:
            await self._abort(process, drains)
            raise
        else:
            await flush_drains(drains, timeout=exec_cfg.drain_flush_timeout_ms / 1000.0)

        elapsed_ms = int((time.monotonic() - t0) * 1000)
        exit_code = -1 if (timed_out or returncode is None) else int(returncode)

        async with lock:
            raw_stdout = stdout_buf.text()
            stderr = stderr_buf.text()
            truncated = stdout_buf.truncated or stderr_buf.truncated
            stdout_truncated = stdout_buf.truncated

        stdout, new_cwd = extract_cwd(raw_stdout, sentinel, truncated=stdout_truncated)
        if new_cwd is not None and not timed_out:
            self._session.set_cwd(new_cwd)

        success = (not timed_out) and exit_code == 0
        logger.debug("Command finished: exit_code=%s elapsed_ms=%s timed_out=%s", exit_code, elapsed_ms, timed_out)
        return ExecResult(
            exit_code=exit_code,
            stdout=stdout,
            stderr=stderr,
            output=combine_output(stdout, stderr),
            elapsed_ms=elapsed_ms,
            success=success,
            timed_out=timed_out,
            cwd=self._session.get_cwd(),
            truncated=truncated,
        )

    async def execute_background(
        self,
        command: str,
        *,
        env: Optional[Mapping[str, str]] = None,
        cwd: Optional[str] = None,
    ) -> BackgroundStartResult:
        """
        后台执行一条命令并立即返回 job id（不等待进程结束）。

        说明：
        - 只包 “进入 cwd” 的保护段，不输出 sentinel；后台 job 的 `cd` 不会写回 session。

        异常：
        - LaunchError：解释器不存在或不可执行
        - StreamAcquisitionError：拿不到输出管道
        """

        jobs_cfg = self._config.jobs
        start_cwd = str(cwd) if cwd else self._session.get_cwd()
        script = self._dialect.wrap_background(cwd=start_cwd, command=command)
        process = await self._spawn(script, env)

        job_id = self._registry.generate_id()
        try:
            await self._registry.register(
                job_id,
                process,
                command,
                stdout_max_bytes=jobs_cfg.stdout_max_bytes,
                stderr_max_bytes=jobs_cfg.stderr_max_bytes,
            )
        except BaseException:
            # 未登记的进程没有任何 kill 入口，这里直接终止
            await self._discard(process)
            raise
        task = asyncio.create_task(
            supervise(
                self._registry,
                job_id,
                monitor_timeout_sec=jobs_cfg.monitor_timeout_sec,
                drain_flush_timeout_ms=self._config.exec.drain_flush_timeout_ms,
                kill_wait_timeout_ms=jobs_cfg.kill_wait_timeout_ms,
            ),
            name=f"supervise:{job_id}",
        )
        self._supervisors.add(task)
        task.add_done_callback(self._supervisors.discard)

        logger.info("Background process started: %s (pid=%s)", job_id, process.pid)
        return BackgroundStartResult(
            id=job_id,
            message=f"Background process started. ID: {job_id}. Use nu.output to see output.",
        )

    async def read_output(self, job_id: str, *, block: bool = False) -> JobOutputResult:
        """读取后台 job 输出；未知 id 抛 `JobNotFoundError`。"""

        snapshot = await self._registry.read_output(job_id, block=block)
        return snapshot.to_result()

    async def kill(self, job_id: str) -> KillResult:
        """终止后台 job；未知 id 抛 `JobNotFoundError`，终止失败抛 `KillError`。"""

        return await self._registry.kill(job_id)

    async def aclose(self, *, timeout: float = 5.0) -> None:
        """关闭：终止所有仍登记的 job，并有界等待 supervisor 结束。"""

        await self._registry.close_all()
        pending = [t for t in self._supervisors if not t.done()]
        if not pending:
            return
        _done, still_pending = await asyncio.wait(pending, timeout=timeout)
        for task in still_pending:
            task.cancel()
        if still_pending:
            logger.warning("Cancelled %d supervisor task(s) on shutdown", len(still_pending))
