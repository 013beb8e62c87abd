"""
Job registry：后台 job 的并发注册表。

设计要点：
- 每个 job 一个 `JobRecord`，由单把 `asyncio.Lock` 保护两路缓冲与 status/exit_code；
- 进程句柄放在 record 的“单槽位”里，只能通过 `take_process()` 取走一次：
  - supervisor 开始监控时取走（record 留在表中供读者读取）；
  - kill 调用方在 supervisor 之前到达时取走；
  - 之后的取用方拿到 None，而不是过期句柄；
  - supervisor 在解释器退出（或到达监控上限）后把句柄放回槽位，
    kill 仍可按进程组终止残留的子孙进程；
- supervisor 持有句柄期间，kill 通过 `kill_requested` 请求 supervisor 终止进程，
  并等待 `finished`（有界）；
- status 与 exit_code 在同一次加锁内一起写入、且只写一次（Running → Completed/Failed）。

注册表本身的锁只保护 dict，不会在持有时等待 record 锁。
"""

from __future__ import annotations

import asyncio
import logging
import secrets
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

from nu_runtime.core.buffer import BoundedLineBuffer
from nu_runtime.core.contracts import JobOutputResult, KillResult, combine_output
from nu_runtime.core.errors import JobNotFoundError, KillError
from nu_runtime.core.process import InterpreterProcess, kill_process_group, reap

logger = logging.getLogger(__name__)

_ID_ALPHABET = "_-0123456789abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ"


class JobStatus(str, Enum):
    """job 状态（只允许 Running → Completed/Failed 一次迁移）。"""

    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class JobSnapshot:
    """job 的只读快照（一次加锁内读出，字段之间一致）。"""

    id: str
    command: str
    status: JobStatus
    exit_code: Optional[int]
    stdout: str
    stderr: str
    elapsed_seconds: int
    truncated: bool

    def to_result(self) -> JobOutputResult:
        return JobOutputResult(
            id=self.id,
            command=self.command,
            status=self.status.value,
            stdout=self.stdout,
            stderr=self.stderr,
            output=combine_output(self.stdout, self.stderr),
            exit_code=self.exit_code,
            elapsed_seconds=self.elapsed_seconds,
            truncated=self.truncated,
        )


@dataclass(eq=False)
class JobRecord:
    """单个后台 job 的共享状态。"""

    id: str
    command: str
    stdout: BoundedLineBuffer
    stderr: BoundedLineBuffer
    started_at: float = field(default_factory=time.monotonic)
    status: JobStatus = JobStatus.RUNNING
    exit_code: Optional[int] = None
    # supervisor 或 kill 调用方实际发出了终止信号
    killed: bool = False
    # supervisor 终止失败时的底层原因（由 kill 调用方转为 KillError）
    kill_error: Optional[str] = None
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)
    kill_requested: asyncio.Event = field(default_factory=asyncio.Event, repr=False)
    finished: asyncio.Event = field(default_factory=asyncio.Event, repr=False)
    drain_tasks: List["asyncio.Task[None]"] = field(default_factory=list, repr=False)
    _process: Optional[InterpreterProcess] = field(default=None, repr=False)

    @property
    def is_running(self) -> bool:
        return self.status is JobStatus.RUNNING

    def elapsed_seconds(self) -> int:
        return int(time.monotonic() - self.started_at)

    def take_process(self) -> Optional[InterpreterProcess]:
        """取走进程句柄（槽位置空）；已被取走时返回 None。"""

        process, self._process = self._process, None
        return process

    def restore_process(self, process: InterpreterProcess) -> None:
        """把仍存活的句柄放回槽位（监控上限到期后交还给 kill）。"""

        if self._process is None:
            self._process = process

    async def finish(self, *, exit_code: int) -> bool:
        """
        写入终态（exit_code 与 status 同锁写入，只生效一次）。

        返回：
        - True：本次写入生效
        - False：终态此前已写入（保持不变）
        """

        async with self.lock:
            if self.status is not JobStatus.RUNNING:
                return False
            self.exit_code = int(exit_code)
            self.status = JobStatus.COMPLETED if exit_code == 0 else JobStatus.FAILED
        self.finished.set()
        return True

    async def snapshot(self) -> JobSnapshot:
        async with self.lock:
            return JobSnapshot(
                id=self.id,
                command=self.command,
                status=self.status,
                exit_code=self.exit_code,
                stdout=self.stdout.text(),
                stderr=self.stderr.text(),
                elapsed_seconds=self.elapsed_seconds(),
                truncated=self.stdout.truncated or self.stderr.truncated,
            )


class JobRegistry:
    """
    后台 job 注册表（单事件循环内并发安全）。

    参数：
    - poll_interval_ms：`read_output(block=True)` 的轮询间隔
    - block_timeout_sec：`read_output(block=True)` 的总等待上限
    - kill_wait_timeout_ms：kill 等待进程回收/supervisor 落盘终态的上限
    - id_prefix/id_length：job id 形状（默认 `job_xxxxxx`）
    """

    def __init__(
        self,
        *,
        poll_interval_ms: int = 100,
        block_timeout_sec: float = 300,
        kill_wait_timeout_ms: int = 5_000,
        id_prefix: str = "job_",
        id_length: int = 6,
    ) -> None:
        if poll_interval_ms < 1:
            raise ValueError("poll_interval_ms must be >= 1")
        if id_length < 1:
            raise ValueError("id_length must be >= 1")
        self._poll_interval = poll_interval_ms / 1000.0
        self._block_timeout = float(block_timeout_sec)
        self._kill_wait = kill_wait_timeout_ms / 1000.0
        self._id_prefix = id_prefix
        self._id_length = id_length
        self._lock = asyncio.Lock()
        self._jobs: Dict[str, JobRecord] = {}

    def generate_id(self) -> str:
        """生成当前表内唯一的 job id。"""

        while True:
            suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(self._id_length))
            job_id = f"{self._id_prefix}{suffix}"
            if job_id not in self._jobs:
                return job_id

    async def register(
        self,
        job_id: str,
        process: InterpreterProcess,
        command: str,
        *,
        stdout_max_bytes: int = 100_000,
        stderr_max_bytes: int = 100_000,
    ) -> JobRecord:
        """插入一条 Running 状态的新 record（空缓冲、无退出码）。"""

        record = JobRecord(
            id=job_id,
            command=command,
            stdout=BoundedLineBuffer(stdout_max_bytes),
            stderr=BoundedLineBuffer(stderr_max_bytes),
            _process=process,
        )
        async with self._lock:
            if job_id in self._jobs:
                raise ValueError(f"job id already registered: {job_id}")
            self._jobs[job_id] = record
        return record

    async def get(self, job_id: str) -> Optional[JobRecord]:
        async with self._lock:
            return self._jobs.get(job_id)

    async def remove(self, job_id: str) -> Optional[JobRecord]:
        async with self._lock:
            return self._jobs.pop(job_id, None)

    async def list_ids(self) -> List[str]:
        async with self._lock:
            return list(self._jobs.keys())

    async def snapshot(self, job_id: str) -> JobSnapshot:
        """读取快照；未知 id 抛 `JobNotFoundError`。"""

        record = await self.get(job_id)
        if record is None:
            raise JobNotFoundError(job_id)
        return await record.snapshot()

    async def read_output(self, job_id: str, *, block: bool = False) -> JobSnapshot:
        """
        读取 job 输出。

        参数：
        - block：为 True 时按固定间隔轮询，直到 job 离开 Running 或达到等待上限，
          然后返回当时的快照（可能仍是 running）
        """

        record = await self.get(job_id)
        if record is None:
            raise JobNotFoundError(job_id)
        if block:
            deadline = time.monotonic() + self._block_timeout
            while record.is_running and time.monotonic() < deadline:
                await asyncio.sleep(min(self._poll_interval, max(deadline - time.monotonic(), 0.0)))
        return await record.snapshot()

    async def kill(self, job_id: str) -> KillResult:
        """
        终止 job。

        顺序：
        1) 先从表中移除（之后到达的 supervisor 会看到 job 不存在并退出）；
        2) 句柄在槽位（supervisor 尚未接管，或解释器退出后已放回）：取走并整组 SIGKILL，
           再有界回收；组内已无进程时为 already_exited，否则为 killed；
        3) 句柄已被 supervisor 取走且仍在运行：请求 supervisor 终止并等待终态；
        4) 其它情况：already_exited。

        异常：
        - `JobNotFoundError`：未知 id（对同一 id 的第二次 kill 也会得到它）
        - `KillError`：终止系统调用失败
        """

        record = await self.remove(job_id)
        if record is None:
            raise JobNotFoundError(job_id)

        process = record.take_process()
        if process is not None:
            try:
                delivered = kill_process_group(process)
            except OSError as e:
                logger.error("Failed to kill process %s: %s", job_id, e)
                raise KillError(job_id, str(e)) from e
            returncode = process.returncode
            if delivered:
                record.killed = True
                returncode = await reap(process, timeout=self._kill_wait)
            # supervisor 未接管（或已到监控上限）时由 kill 方写入终态；已有终态时不变
            await record.finish(exit_code=-1 if returncode is None else returncode)
            status = "killed" if delivered else "already_exited"
        elif record.is_running:
            record.kill_requested.set()
            try:
                await asyncio.wait_for(record.finished.wait(), timeout=self._kill_wait)
            except asyncio.TimeoutError:
                logger.warning("Supervisor of %s did not record a final status within %.1fs", job_id, self._kill_wait)
            if record.kill_error is not None:
                raise KillError(job_id, record.kill_error)
            status = "killed" if record.killed else "already_exited"
        else:
            status = "already_exited"

        logger.info("Kill %s: %s", job_id, status)
        return KillResult(id=job_id, status=status, command=record.command)

    async def close_all(self) -> None:
        """终止所有仍在表中的 job（best-effort，用于关闭清理）。"""

        for job_id in await self.list_ids():
            try:
                await self.kill(job_id)
            except JobNotFoundError:
                continue
            except KillError as e:
                logger.warning("Cleanup kill of %s failed: %s", job_id, e)
