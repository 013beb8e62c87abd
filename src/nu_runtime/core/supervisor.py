"""
后台 job supervisor：每个后台 job 一个 asyncio task。

流程：
1) 从注册表取走进程句柄（取不到则说明 job 已被 kill 接管，直接结束）；
2) 启动 stdout/stderr 两个 drain，写入 record 缓冲（使用 record 锁）；
3) 等待三者之一：解释器退出（不等管道关闭）/ kill 请求 / 监控上限；
4) 有界 flush drain，最后一次性写入 exit_code + status；
5) 正常退出后句柄放回槽位：残留的子孙进程仍可被 kill 整组终止。
"""

from __future__ import annotations

import asyncio
import logging
from typing import Iterable

from nu_runtime.core.drain import drain_lines
from nu_runtime.core.jobs import JobRecord, JobRegistry
from nu_runtime.core.process import InterpreterProcess, kill_process_group, reap

logger = logging.getLogger(__name__)


async def flush_drains(tasks: Iterable["asyncio.Task[None]"], *, timeout: float) -> None:
    """
    有界等待 drain 结束（并发等待，总时长不超过 timeout）；仍未结束的取消。

    说明：
    - 解释器退出后，继承了管道的子孙进程可能让 drain 永远等不到 EOF；
      已按行写入缓冲的内容不受取消影响。
    """

    pending = [t for t in tasks if not t.done()]
    if not pending:
        return
    _done, still_pending = await asyncio.wait(pending, timeout=timeout)
    for task in still_pending:
        logger.debug("Drain task did not finish within %.1fs; cancelling", timeout)
        task.cancel()
    if still_pending:
        await asyncio.gather(*still_pending, return_exceptions=True)


def _start_drains(record: JobRecord, process: InterpreterProcess) -> None:
    if process.stdout is not None:
        record.drain_tasks.append(
            asyncio.create_task(
                drain_lines(process.stdout, record.stdout, lock=record.lock, name=f"{record.id}:stdout")
            )
        )
    if process.stderr is not None:
        record.drain_tasks.append(
            asyncio.create_task(
                drain_lines(process.stderr, record.stderr, lock=record.lock, name=f"{record.id}:stderr")
            )
        )


async def supervise(
    registry: JobRegistry,
    job_id: str,
    *,
    monitor_timeout_sec: float = 300,
    drain_flush_timeout_ms: int = 1_000,
    kill_wait_timeout_ms: int = 5_000,
) -> None:
    """
    监控单个后台 job，直到它结束（或达到监控上限）。

    参数：
    - monitor_timeout_sec：监控上限；到期后记录 exit_code=-1/Failed，并把仍存活的句柄交还给 kill
    - drain_flush_timeout_ms：结束后每个 drain 的 flush 上限
    - kill_wait_timeout_ms：收到 kill 请求后回收进程的上限
    """

    record = await registry.get(job_id)
    if record is None:
        logger.warning("Process %s disappeared before supervision started", job_id)
        return
    process = record.take_process()
    if process is None:
        logger.warning("Process handle for %s already taken (killed before supervision started)", job_id)
        return

    _start_drains(record, process)

    exit_task = asyncio.create_task(process.wait_exit())
    kill_task = asyncio.create_task(record.kill_requested.wait())
    try:
        done, _ = await asyncio.wait(
            {exit_task, kill_task},
            timeout=monitor_timeout_sec,
            return_when=asyncio.FIRST_COMPLETED,
        )
    finally:
        kill_task.cancel()

    if exit_task in done:
        exit_code = exit_task.result()
        logger.info("Process %s exited with code %s", job_id, exit_code)
    elif kill_task in done:
        exit_task.cancel()
        _kill_group(record, process)
        returncode = await reap(process, timeout=kill_wait_timeout_ms / 1000.0)
        exit_code = -1 if returncode is None else returncode
        logger.info("Process %s killed on request", job_id)
    else:
        exit_task.cancel()
        logger.error("Process %s monitoring timed out after %.0fs", job_id, monitor_timeout_sec)
        # 句柄交还给槽位：之后的 kill 仍能终止它；drain 继续运行直到管道关闭
        record.restore_process(process)
        await record.finish(exit_code=-1)
        return

    await flush_drains(record.drain_tasks, timeout=drain_flush_timeout_ms / 1000.0)
    # 解释器已退出，但进程组里可能还有子孙进程
    if record.kill_requested.is_set():
        _kill_group(record, process)
    else:
        # 句柄放回槽位：之后的 kill 按组终止残留进程
        record.restore_process(process)
    await record.finish(exit_code=exit_code)


def _kill_group(record: JobRecord, process: InterpreterProcess) -> None:
    try:
        if kill_process_group(process):
            record.killed = True
    except OSError as e:
        logger.error("Failed to kill process %s: %s", record.id, e)
        record.kill_error = str(e)
