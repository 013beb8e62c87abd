"""
Pipe drain：持续把子进程输出流按行搬运进有界缓冲。

约束：
- 逐行写入（不会先把整个流读进内存），进程运行期间读者即可看到已产生的输出；
- 每行写入都在锁内完成；取消（超时路径）时 `async with` 会释放锁；
- 读取异常（坏字节、流意外关闭）在这里被吸收：drain 直接结束，不影响调用方/supervisor。
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from nu_runtime.core.buffer import BoundedLineBuffer

logger = logging.getLogger(__name__)


async def _read_line(reader: asyncio.StreamReader) -> Optional[bytes]:
    """
    读取一行（不含换行符）；EOF 返回 None。

    说明：
    - 超过 StreamReader limit 的超长行会按 limit 分片返回（每片视为一行），
      避免 drain 放弃读取导致子进程写满管道而阻塞；
    - EOF 前最后一段没有换行的数据照常返回。
    """

    try:
        line = await reader.readuntil(b"\n")
    except asyncio.IncompleteReadError as e:
        if not e.partial:
            return None
        line = e.partial
    except asyncio.LimitOverrunError as e:
        line = await reader.read(max(e.consumed, 1))
        if not line:
            return None
    if line.endswith(b"\n"):
        line = line[:-1]
    if line.endswith(b"\r"):
        line = line[:-1]
    return line


async def drain_lines(
    reader: asyncio.StreamReader,
    buffer: BoundedLineBuffer,
    *,
    lock: asyncio.Lock,
    name: str = "stream",
) -> None:
    """
    drain 任务主体：读到 EOF（或被取消）为止，每行追加 `line + "\\n"`。

    参数：
    - reader：子进程 stdout/stderr 的 StreamReader
    - buffer：目标缓冲（上限由缓冲自身持有）
    - lock：保护 buffer 的锁（job 场景下即 record 锁）
    - name：日志用的流名称
    """

    while True:
        try:
            line = await _read_line(reader)
        except Exception as e:
            logger.debug("Drain of %s stopped on read error: %r", name, e)
            return
        if line is None:
            return
        async with lock:
            buffer.append(line + b"\n")
