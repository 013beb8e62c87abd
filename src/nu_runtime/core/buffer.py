"""
有界行缓冲（Bounded Line Buffer）。

截断策略（保留头部，而不是滑动窗口）：
- 未超上限：原样追加；
- 超上限时，`remaining = max(cap - 100, 0)`：
  - 新数据本身超过 remaining：保留 `buf + data` 的前 remaining 字节（先旧后新），再追加 marker；
  - 否则：把旧内容截到 `remaining - len(data)` 字节，完整追加新数据，再追加 marker。
- 所有截断点都会回退到 UTF-8 字符边界；
- 旧 marker 一定位于截断点之后，因此缓冲里最多一个 marker，且总在末尾；
- 任意一次追加后：`len(buf) <= cap + len(marker)`。
"""

from __future__ import annotations

from typing import Union

TRUNCATION_MARKER = "\n... <truncated> ..."
TRUNCATION_HEADROOM = 100

_MARKER_BYTES = TRUNCATION_MARKER.encode("utf-8")


def utf8_prefix(data: bytes, limit: int) -> bytes:
    """
    返回 data 的前 limit 字节，并保证不会切断多字节 UTF-8 字符。

    参数：
    - data：原始字节
    - limit：最大字节数（<=0 返回空）
    """

    if limit <= 0:
        return b""
    if limit >= len(data):
        return bytes(data)
    cut = limit
    # 截断点落在续字节（10xxxxxx）上时回退到该字符的首字节之前
    while cut > 0 and (data[cut] & 0xC0) == 0x80:
        cut -= 1
    return bytes(data[:cut])


def push_truncated(buffer: bytes, data: bytes, max_bytes: int) -> bytes:
    """
    按截断策略把 data 追加到 buffer，返回新内容（纯函数）。

    参数：
    - buffer：当前内容
    - data：本次追加的数据
    - max_bytes：上限（cap）
    """

    if len(buffer) + len(data) <= max_bytes:
        return bytes(buffer) + bytes(data)

    remaining = max(max_bytes - TRUNCATION_HEADROOM, 0)
    if len(data) > remaining:
        kept = utf8_prefix(bytes(buffer) + bytes(data), remaining)
    else:
        kept = utf8_prefix(bytes(buffer), remaining - len(data)) + bytes(data)
    return kept + _MARKER_BYTES


class BoundedLineBuffer:
    """带硬上限的追加式文本缓冲（内部存字节，读取时按 UTF-8 解码）。"""

    def __init__(self, max_bytes: int) -> None:
        """
        参数：
        - `max_bytes`：上限字节数（必须 >= 0）
        """

        if max_bytes < 0:
            raise ValueError("max_bytes must be >= 0")
        self._max_bytes = max_bytes
        self._buf = b""
        self.truncated = False

    @property
    def max_bytes(self) -> int:
        return self._max_bytes

    def append(self, data: Union[bytes, str]) -> None:
        """追加数据；超过上限时按模块说明的策略截断并标记 truncated。"""

        if isinstance(data, str):
            data = data.encode("utf-8")
        if not data:
            return
        if len(self._buf) + len(data) > self._max_bytes:
            self.truncated = True
        self._buf = push_truncated(self._buf, data, self._max_bytes)

    def get_bytes(self) -> bytes:
        return self._buf

    def text(self) -> str:
        """当前内容解码为文本；非法字节替换为 U+FFFD。"""

        return self._buf.decode("utf-8", errors="replace")

    def __len__(self) -> int:
        return len(self._buf)
