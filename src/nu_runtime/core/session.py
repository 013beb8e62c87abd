"""Process-wide session state：跨调用共享的当前工作目录。"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Optional


def _initial_cwd() -> str:
    try:
        return str(Path.cwd())
    except OSError:
        return "."


class SessionState:
    """
    session 级共享状态（进程生命周期内只有一份）。

    说明：
    - 每条命令开始时读取 cwd；阻塞命令通过 sentinel 披露新目录后写回；
    - last-writer-wins：并发阻塞调用谁最后解析到 sentinel，谁的目录生效；
    - 读写都是同步操作（事件循环内不会被打断），无需额外加锁。
    """

    def __init__(self, *, cwd: Optional[str] = None) -> None:
        self._cwd = str(cwd) if cwd else _initial_cwd()

    def get_cwd(self) -> str:
        return self._cwd

    def set_cwd(self, path: str) -> None:
        self._cwd = os.fspath(path)
