"""
UTF-8 stdio 工具（CLI 入口用）。

背景：
- `C` locale 下 stdout/stderr 可能是 ASCII；命令输出里常见非 ASCII 字符（路径、日志），
  直接打印会触发 `UnicodeEncodeError`；
- CLI 应在 argparse/任何 print 之前调用。
"""

from __future__ import annotations

import sys


def ensure_utf8_stdio() -> None:
    """best-effort 将 stdout/stderr reconfigure 为 `utf-8` + `errors="replace"`（失败不阻断启动）。"""

    for stream in (sys.stdout, sys.stderr):
        reconfigure = getattr(stream, "reconfigure", None)
        if not callable(reconfigure):
            continue
        try:
            reconfigure(encoding="utf-8", errors="replace")
        except (ValueError, OSError):
            continue
