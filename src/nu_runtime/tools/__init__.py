"""Tool System（协议 + 注册表 + 内置工具）。"""

from __future__ import annotations

from nu_runtime.tools.protocol import ToolCall, ToolResult, ToolResultPayload, ToolSpec

__all__ = [
    "protocol",
    "registry",
    "ToolCall",
    "ToolResult",
    "ToolResultPayload",
    "ToolSpec",
]
