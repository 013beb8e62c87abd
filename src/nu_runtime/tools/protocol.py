"""
Tool 协议（ToolSpec / ToolCall / ToolResult）。

本模块只定义工具层的最小协议：
- ToolSpec：注册表条目（JSON schema 描述参数）
- ToolCall：执行输入（call_id/name/args）
- ToolResultPayload：执行输出的统一结构（ToolResult 的 content/details 使用它序列化）
- ToolResult：执行输出（ok/content/error_kind/message/details）

error_kind 口径：
- `timeout`：阻塞执行超时（exit_code=-1）
- `exit_code`：命令以非 0 退出
- `validation`：参数不合法
- `not_found`：未注册的 tool / 未知 job id
- `launch_failure`：解释器无法启动
- `kill_failure`：终止系统调用失败
- `internal`：拿不到输出管道等内部错误
"""

from __future__ import annotations

import json
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class ToolSpec(BaseModel):
    """
    Tool 注册信息。

    字段：
    - name：工具名（全局唯一，稳定）
    - description：工具说明
    - parameters：JSON Schema（必须为 object schema）
    - idempotency：可选；用于审计（safe|unsafe|unknown）
    """

    model_config = ConfigDict(extra="forbid")

    name: str
    description: str
    parameters: Dict[str, Any] = Field(default_factory=dict)
    idempotency: Optional[str] = None


class ToolCall(BaseModel):
    """
    Tool 调用（内部表示）。

    字段：
    - call_id：本次调用的唯一 id（用于日志关联）
    - name：工具名
    - args：解析后的参数 dict
    """

    model_config = ConfigDict(extra="forbid")

    call_id: str
    name: str
    args: Dict[str, Any] = Field(default_factory=dict)


class ToolResultPayload(BaseModel):
    """
    Tool 执行结果 payload（统一输出封装）。

    说明：
    - `data` 承载各工具的结构化结果（ExecResult / JobOutputResult / KillResult 等的 dump）；
    - stdout/stderr/exit_code/duration_ms 与 data 中的同名字段保持一致，便于通用消费方直接读取。
    """

    model_config = ConfigDict(extra="forbid")

    ok: bool
    stdout: str = ""
    stderr: str = ""
    exit_code: Optional[int] = None
    duration_ms: int = Field(default=0, ge=0)
    truncated: bool = False
    data: Optional[Dict[str, Any]] = None
    error_kind: Optional[str] = None


class ToolResult(BaseModel):
    """
    Tool 执行结果（统一 envelope）。

    字段：
    - ok：是否成功
    - content：JSON 字符串（ToolResultPayload 序列化）
    - error_kind：错误分类（见模块说明）
    - message：一句话说明
    - details：结构化结果（与 content 同源）
    """

    model_config = ConfigDict(extra="forbid")

    ok: bool
    content: str
    error_kind: Optional[str] = None
    message: Optional[str] = None
    details: Optional[Dict[str, Any]] = None

    @classmethod
    def from_payload(cls, payload: ToolResultPayload, *, message: Optional[str] = None) -> "ToolResult":
        """从 ToolResultPayload 构造 ToolResult（content 为 JSON 字符串）。"""

        obj = payload.model_dump(exclude_none=True)
        return cls(
            ok=payload.ok,
            content=json.dumps(obj, ensure_ascii=False),
            error_kind=payload.error_kind,
            message=message,
            details=obj,
        )

    @classmethod
    def error_payload(
        cls,
        *,
        error_kind: str,
        stderr: str,
        data: Optional[Dict[str, Any]] = None,
    ) -> "ToolResult":
        """便捷构造：失败结果（错误信息放入 stderr 与 message）。"""

        return cls.from_payload(
            ToolResultPayload(ok=False, stderr=stderr, data=data, error_kind=error_kind),
            message=stderr,
        )
