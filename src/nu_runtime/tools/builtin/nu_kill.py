"""内置工具：nu.kill（终止后台 job）。"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from nu_runtime.tools.protocol import ToolCall, ToolResult, ToolResultPayload, ToolSpec
from nu_runtime.tools.registry import ToolExecutionContext


class _NuKillArgs(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str = Field(min_length=1, description="Job ID to kill")


NU_KILL_SPEC = ToolSpec(
    name="nu.kill",
    description="Terminate a running background process by its job ID to release system resources.",
    parameters={
        "type": "object",
        "properties": {"id": {"type": "string", "description": "Job ID to kill"}},
        "required": ["id"],
        "additionalProperties": False,
    },
    idempotency="unsafe",
)


async def nu_kill(call: ToolCall, ctx: ToolExecutionContext) -> ToolResult:
    """执行 nu.kill；已退出的 job 返回 `already_exited`（不是错误）。"""

    try:
        args = _NuKillArgs.model_validate(call.args)
    except ValidationError as e:
        return ToolResult.error_payload(error_kind="validation", stderr=str(e))

    result = await ctx.executor.kill(args.id)
    return ToolResult.from_payload(ToolResultPayload(ok=True, data=result.model_dump()))
