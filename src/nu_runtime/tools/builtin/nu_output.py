"""内置工具：nu.output（读取后台 job 输出快照）。"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from nu_runtime.tools.protocol import ToolCall, ToolResult, ToolResultPayload, ToolSpec
from nu_runtime.tools.registry import ToolExecutionContext


class _NuOutputArgs(BaseModel):
    """nu.output 输入参数。"""

    model_config = ConfigDict(extra="forbid")

    id: str = Field(min_length=1, description="Job ID from nu.exec")
    block: bool = Field(default=False, description="Wait until the job leaves running (bounded)")


NU_OUTPUT_SPEC = ToolSpec(
    name="nu.output",
    description=(
        "Retrieves output from a running or completed background process started via `nu.exec`.\n\n"
        "Returns current buffer snapshot immediately. Output includes stdout with stderr appended "
        "(marked with [stderr] if present). Set `block: true` to wait for the process to finish."
    ),
    parameters={
        "type": "object",
        "properties": {
            "id": {"type": "string", "description": "Job ID from nu.exec"},
            "block": {"type": "boolean", "description": "Wait for completion before returning (optional)"},
        },
        "required": ["id"],
        "additionalProperties": False,
    },
    idempotency="safe",
)


async def nu_output(call: ToolCall, ctx: ToolExecutionContext) -> ToolResult:
    """执行 nu.output；未知 id 由派发层映射为 `not_found`。"""

    try:
        args = _NuOutputArgs.model_validate(call.args)
    except ValidationError as e:
        return ToolResult.error_payload(error_kind="validation", stderr=str(e))

    result = await ctx.executor.read_output(args.id, block=args.block)
    return ToolResult.from_payload(
        ToolResultPayload(
            ok=True,
            stdout=result.stdout,
            stderr=result.stderr,
            exit_code=result.exit_code,
            duration_ms=result.elapsed_seconds * 1000,
            truncated=result.truncated,
            data=result.model_dump(),
        )
    )
