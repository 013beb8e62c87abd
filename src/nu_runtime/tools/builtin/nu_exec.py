"""
内置工具：nu.exec（阻塞或后台执行解释器管道）。

说明：
- 阻塞：返回 ExecResult（exit_code/stdout/stderr/elapsed_ms/success/...）；超时与非 0 退出记为 ok=false；
- 后台：立即返回 `{id, status: "started", message}`，之后用 nu.output / nu.kill 操作该 job；
- `cwd` 只对本次调用生效，不会直接写入 session（阻塞调用结束时以 sentinel 披露的目录为准）。
"""

from __future__ import annotations

from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from nu_runtime.tools.protocol import ToolCall, ToolResult, ToolResultPayload, ToolSpec
from nu_runtime.tools.registry import ToolExecutionContext


class _NuExecArgs(BaseModel):
    """nu.exec 输入参数。"""

    model_config = ConfigDict(extra="forbid")

    command: str = Field(min_length=1, description="Nushell pipeline to execute")
    background: bool = Field(default=False, description="Run in background and return a job id")
    cwd: Optional[str] = Field(default=None, description="Working directory for this call only")
    env: Optional[Dict[str, str]] = Field(default=None, description="Environment variables to overlay")
    timeout: Optional[int] = Field(default=None, ge=1, description="Timeout in seconds (blocking only)")


NU_EXEC_SPEC = ToolSpec(
    name="nu.exec",
    description="""Execute Nushell commands with structured data pipelines. Nushell treats data as tables/records, not text.

BASIC SYNTAX:
- Variables: `$name`, `$env.PATH`
- String interpolation: $"hello ($name)"
- Lists: `[1 2 3]`, records: `{a: 1, b: 2}`

FILE OPERATIONS (native):
- List: `ls`, `ls *.txt`, `ls | where type == file`
- Read: `open file.txt`, `open data.json`
- Write: `"content" | save file.txt`, `data | to json | save out.json`

EXTERNAL COMMANDS:
- Prefix with `^`: `^git status`, `^cargo build`

AVOID BASHISMS - use Nushell native:
- Instead of `cat`: use `open`
- Instead of `grep`: use `where` with string operations
- Instead of `&&`: use `;` for chaining
- Instead of `$VAR`: use `$env.VAR` or `$var`

BACKGROUND JOBS:
- `background: true` returns a job id immediately; read it with `nu.output`, stop it with `nu.kill`
- `cd` inside a background job does not change the session directory

WARNING:
- Avoid searching in 'target/', '.git/', 'node_modules/', '.venv/' (timeouts/encoding errors)
- Use `| take N | to json` for large results
- Quote file paths with spaces: `"my path/file.txt"`""",
    parameters={
        "type": "object",
        "properties": {
            "command": {"type": "string", "description": "Nushell pipeline to execute"},
            "background": {"type": "boolean", "description": "If true, runs in background and returns job ID"},
            "cwd": {"type": "string", "description": "Working directory (optional)"},
            "env": {
                "type": "object",
                "additionalProperties": {"type": "string"},
                "description": "Environment variables (optional)",
            },
            "timeout": {"type": "integer", "minimum": 1, "description": "Timeout in seconds (optional, default 60)"},
        },
        "required": ["command"],
        "additionalProperties": False,
    },
    idempotency="unsafe",
)


async def nu_exec(call: ToolCall, ctx: ToolExecutionContext) -> ToolResult:
    """
    执行 nu.exec。

    参数：
    - call：工具调用（args.command/background/cwd/env/timeout）
    - ctx：执行上下文（提供 executor 与基础 env）
    """

    try:
        args = _NuExecArgs.model_validate(call.args)
    except ValidationError as e:
        return ToolResult.error_payload(error_kind="validation", stderr=str(e))

    env = ctx.merged_env(args.env)

    if args.background:
        started = await ctx.executor.execute_background(args.command, env=env, cwd=args.cwd)
        return ToolResult.from_payload(
            ToolResultPayload(ok=True, stdout=started.message, data=started.model_dump()),
            message=started.message,
        )

    result = await ctx.executor.execute_blocking(
        args.command,
        env=env,
        cwd=args.cwd,
        timeout_sec=args.timeout,
    )
    error_kind: Optional[str] = None
    if result.timed_out:
        error_kind = "timeout"
    elif not result.success:
        error_kind = "exit_code"
    payload = ToolResultPayload(
        ok=result.success,
        stdout=result.stdout,
        stderr=result.stderr,
        exit_code=result.exit_code,
        duration_ms=result.elapsed_ms,
        truncated=result.truncated,
        data=result.model_dump(),
        error_kind=error_kind,
    )
    return ToolResult.from_payload(payload)
