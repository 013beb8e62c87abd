"""
MCP stdio server：把内置工具暴露为远程工具 `nu.exec` / `nu.output` / `nu.kill`。

说明：
- 每个 MCP tool 都经 `ToolRegistry.dispatch` 执行，再把结构化结果渲染为纯文本；
- 超时与非 0 退出是正常结果（文本中带 exit code）；其它失败（未知 job、解释器无法启动等）
  以 `ToolError` 抛出，客户端看到的是 error result；
- 退出时（stdin 关闭/收到中断）终止所有仍在运行的后台 job。
"""

from __future__ import annotations

import logging
import uuid
from typing import Any, Dict, Optional

from mcp.server.fastmcp import FastMCP
from mcp.server.fastmcp.exceptions import ToolError

from nu_runtime.core.executor import NuExecutor
from nu_runtime.tools.builtin import register_builtin_tools
from nu_runtime.tools.builtin.nu_exec import NU_EXEC_SPEC
from nu_runtime.tools.builtin.nu_kill import NU_KILL_SPEC
from nu_runtime.tools.builtin.nu_output import NU_OUTPUT_SPEC
from nu_runtime.tools.protocol import ToolCall
from nu_runtime.tools.registry import ToolExecutionContext, ToolRegistry

logger = logging.getLogger(__name__)

# 这些 error_kind 是“命令本身的结果”，照常渲染给调用方
_RESULT_ERROR_KINDS = frozenset({"timeout", "exit_code"})


def render_exec_result(data: Dict[str, Any]) -> str:
    return f"Exit code: {data['exit_code']}\nTime: {data['elapsed_ms']}ms\n\n{data['output']}"


def render_background_started(data: Dict[str, Any]) -> str:
    return f"Background process started.\nID: {data['id']}\nStatus: {data['status']}\n{data['message']}"


def render_job_output(data: Dict[str, Any]) -> str:
    exit_code = data.get("exit_code")
    return (
        f"ID: {data['id']}\n"
        f"Status: {data['status']}\n"
        f"Running for: {data['elapsed_seconds']}s\n"
        f"Exit code: {exit_code if exit_code is not None else 'running'}\n\n"
        f"{data['output']}"
    )


def render_kill_result(data: Dict[str, Any]) -> str:
    return f"ID: {data['id']}\nStatus: {data['status']}\nCommand: {data['command']}"


def build_registry(executor: NuExecutor) -> ToolRegistry:
    """创建绑定到 executor 的工具注册表（已注册内置工具）。"""

    registry = ToolRegistry(ctx=ToolExecutionContext(executor=executor))
    register_builtin_tools(registry)
    return registry


def build_server(executor: NuExecutor, *, name: str = "nu-runtime") -> FastMCP:
    """
    创建 FastMCP server。

    参数：
    - executor：执行引擎（server 不负责关闭它；见 `serve_stdio`）
    - name：server 名称
    """

    registry = build_registry(executor)
    mcp = FastMCP(name)

    async def _dispatch(tool: str, args: Dict[str, Any]) -> Dict[str, Any]:
        call = ToolCall(call_id=uuid.uuid4().hex, name=tool, args=args)
        result = await registry.dispatch(call)
        if not result.ok and result.error_kind not in _RESULT_ERROR_KINDS:
            logger.info("%s failed (%s): %s", tool, result.error_kind, result.message)
            raise ToolError(f"{tool} failed: {result.message or result.error_kind}")
        details = result.details or {}
        return details.get("data") or {}

    @mcp.tool(name=NU_EXEC_SPEC.name, description=NU_EXEC_SPEC.description)
    async def nu_exec(
        command: str,
        background: bool = False,
        cwd: Optional[str] = None,
        env: Optional[Dict[str, str]] = None,
        timeout: Optional[int] = None,
    ) -> str:
        args: Dict[str, Any] = {"command": command, "background": background}
        if cwd is not None:
            args["cwd"] = cwd
        if env is not None:
            args["env"] = env
        if timeout is not None:
            args["timeout"] = timeout
        data = await _dispatch(NU_EXEC_SPEC.name, args)
        return render_background_started(data) if background else render_exec_result(data)

    @mcp.tool(name=NU_OUTPUT_SPEC.name, description=NU_OUTPUT_SPEC.description)
    async def nu_output(id: str, block: bool = False) -> str:
        data = await _dispatch(NU_OUTPUT_SPEC.name, {"id": id, "block": block})
        return render_job_output(data)

    @mcp.tool(name=NU_KILL_SPEC.name, description=NU_KILL_SPEC.description)
    async def nu_kill(id: str) -> str:
        data = await _dispatch(NU_KILL_SPEC.name, {"id": id})
        return render_kill_result(data)

    return mcp


async def serve_stdio(executor: NuExecutor) -> None:
    """在当前事件循环上运行 stdio server；退出时终止所有后台 job。"""

    server = build_server(executor)
    logger.info("nu-runtime MCP server starting (interpreter=%s)", executor.interpreter)
    try:
        await server.run_stdio_async()
    finally:
        await executor.aclose()
        logger.info("nu-runtime MCP server stopped")
