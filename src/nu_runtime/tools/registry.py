"""
ToolRegistry：工具注册表与派发（dispatch）。

本模块提供：
- 注册：`register/get_spec/list_specs`
- 执行：`await dispatch(ToolCall) -> ToolResult`
- 错误映射：框架异常按 `code` 映射为 `error_kind`，参数错误映射为 `validation`
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

from nu_runtime.core.errors import FrameworkError, UserError
from nu_runtime.core.executor import NuExecutor
from nu_runtime.tools.protocol import ToolCall, ToolResult, ToolSpec

logger = logging.getLogger(__name__)

ToolHandler = Callable[[ToolCall, "ToolExecutionContext"], Awaitable[ToolResult]]

# FrameworkError.code → ToolResult.error_kind
ERROR_KIND_BY_CODE: Dict[str, str] = {
    "LAUNCH_FAILURE": "launch_failure",
    "STREAM_ACQUISITION_FAILURE": "internal",
    "NOT_FOUND": "not_found",
    "KILL_FAILURE": "kill_failure",
    "USER_ERROR": "validation",
}


def _sanitize_args_for_log(args: Dict[str, Any]) -> Dict[str, Any]:
    """日志用参数视图：env 只记录 keys，不记录 values。"""

    out: Dict[str, Any] = {}
    for k, v in args.items():
        if k == "env" and isinstance(v, dict):
            out["env_keys"] = sorted(str(kk) for kk in v.keys())
            continue
        out[str(k)] = v
    return out


@dataclass
class ToolExecutionContext:
    """
    Tool 执行上下文（派发层注入）。

    字段：
    - executor：执行引擎（持有 session 与 job 注册表）
    - env：可选；所有调用共享的基础环境变量（tool 参数 env 覆盖它）
    """

    executor: NuExecutor
    env: Optional[Dict[str, str]] = None

    def merged_env(self, extra: Optional[Dict[str, str]]) -> Optional[Dict[str, str]]:
        """
        合并 tool env（ctx.env + extra，extra 覆盖）；两者都为空时返回 None。
        """

        base = dict(self.env or {})
        if extra:
            base.update({str(k): str(v) for k, v in extra.items()})
        return base if base else None


class ToolRegistry:
    """工具注册表。"""

    def __init__(self, *, ctx: ToolExecutionContext) -> None:
        self._ctx = ctx
        self._specs: Dict[str, ToolSpec] = {}
        self._handlers: Dict[str, ToolHandler] = {}

    @property
    def ctx(self) -> ToolExecutionContext:
        return self._ctx

    def register(self, spec: ToolSpec, handler: ToolHandler, *, override: bool = False) -> None:
        """
        注册工具。

        参数：
        - spec：工具规格
        - handler：异步工具执行函数
        - override：是否允许覆盖同名工具；默认 False（重复注册抛 UserError）
        """

        name = spec.name
        if name in self._specs and not override:
            raise UserError(f"tool already registered: {name}")
        self._specs[name] = spec
        self._handlers[name] = handler

    def get_spec(self, name: str) -> ToolSpec:
        """获取工具规格；不存在则抛 `UserError`。"""

        try:
            return self._specs[name]
        except KeyError as e:
            raise UserError(f"unknown tool: {name}") from e

    def list_specs(self) -> list[ToolSpec]:
        """按注册顺序返回所有工具规格。"""

        return list(self._specs.values())

    async def dispatch(self, call: ToolCall) -> ToolResult:
        """
        派发执行一个 ToolCall。

        返回：
        - ToolResult（异常不会穿透：框架错误按 code 映射，其它异常记为 `internal`）
        """

        logger.debug("tool_call %s %s args=%s", call.call_id, call.name, _sanitize_args_for_log(call.args))

        handler = self._handlers.get(call.name)
        if handler is None:
            return ToolResult.error_payload(
                error_kind="not_found",
                stderr=f"unknown tool: {call.name}",
                data={"tool": call.name},
            )

        try:
            result = await handler(call, self._ctx)
        except FrameworkError as e:
            error_kind = ERROR_KIND_BY_CODE.get(e.code, "internal")
            result = ToolResult.error_payload(error_kind=error_kind, stderr=e.message, data=dict(e.details) or None)
        except Exception as e:
            logger.exception("tool %s failed", call.name)
            result = ToolResult.error_payload(error_kind="internal", stderr=str(e))

        logger.debug("tool_call %s finished ok=%s error_kind=%s", call.call_id, result.ok, result.error_kind)
        return result
