"""
内置工具（builtin tools）。

本包提供：
- `nu.exec`：阻塞/后台执行
- `nu.output`：读取后台 job 输出
- `nu.kill`：终止后台 job
"""

from __future__ import annotations

from nu_runtime.tools.builtin.nu_exec import NU_EXEC_SPEC, nu_exec
from nu_runtime.tools.builtin.nu_kill import NU_KILL_SPEC, nu_kill
from nu_runtime.tools.builtin.nu_output import NU_OUTPUT_SPEC, nu_output
from nu_runtime.tools.registry import ToolRegistry

__all__ = ["register_builtin_tools"]

_BUILTIN_TOOL_ENTRIES = [
    (NU_EXEC_SPEC, nu_exec),
    (NU_OUTPUT_SPEC, nu_output),
    (NU_KILL_SPEC, nu_kill),
]


def register_builtin_tools(registry: ToolRegistry, *, override: bool = False) -> None:
    """
    注册 builtin tools 集合。

    参数：
    - registry：工具注册表
    - override：是否允许覆盖同名工具（默认 False）
    """

    for spec, handler in _BUILTIN_TOOL_ENTRIES:
        registry.register(spec, handler, override=override)
