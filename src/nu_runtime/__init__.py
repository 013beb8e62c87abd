"""
nu-runtime（Python）。

说明：
- 以工具形式远程执行解释器（默认 Nushell）管道：阻塞执行 + 后台 job（读取输出/kill）。
- 当前包含：
  - Executor（spawn + 两路 drain + 超时强杀 + sentinel 工作目录跟踪）
  - Job Registry / Supervisor（后台 job 生命周期）
  - 配置加载器（YAML overlay + pydantic 校验）
  - Tool System（ToolSpec/ToolResult、ToolRegistry、内置 `nu.exec`/`nu.output`/`nu.kill`）
  - MCP stdio server 与 CLI
"""

from __future__ import annotations

from nu_runtime.config.loader import NuRuntimeConfig
from nu_runtime.core.executor import NuExecutor
from nu_runtime.core.session import SessionState

__all__ = ["NuExecutor", "NuRuntimeConfig", "SessionState", "__version__"]

__version__ = "0.1.0"
