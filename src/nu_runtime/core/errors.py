"""
nu_runtime 错误分类（异常类型）。

说明：
- 所有异常都携带稳定的英文 `code`，便于工具层映射为 `ToolResult.error_kind`。
- 超时不是异常：阻塞执行超时以 `ExecResult.timed_out=True / exit_code=-1` 的结果形式返回。
- drain 读取阶段的异常（坏字节、流意外关闭）在读取边界被吸收，不会出现在这里。
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict


class NuRuntimeError(Exception):
    """nu_runtime 内部错误基类（不建议直接抛出）。"""


@dataclass(frozen=True)
class FrameworkIssue:
    """结构化问题对象（可序列化，用于 CLI/tool 输出）。"""

    code: str
    message: str
    details: Dict[str, Any]


class FrameworkError(NuRuntimeError):
    """框架层结构化错误（英文 `code/message/details`）。"""

    def __init__(self, *, code: str, message: str, details: Dict[str, Any] | None = None) -> None:
        """创建框架错误。

        参数：
        - `code`：稳定错误码（英文大写下划线）
        - `message`：英文错误消息
        - `details`：结构化上下文信息
        """

        super().__init__(message)
        self.code = code
        self.message = message
        self.details: Dict[str, Any] = details or {}

    def __str__(self) -> str:
        """返回用于日志的字符串表示。"""

        return f"{self.code}: {self.message}"


class UserError(FrameworkError):
    """用户输入/配置导致的错误。"""

    def __init__(self, message: str, *, code: str = "USER_ERROR", details: Dict[str, Any] | None = None) -> None:
        """创建 `UserError`。

        参数：
        - `message`：可读错误信息
        - `code`：错误码（默认 `USER_ERROR`）
        - `details`：结构化补充信息
        """

        super().__init__(code=code, message=message, details=details or {})


class LaunchError(FrameworkError):
    """解释器无法启动（二进制不存在/不可执行）。对本次调用致命，不重试。"""

    def __init__(self, message: str, *, interpreter: str) -> None:
        """
        参数：
        - `message`：底层 OS 错误描述
        - `interpreter`：尝试启动的解释器路径
        """

        super().__init__(code="LAUNCH_FAILURE", message=message, details={"interpreter": interpreter})


class StreamAcquisitionError(FrameworkError):
    """spawn 成功但拿不到 stdout/stderr 管道（实践中不应发生）。"""

    def __init__(self, stream: str) -> None:
        super().__init__(
            code="STREAM_ACQUISITION_FAILURE",
            message=f"failed to take {stream} pipe from child process",
            details={"stream": stream},
        )


class JobNotFoundError(FrameworkError):
    """未知 job id（原样返回给调用方）。"""

    def __init__(self, job_id: str) -> None:
        super().__init__(code="NOT_FOUND", message=f"Process {job_id} not found", details={"id": job_id})
        self.job_id = job_id


class KillError(FrameworkError):
    """进程存在但终止失败（携带底层原因）。"""

    def __init__(self, job_id: str, reason: str) -> None:
        super().__init__(code="KILL_FAILURE", message=f"Failed to kill: {reason}", details={"id": job_id})
        self.job_id = job_id
