"""
对外结果结构（pydantic）。

字段口径：
- 阻塞执行：`{exit_code, stdout, stderr, elapsed_ms, success}` + 展示用的合并输出等补充字段
- 后台启动：`{id, status: "started", message}`
- 读取 job 输出：`{id, status, stdout, stderr, exit_code?, elapsed_seconds}`
- kill：`{id, status: "killed"|"already_exited", command}`
"""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


def combine_output(stdout: str, stderr: str) -> str:
    """展示用输出：stdout 后追加带标记的 stderr 段（stderr 为空时省略）。"""

    if not stderr:
        return stdout
    return f"{stdout}\n[stderr]\n{stderr}"


class ExecResult(BaseModel):
    """
    阻塞执行结果。

    字段说明：
    - exit_code：进程退出码；超时或平台未提供时为 -1
    - stdout：去掉 sentinel/目录回显后的用户可见输出
    - stderr：完整 stderr（可能被截断）
    - output：stdout + `[stderr]` 段，便于直接展示
    - elapsed_ms：耗时（毫秒）
    - success：未超时且 exit_code == 0
    - timed_out：是否因超时被强制终止
    - cwd：执行后的 session 工作目录
    - truncated：stdout/stderr 任一发生截断
    """

    model_config = ConfigDict(extra="forbid")

    exit_code: int
    stdout: str = ""
    stderr: str = ""
    output: str = ""
    elapsed_ms: int = Field(default=0, ge=0)
    success: bool
    timed_out: bool = False
    cwd: str = ""
    truncated: bool = False


class BackgroundStartResult(BaseModel):
    """后台启动结果（立即返回，不等待进程结束）。"""

    model_config = ConfigDict(extra="forbid")

    id: str
    status: Literal["started"] = "started"
    message: str


class JobOutputResult(BaseModel):
    """后台 job 的输出快照。"""

    model_config = ConfigDict(extra="forbid")

    id: str
    command: str
    status: Literal["running", "completed", "failed"]
    stdout: str = ""
    stderr: str = ""
    output: str = ""
    exit_code: Optional[int] = None
    elapsed_seconds: int = Field(default=0, ge=0)
    truncated: bool = False


class KillResult(BaseModel):
    """kill 结果。"""

    model_config = ConfigDict(extra="forbid")

    id: str
    status: Literal["killed", "already_exited"]
    command: str
