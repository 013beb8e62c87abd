"""
工作目录协议（Working-Directory Protocol）。

背景：
- 每次调用都启动一个全新的解释器进程，本身无状态；
- 阻塞路径把命令包成 “进入 cwd → 用户命令 → 打印 sentinel + pwd”，执行后从 stdout
  中找回 sentinel，得到新的工作目录并写回 session；
- 后台路径只包 “进入 cwd” 的保护段，不打印 sentinel（调用方拿回控制权之前没有读取点），
  因此后台 job 的 `cd` 不会传播到 session。

方言：
- `nu`：Nushell（默认）；`try { cd '<dir>' }` + `print $"<sentinel>(pwd)"`
- `posix`：sh/bash/dash；`cd '<dir>' 2>/dev/null || true` + `printf`，并保留用户命令的退出码

语句之间使用换行连接：用户命令末尾的注释不会吞掉后续的 emit 语句。
"""

from __future__ import annotations

import secrets
import shlex
from dataclasses import dataclass
from typing import Dict, Optional, Protocol, Tuple

from nu_runtime.core.buffer import TRUNCATION_MARKER
from nu_runtime.core.errors import UserError

SENTINEL_PREFIX = ":::CWD:::"


def new_sentinel() -> str:
    """生成本次调用专用的 sentinel（用户输出无法伪造边界）。"""

    return f"{SENTINEL_PREFIX}{secrets.token_hex(8)}:::"


class ShellDialect(Protocol):
    """解释器方言：负责把用户命令包装成带 cwd 保护/回显的脚本。"""

    name: str

    def wrap_blocking(self, *, cwd: str, command: str, sentinel: str) -> str:
        """阻塞路径：进入 cwd → 命令 → 打印 sentinel + 当前目录。"""

        ...

    def wrap_background(self, *, cwd: str, command: str) -> str:
        """后台路径：仅进入 cwd → 命令。"""

        ...


def _nu_quote(path: str) -> str:
    """Nushell 字符串字面量：单引号不支持转义，含 `'` 时改用 raw string。"""

    if "'" not in path:
        return f"'{path}'"
    hashes = "#"
    while f"'{hashes}" in path:
        hashes += "#"
    return f"r{hashes}'{path}'{hashes}"


@dataclass(frozen=True)
class NushellDialect:
    name: str = "nu"

    def wrap_blocking(self, *, cwd: str, command: str, sentinel: str) -> str:
        return "\n".join(
            [
                f"try {{ cd {_nu_quote(cwd)} }}",
                command,
                f'print $"{sentinel}(pwd)"',
            ]
        )

    def wrap_background(self, *, cwd: str, command: str) -> str:
        return "\n".join([f"try {{ cd {_nu_quote(cwd)} }}", command])


@dataclass(frozen=True)
class PosixDialect:
    name: str = "posix"

    def wrap_blocking(self, *, cwd: str, command: str, sentinel: str) -> str:
        return "\n".join(
            [
                f"cd {shlex.quote(cwd)} 2>/dev/null || true",
                command,
                "__nu_runtime_rc=$?",
                f"printf '%s%s\\n' {shlex.quote(sentinel)} \"$(pwd)\"",
                "exit $__nu_runtime_rc",
            ]
        )

    def wrap_background(self, *, cwd: str, command: str) -> str:
        return "\n".join([f"cd {shlex.quote(cwd)} 2>/dev/null || true", command])


_DIALECTS: Dict[str, ShellDialect] = {
    "nu": NushellDialect(),
    "posix": PosixDialect(),
}


def get_dialect(name: str) -> ShellDialect:
    """按名称获取方言；未知名称抛 `UserError`。"""

    key = str(name or "").strip().lower()
    try:
        return _DIALECTS[key]
    except KeyError as e:
        raise UserError(f"unknown interpreter dialect: {name!r}; expected one of {sorted(_DIALECTS)}") from e


def extract_cwd(stdout: str, sentinel: str, *, truncated: bool = False) -> Tuple[str, Optional[str]]:
    """
    从 stdout 中拆出用户可见输出与新工作目录。

    参数：
    - stdout：收集到的完整 stdout
    - sentinel：本次调用使用的 sentinel
    - truncated：stdout 缓冲是否发生过截断（marker 位于 sentinel 之后，需要补回到可见输出）

    返回：
    - (clean_output, new_cwd)：
      - 找到 sentinel：sentinel 之前的内容（去尾部空白）+ sentinel 后第一行（去空白）；
      - 未找到（超时被杀/提前崩溃）：原样 stdout + None（调用方保持 session cwd 不变）
    """

    idx = stdout.rfind(sentinel)
    if idx < 0:
        return stdout, None

    before = stdout[:idx].rstrip()
    after = stdout[idx + len(sentinel) :]
    lines = after.splitlines()
    new_cwd = lines[0].strip() if lines else ""
    if truncated and not before.endswith(TRUNCATION_MARKER):
        before = before + TRUNCATION_MARKER
    return before, (new_cwd or None)
