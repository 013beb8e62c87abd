"""
nu-runtime CLI（serve / exec / config）。

约束：
- 使用 argparse（不引入第三方 CLI 依赖）
- `exec`/`config` 在 stdout 输出机器可读 JSON；失败时也输出 JSON
- `serve` 的 stdout 承载 MCP 协议流，日志一律写 stderr
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
import uuid
from typing import Any, Dict, List, Optional, Sequence, Tuple

from pydantic import ValidationError

from nu_runtime import bootstrap
from nu_runtime.core.errors import FrameworkIssue
from nu_runtime.core.executor import NuExecutor
from nu_runtime.core.utf8 import ensure_utf8_stdio
from nu_runtime.server import build_registry, serve_stdio
from nu_runtime.tools.protocol import ToolCall, ToolResult

logger = logging.getLogger(__name__)

_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def _dump_json_to_stdout(obj: Dict[str, Any], *, pretty: bool) -> None:
    """
    将 dict 输出为 JSON 到 stdout（末尾包含换行）。

    参数：
    - obj：待输出对象（必须可 JSON dumps）
    - pretty：是否启用 pretty-print（indent=2）
    """

    if pretty:
        text = json.dumps(obj, ensure_ascii=False, indent=2)
    else:
        text = json.dumps(obj, ensure_ascii=False, separators=(",", ":"))
    print(text)


def _issues_to_jsonable(issues: List[FrameworkIssue]) -> List[Dict[str, Any]]:
    return [{"code": i.code, "message": i.message, "details": dict(i.details)} for i in issues]


def _configure_logging(level: str) -> None:
    """配置 root logger 输出到 stderr（stdout 留给 JSON/MCP）。"""

    logging.basicConfig(level=getattr(logging, level, logging.INFO), stream=sys.stderr, format=_LOG_FORMAT)


def _load_config(args: argparse.Namespace) -> Tuple[Optional[bootstrap.ResolvedConfig], Optional[FrameworkIssue]]:
    """加载有效配置；失败时返回结构化 issue（不抛异常）。"""

    try:
        return bootstrap.resolve_config(config_paths=list(args.config or [])), None
    except ValidationError as exc:
        return None, FrameworkIssue(
            code="CLI_CONFIG_INVALID",
            message="Effective config failed validation.",
            details={"errors": json.loads(exc.json())},
        )
    except (OSError, ValueError) as exc:
        return None, FrameworkIssue(
            code="CLI_CONFIG_LOAD_FAILED",
            message="Failed to load config overlay.",
            details={"reason": str(exc)},
        )


def _parse_env_pairs(pairs: Sequence[str]) -> Tuple[Dict[str, str], Optional[FrameworkIssue]]:
    """把 `K=V` 列表解析为 dict；缺少 `=` 或 key 为空时返回 issue。"""

    env: Dict[str, str] = {}
    for raw in pairs:
        key, sep, value = raw.partition("=")
        if not sep or not key.strip():
            return {}, FrameworkIssue(
                code="CLI_ENV_INVALID",
                message="--env expects KEY=VALUE.",
                details={"value": raw},
            )
        env[key.strip()] = value
    return env, None


def _exit_code_for_tool_result(result: ToolResult) -> int:
    """
    将 ToolResult 映射为 CLI exit code。

    约定：
    - ok=true -> 0
    - validation -> 20
    - not_found -> 22
    - timeout -> 25
    - 其它（exit_code/launch_failure/...）-> 23
    """

    if bool(result.ok):
        return 0
    kind = str(result.error_kind or "")
    if kind == "validation":
        return 20
    if kind == "not_found":
        return 22
    if kind == "timeout":
        return 25
    return 23


def _build_parser() -> argparse.ArgumentParser:
    """构建 argparse 解析器（serve/exec/config 子命令）。"""

    parser = argparse.ArgumentParser(prog="nu-runtime", description="Run interpreter pipelines as tools (MCP stdio).")
    root_sub = parser.add_subparsers(dest="command", required=True)

    def _add_common_flags(p: argparse.ArgumentParser) -> None:
        p.add_argument("--config", action="append", default=[], help="Overlay config YAML path (repeatable).")

    serve = root_sub.add_parser("serve", help="Run the MCP stdio server")
    _add_common_flags(serve)

    exec_p = root_sub.add_parser("exec", help="Run one blocking command and print the tool payload")
    _add_common_flags(exec_p)
    exec_p.add_argument("command_text", metavar="COMMAND", help="Pipeline to execute.")
    exec_p.add_argument("--timeout", type=int, default=None, help="Timeout in seconds (>=1).")
    exec_p.add_argument("--cwd", default=None, help="Working directory for this call.")
    exec_p.add_argument("--env", action="append", default=[], help="Environment variable KEY=VALUE (repeatable).")
    exec_p.add_argument("--pretty", action="store_true", help="Pretty-print JSON output.")

    config_p = root_sub.add_parser("config", help="Print the effective configuration and its sources")
    _add_common_flags(config_p)
    config_p.add_argument("--pretty", action="store_true", help="Pretty-print JSON output.")

    return parser


def _handle_config(args: argparse.Namespace) -> int:
    resolved, issue = _load_config(args)
    if issue is not None or resolved is None:
        _dump_json_to_stdout({"ok": False, "issues": _issues_to_jsonable([issue] if issue else [])}, pretty=args.pretty)
        return 20
    _dump_json_to_stdout(
        {
            "ok": True,
            "config": resolved.config.model_dump(),
            "overlay_paths": resolved.overlay_paths,
            "sources": resolved.sources,
        },
        pretty=args.pretty,
    )
    return 0


async def _run_exec(executor: NuExecutor, tool_args: Dict[str, Any]) -> ToolResult:
    registry = build_registry(executor)
    try:
        return await registry.dispatch(ToolCall(call_id=uuid.uuid4().hex, name="nu.exec", args=tool_args))
    finally:
        await executor.aclose()


def _handle_exec(args: argparse.Namespace) -> int:
    resolved, issue = _load_config(args)
    env, env_issue = _parse_env_pairs(args.env or [])
    issue = issue or env_issue
    if issue is not None or resolved is None:
        _dump_json_to_stdout({"ok": False, "issues": _issues_to_jsonable([issue] if issue else [])}, pretty=args.pretty)
        return 20

    _configure_logging(resolved.config.logging.level)
    tool_args: Dict[str, Any] = {"command": str(args.command_text)}
    if args.timeout is not None:
        tool_args["timeout"] = int(args.timeout)
    if args.cwd is not None:
        tool_args["cwd"] = str(args.cwd)
    if env:
        tool_args["env"] = env

    result = asyncio.run(_run_exec(NuExecutor(resolved.config), tool_args))
    _dump_json_to_stdout(
        {"tool": "nu.exec", "ok": result.ok, "error_kind": result.error_kind, "result": result.details},
        pretty=args.pretty,
    )
    return _exit_code_for_tool_result(result)


def _handle_serve(args: argparse.Namespace) -> int:
    resolved, issue = _load_config(args)
    if issue is not None or resolved is None:
        print(json.dumps({"ok": False, "issues": _issues_to_jsonable([issue] if issue else [])}), file=sys.stderr)
        return 20

    _configure_logging(resolved.config.logging.level)
    try:
        asyncio.run(serve_stdio(NuExecutor(resolved.config)))
    except KeyboardInterrupt:
        logger.info("Interrupted; shutting down")
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    """
    CLI 入口函数（用于 console_scripts 与测试）。

    参数：
    - argv：命令行参数列表（不含程序名）；为 None 时读取 sys.argv[1:]。

    返回：
    - int：exit code（不会直接 sys.exit，便于测试）。
    """

    ensure_utf8_stdio()

    parser = _build_parser()
    try:
        args = parser.parse_args(list(argv) if argv is not None else None)
    except SystemExit as exc:
        # argparse：`--help` 为 0，参数错误为 2
        code = getattr(exc, "code", 2)
        if code is None:
            return 2
        return int(code)

    if args.command == "serve":
        return _handle_serve(args)
    if args.command == "exec":
        return _handle_exec(args)
    if args.command == "config":
        return _handle_config(args)
    parser.print_help(sys.stderr)
    return 2


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
