"""
Bootstrap Layer（启动期配置发现/来源追踪）。

设计目标：
- 保持核心无隐式 I/O：`NuExecutor` 只接收已校验的配置对象，不会自行读取 env/文件
- 提供统一入口：CLI/MCP server 复用同一套发现规则，并能输出每个字段的来源

合并顺序（后者覆盖前者）：
1) 内置默认配置（`assets/default.yaml`）
2) `NU_RUNTIME_CONFIG_PATHS`（逗号/分号分隔）
3) 显式传入的 overlay（CLI `--config`，可重复）
4) 环境变量覆盖：`NU_PATH` / `NU_RUNTIME_DIALECT` / `NU_RUNTIME_LOG_LEVEL`
"""

from __future__ import annotations

import os
from copy import deepcopy
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple

import yaml

from nu_runtime.config.defaults import load_default_config_dict
from nu_runtime.config.loader import NuRuntimeConfig, load_config_dicts

# env key → dotted config path
ENV_OVERRIDES: Tuple[Tuple[str, str], ...] = (
    ("NU_PATH", "interpreter.path"),
    ("NU_RUNTIME_DIALECT", "interpreter.dialect"),
    ("NU_RUNTIME_LOG_LEVEL", "logging.level"),
)


def _get_env_nonempty(env: Mapping[str, str], key: str) -> Optional[str]:
    """读取 env；空串或仅空白视为未设置。"""

    raw = env.get(key)
    if raw is None:
        return None
    value = raw.strip()
    return value or None


def _split_paths(raw: str) -> list[str]:
    """将逗号/分号分隔的路径串切分为片段列表（去空白与空项，保序）。"""

    parts: list[str] = []
    for chunk in raw.replace(";", ",").split(","):
        s = chunk.strip()
        if s:
            parts.append(s)
    return parts


def discover_overlay_paths(
    *,
    explicit: Iterable[Path | str] = (),
    env: Optional[Mapping[str, str]] = None,
    base_dir: Optional[Path] = None,
) -> list[Path]:
    """
    overlay 路径发现（顺序稳定、按 canonical path 去重）。

    参数：
    - explicit：显式 overlay（排在 env 之后，优先级更高）
    - env：环境变量来源（默认 `os.environ`）
    - base_dir：相对路径的解析基准（默认当前目录）
    """

    environ = os.environ if env is None else env
    base = Path(base_dir or Path.cwd()).resolve()

    raw: list[str] = _split_paths(_get_env_nonempty(environ, "NU_RUNTIME_CONFIG_PATHS") or "")
    raw.extend(str(p) for p in explicit)

    seen: set[Path] = set()
    uniq: list[Path] = []
    for item in raw:
        p = Path(item).expanduser()
        p = (base / p).resolve() if not p.is_absolute() else p.resolve()
        if p in seen:
            continue
        seen.add(p)
        uniq.append(p)
    return uniq


def _record_leaf_sources(value: Any, *, prefix: str, sources: Dict[str, str], label: str) -> None:
    """递归记录 mapping 的叶子字段来源。"""

    if isinstance(value, Mapping):
        for k, v in value.items():
            path = f"{prefix}.{k}" if prefix else str(k)
            _record_leaf_sources(v, prefix=path, sources=sources, label=label)
        return
    sources[prefix] = label


def _deep_merge_with_sources(
    base: Dict[str, Any],
    overlay: Mapping[str, Any],
    *,
    sources: Dict[str, str],
    label: str,
    prefix: str = "",
) -> None:
    """将 overlay 深度合并到 base，并同步写入叶子字段 sources。"""

    for key, overlay_value in overlay.items():
        k = str(key)
        path = f"{prefix}.{k}" if prefix else k
        if k in base and isinstance(base[k], dict) and isinstance(overlay_value, Mapping):
            _deep_merge_with_sources(base[k], overlay_value, sources=sources, label=label, prefix=path)  # type: ignore[arg-type]
            continue
        base[k] = deepcopy(overlay_value)
        _record_leaf_sources(overlay_value, prefix=path, sources=sources, label=label)


def _load_yaml_mapping(path: Path) -> Dict[str, Any]:
    """读取 overlay YAML 并确保根节点是 mapping(dict)。"""

    if not path.exists():
        raise ValueError(f"overlay config not found: {path}")
    obj = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    if not isinstance(obj, dict):
        raise ValueError(f"overlay config root must be a mapping(dict): {path}")
    return obj


def _set_dotted(target: Dict[str, Any], dotted: str, value: Any) -> None:
    node = target
    *parents, leaf = dotted.split(".")
    for part in parents:
        child = node.get(part)
        if not isinstance(child, dict):
            child = {}
            node[part] = child
        node = child
    node[leaf] = value


@dataclass(frozen=True)
class ResolvedConfig:
    """bootstrap 解析结果。

    字段：
    - config：校验后的有效配置
    - overlay_paths：参与合并的 overlay 文件路径（字符串化）
    - sources：叶子字段来源（`embedded_default` / `overlay:<path>` / `env:<KEY>`）
    """

    config: NuRuntimeConfig
    overlay_paths: list[str]
    sources: Dict[str, str]


def resolve_config(
    *,
    config_paths: Iterable[Path | str] = (),
    env: Optional[Mapping[str, str]] = None,
    base_dir: Optional[Path] = None,
) -> ResolvedConfig:
    """
    解析有效配置（env > overlay > embedded default），并返回来源追踪。

    异常：
    - ValueError：overlay 不存在或根节点不是 mapping
    - pydantic.ValidationError：合并结果未通过 schema 校验
    """

    environ = os.environ if env is None else env
    overlay_paths = discover_overlay_paths(explicit=config_paths, env=environ, base_dir=base_dir)

    entries: list[Tuple[str, Dict[str, Any]]] = [("embedded_default", load_default_config_dict())]
    for p in overlay_paths:
        entries.append((f"overlay:{p}", _load_yaml_mapping(p)))

    env_overlay: Dict[str, Any] = {}
    env_sources: Dict[str, str] = {}
    for key, dotted in ENV_OVERRIDES:
        value = _get_env_nonempty(environ, key)
        if value is not None:
            _set_dotted(env_overlay, dotted, value)
            env_sources[dotted] = f"env:{key}"

    merged: Dict[str, Any] = {}
    sources: Dict[str, str] = {}
    for label, d in entries:
        _deep_merge_with_sources(merged, d, sources=sources, label=label)
    _deep_merge_with_sources(merged, env_overlay, sources=sources, label="env")
    sources.update(env_sources)

    config = load_config_dicts([merged])
    return ResolvedConfig(config=config, overlay_paths=[str(p) for p in overlay_paths], sources=sources)
