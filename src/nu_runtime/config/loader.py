"""
配置加载器（YAML）。

参考：
- 默认配置：`src/nu_runtime/assets/default.yaml`

设计目标：
- 支持加载多个 YAML，并按顺序做深度合并（后者覆盖前者）。
- 使用 pydantic 做 schema 校验；默认拒绝未知字段（避免拼写错误与误配置被静默吞掉）。
"""

from __future__ import annotations

from copy import deepcopy
from pathlib import Path
from typing import Any, Dict, Literal, Mapping, MutableMapping

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator


def _deep_merge(base: MutableMapping[str, Any], overlay: Mapping[str, Any]) -> MutableMapping[str, Any]:
    """
    深度合并两个 dict（overlay 覆盖 base）。

    合并规则：
    - dict + dict：递归合并
    - 其它类型：overlay 直接覆盖
    - list：整体覆盖（不做去重/拼接）
    """

    for key, overlay_value in overlay.items():
        if key in base and isinstance(base[key], dict) and isinstance(overlay_value, Mapping):
            _deep_merge(base[key], overlay_value)  # type: ignore[arg-type]
            continue
        base[key] = deepcopy(overlay_value)
    return base


class NuInterpreterConfig(BaseModel):
    """解释器配置：二进制路径与包装方言。"""

    model_config = ConfigDict(extra="forbid")

    path: str = Field(default="nu", min_length=1)
    dialect: Literal["nu", "posix"] = Field(default="nu")

    @field_validator("dialect", mode="before")
    @classmethod
    def _normalize_dialect(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().lower()
        return value


class NuExecConfig(BaseModel):
    """
    阻塞执行配置。

    说明：
    - `default_timeout_sec`：调用方未提供 timeout 时使用
    - `*_max_bytes`：两路输出缓冲上限（超过后按截断策略保留头部）
    - `drain_flush_timeout_ms`：进程退出后等待每个 drain 读完的上限
    - `kill_wait_timeout_ms`：超时强杀后回收子进程的上限
    - `stream_limit_bytes`：StreamReader 单行上限（超长行按该大小分片）
    """

    model_config = ConfigDict(extra="forbid")

    default_timeout_sec: int = Field(default=60, ge=1)
    stdout_max_bytes: int = Field(default=200_000, ge=0)
    stderr_max_bytes: int = Field(default=50_000, ge=0)
    drain_flush_timeout_ms: int = Field(default=1_000, ge=1)
    kill_wait_timeout_ms: int = Field(default=2_000, ge=1)
    stream_limit_bytes: int = Field(default=65_536, ge=1024)


class NuJobsConfig(BaseModel):
    """后台 job 配置。"""

    model_config = ConfigDict(extra="forbid")

    stdout_max_bytes: int = Field(default=100_000, ge=0)
    stderr_max_bytes: int = Field(default=100_000, ge=0)
    monitor_timeout_sec: int = Field(default=300, ge=1)
    poll_interval_ms: int = Field(default=100, ge=1)
    block_timeout_sec: int = Field(default=300, ge=0)
    kill_wait_timeout_ms: int = Field(default=5_000, ge=1)
    id_prefix: str = Field(default="job_")
    id_length: int = Field(default=6, ge=1, le=64)


class NuLoggingConfig(BaseModel):
    """日志配置（仅 CLI 入口会据此配置 root logger）。"""

    model_config = ConfigDict(extra="forbid")

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(default="INFO")

    @field_validator("level", mode="before")
    @classmethod
    def _normalize_level(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().upper()
        return value


class NuRuntimeConfig(BaseModel):
    """配置根对象。"""

    model_config = ConfigDict(extra="forbid")

    config_version: int = Field(default=1, ge=1)
    interpreter: NuInterpreterConfig = Field(default_factory=NuInterpreterConfig)
    exec: NuExecConfig = Field(default_factory=NuExecConfig)
    jobs: NuJobsConfig = Field(default_factory=NuJobsConfig)
    logging: NuLoggingConfig = Field(default_factory=NuLoggingConfig)


def _load_yaml_file(path: Path) -> Dict[str, Any]:
    """读取 YAML 文件为 dict；空文件返回空 dict。"""

    if not path.exists():
        raise FileNotFoundError(f"config file not found: {path}")
    data = yaml.safe_load(path.read_text(encoding="utf-8"))
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"config root must be a mapping(dict): {path}")
    return data


def load_config_dicts(config_dicts: list[Dict[str, Any]]) -> NuRuntimeConfig:
    """
    加载并合并多个 dict 配置，返回校验后的 `NuRuntimeConfig`。

    参数：
    - config_dicts：按顺序做深度合并（后者覆盖前者）
    """

    merged: Dict[str, Any] = {}
    for overlay in config_dicts:
        if not overlay:
            continue
        _deep_merge(merged, overlay)
    return NuRuntimeConfig.model_validate(merged)


def load_config(config_paths: list[Path]) -> NuRuntimeConfig:
    """
    加载并合并多个配置文件，返回校验后的 `NuRuntimeConfig`。

    参数：
    - config_paths：YAML 路径列表；按顺序合并（后者覆盖前者）
    """

    overlays: list[Dict[str, Any]] = []
    for path in config_paths:
        overlays.append(_load_yaml_file(Path(path)))
    return load_config_dicts(overlays)
