from __future__ import annotations

import shutil
from pathlib import Path
from typing import Any, Callable, Dict, Optional

import pytest

from nu_runtime.config.loader import NuRuntimeConfig, load_config_dicts
from nu_runtime.core.executor import NuExecutor
from nu_runtime.core.session import SessionState


def _sh_path() -> str:
    sh = shutil.which("sh") or "/bin/sh"
    if not Path(sh).exists():  # pragma: no cover
        pytest.skip("POSIX sh is required for process tests")
    return sh


@pytest.fixture
def posix_config() -> Callable[..., NuRuntimeConfig]:
    """POSIX sh 方言的测试配置（进程类测试不依赖 Nushell）。"""

    def _make(overrides: Optional[Dict[str, Any]] = None) -> NuRuntimeConfig:
        base: Dict[str, Any] = {"interpreter": {"path": _sh_path(), "dialect": "posix"}}
        return load_config_dicts([base, overrides or {}])

    return _make


@pytest.fixture
def make_executor(tmp_path: Path, posix_config: Callable[..., NuRuntimeConfig]) -> Callable[..., NuExecutor]:
    """创建 session cwd 指向 tmp_path 的 POSIX executor。"""

    def _make(overrides: Optional[Dict[str, Any]] = None, *, cwd: Optional[Path] = None) -> NuExecutor:
        return NuExecutor(posix_config(overrides), session=SessionState(cwd=str(cwd or tmp_path)))

    return _make
