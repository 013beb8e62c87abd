"""配置加载（YAML + pydantic）。"""

from nu_runtime.config.defaults import load_default_config_dict
from nu_runtime.config.loader import NuRuntimeConfig, load_config, load_config_dicts

__all__ = ["NuRuntimeConfig", "load_config", "load_config_dicts", "load_default_config_dict"]
