from functools import lru_cache
import importlib
from typing import Tuple


prompts_package = "story.prompts"


@lru_cache(maxsize=30)
def load_prompts(module_name: str, *component_names: str) -> Tuple[str, ...]:
    """从 story/prompts 下的模块按名称读取提示词常量。"""
    module = importlib.import_module(f"{prompts_package}.{module_name}")
    missing = [name for name in component_names if not hasattr(module, name)]
    if missing:
        raise AttributeError(f"提示词模块 '{module_name}' 缺少: {', '.join(missing)}")
    return tuple(getattr(module, name) for name in component_names)
