import os
import sys
import pytest
from pathlib import Path
from loguru import logger

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))
from utils.log import init_logger
from utils.file import log_dir


def pytest_configure(config):
    config.addinivalue_line(
        "filterwarnings", "ignore:open_text is deprecated:DeprecationWarning:litellm.*"
    )
    config.addinivalue_line(
        "filterwarnings", "ignore:Pydantic serializer warnings:UserWarning"
    )


@pytest.fixture(scope="module", autouse=True)
def setup_module_logging(request):
    log_filename_stem = Path(request.module.__file__).stem
    log_file = log_dir / f"{log_filename_stem}.log"
    if log_file.exists():
        log_file.unlink()
    sink_id = init_logger(log_filename_stem)
    yield
    logger.remove(sink_id)


class StubOracle:
    """
    测试用的 Oracle。
    handler 可以是固定返回值, 也可以是 (system_prompt, user_prompt) -> 返回值 的函数。
    返回值是异常实例时直接抛出。所有调用都记录在 calls 中。
    """

    def __init__(self, handler=None):
        self.handler = handler
        self.calls = []

    async def __call__(self, system_prompt, user_prompt, temperature=None, max_tokens=None):
        self.calls.append({
            "system_prompt": system_prompt,
            "user_prompt": user_prompt,
            "temperature": temperature,
            "max_tokens": max_tokens,
        })
        value = self.handler(system_prompt, user_prompt) if callable(self.handler) else self.handler
        if isinstance(value, Exception):
            raise value
        return value


@pytest.fixture
def make_oracle():
    return StubOracle


@pytest.fixture
def story_context() -> dict:
    import copy
    from tests import test_data
    return copy.deepcopy(test_data.STORY_CONTEXT)
