import os
import sys
import pytest
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch
from loguru import logger

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))
from story.oracle import LiteLLMOracle, RawReply, call_oracle
from utils.llm import get_llm_messages, template_fill
from utils.llm_api import get_llm_params
from utils.loader import load_prompts


def fake_response(content):
    message = SimpleNamespace(content=content)
    return SimpleNamespace(choices=[SimpleNamespace(message=message)])


def test_get_llm_params():
    params = get_llm_params(
        llm_group="fast",
        messages=get_llm_messages("系统", "用户"),
        temperature=0.2,
        max_tokens=800,
    )
    assert params["temperature"] == 0.2
    assert params["max_tokens"] == 800
    assert params["num_retries"] == 0
    assert "context_window" not in params
    assert params["messages"] == [
        {"role": "system", "content": "系统"},
        {"role": "user", "content": "用户"},
    ]
    assert get_llm_messages("", "只有用户") == [{"role": "user", "content": "只有用户"}]


def test_template_fill_leaves_unknown_placeholders_empty():
    assert template_fill("目标: {goal} 请求: {request}", {"goal": "finalContent"}) == "目标: finalContent 请求: "
    assert template_fill("原样 {x}", None) == "原样 {x}"


def test_prompts_have_placeholders():
    for module, names in [
        ("planner", ("system_prompt", "user_prompt")),
        ("rules", ("batch_system_prompt", "batch_user_prompt", "single_system_prompt")),
        ("text_check", ("system_prompt", "user_prompt")),
        ("events", ("system_prompt", "user_prompt")),
    ]:
        prompts = load_prompts(module, *names)
        assert all(p.strip() for p in prompts)
    _, user_prompt = load_prompts("planner", "system_prompt", "user_prompt")
    assert "{skills}" in user_prompt and "{missing}" in user_prompt
    with pytest.raises(AttributeError):
        load_prompts("planner", "no_such_prompt")


@pytest.mark.asyncio
@patch("litellm.acompletion", new_callable=AsyncMock)
async def test_litellm_oracle(mock_acompletion):
    logger.info("--- 测试：LiteLLMOracle 通过 litellm 调用模型 ---")
    mock_acompletion.return_value = fake_response('{"steps": []}')
    oracle = LiteLLMOracle(llm_group="fast")
    reply = await call_oracle(oracle, "系统", "用户", temperature=0.2, max_tokens=800)
    assert isinstance(reply, RawReply)
    assert reply.text == '{"steps": []}'
    kwargs = mock_acompletion.call_args.kwargs
    assert kwargs["temperature"] == 0.2
    assert kwargs["max_tokens"] == 800
    assert kwargs["messages"][1]["content"] == "用户"


@pytest.mark.asyncio
@patch("litellm.acompletion", new_callable=AsyncMock)
async def test_litellm_oracle_empty_content(mock_acompletion):
    mock_acompletion.return_value = fake_response("   ")
    reply = await call_oracle(LiteLLMOracle(), "系统", "用户")
    assert reply.success is False
    assert "空内容" in reply.error
