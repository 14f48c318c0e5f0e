import copy
import os
from typing import Any, Dict, List, Literal, Optional


import logging
litellm_logger = logging.getLogger("litellm")
litellm_logger.setLevel(logging.ERROR)
for handler in litellm_logger.handlers:
    litellm_logger.removeHandler(handler)


from dotenv import load_dotenv
load_dotenv()


# 各类 Oracle 调用的温度。规划允许少量发散, 规则判定与事件抽取要求稳定。
llm_temperatures = {
    "planning": 0.2,
    "rule_check": 0.1,
    "text_check": 0.1,
    "extraction": 0.2,
}


# reasoning: 规则评估/一致性校验; fast: 规划与事件抽取
llm_group_type = Literal['reasoning', 'fast']


###############################################################################


def _model(env_name: str, default: str, context_window: int, **extra: Any) -> Dict[str, Any]:
    return {
        "model": os.getenv(env_name, default),
        "context_window": context_window,
        **extra,
    }


llms_api = {
    "reasoning": {
        **_model("AGENT_REASONING_MODEL", "openrouter/deepseek/deepseek-r1-0528:free", 163840),
        "api_key": os.getenv("OPENROUTER_API_KEY"),
        "fallbacks": [
            _model(
                "AGENT_REASONING_FALLBACK_MODEL", "openai/deepseek-ai/DeepSeek-R1-0528", 163840,
                api_base="https://api-inference.modelscope.cn/v1/",
                api_key=os.getenv("modelscope_API_KEY"),
            ),
            _model("AGENT_REASONING_BACKUP_MODEL", "gemini/gemini-2.5-flash-lite", 1048576, api_key=os.getenv("GEMINI_API_KEY")),
        ],
    },
    "fast": {
        **_model("AGENT_FAST_MODEL", "openrouter/deepseek/deepseek-chat-v3-0324:free", 163840),
        "api_key": os.getenv("OPENROUTER_API_KEY"),
        "fallbacks": [
            _model(
                "AGENT_FAST_FALLBACK_MODEL", "openai/deepseek-ai/DeepSeek-V3", 163840,
                api_base="https://api-inference.modelscope.cn/v1/",
                api_key=os.getenv("modelscope_API_KEY"),
            ),
            _model("AGENT_FAST_BACKUP_MODEL", "groq/llama-3.1-8b-instant", 131072, api_key=os.getenv("GROQ_API_KEY")),
        ],
    },
}


# 核心层不做重试, 失败直接走降级路径, 超时由 call_oracle 控制。
llm_api_params = {
    "temperature": llm_temperatures["rule_check"],
    "caching": False,
    "max_tokens": 2000,
    "num_retries": 0,
}


def get_llm_params(
    llm_group: llm_group_type = 'reasoning',
    messages: Optional[List[Dict[str, Any]]] = None,
    temperature: Optional[float] = None,
    **kwargs: Any
) -> Dict[str, Any]:
    llm_params = copy.deepcopy(llms_api[llm_group])
    llm_params.pop("context_window", None)
    for fallback in llm_params.get("fallbacks", []):
        fallback.pop("context_window", None)
    llm_params.update(**llm_api_params)
    llm_params.update(kwargs)

    if temperature is not None:
        llm_params["temperature"] = temperature

    if messages is not None:
        llm_params["messages"] = copy.deepcopy(messages)

    return llm_params
