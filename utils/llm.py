import collections
import json
from loguru import logger
from typing import Dict, Any, Optional, List
from utils.llm_api import get_llm_params, llm_group_type



def template_fill(template: str, context: Optional[Dict[str, Any]]) -> str:
    content = template
    if context:
        safe_context = collections.defaultdict(str, context)
        content = template.format_map(safe_context)
    return content



def get_llm_messages(system_prompt: str, user_prompt: str) -> List[Dict[str, str]]:
    messages = []
    if system_prompt:
        messages.append({"role": "system", "content": system_prompt})
    messages.append({"role": "user", "content": user_prompt})
    return messages



def _format_message_content(content: str) -> str:
    stripped = content.strip()
    if stripped.startswith('{') or stripped.startswith('['):
        try:
            return json.dumps(json.loads(stripped), indent=2, ensure_ascii=False)
        except json.JSONDecodeError:
            return content
    return content



def log_llm_params(llm_params: Dict[str, Any]):
    for message in llm_params.get("messages", []):
        logger.debug(f"{message.get('role')}:\n{message.get('content')}")
    extra = {k: v for k, v in llm_params.items() if k not in ("messages", "api_key", "fallbacks")}
    logger.debug(f"llm_params={extra}")



async def llm_completion(
    system_prompt: str,
    user_prompt: str,
    temperature: Optional[float] = None,
    max_tokens: Optional[int] = None,
    llm_group: llm_group_type = "reasoning",
) -> str:
    """
    调用 LLM 并返回文本内容, JSON 的提取交给调用方。
    不做重试, 异常直接抛给调用方。
    """
    kwargs = {}
    if max_tokens:
        kwargs["max_tokens"] = max_tokens
    llm_params = get_llm_params(
        llm_group=llm_group,
        messages=get_llm_messages(system_prompt, user_prompt),
        temperature=temperature,
        **kwargs
    )
    log_llm_params(llm_params)

    import litellm
    response = await litellm.acompletion(**llm_params)
    if not response.choices or not response.choices[0].message:
        raise ValueError("LLM响应中缺少 choices 或 message。")

    content = response.choices[0].message.content or ""
    if not content.strip():
        raise ValueError("LLM 返回了空内容。")

    logger.debug(f"LLM 返回内容:\n{_format_message_content(content)}")
    return content
