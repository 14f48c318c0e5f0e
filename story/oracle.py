"""
Oracle (外部 LLM) 调用边界。

Oracle 的返回形态不固定: 纯文本、{success, response|error} 包装对象、或已经结构化的数据。
这里在边界处统一成三种带标签的 Reply, 之后的逻辑只处理 Reply。
"""
import asyncio
from typing import Any, Awaitable, Callable, Literal, Optional, Union
from loguru import logger
from pydantic import BaseModel, Field
from story import config
from utils.json_extract import ParseResult, extract_json
from utils.llm_api import llm_group_type



Oracle = Callable[[str, str, Optional[float], Optional[int]], Awaitable[Any]]



class RawReply(BaseModel):
    kind: Literal["raw"] = "raw"
    text: str = ""


class WrappedReply(BaseModel):
    kind: Literal["wrapped"] = "wrapped"
    success: bool = False
    response: Any = None
    error: str = ""


class StructuredReply(BaseModel):
    kind: Literal["structured"] = "structured"
    data: Any = None


Reply = Union[RawReply, WrappedReply, StructuredReply]



def normalize_reply(value: Any) -> Reply:
    if isinstance(value, (RawReply, WrappedReply, StructuredReply)):
        return value
    if isinstance(value, str):
        return RawReply(text=value)
    if isinstance(value, BaseModel):
        return StructuredReply(data=value.model_dump())
    if isinstance(value, dict) and "success" in value and ("response" in value or "error" in value):
        return WrappedReply(
            success=bool(value.get("success")),
            response=value.get("response"),
            error=str(value.get("error") or ""),
        )
    if value is None:
        return WrappedReply(success=False, error="Oracle 返回了空值")
    return StructuredReply(data=value)



def reply_to_json(reply: Reply) -> ParseResult:
    """把任意 Reply 转成 JSON 解析结果, 不抛异常。"""
    if isinstance(reply, StructuredReply):
        return ParseResult(ok=True, value=reply.data, stage="direct")
    if isinstance(reply, WrappedReply):
        if not reply.success:
            return ParseResult(ok=False, error=reply.error or "Oracle 调用失败")
        if isinstance(reply.response, str):
            return extract_json(reply.response)
        if reply.response is None:
            return ParseResult(ok=False, error="Oracle 包装对象中没有 response")
        return ParseResult(ok=True, value=reply.response, stage="direct")
    return extract_json(reply.text)



async def call_oracle(
    oracle: Oracle,
    system_prompt: str,
    user_prompt: str,
    temperature: Optional[float] = None,
    max_tokens: Optional[int] = None,
    timeout: Optional[float] = None,
) -> Reply:
    """
    调用一次 Oracle 并归一化返回值。
    超时或异常都转成 WrappedReply(success=False), 由调用方走降级路径, 这里不重试。
    """
    timeout = config.oracle_timeout if timeout is None else timeout
    try:
        value = await asyncio.wait_for(
            oracle(system_prompt, user_prompt, temperature, max_tokens),
            timeout=timeout,
        )
    except asyncio.TimeoutError:
        logger.warning(f"Oracle 调用超时 ({timeout}s)")
        return WrappedReply(success=False, error=f"Oracle 调用超时 ({timeout}s)")
    except asyncio.CancelledError:
        raise
    except Exception as e:
        logger.warning(f"Oracle 调用失败: {e}")
        return WrappedReply(success=False, error=str(e))
    return normalize_reply(value)



###############################################################################



class LiteLLMOracle:
    """基于 litellm 的默认 Oracle 实现。"""

    def __init__(self, llm_group: llm_group_type = "reasoning"):
        self.llm_group = llm_group

    async def __call__(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> str:
        from utils.llm import llm_completion
        return await llm_completion(
            system_prompt=system_prompt,
            user_prompt=user_prompt,
            temperature=temperature,
            max_tokens=max_tokens,
            llm_group=self.llm_group,
        )

    def __repr__(self) -> str:
        return f"LiteLLMOracle(llm_group={self.llm_group!r})"
