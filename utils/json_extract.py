"""
从 LLM 返回的文本中提取 JSON。

按固定顺序尝试三个阶段, 任何阶段都不抛异常:
1. direct: 整段文本直接解析
2. fenced: ```json ... ``` 代码块或 <json>...</json> 哨兵标记内的内容
3. brace:  扫描第一个括号平衡的 {...} 对象
"""
import json
import re
from typing import Any, Iterator, Literal
from pydantic import BaseModel, Field


ParseStage = Literal["direct", "fenced", "brace", "none"]


class ParseResult(BaseModel):
    ok: bool = Field(..., description="是否成功解析出 JSON")
    value: Any = Field(None, description="解析出的 JSON 值")
    stage: ParseStage = Field("none", description="成功解析所在的阶段")
    error: str = Field("", description="全部阶段失败时的错误说明")


_FENCE_RE = re.compile(r"```(?:json|JSON)?\s*\n?(.*?)```", re.DOTALL)
_SENTINEL_RE = re.compile(r"<json>(.*?)</json>", re.DOTALL)


def _loads(text: str, stage: ParseStage) -> ParseResult:
    try:
        return ParseResult(ok=True, value=json.loads(text), stage=stage)
    except (json.JSONDecodeError, TypeError, ValueError) as e:
        return ParseResult(ok=False, stage="none", error=f"{stage}: {e}")


def parse_direct(text: str) -> ParseResult:
    return _loads(text.strip(), "direct")


def parse_fenced(text: str) -> ParseResult:
    for pattern in (_SENTINEL_RE, _FENCE_RE):
        for match in pattern.finditer(text):
            body = match.group(1).strip()
            if not body:
                continue
            result = _loads(body, "fenced")
            if result.ok:
                return result
    return ParseResult(ok=False, error="fenced: 没有可解析的代码块")


def _balanced_objects(text: str) -> Iterator[str]:
    """依次产出文本中每个以 '{' 开始、括号平衡的片段, 忽略字符串中的括号。"""
    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        end = -1
        for i in range(start, len(text)):
            ch = text[i]
            if in_string:
                if escaped:
                    escaped = False
                elif ch == "\\":
                    escaped = True
                elif ch == '"':
                    in_string = False
                continue
            if ch == '"':
                in_string = True
            elif ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth == 0:
                    end = i
                    break
        if end == -1:
            return
        yield text[start:end + 1]
        start = text.find("{", start + 1)


def parse_brace(text: str) -> ParseResult:
    for candidate in _balanced_objects(text):
        result = _loads(candidate, "brace")
        if result.ok:
            return result
    return ParseResult(ok=False, error="brace: 没有找到可解析的 {...} 对象")


def extract_json(text: str) -> ParseResult:
    if not isinstance(text, str) or not text.strip():
        return ParseResult(ok=False, error="输入为空")
    errors = []
    for stage in (parse_direct, parse_fenced, parse_brace):
        result = stage(text)
        if result.ok:
            return result
        errors.append(result.error)
    return ParseResult(ok=False, error="; ".join(errors))
