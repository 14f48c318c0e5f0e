import re
from typing import List, Tuple
from loguru import logger
from story.contracts import DEFAULT_INTENT



# 按顺序匹配, 命中第一个即返回
INTENT_PATTERNS: List[Tuple[str, re.Pattern]] = [
    ("CONTINUE", re.compile(r"续写|继续|下一章|接着")),
    ("REWRITE", re.compile(r"重写|改写|修改|优化")),
    ("CHECK", re.compile(r"检查|校验|一致性|连贯性")),
    ("PLAN", re.compile(r"规划|计划|大纲")),
]



def route_intent(request_text: str) -> str:
    """根据用户请求文本判断意图, 都不匹配时按创作处理。"""
    text = request_text or ""
    for intent, pattern in INTENT_PATTERNS:
        if pattern.search(text):
            logger.info(f"意图识别: '{text[:50]}' -> {intent}")
            return intent
    logger.info(f"意图识别: '{text[:50]}' -> {DEFAULT_INTENT} (默认)")
    return DEFAULT_INTENT
