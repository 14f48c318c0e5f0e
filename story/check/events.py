from typing import Any, Protocol
from loguru import logger
from pydantic import ValidationError
from story.models.context import ExtractedEvents, StateTransition, StoryContext, StoryEvent
from story.oracle import Oracle, call_oracle, reply_to_json
from utils.llm import template_fill
from utils.llm_api import llm_temperatures
from utils.loader import load_prompts



class EventExtractor(Protocol):
    async def extract(self, text: str, context: Any = None) -> ExtractedEvents:
        ...



def parse_extracted(value: Any) -> ExtractedEvents:
    """逐项校验, 格式不正确的事件或迁移直接丢弃。"""
    if not isinstance(value, dict):
        return ExtractedEvents()
    events, transitions = [], []
    for item in value.get("events") or []:
        try:
            events.append(StoryEvent.model_validate(item))
        except ValidationError:
            logger.debug(f"丢弃格式不正确的事件: {item!r}")
    for item in value.get("state_transitions") or []:
        try:
            transitions.append(StateTransition.model_validate(item))
        except ValidationError:
            logger.debug(f"丢弃格式不正确的状态迁移: {item!r}")
    return ExtractedEvents(events=events, state_transitions=transitions)



class OracleEventExtractor:
    """调用 Oracle 从正文中临时抽取事件和状态迁移。任何失败都返回空结果。"""

    def __init__(self, oracle: Oracle, max_characters: int = 5):
        self.oracle = oracle
        self.max_characters = max_characters

    async def extract(self, text: str, context: Any = None) -> ExtractedEvents:
        story = StoryContext.coerce(context)
        roster = []
        for char in story.characters[:self.max_characters]:
            line = f"- {char.get('name', '未知')}: {char.get('role', '角色')}"
            level = (char.get("current_state") or {}).get("level")
            if level:
                line += f" (当前境界: {level})"
            roster.append(line)

        system_prompt, user_prompt = load_prompts("events", "system_prompt", "user_prompt")
        reply = await call_oracle(
            self.oracle,
            system_prompt,
            template_fill(user_prompt, {"characters": "\n".join(roster) or "(无)", "text": text}),
            temperature=llm_temperatures["extraction"],
            max_tokens=2000,
        )
        parsed = reply_to_json(reply)
        if not parsed.ok:
            logger.warning(f"事件抽取失败, 按无事件处理: {parsed.error}")
            return ExtractedEvents()
        extracted = parse_extracted(parsed.value)
        logger.info(f"抽取完成: {len(extracted.events)} 个事件, {len(extracted.state_transitions)} 个状态迁移")
        return extracted
