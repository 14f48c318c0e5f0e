"""
角色生命状态机, 供 CHARACTER 规则做确定性的状态迁移校验。
"""
from typing import Any, Dict, FrozenSet, Iterable, Optional, Tuple
from pydantic import BaseModel
from story.models.context import StateTransition, StoryEvent
from story.models.rule import Rule



LIFE_STATE_SYNONYMS: Dict[str, Tuple[str, ...]] = {
    "Dead": ("死亡", "死", "已死"),
    "Alive": ("活着", "生存", "存活"),
    "Injured": ("受伤", "伤势", "负伤"),
    "Unconscious": ("昏迷", "失去意识", "不省人事"),
}

# 死亡是终态
VALID_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    "Alive": frozenset({"Alive", "Injured", "Unconscious", "Dead"}),
    "Injured": frozenset({"Alive", "Injured", "Unconscious", "Dead"}),
    "Unconscious": frozenset({"Alive", "Injured", "Unconscious", "Dead"}),
    "Dead": frozenset({"Dead"}),
}

REVIVAL_EVENTS = frozenset({"REVIVAL", "TIME_REVERSE"})
REVIVAL_KEYWORDS = ("复活", "重生")

LEVEL_UP_EVENTS = frozenset({"LEVEL_UP", "BREAKTHROUGH"})
LEVEL_UP_KEYWORDS = ("突破", "修炼")

REALM_ORDER = ("炼气", "筑基", "金丹", "元婴", "化神", "炼虚", "合体", "大乘", "渡劫")



def normalize_life_state(value: str) -> Optional[str]:
    if not value:
        return None
    text = value.strip()
    for state, synonyms in LIFE_STATE_SYNONYMS.items():
        if text.lower() == state.lower() or text in synonyms:
            return state
    # 描述中包含同义词时按对应状态归类, 先匹配死亡
    for state, synonyms in LIFE_STATE_SYNONYMS.items():
        if any(s in text for s in synonyms):
            return state
    return None



def match_state(actual: str, target: str) -> bool:
    if not actual or not target:
        return False
    if actual == target or actual in target or target in actual:
        return True
    a, t = normalize_life_state(actual), normalize_life_state(target)
    return a is not None and a == t



def realm_index(value: str) -> int:
    for i, realm in enumerate(REALM_ORDER):
        if realm in (value or ""):
            return i
    return -1



def is_level_up(from_state: str, to_state: str) -> bool:
    a, b = realm_index(from_state), realm_index(to_state)
    return a >= 0 and b >= 0 and b > a



def _has_event(events: Iterable[StoryEvent], types: FrozenSet[str], keywords: Tuple[str, ...]) -> bool:
    for event in events:
        if event.type in types:
            return True
        if any(k in (event.description or "") for k in keywords):
            return True
    return False



class TransitionCheck(BaseModel):
    valid: bool = True
    reason: str = ""
    suggestion: str = ""



def check_transition(
    transition: StateTransition,
    events: Iterable[StoryEvent] = (),
    characters: Iterable[Dict[str, Any]] = (),
) -> TransitionCheck:
    """校验一次角色状态迁移。未登记的角色不做限制(可能是新角色)。"""
    if transition.type != "character":
        return TransitionCheck()
    known = {c.get("name") for c in characters if isinstance(c, dict)}
    if transition.entity not in known:
        return TransitionCheck(reason="角色不存在")

    events = list(events)
    src = normalize_life_state(transition.from_state)
    dst = normalize_life_state(transition.to_state)
    if src is not None and dst is not None:
        if src == "Dead" and dst != "Dead":
            if _has_event(events, REVIVAL_EVENTS, REVIVAL_KEYWORDS):
                return TransitionCheck()
            return TransitionCheck(
                valid=False,
                reason=f"不允许的状态迁移: {transition.from_state} -> {transition.to_state}",
                suggestion="需要复活条件(如: 复活法术、时间倒流、假死等)",
            )
        if dst not in VALID_TRANSITIONS[src]:
            allowed = ", ".join(sorted(VALID_TRANSITIONS[src])) or "无"
            return TransitionCheck(
                valid=False,
                reason=f"不允许的状态迁移: {transition.from_state} -> {transition.to_state}",
                suggestion=f"合法的状态迁移: {allowed}",
            )

    if is_level_up(transition.from_state, transition.to_state) and not _has_event(events, LEVEL_UP_EVENTS, LEVEL_UP_KEYWORDS):
        return TransitionCheck(
            valid=False,
            reason="状态迁移条件不满足",
            suggestion="需要修炼或突破条件",
        )
    return TransitionCheck()



def forbidden_transition(rule: Rule) -> Optional[Tuple[str, str]]:
    """读取规则断言中的 forbid.character.state_transition, 形如 'Dead -> Alive'。"""
    assertion = rule.assertion
    if not isinstance(assertion, dict):
        return None
    value = ((assertion.get("forbid") or {}).get("character") or {}).get("state_transition")
    if not isinstance(value, str) or "->" not in value:
        return None
    src, dst = (part.strip() for part in value.split("->", 1))
    return src, dst



def find_forbidden_transition(
    rule: Rule,
    transitions: Iterable[StateTransition],
    events: Iterable[StoryEvent] = (),
    characters: Iterable[Dict[str, Any]] = (),
) -> Optional[Tuple[StateTransition, TransitionCheck]]:
    pattern = forbidden_transition(rule)
    if pattern is None:
        return None
    events = list(events)
    characters = list(characters)
    for transition in transitions:
        if transition.type != "character":
            continue
        if not (match_state(transition.from_state, pattern[0]) and match_state(transition.to_state, pattern[1])):
            continue
        check = check_transition(transition, events, characters)
        if not check.valid:
            return transition, check
    return None
