"""
DSL 规则引擎。

规则按 WORLD / CHARACTER / HISTORY / INTENT / ARC 分区, 级别 FATAL > ERROR > WARN。
evaluate() 优先一次批量调用 Oracle 评估全部规则; 批量调用失败或输出无法解析时,
按范围逐条评估, 单条规则失败只记录日志并跳过。
"""
import json
from typing import Any, Callable, Dict, Iterable, List, Optional
from loguru import logger
from story.errors import OracleError
from story.models.context import StateTransition, StoryContext, StoryEvent, WritingIntent
from story.models.rule import Level, Rule, Scope, Violation, violation_from_rule
from story.oracle import Oracle, call_oracle, reply_to_json
from story.rules.loader import load_rules
from story.rules.transitions import find_forbidden_transition
from utils.llm import template_fill
from utils.llm_api import llm_temperatures
from utils.loader import load_prompts



RuleFilter = Callable[[Rule], bool]


def dump_prompt_value(value: Any) -> str:
    if value is None or value == [] or value == {} or value == "":
        return "(无)"
    if isinstance(value, list):
        value = [v.model_dump(by_alias=True) if hasattr(v, "model_dump") else v for v in value]
    elif hasattr(value, "model_dump"):
        value = value.model_dump(by_alias=True)
    return json.dumps(value, ensure_ascii=False, indent=2, default=str)


def _rule_text(rule: Rule) -> str:
    return json.dumps(rule.to_prompt(), ensure_ascii=False, indent=2, default=str)



class EvaluationInput:
    """一次评估的全部输入, 在 evaluate() 入口处统一转换类型。"""

    def __init__(
        self,
        text: str,
        intent: Any = None,
        context: Any = None,
        events: Optional[Iterable[Any]] = None,
        state_transitions: Optional[Iterable[Any]] = None,
    ):
        self.text = text or ""
        self.intent: Optional[WritingIntent] = WritingIntent.coerce(intent)
        self.context = StoryContext.coerce(context)
        self.events: List[StoryEvent] = [StoryEvent.model_validate(e) for e in (events or [])]
        self.state_transitions: List[StateTransition] = [StateTransition.model_validate(t) for t in (state_transitions or [])]



class RuleEngine:

    def __init__(self, rules: Iterable[Rule] = (), oracle: Optional[Oracle] = None):
        self.oracle = oracle
        self.rules: Dict[Scope, List[Rule]] = {scope: [] for scope in Scope}
        for rule in rules:
            if rule.enabled:
                self.rules[rule.scope].append(rule)

    @classmethod
    def from_sources(cls, baseline: Iterable[Any], override: Iterable[Any] = (), oracle: Optional[Oracle] = None) -> "RuleEngine":
        return cls(load_rules(baseline, override), oracle=oracle)

    def all_rules(self) -> List[Rule]:
        return [rule for scope in Scope for rule in self.rules[scope]]

    def rules_by_scope(self, scope: Scope) -> List[Rule]:
        return list(self.rules[scope])

    def rules_by_level(self, level: Level) -> List[Rule]:
        return [rule for rule in self.all_rules() if rule.level == level]

    def statistics(self) -> Dict[str, Any]:
        return {
            "total": len(self.all_rules()),
            "by_scope": {scope.value: len(self.rules[scope]) for scope in Scope},
            "by_level": {level.value: len(self.rules_by_level(level)) for level in (Level.FATAL, Level.ERROR, Level.WARN)},
        }

    @staticmethod
    def has_fatal_error(violations: Iterable[Violation]) -> bool:
        return any(v.level == Level.FATAL for v in violations)

    @staticmethod
    def has_error(violations: Iterable[Violation]) -> bool:
        return any(v.level in (Level.FATAL, Level.ERROR) for v in violations)

    def select(self, rule_filter: Optional[RuleFilter] = None, with_intent: bool = True) -> List[Rule]:
        selected = []
        for rule in self.all_rules():
            if rule.scope == Scope.INTENT and not with_intent:
                continue
            if rule_filter is None or rule_filter(rule):
                selected.append(rule)
        return selected

    async def evaluate(
        self,
        text: str,
        intent: Any = None,
        context: Any = None,
        events: Optional[Iterable[Any]] = None,
        state_transitions: Optional[Iterable[Any]] = None,
        rule_filter: Optional[RuleFilter] = None,
    ) -> List[Violation]:
        data = EvaluationInput(text, intent, context, events, state_transitions)
        rules = self.select(rule_filter, with_intent=data.intent is not None)
        if not rules:
            return []
        if self.oracle is not None:
            try:
                violations = await self.evaluate_batch(rules, data)
                logger.info(f"批量评估 {len(rules)} 条规则, 发现 {len(violations)} 个问题")
                return violations
            except OracleError as e:
                logger.warning(f"批量规则评估失败, 改为逐条评估: {e}")
        violations = await self.evaluate_each(rules, data)
        logger.info(f"逐条评估 {len(rules)} 条规则, 发现 {len(violations)} 个问题")
        return violations

    ###########################################################################

    async def evaluate_batch(self, rules: List[Rule], data: EvaluationInput) -> List[Violation]:
        system_prompt, user_prompt = load_prompts("rules", "batch_system_prompt", "batch_user_prompt")
        context = {
            "rules": dump_prompt_value([rule.to_prompt() for rule in rules]),
            "world_rules": dump_prompt_value(data.context.world_rules),
            "characters": dump_prompt_value(data.context.characters),
            "plot_state": dump_prompt_value(data.context.plot_state),
            "history": dump_prompt_value(data.context.history),
            "events": dump_prompt_value(data.events),
            "state_transitions": dump_prompt_value(data.state_transitions),
            "intent": dump_prompt_value(data.intent),
            "text": data.text,
        }
        reply = await call_oracle(
            self.oracle,
            system_prompt,
            template_fill(user_prompt, context),
            temperature=llm_temperatures["rule_check"],
            max_tokens=2000,
        )
        parsed = reply_to_json(reply)
        if not parsed.ok:
            raise OracleError(parsed.error)
        items = parsed.value.get("violations") if isinstance(parsed.value, dict) else parsed.value
        if not isinstance(items, list):
            raise OracleError(f"批量评估结果缺少 violations 数组: {parsed.value!r}")

        by_id = {rule.id: rule for rule in rules}
        violations: List[Violation] = []
        seen = set()
        for item in items:
            if not isinstance(item, dict):
                continue
            rule = by_id.get(str(item.get("rule_id", "")))
            if rule is None:
                logger.warning(f"批量评估返回了未知规则: {item.get('rule_id')!r}, 已忽略")
                continue
            if rule.id in seen:
                continue
            seen.add(rule.id)
            violations.append(self._to_violation(rule, item))
        return violations

    @staticmethod
    def _to_violation(rule: Rule, item: Dict[str, Any]) -> Violation:
        entities = item.get("entities") or []
        return violation_from_rule(
            rule,
            evidence=str(item.get("reason") or ""),
            location=str(item.get("location") or ""),
            entities=[str(e) for e in entities] if isinstance(entities, list) else [str(entities)],
        )

    ###########################################################################

    async def evaluate_each(self, rules: List[Rule], data: EvaluationInput) -> List[Violation]:
        routines = {
            Scope.WORLD: self._evaluate_world,
            Scope.CHARACTER: self._evaluate_character,
            Scope.HISTORY: self._evaluate_history,
            Scope.INTENT: self._evaluate_intent,
            Scope.ARC: self._evaluate_arc,
        }
        violations = []
        for rule in rules:
            try:
                violation = await routines[rule.scope](rule, data)
            except Exception as e:
                logger.warning(f"评估规则 '{rule.id}' 失败, 跳过: {e}")
                continue
            if violation is not None:
                violations.append(violation)
        return violations

    async def _ask(self, rule: Rule, prompt_name: str, context: Dict[str, Any]) -> Optional[Violation]:
        if self.oracle is None:
            return None
        system_prompt, user_prompt = load_prompts("rules", "single_system_prompt", prompt_name)
        context = {"rule": _rule_text(rule), **context}
        reply = await call_oracle(
            self.oracle,
            system_prompt,
            template_fill(user_prompt, context),
            temperature=llm_temperatures["rule_check"],
            max_tokens=500,
        )
        parsed = reply_to_json(reply)
        if not parsed.ok:
            raise OracleError(parsed.error)
        if not isinstance(parsed.value, dict):
            raise OracleError(f"规则评估结果不是对象: {parsed.value!r}")
        if not parsed.value.get("violated"):
            return None
        return self._to_violation(rule, parsed.value)

    async def _evaluate_world(self, rule: Rule, data: EvaluationInput) -> Optional[Violation]:
        return await self._ask(rule, "world_user_prompt", {
            "world_rules": dump_prompt_value(data.context.world_rules),
            "events": dump_prompt_value(data.events),
            "text": data.text,
        })

    async def _evaluate_character(self, rule: Rule, data: EvaluationInput) -> Optional[Violation]:
        found = find_forbidden_transition(rule, data.state_transitions, data.events, data.context.characters)
        if found is not None:
            transition, check = found
            return violation_from_rule(
                rule,
                evidence=check.reason,
                entities=[transition.entity],
                source="state_machine",
            )
        return await self._ask(rule, "character_user_prompt", {
            "characters": dump_prompt_value(data.context.characters),
            "state_transitions": dump_prompt_value(data.state_transitions),
            "text": data.text,
        })

    async def _evaluate_history(self, rule: Rule, data: EvaluationInput) -> Optional[Violation]:
        return await self._ask(rule, "history_user_prompt", {
            "history": dump_prompt_value(data.context.history),
            "events": dump_prompt_value(data.events),
        })

    async def _evaluate_intent(self, rule: Rule, data: EvaluationInput) -> Optional[Violation]:
        if data.intent is None:
            return None
        return await self._ask(rule, "intent_user_prompt", {
            "intent": dump_prompt_value(data.intent),
            "text": data.text,
        })

    async def _evaluate_arc(self, rule: Rule, data: EvaluationInput) -> Optional[Violation]:
        return await self._ask(rule, "arc_user_prompt", {
            "plot_state": dump_prompt_value(data.context.plot_state),
            "events": dump_prompt_value(data.events),
            "text": data.text,
        })

    def __repr__(self) -> str:
        return f"RuleEngine(rules={len(self.all_rules())}, oracle={self.oracle!r})"
