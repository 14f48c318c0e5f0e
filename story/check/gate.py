"""
一致性闸门: 固定的四层校验。

1. text     文本层, Oracle 检查视角/格式/局部逻辑
2. state    状态层, CHARACTER 规则 + WORLD 中的 state 规则
3. contract 契约层, INTENT 规则, 只有提供写作意图时才执行
4. progress 推进层, ARC 规则

四层依次全部执行, 任何一层出错都按 0 个问题处理, 不会中断整个校验。
合并后去重、按严重级别排序、评分, 存在 ERROR/FATAL 即为 fail。
未通过时, 定稿/保存/更新记忆等提交动作一律禁止执行。
"""
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional
from loguru import logger
from story.check.events import EventExtractor
from story.errors import OracleError
from story.models.context import StoryContext, WritingIntent
from story.models.result import GateReport, StageResult
from story.models.rule import LEVEL_PENALTY, Level, Rule, Scope, Violation, parse_level
from story.oracle import Oracle, call_oracle, reply_to_json
from story.rules.engine import RuleEngine, dump_prompt_value
from utils.llm import template_fill
from utils.llm_api import llm_temperatures
from utils.loader import load_prompts



TEXT_CATEGORIES = frozenset({"pov", "format", "logic"})

STAGE_NAMES = {
    "text": "文本层",
    "state": "状态层",
    "contract": "契约层",
    "progress": "推进层",
}



def is_state_rule(rule: Rule) -> bool:
    return rule.scope == Scope.CHARACTER or (rule.scope == Scope.WORLD and rule.kind == "state")



def is_contract_rule(rule: Rule) -> bool:
    return rule.scope == Scope.INTENT



def is_progress_rule(rule: Rule) -> bool:
    return rule.scope == Scope.ARC



###############################################################################



def merge_violations(groups: Iterable[Iterable[Violation]]) -> List[Violation]:
    """按顺序拼接, 以 message 去重(为空时用 rule_id), 先出现的保留, 再按严重级别稳定排序。"""
    seen = set()
    merged = []
    for group in groups:
        for violation in group:
            key = violation.message or violation.rule_id
            if key in seen:
                continue
            seen.add(key)
            merged.append(violation)
    return sorted(merged, key=lambda v: v.rank)



def score_violations(violations: Iterable[Violation]) -> int:
    score = 100
    for violation in violations:
        score -= LEVEL_PENALTY[violation.level]
    return max(0, score)



def derive_status(violations: Iterable[Violation]) -> str:
    return "fail" if any(v.is_blocking for v in violations) else "pass"



def build_statistics(stages: Dict[str, StageResult], violations: List[Violation]) -> Dict[str, Any]:
    return {
        "total": len(violations),
        "by_level": {level.value: sum(1 for v in violations if v.level == level) for level in Level},
        "by_stage": {name: len(stage.violations) for name, stage in stages.items()},
        "skipped": [name for name, stage in stages.items() if stage.skipped],
        "errors": {name: stage.error for name, stage in stages.items() if stage.error},
    }



def generate_analysis(stages: Dict[str, StageResult], violations: List[Violation]) -> str:
    if not violations:
        return "所有层校验通过, 文本符合要求。"
    layers = [STAGE_NAMES[name] for name, stage in stages.items() if stage.violations]
    analysis = f"发现 {len(violations)} 个问题, 涉及 {'、'.join(layers)}。"
    fatal = sum(1 for v in violations if v.level == Level.FATAL)
    error = sum(1 for v in violations if v.level == Level.ERROR)
    if fatal:
        analysis += f"其中 {fatal} 个致命错误必须修正。"
    if error:
        analysis += f"另有 {error} 个错误需要修正。"
    return analysis



def build_report(stages: Dict[str, StageResult]) -> GateReport:
    violations = merge_violations(stage.violations for stage in stages.values())
    return GateReport(
        status=derive_status(violations),
        score=score_violations(violations),
        violations=violations,
        stages=stages,
        statistics=build_statistics(stages, violations),
        analysis=generate_analysis(stages, violations),
    )



def render_report(report: GateReport) -> str:
    lines = [
        "# 一致性校验报告",
        f"状态: {report.status.upper()}    评分: {report.score}",
        "",
        report.analysis,
    ]
    for name, stage in report.stages.items():
        label = STAGE_NAMES.get(name, name)
        if stage.skipped:
            lines.append(f"- {label}: 跳过")
        elif stage.error:
            lines.append(f"- {label}: 出错 ({stage.error})")
        else:
            lines.append(f"- {label}: {len(stage.violations)} 个问题")
    if report.violations:
        lines.append("")
        lines.append("## 问题列表")
    for i, v in enumerate(report.violations, 1):
        head = f"{i}. [{v.level.value}] {v.message}"
        if v.rule_id:
            head += f" ({v.rule_id})"
        lines.append(head)
        if v.location:
            lines.append(f"   位置: {v.location}")
        if v.evidence:
            lines.append(f"   依据: {v.evidence}")
        if v.suggestion:
            lines.append(f"   建议: {v.suggestion}")
    return "\n".join(lines)



###############################################################################



class ConsistencyGate:

    def __init__(
        self,
        engine: RuleEngine,
        oracle: Optional[Oracle] = None,
        extractor: Optional[EventExtractor] = None,
    ):
        self.engine = engine
        self.oracle = oracle
        self.extractor = extractor

    async def check(
        self,
        text: str,
        intent: Any = None,
        context: Any = None,
        events: Optional[List[Any]] = None,
        state_transitions: Optional[List[Any]] = None,
    ) -> GateReport:
        logger.info("开始一致性校验(4层)...")
        # 输入格式有误只影响依赖它的校验层, 不中断整次校验
        intent_error = ""
        try:
            intent = WritingIntent.coerce(intent)
        except (TypeError, ValueError) as e:
            logger.error(f"写作意图格式错误, 契约层无法执行: {e}")
            intent, intent_error = None, f"写作意图格式错误: {e}"
        try:
            context = StoryContext.coerce(context)
        except (TypeError, ValueError) as e:
            logger.warning(f"故事上下文格式错误, 按空上下文校验: {e}")
            context = StoryContext()

        if events is None and state_transitions is None and self.extractor is not None:
            try:
                extracted = await self.extractor.extract(text, context)
                events, state_transitions = extracted.events, extracted.state_transitions
            except Exception as e:
                logger.warning(f"事件抽取失败, 按无事件处理: {e}")
        events = events or []
        state_transitions = state_transitions or []

        stages: Dict[str, StageResult] = {}
        stages["text"] = await self._run_stage("text", lambda: self.text_layer(text, context))
        stages["state"] = await self._run_stage("state", lambda: self.engine.evaluate(
            text, None, context, events, state_transitions, rule_filter=is_state_rule,
        ))
        if intent_error:
            stages["contract"] = StageResult(stage="contract", error=intent_error)
        elif intent is None:
            stages["contract"] = StageResult(stage="contract", skipped=True)
        else:
            stages["contract"] = await self._run_stage("contract", lambda: self.engine.evaluate(
                text, intent, context, [], [], rule_filter=is_contract_rule,
            ))
        stages["progress"] = await self._run_stage("progress", lambda: self.engine.evaluate(
            text, None, context, events, [], rule_filter=is_progress_rule,
        ))

        report = build_report(stages)
        summary = ", ".join(f"{STAGE_NAMES[n]} {len(s.violations)}" for n, s in stages.items())
        if report.passed:
            logger.success(f"一致性校验通过, 评分 {report.score} ({summary})")
        else:
            logger.warning(f"一致性校验未通过, 评分 {report.score} ({summary})")
        return report

    async def _run_stage(self, name: str, run: Callable[[], Awaitable[List[Violation]]]) -> StageResult:
        try:
            violations = await run()
        except Exception as e:
            logger.error(f"{STAGE_NAMES[name]}校验出错, 按无问题处理: {e}")
            return StageResult(stage=name, error=str(e) or type(e).__name__)
        tagged = [v.model_copy(update={"layer": name}) for v in violations]
        return StageResult(stage=name, violations=tagged)

    async def text_layer(self, text: str, context: StoryContext) -> List[Violation]:
        if self.oracle is None:
            return []
        system_prompt, user_prompt = load_prompts("text_check", "system_prompt", "user_prompt")
        reply = await call_oracle(
            self.oracle,
            system_prompt,
            template_fill(user_prompt, {
                "world_rules": dump_prompt_value(context.world_rules),
                "characters": dump_prompt_value(context.characters),
                "text": text,
            }),
            temperature=llm_temperatures["text_check"],
            max_tokens=2000,
        )
        parsed = reply_to_json(reply)
        if not parsed.ok:
            raise OracleError(parsed.error)
        errors = parsed.value.get("errors") if isinstance(parsed.value, dict) else None
        violations = []
        for item in errors or []:
            if not isinstance(item, dict) or item.get("type") not in TEXT_CATEGORIES:
                continue
            if not item.get("message"):
                continue
            violations.append(Violation(
                type=item["type"],
                level=parse_level(item.get("severity") or item.get("level")),
                message=str(item["message"]),
                suggestion=str(item.get("suggestion") or ""),
                location=str(item.get("location") or ""),
                source="llm",
            ))
        return violations

    def __repr__(self) -> str:
        return f"ConsistencyGate(engine={self.engine!r}, oracle={self.oracle!r})"
