import os
import sys
import json
import pytest
from loguru import logger

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))
from story.check.events import OracleEventExtractor
from story.check.gate import (
    ConsistencyGate,
    build_report,
    derive_status,
    merge_violations,
    render_report,
    score_violations,
)
from story.models.context import ExtractedEvents, StateTransition, WritingIntent
from story.models.result import StageResult
from story.models.rule import Level, Violation
from story.prompts.rules import batch_system_prompt
from story.prompts.text_check import system_prompt as text_system_prompt
from story.rules.engine import RuleEngine
from tests import test_data


pytestmark = pytest.mark.asyncio


def v(level, message, rule_id=""):
    return Violation(level=level, message=message, rule_id=rule_id)


class BrokenEngine:
    async def evaluate(self, *args, **kwargs):
        raise RuntimeError("规则引擎不可用")


class FixedExtractor:
    def __init__(self, extracted):
        self.extracted = extracted
        self.calls = 0

    async def extract(self, text, context):
        self.calls += 1
        return self.extracted


# --- 测试 评分与排序 ---

@pytest.mark.parametrize("levels, score", [
    ([], 100),
    (["FATAL"], 80),
    (["ERROR", "ERROR"], 80),
    (["WARN", "LOW"], 93),
    (["FATAL"] * 6, 0),
])
async def test_score(levels, score):
    violations = [v(level, f"问题{i}") for i, level in enumerate(levels)]
    assert score_violations(violations) == score


async def test_merge_orders_by_severity_stably():
    merged = merge_violations([[v("ERROR", "e1"), v("FATAL", "f1")], [v("WARN", "w1"), v("ERROR", "e2")]])
    assert [x.message for x in merged] == ["f1", "e1", "e2", "w1"]


async def test_merge_dedupes_across_stages():
    logger.info("--- 测试：多层报告同一问题时只保留先出现的一个 ---")
    first = Violation(level="ERROR", message="死亡角色无故复活", rule_id="c-dead", layer="state")
    again = Violation(level="FATAL", message="死亡角色无故复活", rule_id="c-dead", layer="progress")
    merged = merge_violations([[first], [again, v("WARN", "剧情没有推进")]])
    assert len(merged) == 2
    assert merged[0].layer == "state"
    assert merged[0].level == Level.ERROR


async def test_status_derivation():
    assert derive_status([]) == "pass"
    assert derive_status([v("WARN", "a"), v("LOW", "b")]) == "pass"
    assert derive_status([v("WARN", "a"), v("ERROR", "b")]) == "fail"
    assert derive_status([v("FATAL", "a")]) == "fail"


async def test_build_report_statistics():
    stages = {
        "text": StageResult(stage="text", violations=[v("ERROR", "视角切换")]),
        "state": StageResult(stage="state", error="超时"),
        "contract": StageResult(stage="contract", skipped=True),
        "progress": StageResult(stage="progress", violations=[v("WARN", "剧情没有推进")]),
    }
    report = build_report(stages)
    assert report.status == "fail"
    assert report.score == 85
    assert report.statistics["by_stage"] == {"text": 1, "state": 0, "contract": 0, "progress": 1}
    assert report.statistics["skipped"] == ["contract"]
    assert report.statistics["errors"] == {"state": "超时"}
    assert "文本层" in report.analysis

    text = render_report(report)
    assert "FAIL" in text
    assert "契约层: 跳过" in text
    assert "状态层: 出错" in text
    assert "视角切换" in text


# --- 测试 四层校验 ---

async def test_text_layer_keeps_only_text_categories(make_oracle, story_context):
    logger.info("--- 测试：文本层只保留 pov/format/logic 类别 ---")

    def handler(system_prompt, user_prompt):
        if system_prompt == text_system_prompt:
            return test_data.TEXT_CHECK_REPLY
        return '<json>{"violations": []}</json>'

    oracle = make_oracle(handler)
    gate = ConsistencyGate(RuleEngine.from_sources(test_data.RULES_BASIC, oracle=oracle), oracle=oracle)
    report = await gate.check(test_data.CHAPTER_TEXT, None, story_context, events=[], state_transitions=[])

    assert [x.type for x in report.violations] == ["pov", "format"]
    assert [x.level for x in report.violations] == [Level.ERROR, Level.LOW]
    assert all(x.layer == "text" and x.source == "llm" for x in report.violations)
    assert report.status == "fail"
    assert report.score == 88
    assert report.stages["contract"].skipped is True
    # 文本层 + 状态层 + 推进层
    assert len(oracle.calls) == 3


async def test_stage_error_fails_soft():
    gate = ConsistencyGate(BrokenEngine())
    report = await gate.check("正文", intent={"goal": "推进剧情"}, events=[], state_transitions=[])
    assert report.status == "pass"
    assert report.score == 100
    assert report.stages["state"].error == "规则引擎不可用"
    assert report.stages["contract"].error == "规则引擎不可用"
    assert report.stages["text"].error == ""
    assert set(report.statistics["errors"]) == {"state", "contract", "progress"}


async def test_unparsable_text_check_is_stage_error(make_oracle):
    oracle = make_oracle("服务繁忙, 请稍后再试")
    gate = ConsistencyGate(RuleEngine([]), oracle=oracle)
    report = await gate.check("正文", events=[], state_transitions=[])
    assert report.stages["text"].error
    assert report.passed


async def test_malformed_intent_only_fails_contract_stage(story_context):
    logger.info("--- 测试：写作意图格式错误时只影响契约层 ---")
    gate = ConsistencyGate(RuleEngine.from_sources([test_data.RULE_NO_RESURRECTION]))
    report = await gate.check("正文", {"goal": ["打败", "赵炎"]}, story_context, [], [])
    assert report.status == "pass"
    assert report.stages["contract"].skipped is False
    assert "写作意图格式错误" in report.stages["contract"].error
    assert report.stages["state"].error == ""
    assert set(report.statistics["errors"]) == {"contract"}

    report = await gate.check("正文", {"goal": "打败赵炎"}, context=["不是映射"], events=[], state_transitions=[])
    assert report.status == "pass"
    assert report.stages["state"].error == ""


async def test_intent_constraints_accept_single_string():
    intent = WritingIntent.coerce({"goal": "打败赵炎", "constraints": {"forbidden": "复活", "required": None}})
    assert intent.forbidden == ["复活"]
    assert intent.required == []


async def test_contract_stage_runs_with_intent(make_oracle, story_context):
    def handler(system_prompt, user_prompt):
        if system_prompt == batch_system_prompt and '"id": "i-001"' in user_prompt:
            return {"violations": [{"rule_id": "i-001", "reason": "本章没有写到击败赵炎"}]}
        return {"violations": [], "errors": []}

    oracle = make_oracle(handler)
    gate = ConsistencyGate(RuleEngine.from_sources(test_data.RULES_BASIC, oracle=oracle))
    report = await gate.check(test_data.CHAPTER_TEXT, {"goal": "击败赵炎"}, story_context, [], [])
    assert report.stages["contract"].skipped is False
    assert [x.rule_id for x in report.violations] == ["i-001"]
    assert report.violations[0].layer == "contract"
    assert report.violations[0].level == Level.FATAL
    assert report.score == 80


async def test_extractor_feeds_state_stage(story_context):
    logger.info("--- 测试：未提供事件时由抽取器补充状态迁移 ---")
    extractor = FixedExtractor(ExtractedEvents(state_transitions=[
        StateTransition(entity="陈长老", from_state="Dead", to_state="Alive"),
    ]))
    engine = RuleEngine.from_sources([test_data.RULE_NO_RESURRECTION])
    gate = ConsistencyGate(engine, extractor=extractor)

    report = await gate.check(test_data.CHAPTER_TEXT_REVIVAL, context=story_context)
    assert extractor.calls == 1
    assert report.status == "fail"
    assert report.violations[0].rule_id == "c-dead"
    assert report.violations[0].layer == "state"
    assert report.violations[0].source == "state_machine"

    report = await gate.check(test_data.CHAPTER_TEXT_REVIVAL, context=story_context, events=[])
    assert extractor.calls == 1
    assert report.status == "pass"


async def test_report_serializes():
    report = build_report({"text": StageResult(stage="text", violations=[v("ERROR", "视角切换")])})
    data = json.loads(report.model_dump_json())
    assert data["status"] == "fail"
    assert data["violations"][0]["level"] == "ERROR"


# --- 测试 事件抽取 ---

async def test_oracle_event_extractor(make_oracle, story_context):
    oracle = make_oracle({
        "events": [{"type": "APPEAR", "description": "陈长老出现在山门外", "characters": ["陈长老"]}, "坏数据"],
        "state_transitions": [{"type": "character", "entity": "陈长老", "from": "Dead", "to": "Alive"}],
    })
    extracted = await OracleEventExtractor(oracle).extract(test_data.CHAPTER_TEXT_REVIVAL, story_context)
    assert [e.type for e in extracted.events] == ["APPEAR"]
    assert extracted.state_transitions[0].from_state == "Dead"
    assert "陈长老" in oracle.calls[0]["user_prompt"]
    assert "金丹后期" in oracle.calls[0]["user_prompt"]

    failing = OracleEventExtractor(make_oracle(RuntimeError("超时")))
    extracted = await failing.extract("正文")
    assert extracted.events == [] and extracted.state_transitions == []
