import os
import sys
import json
import pytest
from loguru import logger

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))
from story.models.context import StateTransition, StoryEvent
from story.models.rule import Level, Rule, Scope, Violation
from story.prompts.rules import batch_system_prompt
from story.rules.defaults import BASELINE_RULES
from story.rules.engine import RuleEngine
from story.rules.loader import load_rule_files, load_rules
from story.rules.transitions import check_transition, forbidden_transition, is_level_up, normalize_life_state
from tests import test_data


pytestmark = pytest.mark.asyncio


INTENT = {"goal": "林风在初赛击败赵炎", "constraints": {"forbidden": ["林风落败"], "required": ["木剑"]}}


def batch_reply(*items):
    return "<json>" + json.dumps({"violations": list(items)}, ensure_ascii=False) + "</json>"


def per_rule_handler(violated_ids):
    """批量调用抛异常, 逐条调用时按规则 id 判定是否违反。"""
    def handler(system_prompt, user_prompt):
        if system_prompt == batch_system_prompt:
            return RuntimeError("批量评估超时")
        for rule_id in violated_ids:
            if f'"id": "{rule_id}"' in user_prompt:
                return {"violated": True, "reason": f"违反 {rule_id}", "location": "第1段"}
        return {"violated": False}
    return handler


# --- 测试 规则加载 ---

async def test_load_rules_defaults_and_invalid():
    logger.info("--- 测试：规则加载时补默认级别并跳过无效规则 ---")
    rules = load_rules(test_data.RULES_BASIC, [
        {"id": "bad-scope", "scope": "WEATHER", "assert": "x"},
        {"id": "bad-level", "scope": "WORLD", "level": "LOW", "assert": "x"},
        {"id": "off", "scope": "ARC", "enabled": False, "assert": "x"},
    ])
    assert [r.id for r in rules] == ["w-001", "c-001", "h-001", "i-001", "a-001"]
    by_id = {r.id: r for r in rules}
    assert by_id["h-001"].level == Level.FATAL
    assert by_id["i-001"].level == Level.FATAL
    assert by_id["a-001"].level == Level.WARN
    assert by_id["c-001"].assertion["if"] == "character.traits.contains('冷静')"


async def test_rule_level_synonyms_and_default_message():
    rule = Rule.model_validate({"id": "x", "scope": "character", "severity": "high"})
    assert rule.scope == Scope.CHARACTER
    assert rule.level == Level.ERROR
    assert rule.message == "违反规则: x"


async def test_baseline_rules_all_valid():
    assert len(load_rules(BASELINE_RULES)) == len(BASELINE_RULES)


async def test_load_rule_files(tmp_path):
    baseline = tmp_path / "baseline.json"
    workspace = tmp_path / "rules.json"
    baseline.write_text(json.dumps({"rules": test_data.RULES_BASIC[:2]}, ensure_ascii=False), encoding="utf-8")
    workspace.write_text(json.dumps([test_data.RULE_NO_RESURRECTION], ensure_ascii=False), encoding="utf-8")
    rules = load_rule_files(baseline, workspace)
    assert [r.id for r in rules] == ["w-001", "c-001", "c-dead"]

    rules = load_rule_files(None, tmp_path / "missing.json")
    assert len(rules) == len(BASELINE_RULES)


async def test_engine_statistics():
    engine = RuleEngine.from_sources(test_data.RULES_BASIC)
    stats = engine.statistics()
    assert stats["total"] == 5
    assert stats["by_scope"]["WORLD"] == 1
    assert stats["by_level"] == {"FATAL": 3, "ERROR": 1, "WARN": 1}
    assert [r.id for r in engine.rules_by_scope(Scope.ARC)] == ["a-001"]


async def test_fatal_and_error_helpers():
    fatal = Violation(level="FATAL", message="a")
    error = Violation(level="ERROR", message="b")
    warn = Violation(level="WARN", message="c")
    assert RuleEngine.has_fatal_error([warn, fatal])
    assert not RuleEngine.has_fatal_error([warn, error])
    assert RuleEngine.has_error([warn, error])
    assert not RuleEngine.has_error([warn])


# --- 测试 批量评估 ---

async def test_batch_path(make_oracle, story_context):
    logger.info("--- 测试：一次批量调用评估全部规则 ---")
    oracle = make_oracle(batch_reply(
        {"rule_id": "c-001", "reason": "林风突然暴怒", "location": "第2段", "entities": ["林风"]},
        {"rule_id": "zzz-999", "reason": "不存在的规则"},
        {"rule_id": "c-001", "reason": "重复"},
    ))
    engine = RuleEngine.from_sources(test_data.RULES_BASIC, oracle=oracle)
    violations = await engine.evaluate(test_data.CHAPTER_TEXT, INTENT, story_context)

    assert len(oracle.calls) == 1
    assert oracle.calls[0]["temperature"] == 0.1
    assert oracle.calls[0]["max_tokens"] == 2000
    assert len(violations) == 1
    v = violations[0]
    assert v.rule_id == "c-001"
    assert v.level == Level.ERROR
    assert v.message == "角色性格不一致"
    assert v.evidence == "林风突然暴怒"
    assert v.entities == ["林风"]
    assert v.source == "rule_engine"


async def test_batch_failure_falls_back_to_per_rule(make_oracle, story_context):
    logger.info("--- 测试：批量评估失败时逐条评估, 结果与批量一致 ---")
    engine = RuleEngine.from_sources(test_data.RULES_BASIC, oracle=make_oracle(batch_reply({"rule_id": "c-001", "reason": "x"})))
    batched = await engine.evaluate(test_data.CHAPTER_TEXT, INTENT, story_context)

    oracle = make_oracle(per_rule_handler(["c-001"]))
    engine = RuleEngine.from_sources(test_data.RULES_BASIC, oracle=oracle)
    fallback = await engine.evaluate(test_data.CHAPTER_TEXT, INTENT, story_context)

    assert [v.rule_id for v in fallback] == [v.rule_id for v in batched] == ["c-001"]
    assert [v.level for v in fallback] == [v.level for v in batched]
    # 1 次批量 + 5 条规则逐条
    assert len(oracle.calls) == 6
    assert all(c["max_tokens"] == 500 for c in oracle.calls[1:])


async def test_unparsable_batch_falls_back(make_oracle, story_context):
    def handler(system_prompt, user_prompt):
        if system_prompt == batch_system_prompt:
            return "抱歉, 我无法完成"
        return {"violated": False}

    oracle = make_oracle(handler)
    engine = RuleEngine.from_sources(test_data.RULES_BASIC, oracle=oracle)
    assert await engine.evaluate(test_data.CHAPTER_TEXT, INTENT, story_context) == []
    assert len(oracle.calls) == 6


async def test_single_rule_failure_skipped(make_oracle, story_context):
    def handler(system_prompt, user_prompt):
        if system_prompt == batch_system_prompt:
            return RuntimeError("批量失败")
        if '"id": "w-001"' in user_prompt:
            return "不是 JSON"
        if '"id": "a-001"' in user_prompt:
            return {"violated": True, "reason": "剧情停滞"}
        return {"violated": False}

    engine = RuleEngine.from_sources(test_data.RULES_BASIC, oracle=make_oracle(handler))
    violations = await engine.evaluate(test_data.CHAPTER_TEXT, INTENT, story_context)
    assert [v.rule_id for v in violations] == ["a-001"]
    assert violations[0].level == Level.WARN


async def test_intent_rules_excluded_without_intent(make_oracle, story_context):
    oracle = make_oracle(per_rule_handler(["i-001"]))
    engine = RuleEngine.from_sources(test_data.RULES_BASIC, oracle=oracle)
    violations = await engine.evaluate(test_data.CHAPTER_TEXT, None, story_context)
    assert violations == []
    assert not any('"id": "i-001"' in c["user_prompt"] for c in oracle.calls)

    oracle = make_oracle(batch_reply({"rule_id": "i-001", "reason": "没写目标"}))
    engine = RuleEngine.from_sources(test_data.RULES_BASIC, oracle=oracle)
    assert await engine.evaluate(test_data.CHAPTER_TEXT, None, story_context) == []
    assert '"id": "i-001"' not in oracle.calls[0]["user_prompt"]


async def test_rule_filter_and_empty_rules(make_oracle):
    oracle = make_oracle(batch_reply())
    engine = RuleEngine.from_sources(test_data.RULES_BASIC, oracle=oracle)
    assert await engine.evaluate("正文", rule_filter=lambda r: r.scope == Scope.ARC) == []
    assert '"id": "a-001"' in oracle.calls[0]["user_prompt"]
    assert '"id": "w-001"' not in oracle.calls[0]["user_prompt"]

    engine = RuleEngine([], oracle=oracle)
    assert await engine.evaluate("正文") == []
    assert len(oracle.calls) == 1


async def test_no_oracle_returns_nothing(story_context):
    engine = RuleEngine.from_sources(test_data.RULES_BASIC)
    assert await engine.evaluate(test_data.CHAPTER_TEXT, INTENT, story_context) == []


# --- 测试 状态机 ---

async def test_resurrection_detected_without_oracle(story_context):
    logger.info("--- 测试：死亡角色复活由状态机直接判定 ---")
    engine = RuleEngine.from_sources([test_data.RULE_NO_RESURRECTION])
    transitions = [{"type": "character", "entity": "陈长老", "from": "死亡", "to": "活着"}]
    violations = await engine.evaluate(
        test_data.CHAPTER_TEXT_REVIVAL,
        context=story_context,
        events=[{"type": "APPEAR", "description": "陈长老出现在山门外", "characters": ["陈长老"]}],
        state_transitions=transitions,
    )
    assert len(violations) == 1
    v = violations[0]
    assert v.rule_id == "c-dead"
    assert v.source == "state_machine"
    assert v.entities == ["陈长老"]
    assert v.level == Level.ERROR


async def test_resurrection_allowed_with_revival_event(story_context):
    engine = RuleEngine.from_sources([test_data.RULE_NO_RESURRECTION])
    violations = await engine.evaluate(
        test_data.CHAPTER_TEXT_REVIVAL,
        context=story_context,
        events=[{"type": "REVIVAL", "description": "陈长老借秘法复活"}],
        state_transitions=[{"entity": "陈长老", "from": "Dead", "to": "Alive"}],
    )
    assert violations == []


async def test_check_transition_rules():
    characters = test_data.STORY_CONTEXT["characters"]
    dead_to_alive = StateTransition(entity="陈长老", from_state="Dead", to_state="Alive")
    assert check_transition(dead_to_alive, [], characters).valid is False
    assert check_transition(dead_to_alive, [StoryEvent(type="X", description="陈长老重生")], characters).valid is True

    # 死亡是终态, 但可以保持
    still_dead = StateTransition(entity="陈长老", from_state="Dead", to_state="Dead")
    assert check_transition(still_dead, [], characters).valid is True
    dead_to_injured = StateTransition(entity="陈长老", from_state="Dead", to_state="Injured")
    assert check_transition(dead_to_injured, [], characters).valid is False

    unknown = StateTransition(entity="路人甲", from_state="Dead", to_state="Alive")
    assert check_transition(unknown, [], characters).valid is True

    level_up = StateTransition(entity="林风", from_state="筑基中期", to_state="金丹初期")
    assert check_transition(level_up, [], characters).valid is False
    assert check_transition(level_up, [StoryEvent(type="BREAKTHROUGH")], characters).valid is True

    injured = StateTransition(entity="林风", from_state="Alive", to_state="受伤")
    assert check_transition(injured, [], characters).valid is True


async def test_transition_helpers():
    assert normalize_life_state("已死") == "Dead"
    assert normalize_life_state("身负重伤, 受伤不轻") == "Injured"
    assert normalize_life_state("飞升") is None
    assert is_level_up("炼气九层", "筑基初期") is True
    assert is_level_up("金丹", "筑基") is False
    rule = Rule.model_validate(test_data.RULE_NO_RESURRECTION)
    assert forbidden_transition(rule) == ("Dead", "Alive")
    assert forbidden_transition(Rule.model_validate(test_data.RULES_BASIC[1])) is None
