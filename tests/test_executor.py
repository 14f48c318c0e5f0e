import os
import sys
import asyncio
import pytest
from loguru import logger

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))
from story.agent.executor import SkillExecutor, sanitize_input
from story.errors import ContractError


pytestmark = pytest.mark.asyncio


def load_context(data, options):
    return {"worldRules": {}, "characters": [], "plotState": {}, "foreshadows": {}}


async def check_character(data, options):
    await asyncio.sleep(0)
    return {"status": "pass", "checked": len(data["characters"])}


def broken_skill(data, options):
    raise RuntimeError("章节文件不存在")


async def test_unknown_skill_returns_failure():
    executor = SkillExecutor()
    result = await executor.execute("summon_dragon", {})
    assert result.success is False
    assert "未知" in result.error
    assert result.skill == "summon_dragon"


async def test_missing_required_field():
    logger.info("--- 测试：缺少必填参数时返回失败结果 ---")
    executor = SkillExecutor({"check_character_consistency": check_character})
    result = await executor.execute("check_character_consistency", {"content": "正文"})
    assert result.success is False
    assert "characters" in result.error

    with pytest.raises(ContractError) as exc_info:
        executor.validate_input("check_character_consistency", {"content": "正文", "characters": None})
    assert exc_info.value.missing == ["characters"]


async def test_sync_and_async_implementations():
    executor = SkillExecutor({
        "load_story_context": load_context,
        "check_character_consistency": check_character,
    })
    result = await executor.execute("load_story_context")
    assert result.success is True
    assert result.result["worldRules"] == {}
    assert result.duration >= 0

    result = await executor.execute(
        "check_character_consistency",
        {"content": "正文", "characters": [{"name": "林风"}]},
    )
    assert result.success is True
    assert result.result == {"status": "pass", "checked": 1}


async def test_exception_captured():
    executor = SkillExecutor({"load_chapter_content": broken_skill})
    result = await executor.execute("load_chapter_content", {"chapter_number": 3})
    assert result.success is False
    assert result.error == "章节文件不存在"


async def test_options_passed_through():
    seen = {}

    def scan(data, options):
        seen.update(options)
        return {"chapters": [], "latest": 0}

    executor = SkillExecutor({"scan_chapters": scan})
    await executor.execute("scan_chapters", {}, {"workspace": "/tmp/novel"})
    assert seen == {"workspace": "/tmp/novel"}


async def test_critical_skills():
    executor = SkillExecutor()
    assert executor.is_critical("finalize_chapter")
    assert executor.is_critical("save_chapter")
    assert executor.is_critical("update_memory")
    assert not executor.is_critical("write_chapter")


async def test_registry_listing():
    executor = SkillExecutor({"load_story_context": load_context})
    executor.register("check_character_consistency", check_character)
    assert executor.has_skill("check_character_consistency")
    names = [d.name for d in executor.list_skills()]
    assert names == ["load_story_context", "check_character_consistency"]
    assert [d.name for d in executor.skills_by_category("check")] == ["check_character_consistency"]
    assert executor.skills_by_category("write") == []


async def test_execute_batch_stop_on_error():
    executor = SkillExecutor({
        "load_story_context": load_context,
        "load_chapter_content": broken_skill,
        "scan_chapters": lambda data, options: {"chapters": []},
    })
    calls = [("load_story_context", {}), ("load_chapter_content", {}), ("scan_chapters", {})]

    results = await executor.execute_batch(calls)
    assert [r.success for r in results] == [True, False, True]

    results = await executor.execute_batch(calls, stop_on_error=True)
    assert [r.success for r in results] == [True, False]


async def test_sanitize_input_truncates_long_text():
    data = sanitize_input({"content": "字" * 500, "chapter_number": 3})
    assert data["chapter_number"] == 3
    assert data["content"].startswith("字" * 200)
    assert "500" in data["content"]
    assert len(data["content"]) < 500
