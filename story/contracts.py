"""
状态契约表: 每个 Skill 需要的状态 (requires) 与产出的状态 (produces)。
"""
from typing import Any, Dict, Iterable, List, Mapping, Optional
from story.models.contract import SkillContract, SkillDefinition
from story.state import StateStore



def _contract(name: str, requires: List[str], produces: List[str]) -> SkillContract:
    return SkillContract(name=name, requires=requires, produces=produces)



# 声明顺序有意义: 多个 Skill 能产出同一状态时, 平局按这里的顺序取第一个。
STATE_CONTRACTS: Dict[str, SkillContract] = {c.name: c for c in [
    _contract("load_story_context", [], ["worldRules", "characters", "plotState", "foreshadows"]),
    _contract("scan_chapters", [], ["scanResult"]),
    _contract("analyze_previous_chapters", ["scanResult"], ["previousAnalyses"]),
    _contract("load_chapter_content", [], ["chapterDraft", "targetChapter"]),
    _contract("plan_chapter_outline", ["worldRules", "characters", "previousAnalyses"], ["outline", "chapterPlan"]),
    _contract("plan_intent", ["chapterPlan"], ["intent"]),
    _contract("write_chapter", ["outline", "intent", "worldRules", "characters"], ["chapterDraft"]),
    _contract("rewrite_selected_text", ["worldRules", "characters"], ["rewrittenContent"]),
    _contract("check_character_consistency", ["chapterDraft", "characters"], ["checkResults.character"]),
    _contract("check_world_rule_violation", ["chapterDraft", "worldRules"], ["checkResults.world"]),
    _contract("check_coherence", ["chapterDraft", "previousAnalyses"], ["checkResults.coherence"]),
    _contract("check_all", ["chapterDraft", "characters", "worldRules"], ["checkResults.overall"]),
    _contract("generate_rewrite_plan", ["chapterDraft", "checkResults.overall"], ["rewritePlan"]),
    _contract("rewrite_with_plan", ["chapterDraft", "rewritePlan", "intent"], ["rewrittenContent"]),
    _contract("finalize_chapter", ["chapterDraft", "checkResults.overall"], ["finalContent"]),
    _contract("save_chapter", ["finalContent", "targetChapter"], ["saved"]),
    _contract("update_memory", ["finalContent"], ["memoryUpdated"]),
]}


GOAL_STATES: Dict[str, List[str]] = {
    "CREATE": ["finalContent"],
    "CONTINUE": ["finalContent"],
    "REWRITE": ["finalContent"],
    "CHECK": ["checkResults.overall"],
    "PLAN": ["outline"],
}

DEFAULT_INTENT = "CREATE"


# 提交/持久化类 Skill: 失败时中止整个任务, 且一致性闸门未通过时禁止执行。
CRITICAL_SKILLS = frozenset({"finalize_chapter", "save_chapter", "update_memory"})
COMMIT_SKILLS = CRITICAL_SKILLS

# 定稿 Skill 可能因状态板看不到的内部前置条件失败, 允许在已产出后重试。
FINALIZE_SKILL = "finalize_chapter"

# 闸门结论所在的状态键
GATE_STATE_KEY = "checkResults.overall"



###############################################################################



def _definition(name: str, category: str, description: str, bindings: Optional[Dict[str, str]] = None, required: Optional[List[str]] = None) -> SkillDefinition:
    return SkillDefinition(
        name=name,
        category=category,
        description=description,
        bindings=bindings or {},
        input_schema={
            "type": "object",
            "properties": {field: {} for field in (bindings or {})},
            "required": required or [],
        },
    )



SKILL_DEFINITIONS: Dict[str, SkillDefinition] = {d.name: d for d in [
    _definition(
        "load_story_context", "context",
        "加载世界观规则、角色列表、剧情状态和伏笔, 数据为空也视为已加载",
    ),
    _definition(
        "scan_chapters", "context",
        "扫描已有章节文件, 得到章节列表与最新章节号",
    ),
    _definition(
        "analyze_previous_chapters", "context",
        "分析最近若干章的剧情、人物与节奏",
        {"scan_result": "scanResult", "recent_count": "request.recent_count"},
        ["scan_result"],
    ),
    _definition(
        "load_chapter_content", "context",
        "读取目标章节已有的正文作为草稿",
        {"chapter_number": "request.target_chapter"},
    ),
    _definition(
        "plan_chapter_outline", "cognitive",
        "结合世界观、角色和前文分析, 生成本章大纲与章节规划",
        {"world_rules": "worldRules", "characters": "characters", "previous_analyses": "previousAnalyses", "user_request": "request.text"},
        ["world_rules", "characters", "previous_analyses"],
    ),
    _definition(
        "plan_intent", "cognitive",
        "根据章节规划生成写作意图(目标、禁止项、必需项)",
        {"chapter_plan": "chapterPlan"},
        ["chapter_plan"],
    ),
    _definition(
        "write_chapter", "write",
        "根据大纲与写作意图生成章节初稿",
        {"outline": "outline", "intent": "intent", "world_rules": "worldRules", "characters": "characters", "plot_state": "plotState", "previous_analyses": "previousAnalyses", "rewrite_plan": "rewritePlan"},
        ["outline", "intent", "world_rules", "characters"],
    ),
    _definition(
        "rewrite_selected_text", "write",
        "按设定改写用户选中的文本片段",
        {"selected_text": "request.selected_text", "world_rules": "worldRules", "characters": "characters", "user_request": "request.text"},
        ["selected_text"],
    ),
    _definition(
        "check_character_consistency", "check",
        "检查人物性格与行为是否与设定一致",
        {"content": "chapterDraft", "characters": "characters"},
        ["content", "characters"],
    ),
    _definition(
        "check_world_rule_violation", "check",
        "检查是否违反世界观规则",
        {"content": "chapterDraft", "world_rules": "worldRules"},
        ["content", "world_rules"],
    ),
    _definition(
        "check_coherence", "check",
        "检查与前文的连贯性",
        {"content": "chapterDraft", "previous_analyses": "previousAnalyses"},
        ["content", "previous_analyses"],
    ),
    _definition(
        "check_all", "check",
        "运行四层一致性校验(文本/状态/契约/推进), 产出总体结论",
        {"content": "chapterDraft", "characters": "characters", "world_rules": "worldRules", "plot_state": "plotState", "foreshadows": "foreshadows", "previous_analyses": "previousAnalyses", "intent": "intent"},
        ["content"],
    ),
    _definition(
        "generate_rewrite_plan", "cognitive",
        "根据校验结果生成重写方案",
        {"content": "chapterDraft", "check_results": "checkResults.overall"},
        ["content", "check_results"],
    ),
    _definition(
        "rewrite_with_plan", "write",
        "按重写方案重写章节",
        {"content": "chapterDraft", "rewrite_plan": "rewritePlan", "intent": "intent"},
        ["content", "rewrite_plan"],
    ),
    _definition(
        "finalize_chapter", "action",
        "校验通过后定稿章节",
        {"content": "chapterDraft", "check_results": "checkResults.overall", "chapter_number": "targetChapter"},
        ["content", "check_results"],
    ),
    _definition(
        "save_chapter", "action",
        "把定稿写入章节文件",
        {"content": "finalContent", "chapter_number": "targetChapter"},
        ["content", "chapter_number"],
    ),
    _definition(
        "update_memory", "action",
        "用定稿更新世界观/角色/剧情记忆",
        {"content": "finalContent"},
        ["content"],
    ),
]}



###############################################################################



def goal_for_intent(intent: Optional[str], goal_states: Mapping[str, List[str]] = GOAL_STATES) -> List[str]:
    key = (intent or "").upper()
    return list(goal_states.get(key) or goal_states[DEFAULT_INTENT])



def producers_of(key: str, contracts: Mapping[str, SkillContract] = STATE_CONTRACTS) -> List[str]:
    return [name for name, contract in contracts.items() if key in contract.produces]



def reachable_keys(contracts: Mapping[str, SkillContract] = STATE_CONTRACTS) -> set:
    """从空状态出发, 反复执行 requires 已满足的 Skill 所能得到的全部状态键。"""
    reachable = set()
    changed = True
    while changed:
        changed = False
        for contract in contracts.values():
            if set(contract.requires) <= reachable and not set(contract.produces) <= reachable:
                reachable.update(contract.produces)
                changed = True
    return reachable



def validate_contracts(
    contracts: Mapping[str, SkillContract] = STATE_CONTRACTS,
    goal_states: Mapping[str, List[str]] = GOAL_STATES,
) -> List[str]:
    problems = []
    for name, contract in contracts.items():
        if name != contract.name:
            problems.append(f"契约表键 '{name}' 与契约名称 '{contract.name}' 不一致")
        if not contract.produces:
            problems.append(f"Skill '{name}' 的 produces 为空")
    reachable = reachable_keys(contracts)
    for intent, goal in goal_states.items():
        for key in goal:
            if key not in reachable:
                problems.append(f"意图 {intent} 的目标状态 '{key}' 无法由任何 Skill 产出")
    return problems



def _request_value(request: Any, field: str) -> Any:
    if request is None:
        return None
    if isinstance(request, Mapping):
        return request.get(field)
    return getattr(request, field, None)



def build_skill_input(
    skill: str,
    store: StateStore,
    request: Any = None,
    definitions: Mapping[str, SkillDefinition] = SKILL_DEFINITIONS,
) -> Dict[str, Any]:
    """按 Skill 定义中的绑定关系, 从状态板和用户请求中取值构建输入。取不到的字段不放入。"""
    definition = definitions.get(skill)
    if definition is None:
        return {}
    data: Dict[str, Any] = {}
    for field, source in definition.bindings.items():
        if source.startswith("request."):
            value = _request_value(request, source.split(".", 1)[1])
        else:
            value = store.get(source)
        if value is not None:
            data[field] = value
    return data



def contract_catalogue(
    contracts: Mapping[str, SkillContract] = STATE_CONTRACTS,
    definitions: Mapping[str, SkillDefinition] = SKILL_DEFINITIONS,
    skills: Optional[Iterable[str]] = None,
) -> str:
    names = list(skills) if skills is not None else list(contracts)
    blocks = []
    for name in names:
        contract = contracts[name]
        definition = definitions.get(name)
        blocks.append(
            f"- {name}:\n"
            f"  requires: [{', '.join(contract.requires) or '无'}]\n"
            f"  produces: [{', '.join(contract.produces)}]\n"
            f"  description: {definition.description if definition else '无描述'}"
        )
    return "\n\n".join(blocks)
