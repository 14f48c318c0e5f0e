"""
内置的基础规则集。工作区可以用自己的规则文件追加规则, 两者直接拼接。
"""


BASELINE_RULES = [
    {
        "id": "world-no-time-reverse",
        "name": "禁止时间倒流",
        "scope": "WORLD",
        "level": "FATAL",
        "assert": "event.type != TIME_REVERSE",
        "message": "出现了时间倒流, 违反世界观的时间规则",
        "suggestion": "删除时间倒流情节, 或先在世界观中设定时间倒流的条件与代价",
    },
    {
        "id": "world-realm-needs-breakthrough",
        "name": "境界提升需要突破",
        "scope": "WORLD",
        "type": "state",
        "level": "FATAL",
        "assert": {"forbid": {"world": {"level_up_without": ["LEVEL_UP", "BREAKTHROUGH"]}}},
        "message": "角色境界提升缺少修炼或突破过程",
        "suggestion": "补充修炼、感悟或突破的描写",
    },
    {
        "id": "character-no-resurrection",
        "name": "死亡角色不能无故复活",
        "scope": "CHARACTER",
        "level": "ERROR",
        "assert": {"forbid": {"character": {"state_transition": "Dead -> Alive"}}},
        "message": "已死亡的角色在没有复活条件的情况下重新出现",
        "suggestion": "删除该角色的出场, 或补充复活法术、时间倒流、假死等前因",
    },
    {
        "id": "character-trait-consistency",
        "name": "性格一致",
        "scope": "CHARACTER",
        "level": "ERROR",
        "assert": {"if": "character.traits.contains('冷静')", "then": "text.emotion != '暴怒'"},
        "message": "角色言行与其性格设定不符",
        "suggestion": "调整该角色的言行, 使其符合性格设定, 或补充性格转变的契机",
    },
    {
        "id": "history-no-contradiction",
        "name": "不与历史矛盾",
        "scope": "HISTORY",
        "level": "FATAL",
        "assert": "event must_not_contradict history",
        "message": "本章事件与已发生的历史矛盾",
        "suggestion": "检查事件是否与已有历史冲突, 以历史记录为准修改",
    },
    {
        "id": "intent-fulfill-goal",
        "name": "实现写作目标",
        "scope": "INTENT",
        "level": "FATAL",
        "assert": {"must_fulfill": ["intent.goal"]},
        "message": "文本没有实现写作意图中的目标",
        "suggestion": "确保本章实现写作意图中的目标",
    },
    {
        "id": "intent-respect-constraints",
        "name": "遵守写作约束",
        "scope": "INTENT",
        "level": "FATAL",
        "assert": {"must_not_violate": ["intent.constraints"]},
        "message": "文本出现了写作意图禁止的内容",
        "suggestion": "移除违反约束的内容",
    },
    {
        "id": "arc-must-progress",
        "name": "剧情必须推进",
        "scope": "ARC",
        "level": "ERROR",
        "assert": {"arc.phase": "must_change_or_intensify"},
        "message": "本章剧情没有推进, 可能是水文",
        "suggestion": "增加推动剧情的事件, 或加强已有冲突",
    },
]
