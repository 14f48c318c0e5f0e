from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field, field_validator



class StoryContext(BaseModel):
    """记忆系统提供的只读上下文, 供规划与规则校验的提示词使用。"""
    world_rules: Any = Field(default_factory=dict, description="世界观规则(修炼体系、魔法规则等)")
    characters: List[Dict[str, Any]] = Field(default_factory=list, description="角色列表, 含性格特质与当前状态")
    plot_state: Dict[str, Any] = Field(default_factory=dict, description="当前剧情状态")
    foreshadows: Any = Field(default_factory=dict, description="伏笔登记表")
    previous_analyses: List[Any] = Field(default_factory=list, description="前文章节分析")
    history: List[Any] = Field(default_factory=list, description="已发生的历史事件")

    @classmethod
    def coerce(cls, value: Any) -> "StoryContext":
        if isinstance(value, cls):
            return value
        if not value:
            return cls()
        data = dict(value)
        # 兼容 AgentState 中的驼峰写法
        aliases = {
            "worldRules": "world_rules",
            "plotState": "plot_state",
            "previousAnalyses": "previous_analyses",
        }
        for src, dst in aliases.items():
            if src in data and dst not in data:
                data[dst] = data.pop(src)
        known = set(cls.model_fields)
        return cls(**{k: v for k, v in data.items() if k in known and v is not None})



class WritingIntent(BaseModel):
    """章节写作意图(契约层校验的依据)。"""
    goal: str = Field("", description="本章必须实现的目标")
    forbidden: List[str] = Field(default_factory=list, description="禁止出现的内容")
    required: List[str] = Field(default_factory=list, description="必须出现的内容")
    guidelines: List[str] = Field(default_factory=list, description="风格与写作指引")

    @field_validator("forbidden", "required", "guidelines", mode="before")
    @classmethod
    def _single_item_as_list(cls, value: Any) -> Any:
        # 单条约束常被直接写成字符串
        if value is None:
            return []
        if isinstance(value, str):
            return [value] if value.strip() else []
        return value

    @classmethod
    def coerce(cls, value: Any) -> Optional["WritingIntent"]:
        if value is None or isinstance(value, cls):
            return value
        if isinstance(value, str):
            return cls(goal=value)
        data = dict(value)
        constraints = data.pop("constraints", None) or {}
        if isinstance(constraints, dict):
            data.setdefault("forbidden", constraints.get("forbidden", []))
            data.setdefault("required", constraints.get("required", []))
        if "writing_guidelines" in data and "guidelines" not in data:
            data["guidelines"] = data.pop("writing_guidelines")
        known = set(cls.model_fields)
        return cls(**{k: v for k, v in data.items() if k in known})



class StoryEvent(BaseModel):
    type: str = Field("UNKNOWN", description="事件类型, 如 DEATH/REVIVAL/TIME_REVERSE/LEVEL_UP")
    description: str = Field("", description="事件描述")
    characters: List[str] = Field(default_factory=list, description="涉及角色")



class StateTransition(BaseModel):
    type: str = Field("character", description="迁移对象类型")
    entity: str = Field("", description="实体名称")
    from_state: str = Field("", alias="from", description="迁移前状态")
    to_state: str = Field("", alias="to", description="迁移后状态")

    model_config = {"populate_by_name": True}



class ExtractedEvents(BaseModel):
    events: List[StoryEvent] = Field(default_factory=list)
    state_transitions: List[StateTransition] = Field(default_factory=list)
