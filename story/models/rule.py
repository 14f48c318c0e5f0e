from enum import Enum
from typing import Any, Dict, List, Optional
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator



class Scope(str, Enum):
    WORLD = "WORLD"
    CHARACTER = "CHARACTER"
    HISTORY = "HISTORY"
    INTENT = "INTENT"
    ARC = "ARC"



class Level(str, Enum):
    FATAL = "FATAL"
    ERROR = "ERROR"
    WARN = "WARN"
    LOW = "LOW"



###############################################################################


# 外部输入(规则文件、LLM 输出)中的等级/范围写法五花八门, 只在这里统一映射一次。
LEVEL_ALIASES: Dict[str, Level] = {
    "fatal": Level.FATAL,
    "critical": Level.FATAL,
    "error": Level.ERROR,
    "high": Level.ERROR,
    "warn": Level.WARN,
    "warning": Level.WARN,
    "medium": Level.WARN,
    "low": Level.LOW,
    "info": Level.LOW,
}

SCOPE_ALIASES: Dict[str, Scope] = {
    "world": Scope.WORLD,
    "world_rule": Scope.WORLD,
    "character": Scope.CHARACTER,
    "state_rule": Scope.CHARACTER,
    "history": Scope.HISTORY,
    "timeline": Scope.HISTORY,
    "intent": Scope.INTENT,
    "arc": Scope.ARC,
}

SCOPE_TYPES: Dict[Scope, str] = {
    Scope.WORLD: "world_rule",
    Scope.CHARACTER: "character",
    Scope.HISTORY: "history",
    Scope.INTENT: "intent",
    Scope.ARC: "arc",
}

DEFAULT_SCOPE_LEVELS: Dict[Scope, Level] = {
    Scope.WORLD: Level.FATAL,
    Scope.CHARACTER: Level.ERROR,
    Scope.HISTORY: Level.FATAL,
    Scope.INTENT: Level.FATAL,
    Scope.ARC: Level.ERROR,
}

LEVEL_RANK: Dict[Level, int] = {
    Level.FATAL: 0,
    Level.ERROR: 1,
    Level.WARN: 2,
    Level.LOW: 3,
}

LEVEL_PENALTY: Dict[Level, int] = {
    Level.FATAL: 20,
    Level.ERROR: 10,
    Level.WARN: 5,
    Level.LOW: 2,
}

RULE_LEVELS = (Level.FATAL, Level.ERROR, Level.WARN)



def parse_level(value: Any, default: Level = Level.WARN) -> Level:
    if isinstance(value, Level):
        return value
    if not isinstance(value, str) or not value.strip():
        return default
    return LEVEL_ALIASES.get(value.strip().lower(), default)



def parse_scope(value: Any) -> Optional[Scope]:
    if isinstance(value, Scope):
        return value
    if not isinstance(value, str) or not value.strip():
        return None
    return SCOPE_ALIASES.get(value.strip().lower())



###############################################################################



class Rule(BaseModel):
    """一条声明式校验规则。加载后不可变。"""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str = Field(..., description="规则唯一ID")
    scope: Scope = Field(..., description="规则范围: WORLD/CHARACTER/HISTORY/INTENT/ARC")
    level: Level = Field(Level.ERROR, description="规则级别: FATAL/ERROR/WARN")
    assertion: Any = Field(None, validation_alias=AliasChoices("assertion", "assert"), description="规则断言, 字符串或结构化对象")
    message: str = Field("", description="违反规则时的提示信息")
    suggestion: str = Field("", description="修改建议")
    enabled: bool = Field(True, description="是否启用")
    kind: Optional[str] = Field(None, validation_alias=AliasChoices("kind", "type"), description="规则子类型, 如 WORLD 范围下的 'state'")
    name: Optional[str] = Field(None, description="规则名称")

    @model_validator(mode="before")
    @classmethod
    def _fill_defaults(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        scope = parse_scope(data.get("scope")) or parse_scope(data.get("type"))
        if scope is None:
            raise ValueError(f"规则 '{data.get('id')}' 的 scope 无效: {data.get('scope')!r}")
        data["scope"] = scope
        # "type" 只在表示子类型时才保留为 kind
        if "kind" not in data and parse_scope(data.get("type")) is not None:
            data.pop("type", None)
        data["level"] = parse_level(data.get("level") or data.get("severity"), DEFAULT_SCOPE_LEVELS[scope])
        if not data.get("message"):
            data["message"] = f"违反规则: {data.get('id')}"
        return data

    @field_validator("level")
    @classmethod
    def _rule_level(cls, value: Level) -> Level:
        if value not in RULE_LEVELS:
            raise ValueError(f"规则级别只能是 FATAL/ERROR/WARN, 收到 {value}")
        return value

    def to_prompt(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "scope": self.scope.value,
            "level": self.level.value,
            "assert": self.assertion,
            "message": self.message,
            "suggestion": self.suggestion,
        }



class Violation(BaseModel):
    rule_id: str = Field("", description="违反的规则ID, 文本层问题为空")
    scope: Optional[Scope] = Field(None, description="规则范围")
    type: str = Field("", description="问题类型, 由 scope 映射或文本层类别")
    level: Level = Field(Level.WARN, description="严重级别")
    message: str = Field(..., description="问题描述")
    suggestion: str = Field("", description="修改建议")
    evidence: str = Field("", description="判定依据/原文证据")
    location: str = Field("", description="问题位置")
    entities: List[str] = Field(default_factory=list, description="涉及的角色或实体")
    layer: str = Field("", description="产生该问题的校验层")
    source: str = Field("", description="来源: llm / rule_engine / state_machine")

    @field_validator("level", mode="before")
    @classmethod
    def _normalize_level(cls, value: Any) -> Level:
        return parse_level(value)

    @property
    def rank(self) -> int:
        return LEVEL_RANK[self.level]

    @property
    def is_blocking(self) -> bool:
        return self.level in (Level.FATAL, Level.ERROR)



def violation_from_rule(rule: Rule, **kwargs: Any) -> Violation:
    """按规则的规范字段构造 Violation, kwargs 只补充证据/位置等动态信息。"""
    return Violation(
        rule_id=rule.id,
        scope=rule.scope,
        type=rule.kind or SCOPE_TYPES[rule.scope],
        level=rule.level,
        message=rule.message,
        suggestion=rule.suggestion,
        source=kwargs.pop("source", "rule_engine"),
        **kwargs
    )
