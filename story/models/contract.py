from typing import Any, Dict, List, Literal
from pydantic import BaseModel, Field, field_validator


SkillCategory = Literal["context", "cognitive", "write", "check", "action"]


class SkillContract(BaseModel):
    name: str = Field(..., description="Skill 名称")
    requires: List[str] = Field(default_factory=list, description="执行前必须存在的状态键")
    produces: List[str] = Field(..., description="执行后产出的状态键, 不能为空")

    @field_validator("produces")
    @classmethod
    def _produces_not_empty(cls, value: List[str]) -> List[str]:
        if not value:
            raise ValueError("Skill 契约的 produces 不能为空")
        return value


class SkillDefinition(BaseModel):
    name: str = Field(..., description="Skill 名称")
    category: SkillCategory = Field(..., description="Skill 类别")
    description: str = Field("", description="Skill 功能说明, 会出现在规划提示词中")
    input_schema: Dict[str, Any] = Field(default_factory=dict, description="输入参数 schema, 'required' 列出必填字段")
    bindings: Dict[str, str] = Field(default_factory=dict, description="输入字段 -> 状态键 的映射, 用于从状态板构建输入")

    @property
    def required_fields(self) -> List[str]:
        return list(self.input_schema.get("required", []))
