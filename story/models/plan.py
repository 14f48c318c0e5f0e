from typing import List, Literal
from pydantic import BaseModel, Field


PlanSource = Literal["satisfied", "oracle", "fallback", "failed"]


class PlanStep(BaseModel):
    skill: str = Field(..., description="要执行的 Skill 名称")
    produces: str = Field("", description="该步骤要补齐的状态键")
    reason: str = Field("", description="选择该 Skill 的理由")


class PlanProposal(BaseModel):
    """LLM 返回的原始规划, 尚未经过契约校验。"""
    steps: List[PlanStep] = Field(default_factory=list, description="按顺序排列的 1-2 个步骤")


class Plan(BaseModel):
    steps: List[PlanStep] = Field(default_factory=list)
    source: PlanSource = Field("oracle", description="规划来源")
    goal: List[str] = Field(default_factory=list, description="本次规划对应的目标状态键")
    missing: List[str] = Field(default_factory=list, description="规划时仍缺失的目标状态键")
    error: str = Field("", description="规划失败原因")

    @property
    def is_empty(self) -> bool:
        return not self.steps
