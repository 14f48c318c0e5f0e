from typing import Any, Dict, List, Literal, Optional
from pydantic import BaseModel, Field, field_validator
from story.models.rule import Violation


GateStatus = Literal["pass", "fail"]
StageName = Literal["text", "state", "contract", "progress"]



def normalize_gate_status(value: Any) -> Optional[str]:
    """闸门结论统一成小写的 pass / fail, 无法识别时返回 None。"""
    if value is None:
        return None
    status = str(value).strip().lower()
    return status if status in ("pass", "fail") else None



class ExecutionResult(BaseModel):
    success: bool = Field(..., description="Skill 是否执行成功")
    skill: str = Field(..., description="Skill 名称")
    result: Any = Field(None, description="成功时的产出")
    error: str = Field("", description="失败时的错误信息")
    duration: int = Field(0, description="耗时(毫秒)")



class StageResult(BaseModel):
    stage: StageName
    violations: List[Violation] = Field(default_factory=list)
    skipped: bool = Field(False, description="该层没有执行(如契约层缺少意图)")
    error: str = Field("", description="该层内部出错时的错误信息, 出错按 0 个问题处理")

    @property
    def passed(self) -> bool:
        return not any(v.is_blocking for v in self.violations)



class GateReport(BaseModel):
    status: GateStatus = Field(..., description="pass / fail")
    score: int = Field(..., description="0-100 的评分")
    violations: List[Violation] = Field(default_factory=list, description="合并、去重、排序后的问题列表")
    stages: Dict[str, StageResult] = Field(default_factory=dict, description="各校验层的原始结果")
    statistics: Dict[str, Any] = Field(default_factory=dict)
    analysis: str = Field("", description="总体分析")

    @field_validator("status", mode="before")
    @classmethod
    def _normalize_status(cls, value: Any) -> Any:
        return normalize_gate_status(value) or value

    @property
    def passed(self) -> bool:
        return self.status == "pass"



class StepRecord(BaseModel):
    skill: str
    success: bool
    error: str = ""
    duration: int = 0
    blocked: bool = Field(False, description="是否被一致性闸门拦截")



class TaskResult(BaseModel):
    success: bool
    task_id: str
    intent: str
    state: Dict[str, Any] = Field(default_factory=dict, description="任务结束时的状态板快照")
    steps: List[StepRecord] = Field(default_factory=list, description="按顺序执行过的步骤")
    report: Optional[GateReport] = Field(None, description="最近一次一致性校验结果")
    error: str = ""
    cancelled: bool = False



class RewriteOutcome(BaseModel):
    success: bool = Field(..., description="最终是否通过一致性闸门")
    text: str = Field("", description="最后一版文本")
    report: Optional[GateReport] = Field(None, description="最后一次校验结果")
    attempts: int = Field(0, description="重写次数")
    error: str = ""
