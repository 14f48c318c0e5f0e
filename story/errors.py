from typing import List, Optional


class AgentError(Exception):
    pass


class PlanningError(AgentError):
    """规划失败: 依赖回填超过深度上限, 或找不到可用的 Skill。"""


class ContractError(AgentError):
    """Skill 输入不满足其声明的 schema。"""

    def __init__(self, skill: str, missing: List[str]):
        self.skill = skill
        self.missing = missing
        super().__init__(f"Skill '{skill}' 缺少必填参数: {', '.join(missing)}")


class OracleError(AgentError):
    pass


class GateFailure(AgentError):
    """重写次数用尽后一致性闸门仍未通过。"""

    def __init__(self, message: str, report: Optional[object] = None):
        self.report = report
        super().__init__(message)
