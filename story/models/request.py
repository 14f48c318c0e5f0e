from typing import Any, Dict, Optional
from pydantic import BaseModel, Field



class AgentRequest(BaseModel):
    text: str = Field("", description="用户的原始请求")
    intent: Optional[str] = Field(None, description="意图类别, 为空时由路由器根据 text 判断")
    selected_text: Optional[str] = Field(None, description="编辑器中选中的文本, 用于局部改写")
    target_chapter: Optional[int] = Field(None, description="目标章节号")
    recent_count: Optional[int] = Field(None, description="分析前文时回看的章节数")
    options: Dict[str, Any] = Field(default_factory=dict, description="透传给 Skill 实现的选项")
