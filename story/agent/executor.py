import inspect
import time
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Mapping, Optional, Tuple, Union
from loguru import logger
from story.contracts import CRITICAL_SKILLS, SKILL_DEFINITIONS
from story.errors import ContractError
from story.models.contract import SkillDefinition
from story.models.result import ExecutionResult



SkillImpl = Callable[[Dict[str, Any], Dict[str, Any]], Union[Any, Awaitable[Any]]]


# 日志中长文本只保留前 200 个字符
_LOG_TEXT_LIMIT = 200



def sanitize_input(data: Mapping[str, Any]) -> Dict[str, Any]:
    sanitized = {}
    for key, value in data.items():
        if isinstance(value, str) and len(value) > _LOG_TEXT_LIMIT:
            sanitized[key] = value[:_LOG_TEXT_LIMIT] + f"...(共{len(value)}字)"
        else:
            sanitized[key] = value
    return sanitized



class SkillExecutor:
    """
    Skill 调度器: 校验输入字段, 调用具体实现, 把成功/失败统一包装成 ExecutionResult。
    实现抛出的任何异常都转成失败结果返回, 不向调用方传播。
    """

    def __init__(
        self,
        implementations: Optional[Mapping[str, SkillImpl]] = None,
        definitions: Mapping[str, SkillDefinition] = SKILL_DEFINITIONS,
        critical_skills: Iterable[str] = CRITICAL_SKILLS,
    ):
        self._impls: Dict[str, SkillImpl] = dict(implementations or {})
        self.definitions = definitions
        self.critical_skills = frozenset(critical_skills)

    def register(self, name: str, impl: SkillImpl):
        self._impls[name] = impl

    def has_skill(self, name: str) -> bool:
        return name in self._impls

    def is_critical(self, name: str) -> bool:
        return name in self.critical_skills

    def list_skills(self) -> List[SkillDefinition]:
        return [d for name, d in self.definitions.items() if name in self._impls]

    def skills_by_category(self, category: str) -> List[SkillDefinition]:
        return [d for d in self.list_skills() if d.category == category]

    def validate_input(self, name: str, data: Mapping[str, Any]):
        definition = self.definitions.get(name)
        if definition is None:
            return
        missing = [field for field in definition.required_fields if data.get(field) is None]
        if missing:
            raise ContractError(name, missing)

    async def execute(
        self,
        name: str,
        data: Optional[Mapping[str, Any]] = None,
        options: Optional[Mapping[str, Any]] = None,
    ) -> ExecutionResult:
        start = time.monotonic()
        data = dict(data or {})
        options = dict(options or {})

        def elapsed() -> int:
            return int((time.monotonic() - start) * 1000)

        impl = self._impls.get(name)
        if impl is None:
            logger.error(f"未知的 Skill: {name}")
            return ExecutionResult(success=False, skill=name, error=f"未知的 Skill: {name}", duration=elapsed())

        try:
            self.validate_input(name, data)
        except ContractError as e:
            logger.error(f"Skill '{name}' 输入校验失败: {e}")
            return ExecutionResult(success=False, skill=name, error=str(e), duration=elapsed())

        logger.info(f"执行 Skill '{name}', 输入: {sanitize_input(data)}")
        try:
            result = impl(data, options)
            if inspect.isawaitable(result):
                result = await result
        except Exception as e:
            logger.error(f"Skill '{name}' 执行失败: {e}")
            return ExecutionResult(success=False, skill=name, error=str(e) or type(e).__name__, duration=elapsed())

        duration = elapsed()
        logger.success(f"Skill '{name}' 执行成功, 耗时 {duration}ms")
        return ExecutionResult(success=True, skill=name, result=result, duration=duration)

    async def execute_batch(
        self,
        calls: Iterable[Tuple[str, Mapping[str, Any]]],
        options: Optional[Mapping[str, Any]] = None,
        stop_on_error: bool = False,
    ) -> List[ExecutionResult]:
        """按顺序执行多个 Skill。stop_on_error 为 True 时遇到第一个失败即停止。"""
        results = []
        for name, data in calls:
            result = await self.execute(name, data, options)
            results.append(result)
            if not result.success and stop_on_error:
                logger.warning(f"批量执行在 '{name}' 处失败, 停止后续 Skill。")
                break
        return results
