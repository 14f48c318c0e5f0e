"""
任务循环: plan -> 执行一步 -> 写回状态板 -> 重新规划, 直到目标满足或达到上限。
"""
import asyncio
import uuid
from typing import List, Mapping, Optional
from diskcache import Cache
from loguru import logger
from pydantic import ValidationError
from story import config
from story.agent.executor import SkillExecutor
from story.agent.planner import Planner
from story.agent.router import route_intent
from story.contracts import COMMIT_SKILLS, GATE_STATE_KEY, build_skill_input, goal_for_intent
from story.models.request import AgentRequest
from story.models.result import GateReport, StepRecord, TaskResult, normalize_gate_status
from story.state import StateStore
from story.state_cache import save_state
from utils.log import ensure_task_logger



def gate_status(store: StateStore) -> Optional[str]:
    value = store.get(GATE_STATE_KEY)
    if isinstance(value, Mapping):
        return normalize_gate_status(value.get("status"))
    return normalize_gate_status(getattr(value, "status", None))



def commit_allowed(store: StateStore) -> bool:
    """提交类 Skill 只在闸门结论明确为 pass 时放行, 缺失或无法识别的结论一律拦截。"""
    return gate_status(store) == "pass"



def latest_report(store: StateStore) -> Optional[GateReport]:
    value = store.get(GATE_STATE_KEY)
    if isinstance(value, GateReport):
        return value
    if not isinstance(value, dict):
        return None
    try:
        return GateReport.model_validate(value)
    except ValidationError:
        return None



class TaskRunner:

    def __init__(
        self,
        planner: Planner,
        executor: SkillExecutor,
        max_iterations: Optional[int] = None,
        persist: bool = True,
        cache: Optional[Cache] = None,
    ):
        self.planner = planner
        self.executor = executor
        self.max_iterations = config.max_iterations if max_iterations is None else max_iterations
        self.persist = persist
        self.cache = cache

    async def run(
        self,
        request: AgentRequest,
        store: Optional[StateStore] = None,
        task_id: Optional[str] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> TaskResult:
        task_id = task_id or uuid.uuid4().hex[:12]
        store = store if store is not None else StateStore()
        intent = (request.intent or route_intent(request.text)).upper()
        goal = goal_for_intent(intent)

        ensure_task_logger(task_id)
        log = logger.bind(run_id=task_id)
        log.info(f"任务开始: intent={intent}, goal={goal}, 请求='{request.text[:50]}'")

        self.planner.reset()
        steps: List[StepRecord] = []

        def finish(success: bool, error: str = "", cancelled: bool = False) -> TaskResult:
            if self.persist:
                save_state(task_id, store, self.cache)
            result = TaskResult(
                success=success,
                task_id=task_id,
                intent=intent,
                state=store.snapshot(),
                steps=steps,
                report=latest_report(store),
                error=error,
                cancelled=cancelled,
            )
            if success:
                log.success(f"任务完成, 共执行 {len(steps)} 步。")
            elif cancelled:
                log.warning(f"任务已取消, 已执行 {len(steps)} 步。")
            else:
                log.error(f"任务失败: {error}")
            return result

        try:
            for iteration in range(1, self.max_iterations + 1):
                if cancel_event is not None and cancel_event.is_set():
                    return finish(False, "任务已取消", cancelled=True)

                plan = await self.planner.plan(intent, store, request.text)
                if plan.source == "satisfied":
                    return finish(True)
                if plan.is_empty:
                    return finish(False, plan.error or f"无法规划出补齐 {plan.missing} 的步骤")

                step = plan.steps[0]
                log.info(f"第 {iteration} 轮: 执行 {step.skill} ({step.reason})")

                if step.skill in COMMIT_SKILLS and not commit_allowed(store):
                    reason = "一致性校验未通过" if gate_status(store) == "fail" else "缺少有效的一致性校验结论"
                    steps.append(StepRecord(skill=step.skill, success=False, blocked=True, error=reason))
                    return finish(False, f"{reason}, 禁止执行 {step.skill}")

                contract = self.planner.contracts[step.skill]
                data = build_skill_input(step.skill, store, request)
                result = await self.executor.execute(step.skill, data, request.options)
                self.planner.record_execution(step.skill, result.success)
                steps.append(StepRecord(
                    skill=step.skill,
                    success=result.success,
                    error=result.error,
                    duration=result.duration,
                ))

                if result.success:
                    updated = store.apply_output(contract.produces, result.result)
                    log.info(f"状态已更新: {updated}")
                elif self.executor.is_critical(step.skill):
                    return finish(False, f"关键 Skill '{step.skill}' 执行失败: {result.error}")
                else:
                    log.warning(f"Skill '{step.skill}' 执行失败, 继续规划: {result.error}")

            return finish(False, f"超过最大迭代次数 {self.max_iterations}")
        except asyncio.CancelledError:
            if self.persist:
                save_state(task_id, store, self.cache)
            log.warning("任务被外部取消, 状态板已保存。")
            raise

    def __repr__(self) -> str:
        return f"TaskRunner(max_iterations={self.max_iterations}, persist={self.persist})"
