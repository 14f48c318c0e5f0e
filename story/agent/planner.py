"""
Planner: 状态搜索式的增量规划。

每次只规划 1-2 步, 执行一步后重新规划。
优先让 Oracle 提议步骤, 再用契约表校验/修复; Oracle 不可用或输出无法解析时, 走确定性的反向搜索。
"""
import json
from typing import Any, Dict, List, Mapping, Optional, Set
from loguru import logger
from pydantic import ValidationError
from story import config
from story.contracts import (
    FINALIZE_SKILL,
    GOAL_STATES,
    SKILL_DEFINITIONS,
    STATE_CONTRACTS,
    contract_catalogue,
    goal_for_intent,
    producers_of,
)
from story.errors import PlanningError
from story.models.contract import SkillContract, SkillDefinition
from story.models.plan import Plan, PlanProposal, PlanStep
from story.oracle import Oracle, call_oracle, reply_to_json
from story.state import StateStore, has_state, missing_keys
from utils.llm import template_fill
from utils.llm_api import llm_temperatures
from utils.loader import load_prompts



class ExecutionTable:
    """
    单个 Planner 持有的执行记录: 每个 Skill 的执行次数和最近一次的成败。
    任务开始时 reset()。
    """

    def __init__(self):
        self._counts: Dict[str, int] = {}
        self._last_success: Dict[str, bool] = {}

    def record(self, skill: str, success: bool):
        self._counts[skill] = self._counts.get(skill, 0) + 1
        self._last_success[skill] = success

    def count(self, skill: str) -> int:
        return self._counts.get(skill, 0)

    def last_failed(self, skill: str) -> bool:
        return self._last_success.get(skill) is False

    def reset(self):
        self._counts.clear()
        self._last_success.clear()

    def as_dict(self) -> Dict[str, int]:
        return dict(self._counts)



###############################################################################



class Planner:

    def __init__(
        self,
        oracle: Optional[Oracle] = None,
        contracts: Mapping[str, SkillContract] = STATE_CONTRACTS,
        definitions: Mapping[str, SkillDefinition] = SKILL_DEFINITIONS,
        goal_states: Mapping[str, List[str]] = GOAL_STATES,
        max_executions: Optional[int] = None,
        max_steps: Optional[int] = None,
        max_depth: Optional[int] = None,
    ):
        self.oracle = oracle
        self.contracts = contracts
        self.definitions = definitions
        self.goal_states = goal_states
        self.max_executions = config.max_executions_per_skill if max_executions is None else max_executions
        self.max_steps = config.max_plan_steps if max_steps is None else max_steps
        self.max_depth = config.max_plan_depth if max_depth is None else max_depth
        self.executions = ExecutionTable()

    def reset(self):
        self.executions.reset()

    def record_execution(self, skill: str, success: bool):
        self.executions.record(skill, success)

    def is_capped(self, skill: str) -> bool:
        return self.executions.count(skill) >= self.max_executions

    async def plan(self, intent: str, store: StateStore, request_text: str = "") -> Plan:
        goal = goal_for_intent(intent, self.goal_states)
        missing = missing_keys(goal, store)
        if not missing:
            logger.info(f"目标状态 {goal} 已满足, 无需规划。")
            return Plan(steps=[], source="satisfied", goal=goal)

        logger.info(f"开始规划: intent={intent}, 缺失状态={missing}")
        if self.oracle is None:
            return self._fallback_plan(goal, missing, store)

        proposal = await self._consult(intent, goal, missing, store, request_text)
        if proposal is None:
            return self._fallback_plan(goal, missing, store)

        steps = self.repair(proposal.steps, store)
        if not steps:
            logger.warning("Oracle 的规划经修复后为空, 改用确定性搜索。")
            return self._fallback_plan(goal, missing, store)

        logger.success(f"规划完成(oracle): {[s.skill for s in steps]}")
        return Plan(steps=steps, source="oracle", goal=goal, missing=missing)

    async def _consult(
        self,
        intent: str,
        goal: List[str],
        missing: List[str],
        store: StateStore,
        request_text: str,
    ) -> Optional[PlanProposal]:
        system_prompt, user_prompt = load_prompts("planner", "system_prompt", "user_prompt")
        context = {
            "skills": contract_catalogue(self.contracts, self.definitions),
            "goal": "\n".join(f"- {k}" for k in goal),
            "current_state": "\n".join(store.presence_summary(self._known_keys())) or "(空)",
            "missing": "\n".join(f"- {k}" for k in missing),
            "executions": json.dumps(self.executions.as_dict(), ensure_ascii=False),
            "intent": intent,
            "request": request_text or "(无)",
        }
        reply = await call_oracle(
            self.oracle,
            system_prompt,
            template_fill(user_prompt, context),
            temperature=llm_temperatures["planning"],
            max_tokens=800,
        )
        parsed = reply_to_json(reply)
        if not parsed.ok:
            logger.warning(f"无法解析 Oracle 的规划输出, 改用确定性搜索: {parsed.error}")
            return None
        return self._to_proposal(parsed.value)

    def _known_keys(self) -> List[str]:
        keys: List[str] = []
        for contract in self.contracts.values():
            for key in contract.requires + contract.produces:
                if key not in keys:
                    keys.append(key)
        return keys

    def _to_proposal(self, value: Any) -> Optional[PlanProposal]:
        if isinstance(value, list):
            items = value
        elif isinstance(value, dict) and isinstance(value.get("steps"), list):
            items = value["steps"]
        else:
            logger.warning(f"Oracle 的规划输出缺少 steps 数组: {value!r}")
            return None
        steps = []
        for item in items:
            try:
                steps.append(PlanStep.model_validate(item))
            except ValidationError as e:
                logger.warning(f"忽略格式不正确的规划步骤 {item!r}: {e.errors()[0].get('msg')}")
        return PlanProposal(steps=steps)

    ###########################################################################

    def _present(self, key: str, store: StateStore, planned_keys: Set[str]) -> bool:
        return key in planned_keys or has_state(store, key)

    def _ready_producer(self, key: str, store: StateStore, planned_keys: Set[str], planned: Set[str]) -> Optional[str]:
        """按声明顺序找第一个 requires 已满足、未达上限的产出者。"""
        for name in producers_of(key, self.contracts):
            if name in planned or self.is_capped(name):
                continue
            contract = self.contracts[name]
            if all(self._present(k, store, planned_keys) for k in contract.requires):
                return name
        return None

    def repair(self, proposed: List[PlanStep], store: StateStore) -> List[PlanStep]:
        """用契约表校验 Oracle 的提议, 丢弃或替换不合法的步骤。"""
        repaired: List[PlanStep] = []
        planned: Set[str] = set()
        planned_keys: Set[str] = set()

        def add(step: PlanStep):
            repaired.append(step)
            planned.add(step.skill)
            planned_keys.update(self.contracts[step.skill].produces)

        for step in proposed:
            if len(repaired) >= self.max_steps:
                break
            contract = self.contracts.get(step.skill)
            if contract is None:
                logger.warning(f"丢弃未知 Skill: {step.skill}")
                continue
            if step.skill in planned:
                continue
            if self.is_capped(step.skill):
                logger.warning(f"Skill '{step.skill}' 已执行 {self.executions.count(step.skill)} 次, 达到上限, 丢弃。")
                continue

            unmet = [k for k in contract.requires if not self._present(k, store, planned_keys)]
            if unmet:
                logger.info(f"Skill '{step.skill}' 的前置状态缺失 {unmet}, 先补齐前置状态。")
                for key in unmet:
                    if len(repaired) >= self.max_steps or key in planned_keys:
                        continue
                    producer = self._ready_producer(key, store, planned_keys, planned)
                    if producer is None:
                        logger.warning(f"找不到可立即执行且能产出 '{key}' 的 Skill。")
                        continue
                    add(PlanStep(skill=producer, produces=key, reason=f"补齐 {step.skill} 的前置状态 {key}"))
                continue

            if all(has_state(store, k) for k in contract.produces):
                retry_finalize = step.skill == FINALIZE_SKILL and self.executions.last_failed(step.skill)
                if not retry_finalize and self.executions.count(step.skill) > 0:
                    logger.info(f"Skill '{step.skill}' 的产出已存在且执行过, 丢弃。")
                    continue

            produces = step.produces if step.produces in contract.produces else contract.produces[0]
            add(PlanStep(skill=step.skill, produces=produces, reason=step.reason))

        return repaired[:self.max_steps]

    ###########################################################################

    def _fallback_plan(self, goal: List[str], missing: List[str], store: StateStore) -> Plan:
        try:
            steps = self.fallback(missing, store)
        except PlanningError as e:
            logger.error(f"确定性规划失败: {e}")
            return Plan(steps=[], source="failed", goal=goal, missing=missing, error=str(e))
        if not steps:
            error = f"没有可执行的 Skill 能补齐 {missing}"
            logger.error(error)
            return Plan(steps=[], source="failed", goal=goal, missing=missing, error=error)
        logger.success(f"规划完成(fallback): {[s.skill for s in steps]}")
        return Plan(steps=steps, source="fallback", goal=goal, missing=missing)

    def fallback(self, missing: List[str], store: StateStore) -> List[PlanStep]:
        """
        确定性反向搜索。
        对每个缺失键选 requires 缺失最少的产出者(平局按声明顺序), 递归补齐它的前置状态,
        前置步骤排在前面。递归深度超过 max_depth 时抛出 PlanningError。
        """
        steps: List[PlanStep] = []
        planned: Set[str] = set()
        covered: Set[str] = set()
        for key in missing:
            if len(steps) >= self.max_steps:
                break
            self._resolve(key, store, steps, planned, covered, 0, set())
        return steps[:self.max_steps]

    def _resolve(
        self,
        key: str,
        store: StateStore,
        steps: List[PlanStep],
        planned: Set[str],
        covered: Set[str],
        depth: int,
        visiting: Set[str],
    ):
        if self._present(key, store, covered):
            return
        if depth >= self.max_depth:
            raise PlanningError(f"补齐状态 '{key}' 时依赖链超过最大深度 {self.max_depth}")

        candidates = [
            name for name in producers_of(key, self.contracts)
            if name not in visiting and not self.is_capped(name)
        ]
        if not candidates:
            raise PlanningError(f"没有可用的 Skill 能产出 '{key}'")

        def unmet(name: str) -> List[str]:
            return [k for k in self.contracts[name].requires if not self._present(k, store, covered)]

        best = min(candidates, key=lambda name: len(unmet(name)))
        visiting.add(best)
        for required in unmet(best):
            self._resolve(required, store, steps, planned, covered, depth + 1, visiting)
        visiting.discard(best)

        if best not in planned:
            steps.append(PlanStep(skill=best, produces=key, reason=f"确定性搜索: 补齐 {key}"))
            planned.add(best)
            covered.update(self.contracts[best].produces)
