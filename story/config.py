import os

from dotenv import load_dotenv
load_dotenv()



def _int_env(name: str, default: int) -> int:
    value = os.getenv(name, "")
    return int(value) if value.strip().isdigit() else default



def _float_env(name: str, default: float) -> float:
    value = os.getenv(name, "").strip()
    try:
        return float(value) if value else default
    except ValueError:
        return default



# 同一任务内单个 Skill 最多执行次数
max_executions_per_skill = _int_env("AGENT_MAX_EXECUTIONS_PER_SKILL", 3)

# 每次规划最多返回的步骤数
max_plan_steps = _int_env("AGENT_MAX_PLAN_STEPS", 2)

# 依赖回填的最大递归深度, 超过即规划失败
max_plan_depth = _int_env("AGENT_MAX_PLAN_DEPTH", 6)

# plan -> execute 循环的最大轮数
max_iterations = _int_env("AGENT_MAX_ITERATIONS", 20)

# 一致性闸门未通过时的最大重写次数
max_rewrites = _int_env("AGENT_MAX_REWRITES", 2)

# 单次 LLM 调用超时(秒)
oracle_timeout = _float_env("AGENT_ORACLE_TIMEOUT", 120.0)
