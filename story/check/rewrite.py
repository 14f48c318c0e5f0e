from typing import Any, Awaitable, Callable, Optional
from loguru import logger
from story import config
from story.check.gate import ConsistencyGate
from story.errors import GateFailure
from story.models.result import GateReport, RewriteOutcome



# (当前文本, 上一次校验结果, 第几次重写) -> 重写后的文本
Rewriter = Callable[[str, GateReport, int], Awaitable[str]]



async def run_rewrite_loop(
    gate: ConsistencyGate,
    text: str,
    rewrite: Rewriter,
    intent: Any = None,
    context: Any = None,
    max_rewrites: Optional[int] = None,
) -> RewriteOutcome:
    """
    校验 -> 未通过则重写 -> 再校验, 最多重写 max_rewrites 次。
    次数用尽仍未通过时返回 success=False, 并带上最后一次的校验结果。
    """
    max_rewrites = config.max_rewrites if max_rewrites is None else max_rewrites
    attempts = 0
    report = await gate.check(text, intent, context)
    while not report.passed and attempts < max_rewrites:
        attempts += 1
        logger.info(f"一致性校验未通过(评分 {report.score}), 第 {attempts}/{max_rewrites} 次重写...")
        try:
            text = await rewrite(text, report, attempts)
        except Exception as e:
            logger.error(f"第 {attempts} 次重写失败: {e}")
            return RewriteOutcome(success=False, text=text, report=report, attempts=attempts, error=f"重写失败: {e}")
        report = await gate.check(text, intent, context)

    if report.passed:
        logger.success(f"一致性校验通过, 共重写 {attempts} 次, 评分 {report.score}")
        return RewriteOutcome(success=True, text=text, report=report, attempts=attempts)

    error = f"重写 {attempts} 次后一致性校验仍未通过, 评分 {report.score}"
    logger.error(error)
    return RewriteOutcome(success=False, text=text, report=report, attempts=attempts, error=error)



def ensure_passed(outcome: RewriteOutcome) -> RewriteOutcome:
    """需要用异常中断流程的调用方使用。"""
    if not outcome.success:
        raise GateFailure(outcome.error or "一致性校验未通过", outcome.report)
    return outcome
