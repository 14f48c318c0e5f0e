import sys
import json
import asyncio
import argparse
from loguru import logger
from story.agent.planner import Planner
from story.check.events import OracleEventExtractor
from story.check.gate import ConsistencyGate, render_report
from story.contracts import validate_contracts
from story.oracle import LiteLLMOracle
from story.rules.engine import RuleEngine
from story.rules.loader import load_rule_files
from story.state import StateStore
from utils.file import json_file_read, text_file_read
from utils.log import init_logger


init_logger("agent")



async def plan_once(args) -> int:
    problems = validate_contracts()
    if problems:
        for problem in problems:
            logger.error(problem)
        return 1

    store = StateStore(json_file_read(args.state, default={}) if args.state else {})
    oracle = None if args.offline else LiteLLMOracle(llm_group="fast")
    planner = Planner(oracle=oracle)
    plan = await planner.plan(args.intent, store, args.text)
    print(plan.model_dump_json(indent=2))
    return 0 if plan.source != "failed" else 1



async def check_text(args) -> int:
    text = text_file_read(args.text_file)
    if not text.strip():
        logger.error(f"待校验文本为空或文件不存在: {args.text_file}")
        return 1

    oracle = None if args.offline else LiteLLMOracle(llm_group="reasoning")
    rules = load_rule_files(args.baseline, args.rules)
    engine = RuleEngine(rules, oracle=oracle)
    logger.info(f"规则统计: {engine.statistics()}")
    gate = ConsistencyGate(
        engine,
        oracle=oracle,
        extractor=OracleEventExtractor(oracle) if oracle else None,
    )
    context = json_file_read(args.context, default={}) if args.context else {}
    intent = json_file_read(args.intent, default=None) if args.intent else None
    report = await gate.check(text, intent, context)
    if args.json:
        print(report.model_dump_json(indent=2))
    else:
        print(render_report(report))
    return 0 if report.passed else 2



def main():
    parser = argparse.ArgumentParser(description="小说 Agent 控制核心")
    subparsers = parser.add_subparsers(dest="command", required=True)

    plan_parser = subparsers.add_parser("plan", help="根据当前状态规划下一步")
    plan_parser.add_argument("--intent", type=str, default="CREATE", help="CREATE/CONTINUE/REWRITE/CHECK/PLAN")
    plan_parser.add_argument("--text", type=str, default="", help="用户请求")
    plan_parser.add_argument("--state", type=str, default=None, help="状态板 JSON 文件")
    plan_parser.add_argument("--offline", action="store_true", help="不调用 LLM, 只用确定性规划")

    check_parser = subparsers.add_parser("check", help="对一段正文运行一致性校验")
    check_parser.add_argument("text_file", type=str)
    check_parser.add_argument("--rules", type=str, default=None, help="工作区规则 JSON 文件")
    check_parser.add_argument("--baseline", type=str, default=None, help="基础规则 JSON 文件, 默认使用内置规则")
    check_parser.add_argument("--context", type=str, default=None, help="世界观/角色/剧情上下文 JSON 文件")
    check_parser.add_argument("--intent", type=str, default=None, help="写作意图 JSON 文件")
    check_parser.add_argument("--offline", action="store_true", help="不调用 LLM, 只做确定性校验")
    check_parser.add_argument("--json", action="store_true", help="以 JSON 输出报告")

    args = parser.parse_args()
    if args.command == "plan":
        code = asyncio.run(plan_once(args))
    else:
        code = asyncio.run(check_text(args))
    sys.exit(code)


if __name__ == "__main__":
    main()
