from pathlib import Path
from typing import Any, Iterable, List, Optional, Union
from loguru import logger
from pydantic import ValidationError
from story.models.rule import Rule
from story.rules.defaults import BASELINE_RULES
from utils.file import json_file_read



def _rule_items(content: Any) -> List[Any]:
    if isinstance(content, dict):
        content = content.get("rules", [])
    return list(content) if isinstance(content, list) else []



def load_rules(baseline: Iterable[Any] = BASELINE_RULES, override: Iterable[Any] = ()) -> List[Rule]:
    """拼接基础规则和工作区规则, 过滤掉未启用和格式不正确的规则。"""
    rules = []
    for item in [*baseline, *override]:
        if isinstance(item, Rule):
            rule = item
        else:
            try:
                rule = Rule.model_validate(item)
            except ValidationError as e:
                rule_id = item.get("id") if isinstance(item, dict) else item
                logger.warning(f"忽略无效规则 {rule_id!r}: {e.errors()[0].get('msg')}")
                continue
        if rule.enabled:
            rules.append(rule)
    logger.info(f"已加载 {len(rules)} 条规则")
    return rules



def load_rule_files(
    baseline_path: Optional[Union[str, Path]] = None,
    workspace_path: Optional[Union[str, Path]] = None,
) -> List[Rule]:
    """
    从 JSON 文件加载规则, 文件内容是规则数组或 {"rules": [...]}。
    未给出 baseline_path 时使用内置规则; 文件不存在按空处理。
    """
    if baseline_path is None:
        baseline = BASELINE_RULES
    else:
        baseline = _rule_items(json_file_read(str(baseline_path), default=[]))
        if not baseline:
            logger.warning(f"基础规则文件为空或不存在: {baseline_path}")
    override = []
    if workspace_path is not None:
        override = _rule_items(json_file_read(str(workspace_path), default=[]))
        if not override:
            logger.info(f"未找到工作区规则: {workspace_path}")
    return load_rules(baseline, override)
