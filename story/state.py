"""
任务级共享状态板 (State Store) 与状态存在性判定。

状态键是点分路径, 如 'checkResults.overall'。
"""
import copy
import json
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union
from pydantic_core import to_jsonable_python


# 这些状态来自 load_story_context, 为空表示"已加载但无数据", 而不是"未加载"。
ALLOW_EMPTY_KEYS = frozenset({
    "worldRules",
    "characters",
    "plotState",
    "foreshadows",
})


_MISSING = object()



def _lookup(data: Any, key: str) -> Any:
    current = data
    for part in key.split("."):
        if not isinstance(current, Mapping):
            return _MISSING
        current = current.get(part, _MISSING)
        if current is _MISSING or current is None:
            return _MISSING
    return current



def _has_content(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip() != ""
    if isinstance(value, (list, tuple, set, frozenset, Mapping)):
        return len(value) > 0
    return True



def has_state(store: Union["StateStore", Mapping[str, Any]], key: str) -> bool:
    data = store.data if isinstance(store, StateStore) else store
    value = _lookup(data, key)
    if value is _MISSING:
        return False
    if key in ALLOW_EMPTY_KEYS:
        return True
    return _has_content(value)



def missing_keys(goal: Iterable[str], store: Union["StateStore", Mapping[str, Any]]) -> List[str]:
    return [key for key in goal if not has_state(store, key)]



def goal_satisfied(goal: Iterable[str], store: Union["StateStore", Mapping[str, Any]]) -> bool:
    return not missing_keys(goal, store)



def _assign(data: Dict[str, Any], key: str, value: Any):
    parts = key.split(".")
    current = data
    for part in parts[:-1]:
        child = current.get(part)
        if not isinstance(child, dict):
            child = {}
            current[part] = child
        current = child
    current[parts[-1]] = value



def _plain(value: Any) -> Any:
    # 状态板只保存 JSON 值, 模型对象 (如 GateReport) 在写入时转成字典, 保存/恢复前后一致。
    return to_jsonable_python(value, fallback=str)



###############################################################################



class StateStore:
    """
    单个任务的共享记忆板。
    只通过 apply()/apply_output() 修改, 每次修改先在副本上完成再整体替换,
    所以任务被取消时不会留下只更新了一半的状态。
    """

    def __init__(self, data: Optional[Mapping[str, Any]] = None):
        self._data: Dict[str, Any] = _plain(dict(data or {}))

    @property
    def data(self) -> Mapping[str, Any]:
        return self._data

    def get(self, key: str, default: Any = None) -> Any:
        value = _lookup(self._data, key)
        return default if value is _MISSING else value

    def has(self, key: str) -> bool:
        return has_state(self, key)

    def snapshot(self) -> Dict[str, Any]:
        return copy.deepcopy(self._data)

    def apply(self, updates: Mapping[str, Any]) -> List[str]:
        if not updates:
            return []
        staged = copy.deepcopy(self._data)
        for key, value in updates.items():
            _assign(staged, key, _plain(value))
        self._data = staged
        return list(updates.keys())

    def apply_output(self, produces: Iterable[str], output: Any) -> List[str]:
        """
        把 Skill 的产出写入状态板。
        产出是映射时, 按 完整键 -> 嵌套路径 -> 末段键 的顺序为每个 produces 键取值,
        取不到的键保持不变; 产出不是映射且只声明了一个产出键时, 整体写入该键。
        """
        produces = list(produces)
        updates: Dict[str, Any] = {}
        if isinstance(output, Mapping):
            for key in produces:
                if key in output:
                    updates[key] = output[key]
                    continue
                nested = _lookup(output, key)
                if nested is not _MISSING:
                    updates[key] = nested
                    continue
                last = key.rsplit(".", 1)[-1]
                if last != key and last in output:
                    updates[key] = output[last]
        elif len(produces) == 1 and output is not None:
            updates[produces[0]] = output
        return self.apply(updates)

    def presence_summary(self, keys: Iterable[str]) -> List[str]:
        lines = []
        for key in keys:
            if not self.has(key):
                continue
            value = self.get(key)
            if isinstance(value, (list, tuple)):
                lines.append(f"✓ {key} ({len(value)})")
            elif key in ALLOW_EMPTY_KEYS and not _has_content(value):
                lines.append(f"✓ {key} (已加载但为空)")
            else:
                lines.append(f"✓ {key}")
        return lines

    def to_json(self) -> str:
        return json.dumps(self._data, ensure_ascii=False)

    @classmethod
    def from_json(cls, content: str) -> "StateStore":
        return cls(json.loads(content) if content else {})

    def __repr__(self) -> str:
        return f"StateStore(keys={sorted(self._data)})"
