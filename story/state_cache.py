from functools import lru_cache
from typing import Optional
from diskcache import Cache
from loguru import logger
from story.state import StateStore
from utils.file import state_cache_dir



@lru_cache(maxsize=None)
def get_state_cache(directory: str = str(state_cache_dir)) -> Cache:
    return Cache(directory)



def save_state(task_id: str, store: StateStore, cache: Optional[Cache] = None):
    cache = get_state_cache() if cache is None else cache
    cache.set(task_id, store.to_json())
    logger.info(f"任务 '{task_id}' 的状态板已保存。")



def load_state(task_id: str, cache: Optional[Cache] = None) -> Optional[StateStore]:
    cache = get_state_cache() if cache is None else cache
    content = cache.get(task_id)
    if content is None:
        return None
    return StateStore.from_json(content)



def drop_state(task_id: str, cache: Optional[Cache] = None) -> bool:
    cache = get_state_cache() if cache is None else cache
    return bool(cache.delete(task_id))
