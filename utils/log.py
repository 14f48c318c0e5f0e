from functools import lru_cache
from loguru import logger
from utils.file import log_dir



@lru_cache(maxsize=None)
def init_logger(file_name):
    logger.remove()
    log_path = log_dir / f"{file_name}.log"
    if log_path.exists():
        log_path.unlink()
    sink_id = logger.add(
        log_path,
        format="{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{function}:{line} - {message}",
        rotation="10 MB",
        level="DEBUG",
        enqueue=False,
        backtrace=True,
        diagnose=True,
    )
    return sink_id



@lru_cache(maxsize=None)
def ensure_task_logger(run_id: str):
    """为单个任务添加独立的日志文件, 只接收 bind(run_id=...) 的记录。"""
    log_path = log_dir / f"{run_id}.log"
    if log_path.exists():
        log_path.unlink()
    sink_id = logger.add(
        log_path,
        filter=lambda record: record["extra"].get("run_id") == run_id,
        format="{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{function}:{line} - {message}",
        level="DEBUG",
        enqueue=False,
        backtrace=True,
        diagnose=True,
    )
    return sink_id
