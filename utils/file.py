import json
import os
from typing import Any

from dotenv import load_dotenv
load_dotenv()


from pathlib import Path
project_root = Path(__file__).resolve().parent.parent


cache_dir = project_root / ".cache"
cache_dir.mkdir(parents=True, exist_ok=True)


log_dir = project_root / "logs"
log_dir.mkdir(parents=True, exist_ok=True)


state_cache_dir = cache_dir / "agent_state"



def text_file_read(file_path: str) -> str:
    if not os.path.exists(file_path):
        return ""
    with open(file_path, "r", encoding="utf-8") as f:
        return f.read()



def json_file_read(file_path: str, default: Any = None) -> Any:
    """读取 JSON 文件, 文件不存在时返回 default。"""
    content = text_file_read(file_path)
    if not content.strip():
        return default
    return json.loads(content)
