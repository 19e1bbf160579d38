from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Dict, Optional

BASE_DIR = Path(__file__).resolve().parent

CONFIG_FILES = ("tricup_config.json", "tricup_config.example.json")


def load_json_config(*relative_paths: str) -> Dict[str, Any]:
    """
    Try each relative path under the tricup package and load the first JSON file found.
    Returns an empty dict if no file can be read.
    """
    for rel_path in relative_paths:
        path = BASE_DIR / rel_path
        if not path.exists():
            continue
        try:
            data = json.loads(path.read_text())
        except (OSError, ValueError):
            continue
        if isinstance(data, dict):
            return data
    return {}


def config_value(
    env_key: Optional[str],
    config_key: str,
    default: Optional[str] = None,
    config: Optional[Dict[str, Any]] = None,
) -> Optional[str]:
    """
    Resolve a setting: environment variable first, then the JSON config, then default.
    Blank values count as missing.
    """
    if env_key:
        value = os.getenv(env_key)
        if value and value.strip():
            return value.strip()
    if config is None:
        config = load_json_config(*CONFIG_FILES)
    cfg_val = config.get(config_key)
    if cfg_val is None:
        return default
    text = str(cfg_val).strip()
    return text or default
