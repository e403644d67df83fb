"""
core/config.py: 配置加载

• YAML 配置文件（默认 ./config.yaml，可用 CONFIG_PATH 覆盖）
• 支持 ${ENV_NAME:-default} 形式的环境变量替换，密钥一律走环境变量
• cfg.get("a.b.c", default) 点号路径读取
"""

import os
import re
import threading
from typing import Any, Dict

import yaml

VERSION = "1.0.0"
API_BASE = "/api/v1"

_ENV_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)(?::-([^}]*))?\}")


def _expand_env(value: Any) -> Any:
    if isinstance(value, dict):
        return {k: _expand_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_expand_env(v) for v in value]
    if not isinstance(value, str):
        return value

    def _repl(match: re.Match) -> str:
        name, default = match.group(1), match.group(2)
        return os.getenv(name, default if default is not None else "")

    expanded = _ENV_PATTERN.sub(_repl, value)
    if expanded != value and _ENV_PATTERN.fullmatch(value):
        # 整个值就是一个占位符时，尽量还原成 YAML 标量类型（数字/布尔）
        try:
            parsed = yaml.safe_load(expanded) if expanded != "" else ""
        except yaml.YAMLError:
            return expanded
        if isinstance(parsed, (bool, int, float)):
            return parsed
    return expanded


class Config:
    def __init__(self, config_path: str = ""):
        self.config_path = config_path or os.getenv("CONFIG_PATH", "config.yaml")
        self.config: Dict[str, Any] = {}
        self._lock = threading.Lock()
        self.reload()

    def _load(self) -> Dict[str, Any]:
        if not os.path.exists(self.config_path):
            return {}
        with open(self.config_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            return {}
        return _expand_env(data)

    def reload(self) -> Dict[str, Any]:
        with self._lock:
            self.config = self._load()
        return self.config

    def get(self, key: str, default: Any = None) -> Any:
        cursor: Any = self.config
        for part in [x for x in str(key or "").split(".") if x]:
            if not isinstance(cursor, dict) or part not in cursor:
                return default
            cursor = cursor[part]
        if cursor is None or cursor == "":
            return default
        return cursor


cfg = Config()


def set_config(key: str, value: Any) -> None:
    keys = [x for x in str(key or "").split(".") if x]
    if not keys:
        return
    if not isinstance(cfg.config, dict):
        cfg.config = {}
    cursor = cfg.config
    for part in keys[:-1]:
        if not isinstance(cursor.get(part), dict):
            cursor[part] = {}
        cursor = cursor[part]
    cursor[keys[-1]] = value
