# Config - agent settings from config.json with POS_* environment overrides

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict


logger = logging.getLogger(__name__)

CONFIG_PATH = Path(__file__).resolve().parent.parent / 'config.json'

DEFAULT_CONFIG: Dict[str, Any] = {
    # Empty base URL runs the agent against the in-process stub backend
    'api_base_url': '',
    'api_key': None,
    'db_path': 'offline_pos.db',
    'timeout': 30,
    'max_retries': 3,
    'health_cache_seconds': 30,
    'health_timeout': 3,
    'sync_interval': 30,
    'warehouse_id': None,
    'log_path': None,
    'log_level': 'INFO',
}

ENV_OVERRIDES = {
    'POS_API_BASE_URL': 'api_base_url',
    'POS_API_KEY': 'api_key',
    'POS_DB_PATH': 'db_path',
    'POS_LOG_PATH': 'log_path',
    'POS_LOG_LEVEL': 'log_level',
}


def load_config(path=None) -> Dict[str, Any]:
    """DEFAULT_CONFIG, overlaid by the JSON file (if present), overlaid by env"""
    config_path = Path(path) if path else CONFIG_PATH
    config = dict(DEFAULT_CONFIG)
    if config_path.exists():
        with open(config_path, encoding='utf-8') as f:
            config.update(json.load(f))
        logger.debug(f"Loaded config from {config_path}")

    for env_name, key in ENV_OVERRIDES.items():
        if os.environ.get(env_name):
            config[key] = os.environ[env_name]
    return config


def save_config(config: Dict[str, Any], path=None):
    config_path = Path(path) if path else CONFIG_PATH
    with open(config_path, 'w', encoding='utf-8') as f:
        json.dump(config, f, indent=2)
