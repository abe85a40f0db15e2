# Configuration for the POS Device Proxy
# config.json next to main.py, then environment overrides

import os
import json
import copy
import logging
from pathlib import Path
from typing import Dict, Any, Optional, Mapping


logger = logging.getLogger(__name__)

CONFIG_PATH = Path(__file__).resolve().parent.parent / 'config.json'

DEFAULTS: Dict[str, Any] = {
    'server_url': 'http://localhost:4001',
    'http_port': 3001,
    'log_level': 'INFO',
    'log_path': None,
    'printer': {'mode': 'mock'},
    'scanner': {'mode': 'simulated'},
    'auth_token': None,
    'device_id': None,
    'device_name': None,
    'server_host': None,
}

# env var -> config key
ENV_OVERRIDES = {
    'ELIXIR_SERVER_URL': 'server_url',
    'PORT': 'http_port',
    'LOG_LEVEL': 'log_level',
    'AUTH_TOKEN': 'auth_token',
    'DEVICE_ID': 'device_id',
    'DEVICE_NAME': 'device_name',
    'SERVER_HOST': 'server_host',
}


def load_config(path: Optional[Path] = None,
                environ: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
    config = copy.deepcopy(DEFAULTS)

    config_path = Path(path) if path else CONFIG_PATH
    if config_path.exists():
        with open(config_path) as f:
            config.update(json.load(f))

    environ = os.environ if environ is None else environ
    for env_name, key in ENV_OVERRIDES.items():
        value = environ.get(env_name)
        if value:
            config[key] = value

    try:
        config['http_port'] = int(config['http_port'])
    except (TypeError, ValueError):
        logger.warning(f"Invalid http_port {config['http_port']!r}, using {DEFAULTS['http_port']}")
        config['http_port'] = DEFAULTS['http_port']

    return config
