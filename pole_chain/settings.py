"""
Configuration Loading

Shared by the arbiter and the node runtime. Values come from
config/settings.json (or the file named by POLE_CHAIN_CONFIG); when the
file is missing the built-in defaults below are used unchanged.
"""

import json
import logging
import os
from typing import Any, Dict

logger = logging.getLogger("Settings")

CONFIG_ENV_VAR = "POLE_CHAIN_CONFIG"
DEFAULT_CONFIG_PATH = os.path.join(os.path.dirname(__file__), "config", "settings.json")

# Fallback Defaults
DEFAULTS: Dict[str, Any] = {
    "poles": ["Pole1", "Pole2", "Pole3", "Pole4"],

    # Local safety interlock + current sensing
    "overvoltage_v": 260.0,
    "overcurrent_a": 15.0,
    "current_high_a": 0.1,

    # Node scan loop
    "scan_rate_ms": 100,
    "debounce_ms": 500,
    "recovery_stable_ms": 3000,
    "rms_window": 64,
    "watchdog_timeout_s": 8.0,

    # Peer channel cadence
    "publish_interval_s": 5.0,
    "peer_poll_interval_s": 2.0,
    "command_poll_interval_s": 3.0,
    "peer_stale_s": 6.0,
    "http_timeout_s": 2.0,

    # Arbiter
    "arbiter_recovery_stable_s": 3.0,
    "stale_timeout_s": 15.0,
    "sweep_interval_s": 5.0,
    "arbiter_host": "0.0.0.0",
    "arbiter_port": 3000,
    "mirror_path": "coordination_mirror.json",

    "mqtt": {
        "enabled": False,
        "broker": "localhost",
        "port": 1883,
        "topic_prefix": "pole-chain/events",
    },
}


def load_config(path: str = None) -> Dict[str, Any]:
    """
    Load settings, falling back to DEFAULTS for the whole file or any missing key.
    """
    config_path = path or os.environ.get(CONFIG_ENV_VAR) or DEFAULT_CONFIG_PATH
    config = json.loads(json.dumps(DEFAULTS))  # deep copy
    try:
        with open(config_path, "r") as f:
            loaded = json.load(f)
    except FileNotFoundError:
        logger.warning(f"Config file {config_path} not found, using defaults")
        return config
    except json.JSONDecodeError as e:
        logger.error(f"Config file {config_path} is not valid JSON ({e}), using defaults")
        return config

    for key, value in loaded.items():
        if isinstance(value, dict) and isinstance(config.get(key), dict):
            config[key].update(value)
        else:
            config[key] = value
    return config
