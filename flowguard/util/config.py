"""
Configuration utilities for FlowGuard.
Provides environment loading and value parsing used by flowguard.core.config.
"""

import os
import re
from datetime import timedelta
from typing import Any, Dict, Optional, Union


ENV_PREFIX = "FLOWGUARD_"

_DURATION_UNITS = {
    'ms': timedelta(milliseconds=1),
    's': timedelta(seconds=1),
    'm': timedelta(minutes=1),
    'h': timedelta(hours=1),
    'd': timedelta(days=1),
}


def load_config_from_env(prefix: str = ENV_PREFIX) -> Dict[str, str]:
    """
    Load configuration from environment variables with given prefix.

    FLOWGUARD_REDIS_URL becomes {'redis_url': ...}.
    """
    return {
        key[len(prefix):].lower(): value
        for key, value in os.environ.items()
        if key.startswith(prefix)
    }


def get_config_value(key: str, default: Any = None,
                     cast_type: Optional[type] = None,
                     env_prefix: str = ENV_PREFIX) -> Any:
    """
    Get configuration value from environment or return default.
    Optionally cast to specified type. Values that fail to cast fall back to
    the default.
    """
    env_key = f"{env_prefix}{key.upper()}"
    value = os.environ.get(env_key, default)

    if value is None or cast_type is None:
        return value

    try:
        if cast_type == bool:
            if isinstance(value, str):
                return value.strip().lower() in ('true', '1', 'yes', 'on')
            return bool(value)
        elif cast_type == timedelta:
            if isinstance(value, timedelta):
                return value
            return parse_duration_string(value)
        else:
            return cast_type(value)
    except (ValueError, TypeError):
        return default


def parse_duration_string(duration_str: str) -> timedelta:
    """
    Parse duration string like '500ms', '30s', '5m', '2h', '1d' into timedelta.
    A bare number is read as milliseconds.
    """
    if not isinstance(duration_str, str):
        raise ValueError("Duration must be a string")

    duration_str = duration_str.strip().lower()

    match = re.match(r'^(\d+(?:\.\d+)?)\s*(ms|s|m|h|d)?$', duration_str)
    if not match:
        raise ValueError(f"Invalid duration format: {duration_str}")

    value, unit = match.groups()
    return float(value) * _DURATION_UNITS[unit or 'ms']


def get_bool_config(key: str, default: bool = False,
                    env_prefix: str = ENV_PREFIX) -> bool:
    """Get boolean configuration value."""
    return get_config_value(key, default, bool, env_prefix)


def get_int_config(key: str, default: int = 0,
                   env_prefix: str = ENV_PREFIX) -> int:
    """Get integer configuration value."""
    return get_config_value(key, default, int, env_prefix)


def get_duration_config(key: str, default: Union[timedelta, str],
                        env_prefix: str = ENV_PREFIX) -> timedelta:
    """Get a duration configuration value ('30s', '5m', ...)."""
    if isinstance(default, str):
        default = parse_duration_string(default)
    return get_config_value(key, default, timedelta, env_prefix)
