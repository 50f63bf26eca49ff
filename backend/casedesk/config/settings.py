"""Environment backed settings consumed by the application factory.

Every key may be overridden through the ``config`` mapping passed to
``create_app``; tests rely on that to disable the background scheduler.
"""
from __future__ import annotations
import os
from typing import Any, Dict

DEFAULT_AUTO_RETURN_MINUTES = 30
DEFAULT_AUTO_RETURN_INTERVAL_SECONDS = 300

_TRUTHY = {'1', 'true', 'yes', 'on'}


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in _TRUTHY


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == '':
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f'{name} must be an integer, got {raw!r}')


def load_settings() -> Dict[str, Any]:
    return {
        'DATABASE_URL': os.getenv('DATABASE_URL', 'sqlite:///casedesk.db'),
        'JWT_SECRET_KEY': os.getenv('JWT_SECRET_KEY', 'dev-secret'),
        'LOG_LEVEL': os.getenv('LOG_LEVEL', 'INFO').upper(),
        'AUTO_RETURN_MINUTES': _env_int('AUTO_RETURN_MINUTES', DEFAULT_AUTO_RETURN_MINUTES),
        'AUTO_RETURN_INTERVAL_SECONDS': _env_int('AUTO_RETURN_INTERVAL_SECONDS', DEFAULT_AUTO_RETURN_INTERVAL_SECONDS),
        'SCHEDULER_ENABLED': _env_bool('SCHEDULER_ENABLED', True),
    }

__all__ = ['load_settings', 'DEFAULT_AUTO_RETURN_MINUTES', 'DEFAULT_AUTO_RETURN_INTERVAL_SECONDS']
