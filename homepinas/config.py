from __future__ import annotations

import os
import secrets


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    lowered = value.strip().lower()
    if lowered in {"1", "true", "yes", "on"}:
        return True
    if lowered in {"0", "false", "no", "off"}:
        return False
    return default


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


class Config:
    # Flask Session Configuration
    SECRET_KEY = os.getenv('SECRET_KEY', secrets.token_hex(32))

    # Array configuration file (JSON or KEY=VALUE); environment overrides it
    NONRAID_CONFIG_FILE = os.getenv('NONRAID_CONFIG_FILE')

    # Log commands without running them
    NONRAID_DRY_RUN = _env_bool('NONRAID_DRY_RUN', False)

    # Cron-driven parity checks (also needs NONRAID_SCAN_SCHEDULE)
    ENABLE_SCAN_SCHEDULER = _env_bool('ENABLE_SCAN_SCHEDULER', True)

    # Server binding
    HOST = os.getenv('HOST', '0.0.0.0')
    PORT = _env_int('PORT', 3001)
