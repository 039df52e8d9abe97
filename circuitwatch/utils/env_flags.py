"""Environment flag helpers.

Interpret environment variables as boolean feature flags using the canonical
truthy set {"1","true","yes","on"} (case-insensitive), plus small numeric
coercion helpers shared by the settings modules.

Usage:
    from circuitwatch.utils.env_flags import is_truthy_env
    if is_truthy_env('CW_JSON_LOGS'):
        ...
"""
from __future__ import annotations

import os

TRUTHY_SET: set[str] = {"1","true","yes","on"}

def is_truthy(value: str | None) -> bool:
    if not value:
        return False
    return value.strip().lower() in TRUTHY_SET

def is_truthy_env(name: str, default: str | None = None) -> bool:
    return is_truthy(os.getenv(name, default or ''))

def env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return is_truthy(raw)

def env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        return default

def env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        return default

def env_str(name: str, default: str = "") -> str:
    v = os.getenv(name)
    return default if v is None else v

__all__ = [
    'TRUTHY_SET',
    'is_truthy',
    'is_truthy_env',
    'env_bool',
    'env_int',
    'env_float',
    'env_str',
]
