"""Config loading & validation entrypoint.

Responsibilities:
  * Load the raw JSON config file (indices to track).
  * Validate it against ``CONFIG_SCHEMA`` (jsonschema draft-07); structural
    violations raise ``ConfigError`` (fatal at startup).
  * Apply the ``CW_INDICES`` restriction from the runtime config.

A missing file is not an error: the built-in index registry is used.

Public API:
  load_index_config(path: str | None, enabled: tuple[str, ...] = ()) -> list[IndexConfig]
"""
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

import jsonschema

from circuitwatch.config.indices import DEFAULT_INDICES, IndexConfig
from circuitwatch.utils.exceptions import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("config/circuitwatch_config.json")

CONFIG_SCHEMA: dict[str, Any] = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "type": "object",
    "properties": {
        "indices": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "name": {"type": "string", "minLength": 1},
                    "exchange": {"type": "string", "enum": ["NFO", "BFO"]},
                    "spot_symbol": {"type": "string", "pattern": "^[A-Z]+:.+$"},
                    "lot_size": {"type": "integer", "minimum": 1},
                    "enabled": {"type": "boolean"},
                },
                "required": ["name", "exchange", "spot_symbol", "lot_size"],
                "additionalProperties": False,
            },
            "minItems": 1,
        },
    },
    "additionalProperties": True,
}


def validate_config(cfg: dict[str, Any]) -> dict[str, Any]:
    try:
        jsonschema.validate(instance=cfg, schema=CONFIG_SCHEMA)
    except jsonschema.ValidationError as e:
        path = '/'.join(str(p) for p in e.path)
        raise ConfigError(f"Config schema validation error: {e.message} (path: {path})") from e
    return cfg


def _read_json(path: Path) -> dict[str, Any]:
    try:
        with path.open("r", encoding="utf-8") as fh:
            data = json.load(fh)
    except json.JSONDecodeError as e:
        raise ConfigError(f"Config file {path} is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a JSON object")
    return data


def load_index_config(path: str | Path | None = None, enabled: tuple[str, ...] = ()) -> list[IndexConfig]:
    """Return the tracked index list.

    ``enabled`` (from CW_INDICES) restricts the result to the named indices;
    an unknown name there is a configuration error.
    """
    cfg_path = Path(path) if path else DEFAULT_CONFIG_PATH
    if cfg_path.exists():
        raw = validate_config(_read_json(cfg_path))
        indices = [
            IndexConfig(
                name=item["name"].upper(),
                exchange=item["exchange"],
                spot_symbol=item["spot_symbol"],
                lot_size=int(item["lot_size"]),
                enabled=bool(item.get("enabled", True)),
            )
            for item in raw.get("indices", [])
        ] or list(DEFAULT_INDICES)
        logger.info("config.loaded path=%s indices=%d", cfg_path, len(indices))
    else:
        if path:
            raise ConfigError(f"Config file not found: {cfg_path}")
        logger.debug("config.default_indices path=%s missing", cfg_path)
        indices = list(DEFAULT_INDICES)

    if enabled:
        known = {ix.name for ix in indices}
        unknown = [n for n in enabled if n not in known]
        if unknown:
            raise ConfigError(f"CW_INDICES names unknown indices: {unknown}")
        indices = [ix for ix in indices if ix.name in enabled]
    active = [ix for ix in indices if ix.enabled]
    if not active:
        raise ConfigError("No enabled indices configured")
    return active


__all__ = ["CONFIG_SCHEMA", "DEFAULT_CONFIG_PATH", "validate_config", "load_index_config"]
