"""
Configuration Loader (``procure_config.loader``).

Responsibility
--------------
Loads YAML files and parses them into the typed dataclasses of
``procure_config.schema``: the procurement settings and the field-alias
table used at ingestion.

Invariants enforced
-------------------
* Unknown settings keys are rejected, never ignored.
* Every parsed object is a dataclass from ``schema.py``.
* ``compute_checksum`` is a deterministic SHA-256 over canonical JSON.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Wrong shape or unknown keys  -> ``ConfigurationError``.
"""

from __future__ import annotations

import dataclasses
import hashlib
import json
from pathlib import Path
from typing import Any

import yaml

from procure_config.schema import (
    CollectionNames,
    FieldAliases,
    FieldRule,
    ProcurementSettings,
)
from procure_kernel.exceptions import ConfigurationError
from procure_kernel.logging_config import get_logger

logger = get_logger("config.loader")

DEFAULT_ALIASES_PATH = Path(__file__).with_name("field_aliases.yaml")


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Preconditions:
        - ``path`` must point to an existing, readable YAML file.
    Postconditions:
        - Returns a ``dict`` (possibly empty if the YAML is empty).
    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ConfigurationError: if the top level is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"{path}: top level must be a mapping")
    return data


def parse_settings(data: dict[str, Any]) -> ProcurementSettings:
    """
    Build ``ProcurementSettings`` from a dict.

    Raises:
        ConfigurationError: on unknown keys or invalid values.
    """
    known = {f.name for f in dataclasses.fields(ProcurementSettings)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ConfigurationError(f"unknown settings keys: {unknown}", key=unknown[0])

    values = dict(data)
    collections_raw = values.pop("collections", None) or {}
    if not isinstance(collections_raw, dict):
        raise ConfigurationError("collections must be a mapping", key="collections")
    collection_fields = {f.name for f in dataclasses.fields(CollectionNames)}
    unknown = sorted(set(collections_raw) - collection_fields)
    if unknown:
        raise ConfigurationError(f"unknown collection keys: {unknown}", key=unknown[0])

    return ProcurementSettings(collections=CollectionNames(**collections_raw), **values)


def load_settings(path: Path | None = None) -> ProcurementSettings:
    """Load settings from the ``procurement`` section of a YAML file.

    Without a path the defaults are returned.
    """
    if path is None:
        return ProcurementSettings()
    data = load_yaml_file(path)
    settings = parse_settings(data.get("procurement", {}) or {})
    logger.info(
        "settings_loaded",
        extra={"path": str(path), "checksum": compute_checksum(dataclasses.asdict(settings))},
    )
    return settings


def parse_field_rule(entity: str, field_name: str, raw: Any) -> FieldRule:
    """Parse one alias rule: a list of keys, or ``{sum: [...]}``."""
    if isinstance(raw, list):
        return FieldRule(keys=tuple(str(k) for k in raw))
    if isinstance(raw, dict) and set(raw) == {"sum"} and isinstance(raw["sum"], list):
        return FieldRule(keys=tuple(str(k) for k in raw["sum"]), combine="sum")
    raise ConfigurationError(
        f"alias rule {entity}.{field_name} must be a list or {{sum: [...]}}",
        key=f"{entity}.{field_name}",
    )


def parse_field_aliases(data: dict[str, Any]) -> FieldAliases:
    entities: dict[str, dict[str, FieldRule]] = {}
    for entity, rules in data.items():
        if not isinstance(rules, dict):
            raise ConfigurationError(f"alias entity {entity} must be a mapping", key=entity)
        entities[entity] = {
            field_name: parse_field_rule(entity, field_name, raw)
            for field_name, raw in rules.items()
        }
    return FieldAliases(entities=entities)


def load_field_aliases(path: Path | None = None) -> FieldAliases:
    """Load the alias table; the packaged ``field_aliases.yaml`` by default."""
    source = path or DEFAULT_ALIASES_PATH
    aliases = parse_field_aliases(load_yaml_file(source))
    logger.debug(
        "field_aliases_loaded",
        extra={"path": str(source), "entities": sorted(aliases.entities)},
    )
    return aliases


def compute_checksum(data: dict[str, Any]) -> str:
    """
    Compute SHA-256 checksum of canonical JSON serialization.

    Postconditions:
        - Identical ``data`` always produces identical checksums.
    """
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
