"""
Procurement configuration.

Typed settings and the ingestion field-alias table, loaded from YAML.
"""

from procure_config.loader import (
    compute_checksum,
    load_field_aliases,
    load_settings,
    load_yaml_file,
)
from procure_config.schema import (
    CollectionNames,
    FieldAliases,
    FieldRule,
    ProcurementSettings,
)

__all__ = [
    "CollectionNames",
    "FieldAliases",
    "FieldRule",
    "ProcurementSettings",
    "compute_checksum",
    "load_field_aliases",
    "load_settings",
    "load_yaml_file",
]
