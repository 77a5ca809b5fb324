"""CRD schema registration and pre-pack manifest validation."""

from kubemft.schema.registry import SchemaInfo, SchemaRegistry, parse_group_kind
from kubemft.schema.validator import SchemaValidator

__all__ = [
    "SchemaInfo",
    "SchemaRegistry",
    "SchemaValidator",
    "parse_group_kind",
]
