"""Validate manifest files against registered CRD schemas before packing.

Each YAML document is checked on its own.  Documents without ``apiVersion``
or ``kind`` are logged and let through, and so are resources whose schema is
not registered.  Only a document that contradicts a registered schema fails
the pack.
"""

from __future__ import annotations

import logging
from pathlib import Path

import yaml
from jsonschema import Draft4Validator

from kubemft.errors import ManifestInvalidError, NotFoundError
from kubemft.schema.registry import SchemaRegistry, split_api_version

logger = logging.getLogger(__name__)


class SchemaValidator:
    """``ManifestValidator`` backed by a ``SchemaRegistry``.

    CRD schemas are OpenAPI v3 schema objects, which follow JSON Schema
    draft 4 for the keywords they share.
    """

    def __init__(self, registry: SchemaRegistry) -> None:
        self._registry = registry

    def validate(self, path: Path) -> None:
        path = Path(path)
        try:
            with path.open("r", encoding="utf-8") as handle:
                documents = list(yaml.safe_load_all(handle))
        except FileNotFoundError:
            raise NotFoundError(f"manifest file {path} not found") from None
        except yaml.YAMLError as exc:
            raise ManifestInvalidError(f"{path}: invalid YAML: {exc}") from exc

        problems: list[str] = []
        for position, document in enumerate(documents, start=1):
            if document is None:
                continue
            if not isinstance(document, dict) or not document.get("apiVersion") or not document.get("kind"):
                logger.warning("%s: document %d has no apiVersion/kind, not validated", path, position)
                continue
            group, version = split_api_version(str(document["apiVersion"]))
            kind = str(document["kind"])
            schema = self._registry.find(group, kind, version)
            if schema is None:
                logger.info("%s: no schema for %s %s, skipped", path, document["apiVersion"], kind)
                continue
            for error in sorted(Draft4Validator(schema).iter_errors(document), key=_error_key):
                location = "/" + "/".join(str(part) for part in error.absolute_path)
                problems.append(f"  - {kind} {location}: {error.message}")

        if problems:
            raise ManifestInvalidError(f"{path} failed schema validation:\n" + "\n".join(problems))
        logger.debug("%s: %d document(s) validated", path, len(documents))


def _error_key(error) -> list[str]:
    return [str(part) for part in error.absolute_path]
