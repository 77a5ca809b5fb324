"""CRD schemas registered for manifest validation.

``schema add`` takes a CustomResourceDefinition and extracts the
``openAPIV3Schema`` of every version into its own JSON file.  Layout of the
schema directory::

    index.json                          {"schemas": [{group, kind, version}]}
    <group>/<kind lowercased>_<version>.json

Kubernetes' built-in kinds are not stored here; a kind with no registered
schema is skipped by the validator.
"""

from __future__ import annotations

import json
import logging
import os
import re
import tempfile
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from kubemft.errors import CorruptionError, ManifestInvalidError, NotFoundError

logger = logging.getLogger(__name__)

_GROUP_RE = re.compile(r"^[a-z0-9]([-a-z0-9.]*[a-z0-9])?$")
_KIND_RE = re.compile(r"^[A-Za-z][A-Za-z0-9]*$")
_VERSION_RE = re.compile(r"^[a-z0-9]+$")


class SchemaInfo(BaseModel):
    """One registered (group, kind, version) schema."""

    model_config = ConfigDict(frozen=True)

    group: str
    kind: str
    version: str


class _SchemaIndex(BaseModel):
    schemas: list[SchemaInfo] = Field(default_factory=list)


def parse_group_kind(text: str) -> tuple[str, str]:
    """Split ``group/kind``."""
    group, sep, kind = text.partition("/")
    if not sep or not group or not kind or "/" in kind:
        raise ValueError(f"invalid format {text!r}: expected <group>/<kind>")
    return group, kind


def split_api_version(api_version: str) -> tuple[str, str]:
    """``apps/v1`` -> ``("apps", "v1")``; the core group is the empty string."""
    group, sep, version = api_version.rpartition("/")
    return (group, version) if sep else ("", api_version)


class SchemaRegistry:
    """Read-modify-write access to the CRD schema directory.

    Parameters
    ----------
    root:
        The schema directory.  Created on first registration.
    """

    def __init__(self, root: Path) -> None:
        self._root = Path(root)

    @property
    def root(self) -> Path:
        return self._root

    def schema_path(self, group: str, kind: str, version: str) -> Path:
        return self._root / group / f"{kind.lower()}_{version}.json"

    # -- Index ----------------------------------------------------------------

    def _index_path(self) -> Path:
        return self._root / "index.json"

    def _load_index(self) -> _SchemaIndex:
        path = self._index_path()
        if not path.exists():
            return _SchemaIndex()
        try:
            return _SchemaIndex.model_validate_json(path.read_bytes())
        except ValidationError as exc:
            raise CorruptionError(f"malformed schema index {path}: {exc}") from exc

    def _save_index(self, index: _SchemaIndex) -> None:
        self._root.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self._root, prefix=".index-")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(index.model_dump_json(indent=2))
            os.replace(tmp_name, self._index_path())
        finally:
            Path(tmp_name).unlink(missing_ok=True)

    # -- Operations -----------------------------------------------------------

    def list(self) -> list[SchemaInfo]:
        return list(self._load_index().schemas)

    def add(self, crd_path: Path) -> list[SchemaInfo]:
        """Register every versioned schema of the CRD at *crd_path*.

        Returns the entries written.  Re-adding a CRD overwrites its schema
        files and keeps one index entry per version.
        """
        crd = _load_crd(Path(crd_path))
        spec = crd.get("spec") or {}
        group = spec.get("group") or ""
        kind = (spec.get("names") or {}).get("kind") or ""
        if not group or not kind:
            raise ManifestInvalidError(f"{crd_path}: CRD is missing spec.group or spec.names.kind")
        if not _GROUP_RE.match(group) or not _KIND_RE.match(kind):
            raise ManifestInvalidError(f"{crd_path}: invalid CRD group {group!r} or kind {kind!r}")
        versions = spec.get("versions") or []
        if not versions:
            raise ManifestInvalidError(f"{crd_path}: CRD has no versions defined")

        index = self._load_index()
        added: list[SchemaInfo] = []
        for entry in versions:
            if not isinstance(entry, dict):
                continue
            name = str(entry.get("name") or "")
            schema = (entry.get("schema") or {}).get("openAPIV3Schema")
            if schema is None:
                continue
            if not _VERSION_RE.match(name):
                raise ManifestInvalidError(f"{crd_path}: invalid CRD version {name!r}")
            path = self.schema_path(group, kind, name)
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(json.dumps(schema, indent=2, default=str), encoding="utf-8")
            info = SchemaInfo(group=group, kind=kind, version=name)
            if info not in index.schemas:
                index.schemas.append(info)
            added.append(info)
            logger.info("Registered schema %s/%s %s", group, kind, name)

        self._save_index(index)
        return added

    def delete(self, group: str, kind: str) -> list[SchemaInfo]:
        """Remove every version of ``group/kind``.  Returns what was removed."""
        index = self._load_index()
        removed = [s for s in index.schemas if s.group == group and s.kind == kind]
        if not removed:
            raise NotFoundError(f"schema not found: {group}/{kind}")
        for info in removed:
            self.schema_path(info.group, info.kind, info.version).unlink(missing_ok=True)
        group_dir = self._root / group
        if group_dir.is_dir() and not any(group_dir.iterdir()):
            group_dir.rmdir()
        index.schemas = [s for s in index.schemas if s not in removed]
        self._save_index(index)
        return removed

    def find(self, group: str, kind: str, version: str) -> dict[str, Any] | None:
        """The registered schema for a resource, or ``None``."""
        if not group:
            return None
        path = self.schema_path(group, kind, version)
        if not path.is_file():
            return None
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except ValueError as exc:
            raise CorruptionError(f"malformed schema file {path}: {exc}") from exc


def _load_crd(path: Path) -> dict[str, Any]:
    try:
        with path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle)
    except FileNotFoundError:
        raise NotFoundError(f"CRD file {path} not found") from None
    except yaml.YAMLError as exc:
        raise ManifestInvalidError(f"{path}: failed to parse CRD YAML: {exc}") from exc
    if not isinstance(data, dict):
        raise ManifestInvalidError(f"{path}: expected a YAML mapping")
    if data.get("kind") != "CustomResourceDefinition":
        raise ManifestInvalidError(
            f"{path}: expected CustomResourceDefinition, got {data.get('kind')!r}"
        )
    return data
