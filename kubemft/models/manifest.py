"""Manifest, index and listing models.

A manifest is serialized as canonical JSON; the sha256 of those exact bytes
is the manifest's own digest.  ``Manifest.from_bytes`` / ``Index.from_bytes``
turn parse failures into ``CorruptionError`` so a malformed document is fatal
to the single operation reading it.
"""

from __future__ import annotations

import json
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from kubemft.core.hasher import canonical_json_bytes, digest_of
from kubemft.errors import CorruptionError
from kubemft.models.descriptor import (
    MEDIA_TYPE_IMAGE_INDEX,
    MEDIA_TYPE_IMAGE_MANIFEST,
    Descriptor,
)


class Manifest(BaseModel):
    """An OCI image manifest describing one artifact."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    schema_version: int = Field(default=2, alias="schemaVersion")
    media_type: str = Field(default=MEDIA_TYPE_IMAGE_MANIFEST, alias="mediaType")
    artifact_type: str | None = Field(default=None, alias="artifactType")
    config: Descriptor | None = None
    layers: list[Descriptor] = Field(default_factory=list)
    subject: Descriptor | None = None
    annotations: dict[str, str] | None = None

    def to_bytes(self) -> bytes:
        """Canonical JSON bytes; hashing these yields the manifest digest."""
        return canonical_json_bytes(self.model_dump(by_alias=True, exclude_none=True))

    def descriptor(self) -> Descriptor:
        """Descriptor for the canonical serialization of this manifest."""
        data = self.to_bytes()
        return Descriptor(
            media_type=self.media_type,
            digest=digest_of(data),
            size=len(data),
            artifact_type=self.artifact_type,
        )

    def successors(self) -> list[Descriptor]:
        """Config, layers and subject: everything this manifest points to."""
        nodes: list[Descriptor] = []
        if self.config is not None:
            nodes.append(self.config)
        nodes.extend(self.layers)
        if self.subject is not None:
            nodes.append(self.subject)
        return nodes

    def owned(self) -> list[Descriptor]:
        """Config and layers only; the subject is not owned by its referrer."""
        nodes = list(self.layers)
        if self.config is not None:
            nodes.insert(0, self.config)
        return nodes

    @classmethod
    def from_bytes(cls, data: bytes, *, source: str = "manifest") -> Manifest:
        try:
            return cls.model_validate(json.loads(data))
        except (ValueError, ValidationError) as exc:
            raise CorruptionError(f"malformed {source}: {exc}") from exc


class Index(BaseModel):
    """``index.json`` of an OCI image layout (also the referrers response)."""

    model_config = ConfigDict(populate_by_name=True)

    schema_version: int = Field(default=2, alias="schemaVersion")
    media_type: str = Field(default=MEDIA_TYPE_IMAGE_INDEX, alias="mediaType")
    manifests: list[Descriptor] = Field(default_factory=list)

    def to_bytes(self) -> bytes:
        return json.dumps(
            self.model_dump(by_alias=True, exclude_none=True), indent=2
        ).encode("utf-8")

    @classmethod
    def from_bytes(cls, data: bytes, *, source: str = "index.json") -> Index:
        try:
            return cls.model_validate(json.loads(data))
        except (ValueError, ValidationError) as exc:
            raise CorruptionError(f"malformed {source}: {exc}") from exc


class ListEntry(BaseModel):
    """One row of ``kubectl mft list``."""

    model_config = ConfigDict(frozen=True)

    repository: str
    tag: str
    size: str
    created: datetime
