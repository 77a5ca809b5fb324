"""Descriptor model: a reference to content, never the content itself.

Field names follow the OCI image-spec on the wire (``mediaType``,
``artifactType``) and snake_case in Python.
"""

from __future__ import annotations

from typing import Any, Final

from pydantic import BaseModel, ConfigDict, Field, field_validator

from kubemft.core.hasher import parse_digest

MEDIA_TYPE_IMAGE_MANIFEST: Final = "application/vnd.oci.image.manifest.v1+json"
MEDIA_TYPE_IMAGE_INDEX: Final = "application/vnd.oci.image.index.v1+json"
MEDIA_TYPE_EMPTY_JSON: Final = "application/vnd.oci.empty.v1+json"

ARTIFACT_TYPE: Final = "application/vnd.kubectl-mft.v1"
CONTENT_MEDIA_TYPE: Final = "application/vnd.kubectl-mft.content.v1+yaml"

ANNOTATION_REF_NAME: Final = "org.opencontainers.image.ref.name"
ANNOTATION_TITLE: Final = "org.opencontainers.image.title"
ANNOTATION_CREATED: Final = "org.opencontainers.image.created"

MANIFEST_MEDIA_TYPES: Final = frozenset(
    {MEDIA_TYPE_IMAGE_MANIFEST, MEDIA_TYPE_IMAGE_INDEX}
)


class Descriptor(BaseModel):
    """``{mediaType, digest, size, annotations}`` plus optional ``artifactType``."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    media_type: str = Field(alias="mediaType")
    digest: str
    size: int = Field(ge=0)
    annotations: dict[str, str] | None = None
    artifact_type: str | None = Field(default=None, alias="artifactType")

    @field_validator("digest")
    @classmethod
    def _check_digest(cls, value: str) -> str:
        parse_digest(value)
        return value

    @property
    def algorithm(self) -> str:
        return parse_digest(self.digest)[0]

    @property
    def encoded(self) -> str:
        return parse_digest(self.digest)[1]

    @property
    def tag(self) -> str | None:
        """The ``ref.name`` annotation, or ``None`` for untagged entries."""
        if not self.annotations:
            return None
        return self.annotations.get(ANNOTATION_REF_NAME) or None

    @property
    def is_manifest(self) -> bool:
        return self.media_type in MANIFEST_MEDIA_TYPES

    def with_tag(self, name: str) -> Descriptor:
        """Return a copy annotated with ``ref.name = name``."""
        annotations = dict(self.annotations or {})
        annotations[ANNOTATION_REF_NAME] = name
        return self.model_copy(update={"annotations": annotations})

    def without_tag(self) -> Descriptor:
        """Return a copy with the ``ref.name`` annotation removed."""
        annotations = {
            k: v for k, v in (self.annotations or {}).items() if k != ANNOTATION_REF_NAME
        }
        return self.model_copy(update={"annotations": annotations or None})

    def to_dict(self) -> dict[str, Any]:
        """Wire form: camelCase keys, ``None`` fields omitted."""
        return self.model_dump(by_alias=True, exclude_none=True)


# The empty JSON object ``{}`` used as config for artifact manifests.
EMPTY_CONFIG_BYTES: Final = b"{}"
EMPTY_CONFIG: Final = Descriptor(
    media_type=MEDIA_TYPE_EMPTY_JSON,
    digest="sha256:44136fa355b3678a1146ad16f7e8649e94fb4fc21fe77e8310c060f61caaff8a",
    size=2,
)
