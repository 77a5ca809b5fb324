"""kubemft data models: all Pydantic v2."""

from kubemft.models.descriptor import (
    ANNOTATION_CREATED,
    ANNOTATION_REF_NAME,
    ANNOTATION_TITLE,
    ARTIFACT_TYPE,
    CONTENT_MEDIA_TYPE,
    EMPTY_CONFIG,
    EMPTY_CONFIG_BYTES,
    MEDIA_TYPE_EMPTY_JSON,
    MEDIA_TYPE_IMAGE_INDEX,
    MEDIA_TYPE_IMAGE_MANIFEST,
    Descriptor,
)
from kubemft.models.manifest import Index, ListEntry, Manifest

__all__ = [
    # descriptor
    "Descriptor",
    "EMPTY_CONFIG",
    "EMPTY_CONFIG_BYTES",
    # media types
    "ARTIFACT_TYPE",
    "CONTENT_MEDIA_TYPE",
    "MEDIA_TYPE_EMPTY_JSON",
    "MEDIA_TYPE_IMAGE_INDEX",
    "MEDIA_TYPE_IMAGE_MANIFEST",
    # annotations
    "ANNOTATION_CREATED",
    "ANNOTATION_REF_NAME",
    "ANNOTATION_TITLE",
    # documents
    "Manifest",
    "Index",
    "ListEntry",
]
