"""Copy targets backed by local storage.

``LocalLayoutStore`` is one repository directory in OCI image-layout form::

    <root>/oci-layout
    <root>/index.json
    <root>/blobs/<algorithm>/<hex>

``StagingStore`` is the ephemeral source used by ``save``: it wraps files on
disk (and a few generated documents in memory) as descriptors so the same
copy engine can move them into a layout.
"""

from __future__ import annotations

import io
import json
import logging
from pathlib import Path
from typing import BinaryIO

from kubemft.core.blob_store import BlobStore
from kubemft.core.hasher import digest_of, hash_stream
from kubemft.core.index import LayoutIndex
from kubemft.errors import NotFoundError
from kubemft.models.descriptor import ANNOTATION_TITLE, Descriptor
from kubemft.models.manifest import Manifest

logger = logging.getLogger(__name__)

OCI_LAYOUT_FILE = "oci-layout"
OCI_LAYOUT_VERSION = "1.0.0"


class LocalLayoutStore:
    """A repository directory: blob store plus ``index.json``.

    Parameters
    ----------
    root:
        ``<storage_dir>/<registry>/<repository>``.  Nothing is created until
        the first write.
    """

    def __init__(self, root: Path) -> None:
        self._root = Path(root)
        self.blobs = BlobStore(self._root / "blobs")
        self.index = LayoutIndex(self._root / "index.json")

    @property
    def root(self) -> Path:
        return self._root

    def _ensure_layout(self) -> None:
        marker = self._root / OCI_LAYOUT_FILE
        if not marker.exists():
            self._root.mkdir(parents=True, exist_ok=True)
            marker.write_text(json.dumps({"imageLayoutVersion": OCI_LAYOUT_VERSION}))

    # -- MutableStore -------------------------------------------------------

    def fetch(self, descriptor: Descriptor) -> BinaryIO:
        return self.blobs.get(descriptor)

    def exists(self, descriptor: Descriptor) -> bool:
        """Blob present and, for manifests, recorded in the index."""
        if not self.blobs.exists(descriptor.digest):
            return False
        if descriptor.is_manifest:
            return self.index.contains(descriptor.digest)
        return True

    def push(self, descriptor: Descriptor, stream: BinaryIO) -> None:
        self._ensure_layout()
        self.blobs.push(descriptor, stream)
        if descriptor.is_manifest:
            self.index.add_untagged(descriptor)

    def delete(self, descriptor: Descriptor) -> None:
        self.blobs.delete(descriptor.digest)

    # -- TaggedIndex --------------------------------------------------------

    def resolve(self, reference: str) -> Descriptor:
        return self.index.resolve(reference)

    def tag(self, descriptor: Descriptor, reference: str) -> None:
        if not self.blobs.exists(descriptor.digest):
            raise NotFoundError(
                f"cannot tag {reference!r}: manifest {descriptor.digest} not in {self._root}"
            )
        self._ensure_layout()
        self.index.tag(descriptor, reference)

    def tags(self) -> list[str]:
        return self.index.tags()

    def predecessors(self, descriptor: Descriptor) -> list[Descriptor]:
        """Scan every indexed manifest for ``subject == descriptor``."""
        found: list[Descriptor] = []
        for entry in self.index.entries():
            if not entry.is_manifest or entry.digest == descriptor.digest:
                continue
            try:
                manifest = self.read_manifest(entry)
            except NotFoundError:
                logger.warning("Indexed manifest %s is missing from %s", entry.digest, self._root)
                continue
            if manifest.subject is not None and manifest.subject.digest == descriptor.digest:
                found.append(
                    entry.without_tag().model_copy(
                        update={"artifact_type": entry.artifact_type or manifest.artifact_type}
                    )
                )
        return found

    # -- Convenience --------------------------------------------------------

    def read_manifest(self, descriptor: Descriptor) -> Manifest:
        return Manifest.from_bytes(
            self.blobs.read(descriptor), source=f"manifest {descriptor.digest}"
        )

    def put_blob(self, content: bytes, media_type: str) -> Descriptor:
        self._ensure_layout()
        return self.blobs.put(content, media_type)

    def put_manifest(self, manifest: Manifest) -> Descriptor:
        """Store a manifest untagged and return its descriptor."""
        descriptor = manifest.descriptor()
        self.push(descriptor, io.BytesIO(manifest.to_bytes()))
        return descriptor

    def is_empty(self) -> bool:
        return not self.index.entries()


class StagingStore:
    """Ephemeral source target wrapping local files and generated documents."""

    def __init__(self) -> None:
        self._files: dict[str, Path] = {}
        self._documents: dict[str, bytes] = {}
        self._tags: dict[str, Descriptor] = {}

    def add_file(self, path: Path, media_type: str, title: str | None = None) -> Descriptor:
        """Describe a file by streaming it once through the hasher."""
        path = Path(path).resolve()
        with path.open("rb") as fh:
            digest, size = hash_stream(fh)
        self._files[digest] = path
        annotations = {ANNOTATION_TITLE: title or path.name}
        return Descriptor(media_type=media_type, digest=digest, size=size, annotations=annotations)

    def add_bytes(self, data: bytes, media_type: str) -> Descriptor:
        digest = digest_of(data)
        self._documents[digest] = data
        return Descriptor(media_type=media_type, digest=digest, size=len(data))

    def add_manifest(self, manifest: Manifest) -> Descriptor:
        descriptor = manifest.descriptor()
        self._documents[descriptor.digest] = manifest.to_bytes()
        return descriptor

    # -- Target -------------------------------------------------------------

    def fetch(self, descriptor: Descriptor) -> BinaryIO:
        if descriptor.digest in self._documents:
            return io.BytesIO(self._documents[descriptor.digest])
        path = self._files.get(descriptor.digest)
        if path is None:
            raise NotFoundError(f"{descriptor.digest} not staged")
        return path.open("rb")

    def exists(self, descriptor: Descriptor) -> bool:
        return descriptor.digest in self._documents or descriptor.digest in self._files

    def push(self, descriptor: Descriptor, stream: BinaryIO) -> None:
        self._documents[descriptor.digest] = stream.read()

    def delete(self, descriptor: Descriptor) -> None:
        self._documents.pop(descriptor.digest, None)
        self._files.pop(descriptor.digest, None)

    def resolve(self, reference: str) -> Descriptor:
        for name, descriptor in self._tags.items():
            if reference in (name, descriptor.digest):
                return descriptor
        raise NotFoundError(f"{reference!r} not staged")

    def tag(self, descriptor: Descriptor, reference: str) -> None:
        self._tags[reference] = descriptor

    def tags(self) -> list[str]:
        return list(self._tags)

    def predecessors(self, descriptor: Descriptor) -> list[Descriptor]:
        return []
