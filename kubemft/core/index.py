"""``index.json``: the per-repository tag → manifest mapping.

The file on disk is the single source of truth.  Every mutation re-reads it,
applies the change and writes it back atomically; nothing is cached between
calls.  There is no locking: two processes mutating the same repository can
race (documented limitation).

Tagged entries carry the ``org.opencontainers.image.ref.name`` annotation.
Manifests stored without a tag (signatures, manifests pushed ahead of their
tag) are kept as entries without that annotation so they stay discoverable.
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import Iterable

from kubemft.core.hasher import is_digest
from kubemft.errors import NotFoundError
from kubemft.models.descriptor import Descriptor
from kubemft.models.manifest import Index

logger = logging.getLogger(__name__)


class LayoutIndex:
    """Read-modify-write access to one repository's ``index.json``.

    Parameters
    ----------
    path:
        Path to ``index.json``.  A missing file reads as an empty index.
    """

    def __init__(self, path: Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    # -- Persistence --------------------------------------------------------

    def load(self) -> Index:
        """Read the index from disk.  Malformed JSON raises ``CorruptionError``."""
        if not self._path.exists():
            return Index()
        return Index.from_bytes(self._path.read_bytes(), source=str(self._path))

    def save(self, index: Index) -> None:
        """Atomically replace ``index.json``."""
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self._path.parent, prefix=".index-")
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(index.to_bytes())
            os.replace(tmp_name, self._path)
        finally:
            Path(tmp_name).unlink(missing_ok=True)

    # -- Lookup -------------------------------------------------------------

    def entries(self) -> list[Descriptor]:
        return list(self.load().manifests)

    def tags(self) -> list[str]:
        """Tag names in index order."""
        return [d.tag for d in self.load().manifests if d.tag]

    def resolve(self, reference: str) -> Descriptor:
        """Resolve a tag name or a manifest digest.

        The returned descriptor has the ``ref.name`` annotation removed so it
        describes the manifest, not the index entry.
        """
        manifests = self.load().manifests
        if is_digest(reference):
            for entry in manifests:
                if entry.digest == reference:
                    return entry.without_tag()
        else:
            for entry in manifests:
                if entry.tag == reference:
                    return entry.without_tag()
        raise NotFoundError(f"{reference!r} not found in {self._path.parent}")

    def contains(self, digest: str) -> bool:
        return any(entry.digest == digest for entry in self.load().manifests)

    # -- Mutation -----------------------------------------------------------

    def tag(self, descriptor: Descriptor, name: str) -> None:
        """Point *name* at *descriptor*, replacing any prior entry of that name.

        An untagged entry for the same manifest is absorbed into the tagged
        one so each manifest appears at most once without a tag.
        """
        index = self.load()
        tagged = descriptor.without_tag().with_tag(name)
        kept = [
            entry
            for entry in index.manifests
            if entry.tag != name and not (entry.tag is None and entry.digest == descriptor.digest)
        ]
        replaced = [e for e in index.manifests if e.tag == name and e.digest != descriptor.digest]
        for old in replaced:
            logger.info("Tag %s moved from %s to %s", name, old.digest, descriptor.digest)
        kept.append(tagged)
        index.manifests = kept
        self.save(index)

    def add_untagged(self, descriptor: Descriptor) -> None:
        """Record a manifest without a tag.  No-op if it is already indexed."""
        index = self.load()
        if any(entry.digest == descriptor.digest for entry in index.manifests):
            return
        index.manifests.append(descriptor.without_tag())
        self.save(index)

    def untag(self, name: str) -> Descriptor | None:
        """Remove the entry for *name* and persist.  Returns the removed entry."""
        index = self.load()
        removed: Descriptor | None = None
        kept: list[Descriptor] = []
        for entry in index.manifests:
            if removed is None and entry.tag == name:
                removed = entry.without_tag()
                continue
            kept.append(entry)
        if removed is not None:
            index.manifests = kept
            self.save(index)
        return removed

    def remove(self, digests: Iterable[str]) -> list[Descriptor]:
        """Drop every *untagged* entry whose digest is in *digests*."""
        doomed = set(digests)
        index = self.load()
        removed = [e for e in index.manifests if e.tag is None and e.digest in doomed]
        if removed:
            index.manifests = [e for e in index.manifests if e not in removed]
            self.save(index)
        return removed
