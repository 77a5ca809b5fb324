"""Capability interfaces composed into a copy target.

A *target* is anything the copy engine can read from or write to: the local
OCI layout, the ephemeral staging store used by ``save``, or a remote
registry repository.  The engine only ever talks to these protocols.
"""

from __future__ import annotations

from typing import BinaryIO, Protocol, runtime_checkable

from kubemft.models.descriptor import Descriptor


@runtime_checkable
class ReadableStore(Protocol):
    """Content lookup by descriptor."""

    def fetch(self, descriptor: Descriptor) -> BinaryIO:
        """Open the content for reading.  Raises ``NotFoundError`` if absent."""
        ...

    def exists(self, descriptor: Descriptor) -> bool:
        ...


@runtime_checkable
class MutableStore(ReadableStore, Protocol):
    """Content storage keyed by digest."""

    def push(self, descriptor: Descriptor, stream: BinaryIO) -> None:
        """Store content, verifying it against *descriptor*."""
        ...

    def delete(self, descriptor: Descriptor) -> None:
        """Remove content.  Absent content is not an error."""
        ...


@runtime_checkable
class TaggedIndex(Protocol):
    """Tag → manifest mapping plus subject (referrer) lookup."""

    def resolve(self, reference: str) -> Descriptor:
        """Resolve a tag or digest.  Raises ``NotFoundError`` if absent."""
        ...

    def tag(self, descriptor: Descriptor, reference: str) -> None:
        ...

    def tags(self) -> list[str]:
        ...

    def predecessors(self, descriptor: Descriptor) -> list[Descriptor]:
        """Manifests whose ``subject`` is *descriptor*."""
        ...


@runtime_checkable
class Target(MutableStore, TaggedIndex, Protocol):
    """A store and its index: the unit the copy engine works between."""


def fetch_all(store: ReadableStore, descriptor: Descriptor) -> bytes:
    """Read a whole (manifest-sized) document from *store*."""
    with store.fetch(descriptor) as fh:
        return fh.read()
