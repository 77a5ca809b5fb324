"""Content-addressed blob store.

Storage layout: ``{root}/{algorithm}/{hex}``: the ``blobs/`` directory of an
OCI image layout, so external tooling can inspect it directly.

Writing identical bytes twice is a no-op.  Blobs are removed only through
``delete``, which the garbage collector calls after a tag removal.
"""

from __future__ import annotations

import hashlib
import logging
import os
import tempfile
from pathlib import Path
from typing import BinaryIO, Iterator

from kubemft.core.hasher import digest_of, is_digest, iter_chunks, parse_digest
from kubemft.errors import CorruptionError, NotFoundError
from kubemft.models.descriptor import Descriptor

logger = logging.getLogger(__name__)


class BlobStore:
    """Digest-keyed blob storage rooted at a ``blobs/`` directory.

    Parameters
    ----------
    root:
        The ``blobs`` directory.  Created lazily on first write.
    """

    def __init__(self, root: Path) -> None:
        self._root = Path(root)

    @property
    def root(self) -> Path:
        return self._root

    def path(self, digest: str) -> Path:
        """Compute the storage path for a digest.

        Layout: {root}/{algorithm}/{hex}
        """
        algorithm, encoded = parse_digest(digest)
        return self._root / algorithm / encoded

    # ------------------------------------------------------------------
    # Write
    # ------------------------------------------------------------------

    def put(self, content: bytes, media_type: str) -> Descriptor:
        """Store bytes and return their descriptor.

        If the blob already exists it is integrity-checked, not rewritten.
        """
        descriptor = Descriptor(
            media_type=media_type, digest=digest_of(content), size=len(content)
        )
        path = self.path(descriptor.digest)
        if path.exists():
            if not self.verify(descriptor.digest):
                raise CorruptionError(
                    f"existing blob {descriptor.digest} failed integrity check"
                )
            return descriptor
        self._write_atomic(path, [content])
        logger.debug("Stored blob %s (%d bytes)", descriptor.digest, descriptor.size)
        return descriptor

    def push(self, descriptor: Descriptor, stream: BinaryIO) -> None:
        """Stream content into the store, checking it against *descriptor*.

        The bytes land in a temporary file next to their final location and
        are renamed into place only after digest and size match.  An
        existing blob is left untouched.
        """
        path = self.path(descriptor.digest)
        if path.exists():
            return
        algorithm, encoded = parse_digest(descriptor.digest)
        hasher = hashlib.new(algorithm)
        size = 0

        def _hashed() -> Iterator[bytes]:
            nonlocal size
            for chunk in iter_chunks(stream):
                hasher.update(chunk)
                size += len(chunk)
                yield chunk

        tmp_path = self._write_temp(path.parent, _hashed())
        try:
            if hasher.hexdigest() != encoded or size != descriptor.size:
                raise CorruptionError(
                    f"content mismatch for {descriptor.digest}: "
                    f"got {algorithm}:{hasher.hexdigest()} ({size} bytes, "
                    f"expected {descriptor.size})"
                )
            os.replace(tmp_path, path)
        finally:
            tmp_path.unlink(missing_ok=True)
        logger.debug("Pushed blob %s (%d bytes)", descriptor.digest, size)

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def get(self, descriptor: Descriptor | str) -> BinaryIO:
        """Open a blob for streaming reads.  The caller closes the handle."""
        digest = descriptor if isinstance(descriptor, str) else descriptor.digest
        try:
            return self.path(digest).open("rb")
        except FileNotFoundError:
            raise NotFoundError(f"blob {digest} not found") from None

    def read(self, descriptor: Descriptor) -> bytes:
        """Read a whole (manifest-sized) blob, verifying its digest."""
        with self.get(descriptor) as fh:
            data = fh.read()
        algorithm, encoded = parse_digest(descriptor.digest)
        if hashlib.new(algorithm, data).hexdigest() != encoded:
            raise CorruptionError(f"blob {descriptor.digest} does not match its digest")
        return data

    # ------------------------------------------------------------------
    # Check, verify, delete
    # ------------------------------------------------------------------

    def exists(self, digest: str) -> bool:
        """Check if a blob exists in the store."""
        return self.path(digest).is_file()

    def verify(self, digest: str) -> bool:
        """Re-hash stored data and compare against the digest."""
        path = self.path(digest)
        if not path.is_file():
            return False
        algorithm, encoded = parse_digest(digest)
        hasher = hashlib.new(algorithm)
        with path.open("rb") as fh:
            for chunk in iter_chunks(fh):
                hasher.update(chunk)
        return hasher.hexdigest() == encoded

    def delete(self, digest: str) -> None:
        """Remove a blob.  An absent blob is not an error."""
        self.path(digest).unlink(missing_ok=True)
        logger.debug("Deleted blob %s", digest)

    def digests(self) -> Iterator[str]:
        """Yield the digest of every blob currently stored."""
        if not self._root.is_dir():
            return
        for algo_dir in sorted(self._root.iterdir()):
            if not algo_dir.is_dir():
                continue
            for blob in sorted(algo_dir.iterdir()):
                if not blob.is_file() or blob.name.startswith("."):
                    continue
                digest = f"{algo_dir.name}:{blob.name}"
                if not is_digest(digest):
                    logger.debug("Ignoring stray file %s", blob)
                    continue
                yield digest

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _write_temp(self, directory: Path, chunks) -> Path:
        directory.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=directory, prefix=".tmp-")
        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(fd, "wb") as fh:
                for chunk in chunks:
                    fh.write(chunk)
        except BaseException:
            tmp_path.unlink(missing_ok=True)
            raise
        return tmp_path

    def _write_atomic(self, path: Path, chunks) -> None:
        tmp_path = self._write_temp(path.parent, chunks)
        try:
            os.replace(tmp_path, path)
        finally:
            tmp_path.unlink(missing_ok=True)
