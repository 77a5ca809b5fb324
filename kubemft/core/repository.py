"""Repository facade: one reference, one set of operations.

A ``Repository`` binds a parsed reference to its directory under the storage
root (``<storage_dir>/<registry>/<repository>``) and exposes the verbs the
CLI needs: save, dump, path, push, pull, copy, delete.  Local operations go
straight to the layout store; push and pull drive the copy engine against a
``RemoteRepository``.

``Registry`` is the read-only view across every repository in the storage
root, used for listing.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator

import httpx

from kubemft.config import MftSettings
from kubemft.core.context import OperationContext
from kubemft.core.copy import CopyOptions, CopyResult
from kubemft.core.copy import copy as copy_graph
from kubemft.core.gc import DeleteResult, GarbageCollector
from kubemft.core.layout import OCI_LAYOUT_FILE, LocalLayoutStore, StagingStore
from kubemft.core.reference import DEFAULT_REGISTRY, Reference, strip_default_registry
from kubemft.errors import (
    ConflictError,
    CorruptionError,
    ForbiddenError,
    MftError,
    NetworkError,
    NotFoundError,
    TransferError,
    UnauthorizedError,
)
from kubemft.models.descriptor import (
    ANNOTATION_CREATED,
    ANNOTATION_TITLE,
    ARTIFACT_TYPE,
    CONTENT_MEDIA_TYPE,
    EMPTY_CONFIG_BYTES,
    MEDIA_TYPE_EMPTY_JSON,
    Descriptor,
)
from kubemft.models.manifest import ListEntry, Manifest
from kubemft.remote.credentials import CredentialStore, DockerConfigCredentialStore
from kubemft.remote.transport import RemoteRepository

logger = logging.getLogger(__name__)


class Repository:
    """Operations on the artifact named by one reference.

    Parameters
    ----------
    reference:
        ``[registry/]repository[:tag|@digest]``; a bare ``name:tag`` lands in
        the ``local`` sandbox registry.
    settings:
        Storage root, timeouts and registry settings.
    credential_store:
        Used for push/pull.  Defaults to the Docker CLI config.
    client:
        ``httpx.Client`` for remote operations (tests inject a mock one).
    """

    def __init__(
        self,
        reference: str,
        settings: MftSettings,
        *,
        credential_store: CredentialStore | None = None,
        client: httpx.Client | None = None,
    ) -> None:
        self.ref = Reference.parse(reference)
        self._settings = settings
        self._credential_store = credential_store
        self._client = client
        self._local = LocalLayoutStore(self.layout_path)

    def __repr__(self) -> str:
        return f"Repository({str(self.ref)!r})"

    @property
    def name(self) -> str:
        return self.ref.name

    @property
    def tag(self) -> str:
        return self.ref.reference

    @property
    def layout_path(self) -> Path:
        return self._settings.storage_dir / self.ref.registry / self.ref.repository

    def local(self) -> LocalLayoutStore:
        return self._local

    def remote(self, context: OperationContext | None = None) -> RemoteRepository:
        store = self._credential_store
        if store is None:
            store = DockerConfigCredentialStore(self._settings.docker_config)
        return RemoteRepository(
            self.ref,
            self._settings,
            credential_store=store,
            client=self._client,
            context=context,
        )

    # -- Local reads --------------------------------------------------------

    def exists(self) -> bool:
        """Whether the tag (or digest) is present in the local layout."""
        try:
            self._local.resolve(self.tag)
        except NotFoundError:
            return False
        return True

    def resolve(self) -> Descriptor:
        try:
            return self._local.resolve(self.tag)
        except NotFoundError:
            raise NotFoundError(f"{self.ref} not found locally") from None

    def manifest(self) -> Manifest:
        return self._local.read_manifest(self.resolve())

    def _content_layer(self) -> Descriptor:
        manifest = self.manifest()
        if len(manifest.layers) != 1:
            raise CorruptionError(
                f"{self.ref}: expected exactly one layer, found {len(manifest.layers)}"
            )
        return manifest.layers[0]

    def dump(self) -> bytes:
        """The stored manifest file, byte-for-byte."""
        return self._local.blobs.read(self._content_layer())

    def path(self) -> Path:
        """Filesystem path of the content blob."""
        layer = self._content_layer()
        blob = self._local.blobs.path(layer.digest)
        if not blob.exists():
            raise NotFoundError(f"{self.ref}: content blob {layer.digest} is missing")
        return blob

    # -- Local writes -------------------------------------------------------

    def save(self, path: Path) -> Descriptor:
        """Wrap *path* as a single-layer artifact tagged with this reference.

        The file is staged and moved into the layout by the copy engine, so
        re-saving identical bytes writes no new content blob.
        """
        path = Path(path)
        if not path.is_file():
            raise NotFoundError(f"manifest file {path} does not exist")
        if self.ref.is_digest:
            raise ValueError(f"cannot save to digest reference {self.ref}")

        staging = StagingStore()
        content = staging.add_file(path, CONTENT_MEDIA_TYPE)
        config = staging.add_bytes(EMPTY_CONFIG_BYTES, MEDIA_TYPE_EMPTY_JSON)
        manifest = Manifest(
            artifact_type=ARTIFACT_TYPE,
            config=config,
            layers=[content],
            annotations={
                ANNOTATION_TITLE: path.name,
                ANNOTATION_CREATED: datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
            },
        )
        root = staging.add_manifest(manifest)
        staging.tag(root, self.tag)
        copy_graph(staging, self._local, self.tag)
        logger.info("Saved %s as %s (%s)", path, self.ref, root.digest)
        return root

    def copy(self, destination: str) -> CopyResult:
        """Copy this artifact (and its signatures) to another local reference.

        Raises
        ------
        NotFoundError
            If this reference does not exist locally.
        ConflictError
            If *destination* already exists.
        """
        self.resolve()
        target = Repository(
            destination,
            self._settings,
            credential_store=self._credential_store,
            client=self._client,
        )
        if target.exists():
            raise ConflictError(f"{target.ref} already exists")
        return copy_graph(
            self._local,
            target.local(),
            self.tag,
            target.tag,
            options=CopyOptions(include_referrers=True),
        )

    def delete(self) -> DeleteResult | None:
        """Delete the tag and reclaim orphan blobs.  ``None`` if absent."""
        if self.ref.is_digest:
            raise ValueError(f"delete needs a tag, not digest reference {self.ref}")
        collector = GarbageCollector(self._local, storage_root=self._settings.storage_dir)
        return collector.delete(self.tag, repository=self.ref.display_name)

    def discard(self) -> DeleteResult | None:
        """Drop an untagged manifest fetched by digest, with its signatures."""
        if not self.ref.is_digest:
            raise ValueError(f"discard needs a digest reference, not {self.ref}")
        collector = GarbageCollector(self._local, storage_root=self._settings.storage_dir)
        return collector.discard(self.tag, repository=self.ref.display_name)

    def prune(self) -> list[str]:
        """Reclaim blobs unreachable from any remaining tag."""
        if not self._local.root.exists():
            return []
        return GarbageCollector(self._local, storage_root=self._settings.storage_dir).prune()

    # -- Remote -------------------------------------------------------------

    def _check_remote(self) -> None:
        if self.ref.registry == DEFAULT_REGISTRY:
            raise ValueError(
                f"{self.ref} is in the local sandbox and has no registry; "
                "copy it to a registry reference first"
            )

    def push(self, context: OperationContext | None = None) -> CopyResult:
        """Upload the artifact and its signatures to the registry."""
        self._check_remote()
        self.resolve()
        with self._remote_errors("push"), self.remote(context) as remote:
            return copy_graph(
                self._local,
                remote,
                self.tag,
                options=CopyOptions(include_referrers=True),
                context=context,
            )

    def pull(self, context: OperationContext | None = None) -> CopyResult:
        """Download the artifact and its signatures into the local layout."""
        self._check_remote()
        with self._remote_errors("pull"), self.remote(context) as remote:
            return copy_graph(
                remote,
                self._local,
                self.tag,
                options=CopyOptions(include_referrers=True),
                context=context,
            )

    @contextmanager
    def _remote_errors(self, action: str) -> Iterator[None]:
        """Reclassify transport exceptions; kubemft errors pass through."""
        registry = self.ref.registry
        try:
            yield
        except MftError:
            raise
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            if status == 401:
                raise UnauthorizedError(
                    f"{action} {self.ref}: registry {registry} rejected the credentials; "
                    f"run 'docker login {registry}'"
                ) from exc
            if status == 403:
                raise ForbiddenError(
                    f"{action} {self.ref}: permission denied on {self.ref.repository} "
                    f"at {registry}"
                ) from exc
            raise TransferError(f"{action} {self.ref} failed: HTTP {status}") from exc
        except (httpx.TimeoutException, httpx.NetworkError) as exc:
            raise NetworkError(f"{action} {self.ref}: cannot reach {registry}: {exc}") from exc
        except httpx.HTTPError as exc:
            raise TransferError(f"{action} {self.ref} failed: {exc}") from exc


def format_size(size: int) -> str:
    """``512B``, ``1.5KB``, ``2.0MB``…"""
    unit = 1024
    if size < unit:
        return f"{size}B"
    div, exp = unit, 0
    n = size // unit
    while n >= unit:
        div *= unit
        exp += 1
        n //= unit
    return f"{size / div:.1f}{'KMGTPE'[exp]}B"


class Registry:
    """Every repository under the storage root."""

    def __init__(self, settings: MftSettings) -> None:
        self._root = settings.storage_dir

    def repositories(self) -> list[Path]:
        """Directories under the root that hold an OCI layout."""
        if not self._root.exists():
            return []
        return sorted(
            marker.parent
            for marker in self._root.rglob(OCI_LAYOUT_FILE)
            if (marker.parent / "index.json").exists()
        )

    def list(self) -> list[ListEntry]:
        """Tagged artifacts sorted by repository then tag.

        An unreadable ``index.json`` is logged and its repository skipped.
        """
        entries: list[ListEntry] = []
        for directory in self.repositories():
            name = strip_default_registry(directory.relative_to(self._root).as_posix())
            layout = LocalLayoutStore(directory)
            try:
                indexed = layout.index.entries()
            except CorruptionError as exc:
                logger.warning("Skipping %s: %s", name, exc)
                continue
            for descriptor in indexed:
                if not descriptor.tag:
                    continue
                try:
                    stat = layout.blobs.path(descriptor.digest).stat()
                except OSError as exc:
                    logger.warning("Skipping %s:%s: %s", name, descriptor.tag, exc)
                    continue
                entries.append(
                    ListEntry(
                        repository=name,
                        tag=descriptor.tag,
                        size=format_size(stat.st_size),
                        created=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
                    )
                )
        entries.sort(key=lambda e: (e.repository, e.tag))
        return entries
