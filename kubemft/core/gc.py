"""Garbage collection of orphan blobs after a tag deletion.

Deletion is ordered:

1. Resolve the tag.  A missing tag makes the delete a no-op.
2. Remove the tag from ``index.json`` and persist immediately, together with
   any untagged referrers (signatures) whose subject is no longer indexed.
   That includes signatures stranded earlier when their tag moved on.
3. Recompute the reachable set from every *remaining* index entry: the
   manifest itself plus its config and layers.  Subjects are not followed.
4. Delete each removed manifest and its config/layer blobs that are not in
   the reachable set.  A blob that fails to delete is logged and skipped.
5. If the index is now empty, remove the repository directory.

Blob deletion is always decided against what remains, never against what
was deleted, because two tags can share a blob.
"""

from __future__ import annotations

import logging
import shutil
from pathlib import Path

from pydantic import BaseModel, ConfigDict

from kubemft.core.layout import LocalLayoutStore
from kubemft.errors import NotFoundError
from kubemft.models.descriptor import Descriptor

logger = logging.getLogger(__name__)


class DeleteResult(BaseModel):
    """Outcome of deleting one tag."""

    model_config = ConfigDict(frozen=True)

    repository: str
    tag: str
    digest: str
    deleted_blobs: list[str] = []
    repository_removed: bool = False


class GarbageCollector:
    """Tag deletion with reachability-based blob reclamation for one layout.

    Parameters
    ----------
    layout:
        The repository to collect.
    storage_root:
        When given, empty parent directories between the repository and this
        root are pruned after the repository itself is removed.
    """

    def __init__(self, layout: LocalLayoutStore, *, storage_root: Path | None = None) -> None:
        self._layout = layout
        self._storage_root = Path(storage_root) if storage_root is not None else None

    # -- Reachability -------------------------------------------------------

    def reachable(self) -> set[str]:
        """Digests reachable from the current index (manifests, config, layers)."""
        live: set[str] = set()
        for entry in self._layout.index.entries():
            live.add(entry.digest)
            if not entry.is_manifest:
                continue
            try:
                manifest = self._layout.read_manifest(entry)
            except NotFoundError:
                logger.warning("Indexed manifest %s is missing its blob", entry.digest)
                continue
            live.update(d.digest for d in manifest.owned())
        return live

    # -- Delete -------------------------------------------------------------

    def delete(self, tag: str, *, repository: str = "") -> DeleteResult | None:
        """Delete *tag* and reclaim blobs nothing else references.

        Returns ``None`` when the tag does not exist (idempotent delete).
        """
        index = self._layout.index
        try:
            target = index.resolve(tag)
        except NotFoundError:
            logger.info("Nothing to delete: %s not found in %s", tag, self._layout.root)
            return None

        # Step 2: rewrite the index before anything is scanned.
        index.untag(tag)
        return self._reclaim(target, tag, repository)

    def discard(self, digest: str, *, repository: str = "") -> DeleteResult | None:
        """Remove the *untagged* entry for *digest*, e.g. a manifest pulled by digest.

        A manifest that is still tagged keeps its entry.  Returns ``None``
        when there is no untagged entry for *digest*.
        """
        removed = self._layout.index.remove([digest])
        if not removed:
            logger.info("Nothing to discard: no untagged %s in %s", digest, self._layout.root)
            return None
        return self._reclaim(removed[0], digest, repository)

    def _reclaim(self, target: Descriptor, name: str, repository: str) -> DeleteResult:
        index = self._layout.index
        removed = [target]
        if not index.contains(target.digest):
            removed.extend(self._drop_dangling_referrers(target))
        removed.extend(self._drop_orphan_referrers())

        # Step 3: reachable set from what remains.
        live = self.reachable()

        # Step 4: candidates come from the removed manifests only.
        candidates: list[str] = []
        for descriptor in removed:
            candidates.append(descriptor.digest)
            try:
                manifest = self._layout.read_manifest(descriptor)
            except NotFoundError:
                continue
            candidates.extend(d.digest for d in manifest.owned())

        deleted = self._delete_blobs(candidates, live)

        # Step 5: drop the repository once nothing is indexed.
        repository_removed = False
        if self._layout.is_empty():
            repository_removed = self._remove_repository()

        logger.info(
            "Deleted %s (%s): %d blob(s) reclaimed", name, target.digest, len(deleted)
        )
        return DeleteResult(
            repository=repository or str(self._layout.root),
            tag=name,
            digest=target.digest,
            deleted_blobs=deleted,
            repository_removed=repository_removed,
        )

    def _delete_blobs(self, candidates, live: set[str]) -> list[str]:
        deleted: list[str] = []
        for digest in dict.fromkeys(candidates):
            if digest in live:
                continue
            try:
                self._layout.blobs.delete(digest)
            except OSError as exc:
                logger.warning("Failed to delete blob %s: %s", digest, exc)
                continue
            deleted.append(digest)
        return deleted

    def _drop_dangling_referrers(self, subject: Descriptor) -> list[Descriptor]:
        """Remove untagged manifests whose subject chain ends at *subject*."""
        dropped: list[Descriptor] = []
        frontier = [subject]
        while frontier:
            current = frontier.pop()
            referrers = [r.digest for r in self._layout.predecessors(current)]
            for entry in self._layout.index.remove(referrers):
                dropped.append(entry)
                frontier.append(entry)
        return dropped

    def _drop_orphan_referrers(self) -> list[Descriptor]:
        """Remove untagged manifests whose subject is no longer indexed.

        Moving a tag to a new manifest leaves the old manifest's signatures
        in the index with nothing to point at; they go here, transitively.
        """
        dropped: list[Descriptor] = []
        while True:
            entries = self._layout.index.entries()
            indexed = {entry.digest for entry in entries}
            orphans: list[str] = []
            for entry in entries:
                if entry.tag is not None or not entry.is_manifest:
                    continue
                try:
                    manifest = self._layout.read_manifest(entry)
                except NotFoundError:
                    continue
                if manifest.subject is not None and manifest.subject.digest not in indexed:
                    orphans.append(entry.digest)
            if not orphans:
                return dropped
            removed = self._layout.index.remove(orphans)
            for entry in removed:
                logger.debug("Dropping signature %s: its subject is gone", entry.digest)
            dropped.extend(removed)

    def _remove_repository(self) -> bool:
        root = self._layout.root
        try:
            shutil.rmtree(root)
        except OSError as exc:
            logger.warning("Failed to remove repository directory %s: %s", root, exc)
            return False
        if self._storage_root is not None:
            parent = root.parent
            while parent != self._storage_root and self._storage_root in parent.parents:
                try:
                    parent.rmdir()
                except OSError:
                    break
                parent = parent.parent
        logger.info("Removed empty repository %s", root)
        return True

    # -- Prune --------------------------------------------------------------

    def prune(self) -> list[str]:
        """Delete every blob unreachable from the current index.

        Reclaims blobs left behind when a tag was moved to a new manifest,
        together with the signatures of the manifest it used to point at.
        """
        self._drop_orphan_referrers()
        live = self.reachable()
        deleted = self._delete_blobs(list(self._layout.blobs.digests()), live)
        if deleted:
            logger.info("Pruned %d unreachable blob(s) from %s", len(deleted), self._layout.root)
        return deleted
