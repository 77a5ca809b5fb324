"""Copy engine: moves a manifest graph between any two targets.

The walk is post-order over config, layers and subject: every successor
lands at the destination before the manifest that points to it, and the root
manifest is tagged last.  Anything the destination already has is skipped,
so a copy interrupted half-way can simply be re-run.

With ``include_referrers`` the engine also copies manifests whose subject is
the root (detached signatures), after the root itself is in place.
"""

from __future__ import annotations

import logging

from pydantic import BaseModel, ConfigDict, Field

from kubemft.core.context import OperationContext, background
from kubemft.core.hasher import is_digest
from kubemft.core.interfaces import ReadableStore, Target, fetch_all
from kubemft.models.descriptor import MEDIA_TYPE_IMAGE_INDEX, Descriptor
from kubemft.models.manifest import Index, Manifest

logger = logging.getLogger(__name__)


class CopyOptions(BaseModel):
    """Knobs for one copy."""

    model_config = ConfigDict(frozen=True)

    include_referrers: bool = False


class CopyResult(BaseModel):
    """What a copy did: the root descriptor and per-blob outcome."""

    root: Descriptor
    copied: list[Descriptor] = Field(default_factory=list)
    skipped: list[Descriptor] = Field(default_factory=list)


def successors(store: ReadableStore, descriptor: Descriptor) -> list[Descriptor]:
    """Descriptors referenced by *descriptor* (empty for plain blobs)."""
    if not descriptor.is_manifest:
        return []
    data = fetch_all(store, descriptor)
    if descriptor.media_type == MEDIA_TYPE_IMAGE_INDEX:
        return list(Index.from_bytes(data, source=f"index {descriptor.digest}").manifests)
    return Manifest.from_bytes(data, source=f"manifest {descriptor.digest}").successors()


def copy(
    source: Target,
    dest: Target,
    src_ref: str,
    dst_ref: str | None = None,
    *,
    options: CopyOptions | None = None,
    context: OperationContext | None = None,
) -> CopyResult:
    """Copy *src_ref* from *source* into *dest* and tag it *dst_ref*.

    Parameters
    ----------
    source, dest:
        Any two targets (local layout, staging store, remote repository).
    src_ref:
        Tag or digest to resolve in *source*.
    dst_ref:
        Tag to apply at *dest*; defaults to *src_ref*.
    options:
        ``CopyOptions``; referrers are not copied by default.
    context:
        Cancellation/deadline checked before every blob.

    Returns
    -------
    CopyResult
        The root descriptor and the descriptors copied and skipped.
    """
    options = options or CopyOptions()
    context = context or background()
    root = source.resolve(src_ref)
    result = CopyResult(root=root)

    _copy_graph(source, dest, root, result, context, visited=set())

    if options.include_referrers:
        for referrer in source.predecessors(root):
            _copy_graph(source, dest, referrer, result, context, visited=set())

    context.check(f"copy of {src_ref}")
    target_ref = dst_ref or src_ref
    if not is_digest(target_ref):
        dest.tag(root, target_ref)
    logger.info(
        "Copied %s -> %s (%d copied, %d skipped)",
        src_ref,
        dst_ref or src_ref,
        len(result.copied),
        len(result.skipped),
    )
    return result


def _copy_graph(
    source: Target,
    dest: Target,
    node: Descriptor,
    result: CopyResult,
    context: OperationContext,
    visited: set[str],
) -> None:
    if node.digest in visited:
        return
    visited.add(node.digest)

    context.check(f"copy of {node.digest}")
    if dest.exists(node):
        result.skipped.append(node)
        return

    for child in successors(source, node):
        _copy_graph(source, dest, child, result, context, visited)

    context.check(f"copy of {node.digest}")
    with source.fetch(node) as stream:
        dest.push(node, stream)
    result.copied.append(node)
    logger.debug("Transferred %s (%s, %d bytes)", node.digest, node.media_type, node.size)

