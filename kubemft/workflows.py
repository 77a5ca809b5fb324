"""Multi-step verbs with their rollback contracts.

``pack``
    validate → check the signing key → save → sign.  If signing fails after
    the save, the just-written tag is deleted so no unsigned artifact is
    left behind for a consumer that does not verify.
``pull``
    pull → verify.  If verification fails, the pulled tag is deleted only
    when it did not exist locally before the pull; a copy that was already
    there is never destroyed by a failed re-pull.  A pull by digest drops
    the untagged entry it created instead.
``apply``
    pull and verify when absent (same contract as ``pull``) → dump → feed
    the bytes to ``kubectl apply -f -``.

Each verb takes one frozen option model instead of a growing parameter
list.
"""

from __future__ import annotations

import logging
import subprocess
from pathlib import Path
from typing import Callable, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict

from kubemft.core.context import OperationContext
from kubemft.core.repository import Repository
from kubemft.errors import ApplyError, MftError, NotFoundError
from kubemft.signature.keys import DEFAULT_KEY_NAME, KeyStore
from kubemft.signature.signer import SignResult, Signer
from kubemft.signature.verifier import Verifier, VerifyResult

logger = logging.getLogger(__name__)


@runtime_checkable
class ManifestValidator(Protocol):
    """Schema validation collaborator.  Raises ``ManifestInvalidError``."""

    def validate(self, path: Path) -> None:
        ...


ApplyRunner = Callable[[bytes], None]


class PackOptions(BaseModel):
    model_config = ConfigDict(frozen=True)

    skip_sign: bool = False
    key_name: str = DEFAULT_KEY_NAME
    skip_validation: bool = False


class PullOptions(BaseModel):
    model_config = ConfigDict(frozen=True)

    skip_verify: bool = False


class ApplyOptions(BaseModel):
    model_config = ConfigDict(frozen=True)

    skip_verify: bool = False


class PackResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    digest: str
    signature: SignResult | None = None


# ---------------------------------------------------------------------------
# pack
# ---------------------------------------------------------------------------


def pack(
    repo: Repository,
    path: Path,
    options: PackOptions,
    key_store: KeyStore,
    validator: ManifestValidator | None = None,
) -> PackResult:
    """Save *path* under *repo* and sign it unless ``skip_sign``."""
    if not options.skip_validation and validator is not None:
        validator.validate(Path(path))

    # Key problems are reported before anything is written.
    if not options.skip_sign and not key_store.private_exists(options.key_name):
        raise NotFoundError(
            f"signing key {options.key_name!r} not found, run 'kubectl mft key generate' "
            "to create a key pair, or use '--skip-sign' to skip signing"
        )

    descriptor = repo.save(path)
    if options.skip_sign:
        return PackResult(digest=descriptor.digest)

    try:
        signer = Signer.from_key_store(key_store, options.key_name)
        signature = signer.sign(repo.local(), repo.tag)
    except Exception:
        _rollback(repo, "packed")
        raise
    return PackResult(digest=descriptor.digest, signature=signature)


# ---------------------------------------------------------------------------
# pull
# ---------------------------------------------------------------------------


def pull(
    repo: Repository,
    options: PullOptions,
    key_store: KeyStore,
    context: OperationContext | None = None,
) -> VerifyResult | None:
    """Pull *repo* and verify it.  Returns ``None`` when verification is skipped."""
    existed_before = repo.exists()
    repo.pull(context)
    if options.skip_verify:
        return None
    try:
        return _verify(repo, key_store)
    except Exception:
        if existed_before:
            logger.info("Keeping pre-existing local copy of %s", repo.ref)
        else:
            _rollback(repo, "pulled")
        raise


# ---------------------------------------------------------------------------
# apply
# ---------------------------------------------------------------------------


def kubectl_apply(content: bytes) -> None:
    """Pipe *content* into ``kubectl apply -f -``."""
    try:
        subprocess.run(["kubectl", "apply", "-f", "-"], input=content, check=True)
    except FileNotFoundError as exc:
        raise ApplyError("kubectl not found on PATH") from exc
    except subprocess.CalledProcessError as exc:
        raise ApplyError(f"kubectl apply failed with exit code {exc.returncode}") from exc


def apply(
    repo: Repository,
    options: ApplyOptions,
    key_store: KeyStore,
    runner: ApplyRunner = kubectl_apply,
    context: OperationContext | None = None,
) -> None:
    """Apply *repo* to the current cluster, pulling it first if needed."""
    if not repo.exists():
        pull(repo, PullOptions(skip_verify=options.skip_verify), key_store, context)
    runner(repo.dump())
    logger.info("Applied %s", repo.ref)


# ---------------------------------------------------------------------------
# helpers
# ---------------------------------------------------------------------------


def _verify(repo: Repository, key_store: KeyStore) -> VerifyResult:
    if not key_store.public_keys_exist():
        raise NotFoundError(
            "no verification keys found, run 'kubectl mft key import <file>' to import "
            "a public key, or use '--skip-verify' to skip verification"
        )
    return Verifier.from_key_store(key_store).verify(repo.local(), repo.tag)


def _rollback(repo: Repository, what: str) -> None:
    """Delete the tag (or untagged digest entry) just written; failures are logged."""
    try:
        if repo.ref.is_digest:
            repo.discard()
        else:
            repo.delete()
    except (MftError, OSError, ValueError) as exc:
        logger.warning("Failed to clean up %s data for %s: %s", what, repo.ref, exc)
    else:
        logger.info("Removed %s data for %s", what, repo.ref)
