"""Verification of detached signatures against a set of trusted keys.

Success needs any trusted key to validate any discovered signature, so key
rotation and multiple signers work without choosing a key up front.  "No
signature at all" (``NotFoundError``) and "signatures present, none valid"
(``VerificationFailedError``) are different outcomes.
"""

from __future__ import annotations

import logging

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from pydantic import BaseModel, ConfigDict

from kubemft.core.interfaces import Target, fetch_all
from kubemft.errors import CorruptionError, MftError, NotFoundError, VerificationFailedError
from kubemft.models.descriptor import MEDIA_TYPE_IMAGE_MANIFEST, Descriptor
from kubemft.models.manifest import Manifest
from kubemft.signature.keys import KeyStore
from kubemft.signature.signer import SIGNATURE_ARTIFACT_TYPE, signing_payload

logger = logging.getLogger(__name__)


class VerifyResult(BaseModel):
    """Which signature validated, and the manifest it covers."""

    model_config = ConfigDict(frozen=True)

    subject: str
    signature: str


class _Unreadable(Exception):
    """A signature-typed referrer whose signature bytes could not be read."""


class Verifier:
    """Checks that a tag carries a signature from one of *public_keys*."""

    def __init__(self, public_keys: list[ec.EllipticCurvePublicKey]) -> None:
        self._public_keys = list(public_keys)

    @classmethod
    def from_key_store(cls, key_store: KeyStore) -> Verifier:
        return cls(key_store.load_public_keys())

    def verify(self, target: Target, tag: str) -> VerifyResult:
        """Verify *tag* in *target* (normally a local layout).

        Raises
        ------
        NotFoundError
            No trusted keys, unknown tag, or no signature for the tag.
        VerificationFailedError
            Signatures exist but none validates with any key.
        """
        if not self._public_keys:
            raise NotFoundError("no public keys available for verification")

        subject = target.resolve(tag)
        payload = signing_payload(subject.digest)
        found = False
        unreadable: list[str] = []

        for candidate in target.predecessors(subject):
            try:
                signature = _extract_signature(target, candidate)
            except _Unreadable as exc:
                found = True
                unreadable.append(str(exc))
                continue
            if signature is None:
                continue
            found = True
            for key in self._public_keys:
                try:
                    key.verify(signature, payload, ec.ECDSA(hashes.SHA256()))
                except InvalidSignature:
                    continue
                logger.info("Verified %s (%s) by signature %s", tag, subject.digest, candidate.digest)
                return VerifyResult(subject=subject.digest, signature=candidate.digest)

        if not found:
            raise NotFoundError(f"no signature found for {tag!r}")
        message = (
            f"signature verification failed for {tag!r}: "
            "none of the available public keys could verify the signature"
        )
        if unreadable:
            message += (
                f"; additionally, {len(unreadable)} signature(s) could not be read: "
                + "; ".join(unreadable)
            )
        raise VerificationFailedError(message)


def _extract_signature(target: Target, candidate: Descriptor) -> bytes | None:
    """Signature bytes of *candidate*, or ``None`` if it is not a signature.

    The artifact type is taken from the descriptor and, when absent there,
    from the manifest body.
    """
    is_signature = candidate.artifact_type == SIGNATURE_ARTIFACT_TYPE
    if not is_signature and candidate.media_type != MEDIA_TYPE_IMAGE_MANIFEST:
        return None

    try:
        manifest = Manifest.from_bytes(
            fetch_all(target, candidate), source=f"signature manifest {candidate.digest}"
        )
    except (MftError, OSError) as exc:
        if is_signature:
            raise _Unreadable(f"failed to read signature manifest {candidate.digest}: {exc}") from exc
        return None

    if manifest.artifact_type != SIGNATURE_ARTIFACT_TYPE:
        if is_signature:
            raise _Unreadable(f"{candidate.digest} is not a signature manifest")
        return None
    if not manifest.layers:
        raise _Unreadable(f"signature manifest {candidate.digest} has no layers")

    layer = manifest.layers[0]
    try:
        return fetch_all(target, layer)
    except (NotFoundError, CorruptionError, OSError) as exc:
        raise _Unreadable(f"failed to fetch signature blob {layer.digest}: {exc}") from exc
