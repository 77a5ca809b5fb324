"""Signing: a detached signature stored as a referrer of the signed manifest.

The signature manifest has the signature artifact type, the signed manifest
as its ``subject`` and exactly one layer holding the DER-encoded ECDSA
signature.  It is stored untagged; ``predecessors()`` finds it.

The signed message is the UTF-8 text of the manifest digest
(``"sha256:<hex>"``), not the manifest bytes.  Signatures made by other
kubectl-mft clients depend on this, so it must not change.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Final

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from pydantic import BaseModel, ConfigDict

from kubemft.core.layout import LocalLayoutStore
from kubemft.models.descriptor import (
    ANNOTATION_CREATED,
    EMPTY_CONFIG_BYTES,
    MEDIA_TYPE_EMPTY_JSON,
)
from kubemft.models.manifest import Manifest
from kubemft.signature.keys import DEFAULT_KEY_NAME, KeyStore

logger = logging.getLogger(__name__)

SIGNATURE_ARTIFACT_TYPE: Final = "application/vnd.kubectl-mft.signature.v1"
SIGNATURE_MEDIA_TYPE: Final = "application/vnd.kubectl-mft.signature.v1+der"


def signing_payload(digest: str) -> bytes:
    """The bytes that are signed for a manifest digest."""
    return digest.encode("utf-8")


class SignResult(BaseModel):
    """Digest of the stored signature manifest and of the manifest it signs."""

    model_config = ConfigDict(frozen=True)

    digest: str
    subject: str


class Signer:
    """Signs tagged manifests in a local layout with one private key."""

    def __init__(self, private_key: ec.EllipticCurvePrivateKey) -> None:
        self._private_key = private_key

    @classmethod
    def from_key_store(cls, key_store: KeyStore, name: str = DEFAULT_KEY_NAME) -> Signer:
        return cls(key_store.load_private(name))

    def sign(self, layout: LocalLayoutStore, tag: str) -> SignResult:
        """Sign the manifest *tag* resolves to and store the signature.

        Raises
        ------
        NotFoundError
            If *tag* does not exist in *layout*.
        """
        subject = layout.resolve(tag)
        signature = self._private_key.sign(
            signing_payload(subject.digest), ec.ECDSA(hashes.SHA256())
        )

        config = layout.put_blob(EMPTY_CONFIG_BYTES, MEDIA_TYPE_EMPTY_JSON)
        layer = layout.put_blob(signature, SIGNATURE_MEDIA_TYPE)
        manifest = Manifest(
            artifact_type=SIGNATURE_ARTIFACT_TYPE,
            config=config,
            layers=[layer],
            subject=subject,
            annotations={
                ANNOTATION_CREATED: datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
            },
        )
        descriptor = layout.put_manifest(manifest)
        logger.info("Signed %s (%s) with signature %s", tag, subject.digest, descriptor.digest)
        return SignResult(digest=descriptor.digest, subject=subject.digest)
