"""Detached signatures stored as referrer manifests in the same repository."""

from kubemft.signature.keys import DEFAULT_KEY_NAME, KeyInfo, KeyStore
from kubemft.signature.signer import (
    SIGNATURE_ARTIFACT_TYPE,
    SIGNATURE_MEDIA_TYPE,
    SignResult,
    Signer,
)
from kubemft.signature.verifier import VerifyResult, Verifier

__all__ = [
    "DEFAULT_KEY_NAME",
    "KeyInfo",
    "KeyStore",
    "SIGNATURE_ARTIFACT_TYPE",
    "SIGNATURE_MEDIA_TYPE",
    "SignResult",
    "Signer",
    "VerifyResult",
    "Verifier",
]
