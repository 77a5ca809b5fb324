"""Tests for Signer and Verifier against a local layout."""

from __future__ import annotations

import pytest
from cryptography.hazmat.primitives.asymmetric import ec

from kubemft.errors import NotFoundError, VerificationFailedError
from kubemft.models.descriptor import EMPTY_CONFIG
from kubemft.models.manifest import Manifest
from kubemft.signature import (
    SIGNATURE_ARTIFACT_TYPE,
    SIGNATURE_MEDIA_TYPE,
    KeyStore,
    Signer,
    Verifier,
)


@pytest.fixture
def saved(make_repo, make_file):
    repo = make_repo("app:v1")
    repo.save(make_file())
    return repo


def _public(key: ec.EllipticCurvePrivateKey) -> ec.EllipticCurvePublicKey:
    return key.public_key()


class TestSigner:
    def test_signature_manifest_shape(self, saved, default_keys: KeyStore):
        layout = saved.local()
        result = Signer.from_key_store(default_keys).sign(layout, "v1")

        assert result.subject == saved.resolve().digest
        (referrer,) = layout.predecessors(saved.resolve())
        assert referrer.digest == result.digest
        assert referrer.artifact_type == SIGNATURE_ARTIFACT_TYPE

        manifest = layout.read_manifest(referrer)
        assert manifest.subject is not None
        assert manifest.subject.digest == result.subject
        assert manifest.config == EMPTY_CONFIG
        assert [layer.media_type for layer in manifest.layers] == [SIGNATURE_MEDIA_TYPE]
        # The signature itself is never tagged.
        assert layout.tags() == ["v1"]

    def test_sign_missing_tag(self, saved, default_keys: KeyStore):
        with pytest.raises(NotFoundError):
            Signer.from_key_store(default_keys).sign(saved.local(), "v2")

    def test_sign_twice_adds_second_signature(self, saved, default_keys: KeyStore):
        signer = Signer.from_key_store(default_keys)
        first = signer.sign(saved.local(), "v1")
        second = signer.sign(saved.local(), "v1")
        found = {d.digest for d in saved.local().predecessors(saved.resolve())}
        assert {first.digest, second.digest} <= found


class TestVerifier:
    def test_round_trip(self, saved, default_keys: KeyStore):
        signed = Signer.from_key_store(default_keys).sign(saved.local(), "v1")
        result = Verifier.from_key_store(default_keys).verify(saved.local(), "v1")
        assert result.signature == signed.digest
        assert result.subject == signed.subject

    def test_matching_key_need_not_be_first(self, saved):
        signing_key = ec.generate_private_key(ec.SECP256R1())
        others = [ec.generate_private_key(ec.SECP256R1()) for _ in range(2)]
        Signer(signing_key).sign(saved.local(), "v1")

        verifier = Verifier([_public(k) for k in others] + [_public(signing_key)])
        verifier.verify(saved.local(), "v1")

    def test_any_signature_may_match(self, saved):
        old_key = ec.generate_private_key(ec.SECP256R1())
        new_key = ec.generate_private_key(ec.SECP256R1())
        Signer(old_key).sign(saved.local(), "v1")
        Signer(new_key).sign(saved.local(), "v1")
        Verifier([_public(new_key)]).verify(saved.local(), "v1")

    def test_unsigned_is_not_found(self, saved, default_keys: KeyStore):
        with pytest.raises(NotFoundError, match="no signature"):
            Verifier.from_key_store(default_keys).verify(saved.local(), "v1")

    def test_wrong_key_fails(self, saved, default_keys: KeyStore):
        Signer.from_key_store(default_keys).sign(saved.local(), "v1")
        stranger = ec.generate_private_key(ec.SECP256R1())
        with pytest.raises(VerificationFailedError):
            Verifier([_public(stranger)]).verify(saved.local(), "v1")

    def test_no_keys(self, saved):
        with pytest.raises(NotFoundError, match="no public keys"):
            Verifier([]).verify(saved.local(), "v1")

    def test_signature_bound_to_digest(self, make_repo, make_file, default_keys: KeyStore):
        """A signature for one manifest does not verify another."""
        first = make_repo("app:v1")
        first.save(make_file(b"one\n"))
        Signer.from_key_store(default_keys).sign(first.local(), "v1")

        second = make_repo("app:v2")
        second.save(make_file(b"two\n"))
        with pytest.raises(NotFoundError):
            Verifier.from_key_store(default_keys).verify(second.local(), "v2")

    def test_unreadable_signature_reported(self, saved, default_keys: KeyStore):
        layout = saved.local()
        signed = Signer.from_key_store(default_keys).sign(layout, "v1")
        manifest = layout.read_manifest(layout.index.resolve(signed.digest))
        layout.blobs.delete(manifest.layers[0].digest)

        with pytest.raises(VerificationFailedError, match="could not be read"):
            Verifier.from_key_store(default_keys).verify(layout, "v1")

    def test_non_signature_referrers_ignored(self, saved, default_keys: KeyStore):
        layout = saved.local()
        layout.put_manifest(
            Manifest(artifact_type="application/vnd.example.sbom", config=EMPTY_CONFIG, subject=saved.resolve())
        )
        with pytest.raises(NotFoundError):
            Verifier.from_key_store(default_keys).verify(layout, "v1")
