"""Tests for reference parsing and the ``local/`` sandbox normalization."""

from __future__ import annotations

import pytest

from kubemft.core.hasher import digest_of
from kubemft.core.reference import Reference, normalize, strip_default_registry


class TestNormalize:
    def test_bare_name_gets_local_prefix(self):
        assert normalize("app:v1") == "local/app:v1"

    def test_qualified_name_unchanged(self):
        assert normalize("ghcr.io/org/app:v1") == "ghcr.io/org/app:v1"

    def test_strip_default_registry(self):
        assert strip_default_registry("local/app") == "app"
        assert strip_default_registry("ghcr.io/org/app") == "ghcr.io/org/app"


class TestReferenceParse:
    def test_bare_and_local_resolve_to_same_repository(self):
        assert Reference.parse("app:v1") == Reference.parse("local/app:v1")
        assert Reference.parse("app:v1").name == "local/app"

    def test_default_tag(self):
        ref = Reference.parse("ghcr.io/org/app")
        assert ref.reference == "latest"

    def test_registry_with_port(self):
        ref = Reference.parse("localhost:5000/team/app:dev")
        assert ref.registry == "localhost:5000"
        assert ref.repository == "team/app"
        assert ref.reference == "dev"
        assert ref.name == "localhost:5000/team/app"

    def test_digest_reference(self):
        digest = digest_of(b"manifest")
        ref = Reference.parse(f"ghcr.io/org/app@{digest}")
        assert ref.is_digest is True
        assert ref.reference == digest
        assert str(ref) == f"ghcr.io/org/app@{digest}"

    def test_display_name(self):
        assert Reference.parse("app:v1").display_name == "app"
        assert Reference.parse("ghcr.io/org/app:v1").display_name == "ghcr.io/org/app"

    def test_str_roundtrip(self):
        assert str(Reference.parse("app:v1")) == "local/app:v1"

    @pytest.mark.parametrize(
        "bad",
        ["", "local/App:v1", "local/app:bad tag", "local/app@sha256:short", "bad registry/app:v1"],
    )
    def test_rejects_malformed(self, bad: str):
        with pytest.raises(ValueError):
            Reference.parse(bad)
