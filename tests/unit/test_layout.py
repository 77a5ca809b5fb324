"""Tests for LocalLayoutStore and StagingStore as copy targets."""

from __future__ import annotations

import io
import json
from pathlib import Path

import pytest

from kubemft.core.interfaces import Target
from kubemft.core.layout import OCI_LAYOUT_FILE, LocalLayoutStore, StagingStore
from kubemft.errors import NotFoundError
from kubemft.models.descriptor import (
    ANNOTATION_TITLE,
    EMPTY_CONFIG,
    EMPTY_CONFIG_BYTES,
    MEDIA_TYPE_EMPTY_JSON,
)
from kubemft.models.manifest import Manifest


@pytest.fixture
def layout(tmp_dir: Path) -> LocalLayoutStore:
    return LocalLayoutStore(tmp_dir / "local" / "app")


def _store_artifact(layout: LocalLayoutStore, content: bytes, subject=None) -> tuple:
    config = layout.put_blob(EMPTY_CONFIG_BYTES, MEDIA_TYPE_EMPTY_JSON)
    layer = layout.put_blob(content, "text/plain")
    manifest = Manifest(artifact_type="test/type", config=config, layers=[layer], subject=subject)
    return layout.put_manifest(manifest), layer


class TestLocalLayoutStore:
    def test_satisfies_target_protocol(self, layout: LocalLayoutStore):
        assert isinstance(layout, Target)
        assert isinstance(StagingStore(), Target)

    def test_nothing_created_until_write(self, layout: LocalLayoutStore):
        assert not layout.root.exists()
        assert layout.is_empty()

    def test_oci_layout_marker(self, layout: LocalLayoutStore):
        layout.put_blob(b"x", "text/plain")
        marker = json.loads((layout.root / OCI_LAYOUT_FILE).read_text())
        assert marker == {"imageLayoutVersion": "1.0.0"}

    def test_put_manifest_is_untagged(self, layout: LocalLayoutStore):
        descriptor, _ = _store_artifact(layout, b"content")
        assert layout.tags() == []
        assert layout.index.contains(descriptor.digest)
        assert layout.exists(descriptor)

    def test_tag_and_resolve(self, layout: LocalLayoutStore):
        descriptor, _ = _store_artifact(layout, b"content")
        layout.tag(descriptor, "v1")
        assert layout.resolve("v1").digest == descriptor.digest
        assert layout.tags() == ["v1"]

    def test_tag_requires_manifest_blob(self, layout: LocalLayoutStore):
        manifest = Manifest(config=EMPTY_CONFIG)
        with pytest.raises(NotFoundError):
            layout.tag(manifest.descriptor(), "v1")

    def test_manifest_exists_only_when_indexed(self, layout: LocalLayoutStore):
        manifest = Manifest(config=EMPTY_CONFIG)
        descriptor = manifest.descriptor()
        layout.put_blob(manifest.to_bytes(), descriptor.media_type)
        assert layout.blobs.exists(descriptor.digest)
        assert layout.exists(descriptor) is False

    def test_push_manifest_indexes_it(self, layout: LocalLayoutStore):
        manifest = Manifest(config=EMPTY_CONFIG)
        descriptor = manifest.descriptor()
        layout.push(descriptor, io.BytesIO(manifest.to_bytes()))
        assert layout.index.contains(descriptor.digest)

    def test_predecessors(self, layout: LocalLayoutStore):
        subject, _ = _store_artifact(layout, b"signed content")
        layout.tag(subject, "v1")
        referrer, _ = _store_artifact(layout, b"signature", subject=subject)
        _store_artifact(layout, b"unrelated")

        found = layout.predecessors(subject)
        assert [d.digest for d in found] == [referrer.digest]
        assert found[0].artifact_type == "test/type"

    def test_predecessors_none(self, layout: LocalLayoutStore):
        subject, _ = _store_artifact(layout, b"lonely")
        assert layout.predecessors(subject) == []


class TestStagingStore:
    def test_add_file(self, make_file):
        path = make_file(b"kind: ConfigMap\n", name="cm.yaml")
        staging = StagingStore()
        descriptor = staging.add_file(path, "text/yaml")
        assert descriptor.size == len(b"kind: ConfigMap\n")
        assert descriptor.annotations == {ANNOTATION_TITLE: "cm.yaml"}
        with staging.fetch(descriptor) as fh:
            assert fh.read() == b"kind: ConfigMap\n"

    def test_resolve_tagged_manifest(self):
        staging = StagingStore()
        descriptor = staging.add_manifest(Manifest(config=EMPTY_CONFIG))
        staging.tag(descriptor, "v1")
        assert staging.resolve("v1") == descriptor
        assert staging.resolve(descriptor.digest) == descriptor
        with pytest.raises(NotFoundError):
            staging.resolve("v2")
