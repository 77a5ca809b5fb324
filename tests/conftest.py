"""Shared test fixtures for kubemft."""

from __future__ import annotations

import base64
import json
import logging
import re
import uuid
from collections.abc import Callable
from pathlib import Path

import httpx
import pytest

from kubemft.config import MftSettings
from kubemft.core.hasher import digest_of
from kubemft.core.repository import Repository
from kubemft.remote.credentials import Credential, StaticCredentialStore
from kubemft.signature.keys import KeyStore

SAMPLE_MANIFEST = b"""apiVersion: apps/v1
kind: Deployment
metadata:
  name: app
spec:
  replicas: 1
"""

WIDGET_CRD = b"""apiVersion: apiextensions.k8s.io/v1
kind: CustomResourceDefinition
metadata:
  name: widgets.example.com
spec:
  group: example.com
  names:
    kind: Widget
    plural: widgets
  scope: Namespaced
  versions:
    - name: v1
      served: true
      storage: true
      schema:
        openAPIV3Schema:
          type: object
          properties:
            spec:
              type: object
              required: [size]
              properties:
                size:
                  type: integer
    - name: v1beta1
      served: true
      storage: false
      schema:
        openAPIV3Schema:
          type: object
"""


@pytest.fixture(autouse=True)
def _reset_cli_logging():
    """Undo handlers the CLI callback installs on the package logger."""
    yield
    package_logger = logging.getLogger("kubemft")
    package_logger.handlers.clear()
    package_logger.setLevel(logging.NOTSET)


@pytest.fixture
def tmp_dir(tmp_path: Path) -> Path:
    """Provide a temporary directory for test artifacts."""
    return tmp_path


@pytest.fixture
def settings(tmp_dir: Path) -> MftSettings:
    """Settings with every directory inside the temp dir."""
    return MftSettings(
        storage_dir=tmp_dir / "manifests",
        key_dir=tmp_dir / "keys",
        schema_dir=tmp_dir / "schemas",
        docker_config=tmp_dir / "docker" / "config.json",
    )


@pytest.fixture
def env_settings(tmp_dir: Path, monkeypatch: pytest.MonkeyPatch) -> MftSettings:
    """Same layout as ``settings`` but supplied through the environment (CLI tests)."""
    monkeypatch.setenv("KUBECTL_MFT_STORAGE_DIR", str(tmp_dir / "manifests"))
    monkeypatch.setenv("KUBECTL_MFT_KEY_DIR", str(tmp_dir / "keys"))
    monkeypatch.setenv("KUBECTL_MFT_SCHEMA_DIR", str(tmp_dir / "schemas"))
    monkeypatch.setenv("KUBECTL_MFT_DOCKER_CONFIG", str(tmp_dir / "docker" / "config.json"))
    return MftSettings()


@pytest.fixture
def make_file(tmp_dir: Path) -> Callable[..., Path]:
    """Factory fixture: write bytes to a file in the temp dir."""

    def _factory(content: bytes = SAMPLE_MANIFEST, name: str = "deployment.yaml") -> Path:
        path = tmp_dir / "input" / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)
        return path

    return _factory


@pytest.fixture
def crd_file(make_file) -> Path:
    """A CRD for ``example.com/Widget`` with a v1 schema requiring an integer spec.size."""
    return make_file(WIDGET_CRD, name="widget-crd.yaml")


@pytest.fixture
def make_repo(settings: MftSettings) -> Callable[..., Repository]:
    """Factory fixture: a Repository bound to the test settings."""

    def _factory(reference: str, **kwargs) -> Repository:
        return Repository(reference, settings, **kwargs)

    return _factory


@pytest.fixture
def key_store(settings: MftSettings) -> KeyStore:
    return KeyStore(settings.key_dir)


@pytest.fixture
def default_keys(key_store: KeyStore) -> KeyStore:
    """A key store holding a generated ``default`` key pair."""
    key_store.generate()
    return key_store


# ---------------------------------------------------------------------------
# In-memory registry behind httpx.MockTransport
# ---------------------------------------------------------------------------

_ROUTE = re.compile(
    r"^/v2/(?P<name>.+?)/(?P<kind>blobs/uploads|blobs|manifests|tags|referrers)/?(?P<ref>[^/]*)$"
)


class FakeRegistry:
    """Just enough of the distribution API for the transport tests.

    Optional bearer auth: when ``token`` is set every API call needs
    ``Authorization: Bearer <token>``; the token endpoint hands it out for
    the ``username``/``password`` pair.
    """

    REALM = "https://auth.registry.test/token"

    def __init__(self) -> None:
        self.blobs: dict[str, bytes] = {}
        self.manifests: dict[str, tuple[bytes, str]] = {}
        self.tag_map: dict[str, str] = {}
        self.referrers: dict[str, list[dict]] = {}
        self.blob_uploads = 0
        self.manifest_puts = 0
        self.supports_referrers = True
        self.forbidden = False
        self.token: str | None = None
        self.username = "alice"
        self.password = "s3cret"
        self.token_requests = 0

    # -- helpers --

    def _authorized(self, request: httpx.Request) -> bool:
        if self.token is None:
            return True
        return request.headers.get("Authorization") == f"Bearer {self.token}"

    def _challenge(self, name: str) -> httpx.Response:
        header = (
            f'Bearer realm="{self.REALM}",service="registry.test",'
            f'scope="repository:{name}:pull,push"'
        )
        return httpx.Response(401, headers={"WWW-Authenticate": header})

    def _issue_token(self, request: httpx.Request) -> httpx.Response:
        self.token_requests += 1
        expected = base64.b64encode(f"{self.username}:{self.password}".encode()).decode()
        if request.headers.get("Authorization") != f"Basic {expected}":
            return httpx.Response(401)
        return httpx.Response(200, json={"token": self.token})

    def _resolve(self, reference: str) -> str | None:
        if reference.startswith("sha256:"):
            return reference if reference in self.manifests else None
        return self.tag_map.get(reference)

    # -- dispatcher --

    def handle(self, request: httpx.Request) -> httpx.Response:
        if request.url.host == "auth.registry.test":
            return self._issue_token(request)

        match = _ROUTE.match(request.url.path)
        if match is None:
            return httpx.Response(404)
        name, kind, ref = match.group("name"), match.group("kind"), match.group("ref")

        if not self._authorized(request):
            return self._challenge(name)
        if self.forbidden:
            return httpx.Response(403)

        method = request.method
        if kind == "blobs/uploads":
            if method == "POST":
                location = f"/v2/{name}/blobs/uploads/{uuid.uuid4().hex}?_state=abc"
                return httpx.Response(202, headers={"Location": location})
            digest = request.url.params.get("digest")
            body = request.content
            if digest_of(body) != digest:
                return httpx.Response(400, json={"errors": [{"code": "DIGEST_INVALID"}]})
            self.blobs[digest] = body
            self.blob_uploads += 1
            return httpx.Response(201, headers={"Docker-Content-Digest": digest})

        if kind == "blobs":
            body = self.blobs.get(ref)
            if body is None:
                return httpx.Response(404)
            if method == "DELETE":
                del self.blobs[ref]
                return httpx.Response(202)
            headers = {"Docker-Content-Digest": ref}
            if method == "HEAD":
                return httpx.Response(200, headers=headers)
            return httpx.Response(200, content=body)

        if kind == "manifests":
            if method == "PUT":
                return self._put_manifest(ref, request)
            digest = self._resolve(ref)
            if digest is None:
                return httpx.Response(404)
            if method == "DELETE":
                del self.manifests[digest]
                return httpx.Response(202)
            body, media_type = self.manifests[digest]
            headers = {"Content-Type": media_type, "Docker-Content-Digest": digest}
            if method == "HEAD":
                return httpx.Response(200, headers=headers)
            return httpx.Response(200, content=body, headers=headers)

        if kind == "tags":
            return httpx.Response(200, json={"name": name, "tags": sorted(self.tag_map)})

        if kind == "referrers":
            if not self.supports_referrers:
                return httpx.Response(404)
            return httpx.Response(
                200,
                json={
                    "schemaVersion": 2,
                    "mediaType": "application/vnd.oci.image.index.v1+json",
                    "manifests": self.referrers.get(ref, []),
                },
            )
        return httpx.Response(405)

    def _put_manifest(self, ref: str, request: httpx.Request) -> httpx.Response:
        body = request.content
        digest = digest_of(body)
        if ref.startswith("sha256:") and ref != digest:
            return httpx.Response(400, json={"errors": [{"code": "DIGEST_INVALID"}]})
        media_type = request.headers.get("Content-Type", "")
        document = json.loads(body)
        for layer in document.get("layers", []):
            if layer["digest"] not in self.blobs:
                return httpx.Response(400, json={"errors": [{"code": "BLOB_UNKNOWN"}]})
        if digest not in self.manifests:
            subject = document.get("subject")
            if subject:
                entry = {"mediaType": media_type, "digest": digest, "size": len(body)}
                if document.get("artifactType"):
                    entry["artifactType"] = document["artifactType"]
                self.referrers.setdefault(subject["digest"], []).append(entry)
        self.manifests[digest] = (body, media_type)
        self.manifest_puts += 1
        if not ref.startswith("sha256:"):
            self.tag_map[ref] = digest
        return httpx.Response(201, headers={"Docker-Content-Digest": digest})


@pytest.fixture
def fake_registry() -> FakeRegistry:
    return FakeRegistry()


@pytest.fixture
def registry_client(fake_registry: FakeRegistry):
    """An httpx.Client whose requests are answered by ``fake_registry``."""
    client = httpx.Client(transport=httpx.MockTransport(fake_registry.handle))
    yield client
    client.close()


@pytest.fixture
def credentials(fake_registry: FakeRegistry) -> StaticCredentialStore:
    return StaticCredentialStore(
        {
            "registry.test": Credential(
                username=fake_registry.username, password=fake_registry.password
            )
        }
    )


@pytest.fixture
def make_remote_repo(
    settings: MftSettings, registry_client: httpx.Client, credentials: StaticCredentialStore
) -> Callable[..., Repository]:
    """Factory fixture: a Repository wired to the fake registry."""

    def _factory(reference: str) -> Repository:
        return Repository(
            reference, settings, credential_store=credentials, client=registry_client
        )

    return _factory
