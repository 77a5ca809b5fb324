"""Remote registry repository over the OCI distribution HTTP API.

``RemoteRepository`` implements the same ``Target`` protocol as the local
layout, so the copy engine moves content to and from a registry without
knowing which side is remote.  Endpoints used::

    HEAD/GET     /v2/<name>/blobs/<digest>
    POST, PUT    /v2/<name>/blobs/uploads/      (monolithic upload)
    HEAD/GET/PUT /v2/<name>/manifests/<tag|digest>
    GET          /v2/<name>/tags/list
    GET          /v2/<name>/referrers/<digest>

Non-404 HTTP failures surface as ``httpx.HTTPStatusError`` and connection
failures as ``httpx.TransportError``; the repository facade turns both into
the kubemft error taxonomy.
"""

from __future__ import annotations

import base64
import json
import logging
import re
import tempfile
from typing import BinaryIO, Generator

import httpx

from kubemft.config import MftSettings
from kubemft.core.context import OperationContext, background
from kubemft.core.hasher import digest_of, is_digest, iter_chunks
from kubemft.core.reference import Reference
from kubemft.errors import CorruptionError, NotFoundError, TransferError, UnauthorizedError
from kubemft.models.descriptor import MANIFEST_MEDIA_TYPES, MEDIA_TYPE_IMAGE_MANIFEST, Descriptor
from kubemft.models.manifest import Index
from kubemft.remote.credentials import Credential, CredentialStore

logger = logging.getLogger(__name__)

_DOCKER_HUB = "docker.io"
_DOCKER_HUB_HOST = "registry-1.docker.io"
_MANIFEST_ACCEPT = ", ".join(sorted(MANIFEST_MEDIA_TYPES))
_SPOOL_MAX_MEMORY = 4 * 1024 * 1024
_CHALLENGE_PARAM_RE = re.compile(r'(\w+)="([^"]*)"')
_CLIENT_ID = "kubectl-mft"


def _parse_challenge(header: str) -> tuple[str, dict[str, str]]:
    """``Bearer realm="…",service="…"`` → ``("bearer", {...})``."""
    scheme, _, rest = header.strip().partition(" ")
    return scheme.lower(), dict(_CHALLENGE_PARAM_RE.findall(rest))


def _basic_header(credential: Credential) -> str:
    raw = f"{credential.username}:{credential.password}".encode("utf-8")
    return "Basic " + base64.b64encode(raw).decode("ascii")


class RegistryAuth(httpx.Auth):
    """Answers registry ``401`` challenges with Basic or Bearer-token auth.

    The resulting ``Authorization`` header is cached for later requests, so
    streamed upload bodies are only sent once a token is already in hand.
    """

    def __init__(self, registry: str, credential_store: CredentialStore | None) -> None:
        self._registry = registry
        self._credential_store = credential_store
        self._authorization: str | None = None

    def _credential(self) -> Credential | None:
        if self._credential_store is None:
            return None
        credential = self._credential_store.get(self._registry)
        if credential is None or credential.is_empty:
            return None
        return credential

    def auth_flow(self, request: httpx.Request) -> Generator[httpx.Request, httpx.Response, None]:
        if self._authorization:
            request.headers["Authorization"] = self._authorization
        response = yield request
        if response.status_code != 401:
            return

        challenge = response.headers.get("WWW-Authenticate")
        if not challenge:
            return
        scheme, params = _parse_challenge(challenge)
        credential = self._credential()

        if scheme == "basic":
            if credential is None:
                return
            self._authorization = _basic_header(credential)
        elif scheme == "bearer":
            token_response = yield self._token_request(params, credential)
            token_response.read()
            if token_response.status_code != 200:
                raise UnauthorizedError(
                    f"token request to {params.get('realm')} for registry {self._registry} "
                    f"failed with HTTP {token_response.status_code}; "
                    f"run 'docker login {self._registry}'"
                )
            payload = token_response.json()
            token = payload.get("token") or payload.get("access_token")
            if not token:
                raise UnauthorizedError(f"registry {self._registry} issued no token")
            self._authorization = f"Bearer {token}"
        else:
            logger.debug("Unsupported auth scheme %r from %s", scheme, self._registry)
            return

        request.headers["Authorization"] = self._authorization
        yield request

    @staticmethod
    def _token_request(params: dict[str, str], credential: Credential | None) -> httpx.Request:
        realm = params.get("realm")
        if not realm:
            raise UnauthorizedError("bearer challenge without a realm")
        query = {k: v for k, v in params.items() if k in ("service", "scope")}
        if credential is not None and credential.refresh_token:
            form = dict(query, grant_type="refresh_token", client_id=_CLIENT_ID)
            form["refresh_token"] = credential.refresh_token
            return httpx.Request("POST", realm, data=form)
        headers = {}
        if credential is not None and credential.username:
            headers["Authorization"] = _basic_header(credential)
        return httpx.Request("GET", realm, params=query, headers=headers)


class RemoteRepository:
    """One repository on a remote registry, usable as a copy ``Target``.

    Parameters
    ----------
    reference:
        Parsed reference; only registry and repository are used here.
    settings:
        Provides the request timeout and the plain-HTTP registry list.
    credential_store:
        Source of credentials for auth challenges.  ``None`` means anonymous.
    client:
        Pre-built ``httpx.Client`` (tests inject one with a mock transport).
        When omitted a client is created and closed by ``close()``.
    context:
        Cancellation/deadline checked before every request.
    """

    def __init__(
        self,
        reference: Reference,
        settings: MftSettings,
        *,
        credential_store: CredentialStore | None = None,
        client: httpx.Client | None = None,
        context: OperationContext | None = None,
    ) -> None:
        self._reference = reference
        self._timeout = settings.request_timeout
        scheme = "http" if settings.is_plain_http(reference.registry) else "https"
        host = _DOCKER_HUB_HOST if reference.registry == _DOCKER_HUB else reference.registry
        repository = reference.repository
        if reference.registry == _DOCKER_HUB and "/" not in repository:
            repository = f"library/{repository}"
        self._base = f"{scheme}://{host}/v2/{repository}"
        self._auth = RegistryAuth(reference.registry, credential_store)
        self._owns_client = client is None
        self._client = client or httpx.Client(timeout=settings.request_timeout)
        self.context = context or background()

    @property
    def name(self) -> str:
        return self._reference.name

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> RemoteRepository:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # -- HTTP plumbing ------------------------------------------------------

    def _request_kwargs(self, what: str) -> dict:
        self.context.check(what)
        timeout = self._timeout
        remaining = self.context.remaining()
        if remaining is not None:
            timeout = min(timeout, remaining)
        return {"auth": self._auth, "timeout": timeout, "follow_redirects": True}

    def _request(self, method: str, url: str | httpx.URL, **kwargs) -> httpx.Response:
        options = self._request_kwargs(f"{method} {url}")
        return self._client.request(method, url, **options, **kwargs)

    def _url(self, kind: str, reference: str) -> str:
        return f"{self._base}/{kind}/{reference}"

    def _raise_for_status(self, response: httpx.Response, what: str) -> None:
        if response.status_code == 404:
            raise NotFoundError(f"{what} not found in {self.name}")
        response.raise_for_status()

    # -- MutableStore -------------------------------------------------------

    def fetch(self, descriptor: Descriptor) -> BinaryIO:
        """Download into a spooled temp file (memory first, disk when large)."""
        kind = "manifests" if descriptor.is_manifest else "blobs"
        headers = {"Accept": _MANIFEST_ACCEPT} if descriptor.is_manifest else {}
        url = self._url(kind, descriptor.digest)
        spool = tempfile.SpooledTemporaryFile(max_size=_SPOOL_MAX_MEMORY)
        try:
            options = self._request_kwargs(f"GET {url}")
            with self._client.stream("GET", url, headers=headers, **options) as response:
                self._raise_for_status(response, descriptor.digest)
                for chunk in response.iter_bytes():
                    spool.write(chunk)
        except BaseException:
            spool.close()
            raise
        spool.seek(0)
        return spool

    def exists(self, descriptor: Descriptor) -> bool:
        kind = "manifests" if descriptor.is_manifest else "blobs"
        headers = {"Accept": _MANIFEST_ACCEPT} if descriptor.is_manifest else {}
        response = self._request("HEAD", self._url(kind, descriptor.digest), headers=headers)
        if response.status_code == 404:
            return False
        response.raise_for_status()
        return True

    def push(self, descriptor: Descriptor, stream: BinaryIO) -> None:
        if descriptor.is_manifest:
            response = self._request(
                "PUT",
                self._url("manifests", descriptor.digest),
                content=stream.read(),
                headers={"Content-Type": descriptor.media_type},
            )
            response.raise_for_status()
            logger.debug("Pushed manifest %s to %s", descriptor.digest, self.name)
            return

        started = self._request("POST", f"{self._base}/blobs/uploads/")
        started.raise_for_status()
        location = started.headers.get("Location")
        if not location:
            raise TransferError(f"registry gave no upload location for {descriptor.digest}")
        upload_url = started.request.url.join(location).copy_add_param("digest", descriptor.digest)
        response = self._request(
            "PUT",
            upload_url,
            content=iter_chunks(stream),
            headers={
                "Content-Type": "application/octet-stream",
                "Content-Length": str(descriptor.size),
            },
        )
        response.raise_for_status()
        logger.debug("Uploaded blob %s (%d bytes) to %s", descriptor.digest, descriptor.size, self.name)

    def delete(self, descriptor: Descriptor) -> None:
        kind = "manifests" if descriptor.is_manifest else "blobs"
        response = self._request("DELETE", self._url(kind, descriptor.digest))
        if response.status_code != 404:
            response.raise_for_status()

    # -- TaggedIndex --------------------------------------------------------

    def _get_manifest(self, reference: str) -> httpx.Response:
        response = self._request(
            "GET", self._url("manifests", reference), headers={"Accept": _MANIFEST_ACCEPT}
        )
        self._raise_for_status(response, repr(reference))
        return response

    def resolve(self, reference: str) -> Descriptor:
        response = self._get_manifest(reference)
        body = response.content
        digest = digest_of(body)
        if is_digest(reference) and digest != reference:
            raise CorruptionError(
                f"manifest {reference} from {self.name} hashes to {digest}"
            )
        try:
            document = json.loads(body)
        except ValueError as exc:
            raise CorruptionError(f"malformed manifest {reference!r} from {self.name}") from exc
        content_type = response.headers.get("Content-Type", "").split(";")[0].strip()
        media_type = document.get("mediaType") or content_type or MEDIA_TYPE_IMAGE_MANIFEST
        return Descriptor(
            media_type=media_type,
            digest=digest,
            size=len(body),
            artifact_type=document.get("artifactType"),
        )

    def tag(self, descriptor: Descriptor, reference: str) -> None:
        body = self._get_manifest(descriptor.digest).content
        response = self._request(
            "PUT",
            self._url("manifests", reference),
            content=body,
            headers={"Content-Type": descriptor.media_type},
        )
        response.raise_for_status()
        logger.debug("Tagged %s as %s in %s", descriptor.digest, reference, self.name)

    def tags(self) -> list[str]:
        response = self._request("GET", f"{self._base}/tags/list")
        if response.status_code == 404:
            return []
        response.raise_for_status()
        return list(response.json().get("tags") or [])

    def predecessors(self, descriptor: Descriptor) -> list[Descriptor]:
        """Query the referrers API.  Registries without it report none."""
        response = self._request("GET", self._url("referrers", descriptor.digest))
        if response.status_code == 404:
            logger.debug("No referrers endpoint or entries for %s on %s", descriptor.digest, self.name)
            return []
        response.raise_for_status()
        index = Index.from_bytes(response.content, source=f"referrers of {descriptor.digest}")
        return list(index.manifests)
