"""Credential lookup for remote registries.

The transport only depends on the ``CredentialStore`` protocol.  The default
implementation reads the Docker CLI configuration (``~/.docker/config.json``)
so ``docker login`` is the way to authenticate:

* ``auths.<registry>.auth``: base64 ``user:password``
* ``auths.<registry>.identitytoken``: OAuth2 refresh token
* ``credHelpers.<registry>`` / ``credsStore``: an external
  ``docker-credential-<helper>`` program speaking the helper protocol
"""

from __future__ import annotations

import base64
import json
import logging
import subprocess
from pathlib import Path
from typing import Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict

from kubemft.errors import UnauthorizedError

logger = logging.getLogger(__name__)

_DOCKER_HUB_ALIASES = ("docker.io", "registry-1.docker.io", "index.docker.io")
_DOCKER_HUB_KEY = "https://index.docker.io/v1/"


class Credential(BaseModel):
    """Username/password, or a refresh token for the token endpoint."""

    model_config = ConfigDict(frozen=True)

    username: str = ""
    password: str = ""
    refresh_token: str = ""

    @property
    def is_empty(self) -> bool:
        return not (self.username or self.password or self.refresh_token)


@runtime_checkable
class CredentialStore(Protocol):
    """Resolves the credential for a registry host, or ``None``."""

    def get(self, registry: str) -> Credential | None:
        ...


class StaticCredentialStore:
    """Fixed registry → credential mapping (tests, CI secrets)."""

    def __init__(self, credentials: dict[str, Credential] | None = None) -> None:
        self._credentials = dict(credentials or {})

    def get(self, registry: str) -> Credential | None:
        return self._credentials.get(registry)


class DockerConfigCredentialStore:
    """Reads credentials the way the Docker CLI stores them.

    Parameters
    ----------
    config_path:
        Path to ``config.json``.  A missing file means "no credentials".
    """

    def __init__(self, config_path: Path) -> None:
        self._config_path = Path(config_path)

    def _load(self) -> dict:
        if not self._config_path.exists():
            return {}
        try:
            return json.loads(self._config_path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.warning("Ignoring unreadable docker config %s: %s", self._config_path, exc)
            return {}

    @staticmethod
    def _keys_for(registry: str) -> list[str]:
        if registry in _DOCKER_HUB_ALIASES:
            return [_DOCKER_HUB_KEY, *_DOCKER_HUB_ALIASES]
        return [registry, f"https://{registry}", f"http://{registry}"]

    def get(self, registry: str) -> Credential | None:
        config = self._load()
        keys = self._keys_for(registry)

        helpers = config.get("credHelpers") or {}
        for key in keys:
            if key in helpers:
                return self._from_helper(helpers[key], registry)

        auths = config.get("auths") or {}
        for key in keys:
            entry = auths.get(key)
            if entry:
                credential = self._from_auth_entry(entry, registry)
                if credential is not None:
                    return credential

        store = config.get("credsStore")
        if store:
            return self._from_helper(store, registry)
        return None

    @staticmethod
    def _from_auth_entry(entry: dict, registry: str) -> Credential | None:
        if entry.get("identitytoken"):
            return Credential(refresh_token=entry["identitytoken"])
        if entry.get("username") or entry.get("password"):
            return Credential(username=entry.get("username", ""), password=entry.get("password", ""))
        encoded = entry.get("auth")
        if not encoded:
            return None
        try:
            username, _, password = base64.b64decode(encoded).decode("utf-8").partition(":")
        except (ValueError, UnicodeDecodeError) as exc:
            raise UnauthorizedError(
                f"malformed credentials for registry {registry} in docker config"
            ) from exc
        return Credential(username=username, password=password)

    @staticmethod
    def _from_helper(helper: str, registry: str) -> Credential | None:
        program = f"docker-credential-{helper}"
        try:
            completed = subprocess.run(
                [program, "get"],
                input=registry,
                capture_output=True,
                text=True,
                check=False,
                timeout=30,
            )
        except (OSError, subprocess.TimeoutExpired) as exc:
            logger.warning("Credential helper %s failed for %s: %s", program, registry, exc)
            return None
        if completed.returncode != 0:
            logger.debug("Credential helper %s has no entry for %s", program, registry)
            return None
        try:
            payload = json.loads(completed.stdout)
        except ValueError:
            logger.warning("Credential helper %s returned malformed output", program)
            return None
        username, secret = payload.get("Username", ""), payload.get("Secret", "")
        if username == "<token>":
            return Credential(refresh_token=secret)
        return Credential(username=username, password=secret)
