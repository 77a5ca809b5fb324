"""Artifact references: ``<registry>/<repository>[:tag | @digest]``.

A bare ``name:tag`` (no ``/``) is rewritten to ``local/name:tag`` before
parsing.  The ``local`` registry is a sandbox namespace for artifacts that
are never meant to be pushed; ``display_name`` strips it again for listing.
"""

from __future__ import annotations

import re

from pydantic import BaseModel, ConfigDict

from kubemft.core.hasher import is_digest

DEFAULT_REGISTRY = "local"
DEFAULT_TAG = "latest"

_PATH_COMPONENT = r"[a-z0-9]+(?:(?:[._]|__|[-]+)[a-z0-9]+)*"
_REPOSITORY_RE = re.compile(rf"^{_PATH_COMPONENT}(?:/{_PATH_COMPONENT})*$")
_TAG_RE = re.compile(r"^[\w][\w.-]{0,127}$")
_REGISTRY_RE = re.compile(r"^[A-Za-z0-9.-]+(?::[0-9]+)?$")


def normalize(text: str) -> str:
    """Prefix the default registry when *text* has no ``/``.

    ``"myapp:v1"`` becomes ``"local/myapp:v1"``.
    """
    if "/" not in text:
        return f"{DEFAULT_REGISTRY}/{text}"
    return text


class Reference(BaseModel):
    """A parsed, normalized artifact reference."""

    model_config = ConfigDict(frozen=True)

    registry: str
    repository: str
    reference: str = DEFAULT_TAG

    @classmethod
    def parse(cls, text: str) -> Reference:
        """Normalize and parse *text*.

        Raises
        ------
        ValueError
            If any part of the reference is malformed.
        """
        raw = normalize(text.strip())
        registry, _, remainder = raw.partition("/")
        if not registry or not remainder:
            raise ValueError(f"invalid reference {text!r}: missing repository")
        if not _REGISTRY_RE.match(registry):
            raise ValueError(f"invalid reference {text!r}: bad registry {registry!r}")

        if "@" in remainder:
            repository, _, reference = remainder.partition("@")
            if not is_digest(reference):
                raise ValueError(f"invalid reference {text!r}: bad digest {reference!r}")
        else:
            repository, sep, reference = remainder.rpartition(":")
            if not sep or "/" in reference:
                repository, reference = remainder, DEFAULT_TAG
            elif not _TAG_RE.match(reference):
                raise ValueError(f"invalid reference {text!r}: bad tag {reference!r}")

        if not _REPOSITORY_RE.match(repository):
            raise ValueError(
                f"invalid reference {text!r}: bad repository {repository!r}"
            )
        return cls(registry=registry, repository=repository, reference=reference)

    @property
    def name(self) -> str:
        """Directory name under the storage root: ``registry/repository``."""
        return f"{self.registry}/{self.repository}"

    @property
    def display_name(self) -> str:
        """``name`` with the sandbox ``local/`` prefix stripped."""
        return strip_default_registry(self.name)

    @property
    def is_digest(self) -> bool:
        return is_digest(self.reference)

    def __str__(self) -> str:
        separator = "@" if self.is_digest else ":"
        return f"{self.name}{separator}{self.reference}"


def strip_default_registry(name: str) -> str:
    prefix = f"{DEFAULT_REGISTRY}/"
    return name[len(prefix):] if name.startswith(prefix) else name
