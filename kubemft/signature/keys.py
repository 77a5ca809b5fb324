"""Named ECDSA P-256 key pairs on disk.

Layout of the key directory (mode 0700)::

    <name>.key   PEM / PKCS8 private key, mode 0600
    <name>.pub   PEM / SubjectPublicKeyInfo public key, mode 0644

A private key readable by group or others is refused at load time.  Public
keys can be exported and imported on their own, so a verifier only ever
needs the ``.pub`` files of the signers it trusts.
"""

from __future__ import annotations

import logging
import os
import stat
from pathlib import Path
from typing import Literal

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec
from pydantic import BaseModel, ConfigDict

from kubemft.errors import ConflictError, KeyStoreError, NotFoundError

logger = logging.getLogger(__name__)

DEFAULT_KEY_NAME = "default"
PRIVATE_KEY_SUFFIX = ".key"
PUBLIC_KEY_SUFFIX = ".pub"


class KeyInfo(BaseModel):
    """One file in the key directory."""

    model_config = ConfigDict(frozen=True)

    name: str
    kind: Literal["private", "public"]
    path: Path


def validate_key_name(name: str) -> str:
    """Reject names that are not a plain file name."""
    if not name:
        raise KeyStoreError("key name must not be empty")
    if "/" in name or "\\" in name or ".." in name or Path(name).name != name:
        raise KeyStoreError(
            f"invalid key name {name!r}: must be a simple file name without '/' or '..'"
        )
    return name


def parse_public_key(data: bytes, *, source: str = "public key") -> ec.EllipticCurvePublicKey:
    """Load a PEM public key and require it to be an EC key."""
    try:
        key = serialization.load_pem_public_key(data)
    except (ValueError, UnsupportedAlgorithm) as exc:
        raise KeyStoreError(f"invalid {source}: {exc}") from exc
    if not isinstance(key, ec.EllipticCurvePublicKey):
        raise KeyStoreError(f"invalid {source}: not an ECDSA public key")
    return key


class KeyStore:
    """Generate, import, export, list and load named keys.

    Parameters
    ----------
    key_dir:
        Directory holding the key files.  Created (0700) on first write.
    """

    def __init__(self, key_dir: Path) -> None:
        self._dir = Path(key_dir)

    @property
    def key_dir(self) -> Path:
        return self._dir

    def private_path(self, name: str) -> Path:
        return self._dir / f"{validate_key_name(name)}{PRIVATE_KEY_SUFFIX}"

    def public_path(self, name: str) -> Path:
        return self._dir / f"{validate_key_name(name)}{PUBLIC_KEY_SUFFIX}"

    def _ensure_dir(self) -> None:
        self._dir.mkdir(mode=0o700, parents=True, exist_ok=True)

    @staticmethod
    def _write(path: Path, data: bytes, mode: int) -> None:
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, mode)
        with os.fdopen(fd, "wb") as fh:
            fh.write(data)
        # O_CREAT honours the umask; an overwritten file keeps its old mode.
        os.chmod(path, mode)

    # -- Queries ------------------------------------------------------------

    def private_exists(self, name: str = DEFAULT_KEY_NAME) -> bool:
        try:
            return self.private_path(name).is_file()
        except KeyStoreError:
            return False

    def public_keys_exist(self) -> bool:
        return any(info.kind == "public" for info in self.list())

    def list(self) -> list[KeyInfo]:
        """Every key file, sorted by name (private before public)."""
        if not self._dir.is_dir():
            return []
        keys: list[KeyInfo] = []
        for path in sorted(self._dir.iterdir()):
            if not path.is_file():
                continue
            if path.name.endswith(PRIVATE_KEY_SUFFIX):
                keys.append(KeyInfo(name=path.name[: -len(PRIVATE_KEY_SUFFIX)], kind="private", path=path))
            elif path.name.endswith(PUBLIC_KEY_SUFFIX):
                keys.append(KeyInfo(name=path.name[: -len(PUBLIC_KEY_SUFFIX)], kind="public", path=path))
        return keys

    # -- Generate / import / export -----------------------------------------

    def generate(self, name: str = DEFAULT_KEY_NAME, *, force: bool = False) -> KeyInfo:
        """Create a P-256 key pair.  Refuses to overwrite unless *force*."""
        name = name or DEFAULT_KEY_NAME
        private_path = self.private_path(name)
        public_path = self.public_path(name)
        if private_path.exists() and not force:
            raise ConflictError(
                f"private key already exists at {private_path} (use --force to overwrite)"
            )
        self._ensure_dir()

        key = ec.generate_private_key(ec.SECP256R1())
        private_pem = key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        )
        public_pem = key.public_key().public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        )
        self._write(private_path, private_pem, 0o600)
        try:
            self._write(public_path, public_pem, 0o644)
        except OSError:
            private_path.unlink(missing_ok=True)
            raise
        logger.info("Generated key pair %s in %s", name, self._dir)
        return KeyInfo(name=name, kind="private", path=private_path)

    def import_public(self, source: Path, name: str | None = None) -> KeyInfo:
        """Copy a PEM public key into the store, named after the file by default."""
        source = Path(source)
        name = name or source.stem
        destination = self.public_path(name)
        try:
            data = source.read_bytes()
        except FileNotFoundError:
            raise NotFoundError(f"public key file {source} not found") from None
        parse_public_key(data, source=f"public key file {source}")
        self._ensure_dir()
        self._write(destination, data, 0o644)
        logger.info("Imported public key %s from %s", name, source)
        return KeyInfo(name=name, kind="public", path=destination)

    def export_public(self, name: str = DEFAULT_KEY_NAME) -> bytes:
        path = self.public_path(name or DEFAULT_KEY_NAME)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            raise NotFoundError(f"public key {name!r} not found in {self._dir}") from None

    # -- Delete -------------------------------------------------------------

    def delete_private(self, name: str) -> None:
        self._delete(self.private_path(name), f"private key {name!r}")

    def delete_public(self, name: str) -> None:
        self._delete(self.public_path(name), f"public key {name!r}")

    @staticmethod
    def _delete(path: Path, what: str) -> None:
        try:
            path.unlink()
        except FileNotFoundError:
            raise NotFoundError(f"{what} not found") from None
        logger.info("Deleted %s", path)

    # -- Load ---------------------------------------------------------------

    def load_private(self, name: str = DEFAULT_KEY_NAME) -> ec.EllipticCurvePrivateKey:
        """Load a private key, refusing one with group/other permissions."""
        path = self.private_path(name)
        try:
            mode = stat.S_IMODE(path.stat().st_mode)
        except FileNotFoundError:
            raise NotFoundError(
                f"private key {name!r} not found in {self._dir}; run 'kubectl mft key generate'"
            ) from None
        if mode & 0o077:
            raise KeyStoreError(
                f"private key {name!r} has insecure permissions {mode:04o}, expected 0600"
            )
        try:
            key = serialization.load_pem_private_key(path.read_bytes(), password=None)
        except (ValueError, TypeError, UnsupportedAlgorithm) as exc:
            raise KeyStoreError(f"failed to parse private key {name!r}: {exc}") from exc
        if not isinstance(key, ec.EllipticCurvePrivateKey):
            raise KeyStoreError(f"private key {name!r} is not an ECDSA key")
        return key

    def load_public_keys(self) -> list[ec.EllipticCurvePublicKey]:
        """Every ``.pub`` key in the directory.  A malformed file is an error."""
        return [
            parse_public_key(info.path.read_bytes(), source=f"public key file {info.path}")
            for info in self.list()
            if info.kind == "public"
        ]
