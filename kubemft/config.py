"""Runtime configuration: env-driven, injected explicitly.

Settings are read from ``KUBECTL_MFT_*`` environment variables (or a
``.env`` file) through pydantic-settings.  There is deliberately no
module-level instance: the CLI builds one ``MftSettings`` per invocation and
hands it to every component, and tests build their own pointing at a
temporary directory.

Examples
--------
Override via environment::

    export KUBECTL_MFT_STORAGE_DIR=/tmp/mft/manifests
    export KUBECTL_MFT_KEY_DIR=/tmp/mft/keys
    export KUBECTL_MFT_LOG_LEVEL=DEBUG
"""

from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

_DATA_HOME = Path.home() / ".local" / "share" / "kubectl-mft"


class MftSettings(BaseSettings):
    """Storage, key and transport settings for one invocation."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="KUBECTL_MFT_",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Storage roots
    storage_dir: Path = _DATA_HOME / "manifests"
    key_dir: Path = _DATA_HOME / "keys"
    schema_dir: Path = _DATA_HOME / "schemas"  # CRD schemas registered with `schema add`

    # Logging
    log_level: str = "WARNING"

    # Remote transport
    request_timeout: float = 30.0
    insecure_registries: list[str] = Field(default_factory=list)
    docker_config: Path = Path.home() / ".docker" / "config.json"

    def is_plain_http(self, registry: str) -> bool:
        """Whether *registry* is reached over plain HTTP (local test registries)."""
        if registry.startswith(("localhost", "127.0.0.1")):
            return True
        return registry in self.insecure_registries
