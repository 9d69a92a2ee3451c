"""
Client configuration.

A Config holds the client's identity and X25519 key material. It is frozen
after construction and can be loaded from the environment (with ``.env``
support) or from a JSON file.
"""

from __future__ import annotations

import json
import os
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Optional, Union

from dotenv import load_dotenv

from .crypto import X25519_KEY_SIZE, KeyPair, base64url_decode
from .errors import ConfigError, FormatError

ENV_PREFIX = "ENVELOPE_STORE_"


@dataclass(frozen=True)
class Config:
    """Immutable client configuration."""

    client_id: str
    public_key: str
    private_key: str
    client_email: Optional[str] = None
    api_url: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.client_id:
            raise ConfigError("client_id is required")
        for name in ("public_key", "private_key"):
            try:
                raw = base64url_decode(getattr(self, name))
            except FormatError:
                raise ConfigError(f"{name} is not valid base64url")
            if len(raw) != X25519_KEY_SIZE:
                raise ConfigError(
                    f"{name} must be {X25519_KEY_SIZE} bytes, got {len(raw)}"
                )

    def __repr__(self) -> str:
        return (
            f"Config(client_id={self.client_id!r}, public_key={self.public_key!r}, "
            f"private_key=[REDACTED], client_email={self.client_email!r}, "
            f"api_url={self.api_url!r})"
        )

    @classmethod
    def generate(
        cls,
        client_id: str,
        client_email: Optional[str] = None,
        api_url: Optional[str] = None,
    ) -> Config:
        """Create a configuration with a freshly generated keypair."""
        keys = KeyPair.generate()
        return cls(
            client_id=client_id,
            public_key=keys.public_key,
            private_key=keys.private_key,
            client_email=client_email,
            api_url=api_url,
        )

    @classmethod
    def from_env(cls, prefix: str = ENV_PREFIX, dotenv_path: Optional[str] = None) -> Config:
        """
        Load configuration from environment variables.

        Reads ``<prefix>CLIENT_ID``, ``<prefix>PUBLIC_KEY``,
        ``<prefix>PRIVATE_KEY`` and optionally ``<prefix>CLIENT_EMAIL`` and
        ``<prefix>API_URL``. A ``.env`` file is loaded first if present.

        Raises:
            ConfigError: If a required variable is missing
        """
        load_dotenv(dotenv_path)

        def required(name: str) -> str:
            value = os.environ.get(prefix + name)
            if not value:
                raise ConfigError(f"{prefix}{name} must be set in environment or .env file")
            return value

        return cls(
            client_id=required("CLIENT_ID"),
            public_key=required("PUBLIC_KEY"),
            private_key=required("PRIVATE_KEY"),
            client_email=os.environ.get(prefix + "CLIENT_EMAIL") or None,
            api_url=os.environ.get(prefix + "API_URL") or None,
        )

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> Config:
        """
        Load configuration from a JSON file.

        Raises:
            ConfigError: If the file cannot be read or lacks required keys
        """
        try:
            data = json.loads(Path(path).read_text())
        except (OSError, ValueError) as e:
            raise ConfigError(f"Failed to load config from {path}: {e}")

        try:
            return cls(
                client_id=data["client_id"],
                public_key=data["public_key"],
                private_key=data["private_key"],
                client_email=data.get("client_email"),
                api_url=data.get("api_url"),
            )
        except (KeyError, TypeError) as e:
            raise ConfigError(f"Invalid config file {path}: missing {e}")

    def to_file(self, path: Union[str, Path]) -> None:
        """Write configuration as JSON, readable only by the owner."""
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w") as f:
            f.write(json.dumps(asdict(self), indent=2))
        # Mode only applies on create; tighten a pre-existing file too
        os.chmod(path, 0o600)
