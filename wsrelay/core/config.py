"""Configuration classes for WS-Relay."""

import os
import hashlib
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, List, Mapping, Union

import yaml

from .exceptions import ConfigurationError


# Environment variables holding the tunnel credentials
ENV_IDENTIFIER = "datasetId"
ENV_SHARED_SECRET = "apiKey"

DEFAULT_FALLBACK_DOMAINS = [
    "bilibili.com",
    "weibo.com",
    "douyin.com",
    "huya.com",
    "cloudflare.com",
    "v2ex.com",
]


@dataclass(frozen=True)
class TrustConfig:
    """Credentials a first frame must present."""

    identifier: str
    shared_secret: str = field(repr=False)
    trojan_digest: str = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        try:
            canonical = str(uuid.UUID(self.identifier))
        except (TypeError, ValueError):
            # Left as given for validate() to report
            pass
        else:
            object.__setattr__(self, "identifier", canonical)

        digest = hashlib.sha224(self.shared_secret.encode("utf-8")).hexdigest()
        object.__setattr__(self, "trojan_digest", digest)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "TrustConfig":
        """Read credentials from the environment, failing fast if absent."""
        environ = os.environ if environ is None else environ
        identifier = environ.get(ENV_IDENTIFIER)
        shared_secret = environ.get(ENV_SHARED_SECRET)

        missing = [
            name
            for name, value in ((ENV_IDENTIFIER, identifier), (ENV_SHARED_SECRET, shared_secret))
            if not value
        ]
        if missing:
            raise ConfigurationError(
                [f"environment variable {name} is required" for name in missing]
            )
        return cls(identifier=identifier, shared_secret=shared_secret)

    def validate(self) -> List[str]:
        """Validate credentials and return list of errors."""
        errors = []

        if not self.identifier:
            errors.append("identifier is required")
        else:
            try:
                uuid.UUID(self.identifier)
            except ValueError:
                errors.append(f"identifier is not a UUID: {self.identifier!r}")

        if not self.shared_secret:
            errors.append("shared_secret is required")

        return errors


@dataclass
class UpstreamConfig:
    """Outbound TCP connection settings."""

    # None leaves connect timeouts to the hosting environment
    connect_timeout: Optional[float] = None

    # Largest chunk read from the upstream socket per iteration
    chunk_size: int = 65536

    tcp_nodelay: bool = True

    def validate(self) -> List[str]:
        errors = []

        if self.connect_timeout is not None and self.connect_timeout <= 0:
            errors.append("connect_timeout must be positive")

        if self.chunk_size <= 0:
            errors.append("chunk_size must be positive")

        return errors


@dataclass
class ServerConfig:
    """HTTP/WebSocket listener settings."""

    host: str = "0.0.0.0"
    port: int = 8000

    # Diagnostic echo endpoint; empty string disables it
    echo_path: str = "/echo"

    # Non-upgrade requests are redirected to one of these
    fallback_domains: List[str] = field(
        default_factory=lambda: list(DEFAULT_FALLBACK_DOMAINS)
    )

    max_msg_size: int = 4 * 1024 * 1024

    def validate(self) -> List[str]:
        errors = []

        if not 0 <= self.port <= 65535:
            errors.append("port must be between 0 and 65535")

        if not self.fallback_domains:
            errors.append("At least one fallback domain is required")

        if self.echo_path and not self.echo_path.startswith("/"):
            errors.append("echo_path must start with '/'")

        if self.max_msg_size < 0:
            errors.append("max_msg_size cannot be negative")

        return errors


@dataclass
class RelayConfig:
    """Main configuration for the relay server."""

    trust: TrustConfig

    # Sub-configurations
    upstream: UpstreamConfig = field(default_factory=UpstreamConfig)
    server: ServerConfig = field(default_factory=ServerConfig)

    # Logging
    log_level: str = "INFO"
    json_logs: bool = False
    log_file: Optional[str] = None

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "RelayConfig":
        """Create a configuration from environment credentials and defaults."""
        return cls(trust=TrustConfig.from_env(environ))

    @classmethod
    def from_yaml(
        cls,
        path: Union[str, Path],
        environ: Optional[Mapping[str, str]] = None,
    ) -> "RelayConfig":
        """Load configuration from a YAML file.

        Trust values absent from the file are taken from the environment.
        """
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

        if not isinstance(data, dict):
            raise ConfigurationError([f"{path}: top level must be a mapping"])

        trust_data = data.get("trust") or {}
        if trust_data.get("identifier") and trust_data.get("shared_secret"):
            trust = TrustConfig(
                identifier=str(trust_data["identifier"]),
                shared_secret=str(trust_data["shared_secret"]),
            )
        else:
            trust = TrustConfig.from_env(environ)

        try:
            upstream = UpstreamConfig(**(data.get("upstream") or {}))
            server = ServerConfig(**(data.get("server") or {}))
        except TypeError as e:
            raise ConfigurationError([f"{path}: {e}"])

        logging_data = data.get("logging") or {}
        return cls(
            trust=trust,
            upstream=upstream,
            server=server,
            log_level=logging_data.get("level", "INFO"),
            json_logs=bool(logging_data.get("json", False)),
            log_file=logging_data.get("file"),
        )

    def validate(self) -> List[str]:
        """Validate configuration and return list of errors."""
        errors = []

        errors.extend(self.trust.validate())
        errors.extend(self.upstream.validate())
        errors.extend(self.server.validate())

        if self.log_level.upper() not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            errors.append(f"Unknown log level: {self.log_level}")

        return errors


def load_config(
    path: Optional[Union[str, Path]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> RelayConfig:
    """Load and validate configuration from a YAML file or the environment."""
    if path:
        config = RelayConfig.from_yaml(path, environ)
    else:
        config = RelayConfig.from_env(environ)

    errors = config.validate()
    if errors:
        raise ConfigurationError(errors)
    return config
