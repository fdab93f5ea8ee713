"""
Authorization Engine Configuration Schema

Defines the configuration structure of the authorization engine.
All configuration can be specified via authz.yaml or environment variables.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional
from pathlib import Path

from scopeguard.core.auth.errors import ConfigurationError


@dataclass
class CacheConfig:
    """Configuration for the permission cache"""
    ttl_seconds: float = 60.0
    sweep_interval_seconds: float = 300.0


@dataclass
class TokenConfig:
    """Configuration for capability tokens"""
    audience: str = "authz"
    ttl_seconds: int = 900
    private_key_path: Optional[str] = None
    public_key_path: Optional[str] = None
    # Tokens issued before this authorization version are refused
    min_authz_version: Optional[int] = None


@dataclass
class AuthzServiceConfig:
    """Remote authorization service (for HTTPAuthzClient)"""
    base_url: Optional[str] = None
    timeout_seconds: float = 10.0


@dataclass
class BootstrapConfig:
    """Startup seeding of roles and the superadmin grant"""
    enabled: bool = False
    authn_url: Optional[str] = None


@dataclass
class LoggingConfig:
    level: str = "INFO"


@dataclass
class AuthzConfig:
    """
    Central configuration for the authorization engine.

    Example authz.yaml:
    ```yaml
    cache:
      ttl_seconds: 60
      sweep_interval_seconds: 300

    tokens:
      audience: "orders"
      ttl_seconds: 900
      private_key_path: "${AUTHZ_PRIVATE_KEY:-./keys/authz.pem}"
      public_key_path: "./keys/authz.pub.pem"

    service:
      base_url: "http://authz:8080"

    policies_path: "./config/policies.yaml"
    ```
    """
    cache: CacheConfig = field(default_factory=CacheConfig)
    tokens: TokenConfig = field(default_factory=TokenConfig)
    service: AuthzServiceConfig = field(default_factory=AuthzServiceConfig)
    bootstrap: BootstrapConfig = field(default_factory=BootstrapConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    # Resource policy documents (YAML or JSON)
    policies_path: Optional[str] = None

    # Seconds allowed per grant/role store lookup (None: no limit)
    store_timeout_seconds: Optional[float] = None

    # Working directory (defaults to current directory)
    working_dir: Path = field(default_factory=Path.cwd)

    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        self.validate()

    def validate(self) -> None:
        """
        Raises:
            ConfigurationError: On values the engine cannot run with
        """
        if self.cache.ttl_seconds <= 0:
            raise ConfigurationError(f"cache.ttl_seconds must be positive, got {self.cache.ttl_seconds}")
        if self.cache.sweep_interval_seconds <= 0:
            raise ConfigurationError(
                f"cache.sweep_interval_seconds must be positive, got {self.cache.sweep_interval_seconds}"
            )
        if self.tokens.ttl_seconds <= 0:
            raise ConfigurationError(f"tokens.ttl_seconds must be positive, got {self.tokens.ttl_seconds}")
        if self.store_timeout_seconds is not None and self.store_timeout_seconds <= 0:
            raise ConfigurationError("store_timeout_seconds must be positive when set")

    def resolve_path(self, path: str) -> Path:
        """Resolve a configured path against the working directory"""
        p = Path(path)
        return p if p.is_absolute() else Path(self.working_dir) / p

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AuthzConfig":
        """Create AuthzConfig from dictionary (e.g., parsed YAML)"""
        cache_data = data.get("cache") or {}
        tokens_data = data.get("tokens") or {}
        service_data = data.get("service") or {}
        bootstrap_data = data.get("bootstrap") or {}
        logging_data = data.get("logging") or {}

        min_version = tokens_data.get("min_authz_version")
        timeout = data.get("store_timeout_seconds")

        return cls(
            cache=CacheConfig(
                ttl_seconds=float(cache_data.get("ttl_seconds", 60.0)),
                sweep_interval_seconds=float(cache_data.get("sweep_interval_seconds", 300.0)),
            ),
            tokens=TokenConfig(
                audience=tokens_data.get("audience", "authz"),
                ttl_seconds=int(tokens_data.get("ttl_seconds", 900)),
                private_key_path=tokens_data.get("private_key_path"),
                public_key_path=tokens_data.get("public_key_path"),
                min_authz_version=int(min_version) if min_version is not None else None,
            ),
            service=AuthzServiceConfig(
                base_url=service_data.get("base_url"),
                timeout_seconds=float(service_data.get("timeout_seconds", 10.0)),
            ),
            bootstrap=BootstrapConfig(
                enabled=bool(bootstrap_data.get("enabled", False)),
                authn_url=bootstrap_data.get("authn_url"),
            ),
            logging=LoggingConfig(level=str(logging_data.get("level", "INFO")).upper()),
            policies_path=data.get("policies_path"),
            store_timeout_seconds=float(timeout) if timeout is not None else None,
            working_dir=Path(data.get("working_dir", ".")),
            metadata=data.get("metadata", {}),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert config to dictionary (for serialization)"""
        return {
            "cache": {
                "ttl_seconds": self.cache.ttl_seconds,
                "sweep_interval_seconds": self.cache.sweep_interval_seconds,
            },
            "tokens": {
                "audience": self.tokens.audience,
                "ttl_seconds": self.tokens.ttl_seconds,
                "private_key_path": self.tokens.private_key_path,
                "public_key_path": self.tokens.public_key_path,
                "min_authz_version": self.tokens.min_authz_version,
            },
            "service": {
                "base_url": self.service.base_url,
                "timeout_seconds": self.service.timeout_seconds,
            },
            "bootstrap": {
                "enabled": self.bootstrap.enabled,
                "authn_url": self.bootstrap.authn_url,
            },
            "logging": {"level": self.logging.level},
            "policies_path": self.policies_path,
            "store_timeout_seconds": self.store_timeout_seconds,
            "working_dir": str(self.working_dir),
            "metadata": self.metadata,
        }
