"""
Authorization Engine Configuration Loader

Loads configuration from YAML files with environment variable interpolation.

Environment Variable Interpolation:
- ${VAR_NAME} - Required variable, raises error if not set
- ${VAR_NAME:-default} - Optional variable with default value

Example:
```yaml
tokens:
  audience: "orders"
  private_key_path: "${AUTHZ_PRIVATE_KEY}"
service:
  base_url: "${AUTHZ_URL:-http://localhost:8080}"
```
"""

import os
import re
from pathlib import Path
from typing import Any, Optional, Union
import logging

import yaml

from scopeguard.core.auth.errors import ConfigurationError

from .schema import AuthzConfig

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "authz.yaml"

# ${VAR} or ${VAR:-default}
ENV_VAR_PATTERN = re.compile(r'\$\{([^}:]+)(?::-([^}]*))?\}')


def interpolate_env_vars(value: Any) -> Any:
    """
    Recursively interpolate environment variables in configuration values.

    Raises:
        ConfigurationError: If a required variable is not set
    """
    if isinstance(value, str):
        def replace_env_var(match):
            var_name = match.group(1)
            default_value = match.group(2)

            env_value = os.environ.get(var_name)
            if env_value is not None:
                return env_value
            if default_value is not None:
                return default_value
            raise ConfigurationError(
                f"Environment variable '{var_name}' is required but not set. "
                f"Set it or provide a default: ${{{var_name}:-default}}"
            )

        return ENV_VAR_PATTERN.sub(replace_env_var, value)

    if isinstance(value, dict):
        return {k: interpolate_env_vars(v) for k, v in value.items()}

    if isinstance(value, list):
        return [interpolate_env_vars(item) for item in value]

    return value


def load_config_from_file(
    config_path: Union[str, Path],
    interpolate: bool = True
) -> AuthzConfig:
    """
    Load configuration from a YAML file.

    Args:
        config_path: Path to authz.yaml
        interpolate: Whether to interpolate environment variables (default: True)

    Raises:
        FileNotFoundError: If config file doesn't exist
        ConfigurationError: If a required variable is unset or a value is invalid
        yaml.YAMLError: If YAML is malformed
    """
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    logger.info(f"Loading configuration from {config_path}")

    with open(config_path, 'r') as f:
        raw_config = yaml.safe_load(f)

    if raw_config is None:
        raw_config = {}

    if interpolate:
        try:
            raw_config = interpolate_env_vars(raw_config)
        except ConfigurationError as e:
            logger.error(f"Configuration error: {e}")
            raise

    # Relative paths in the file are relative to the file
    if "working_dir" not in raw_config:
        raw_config["working_dir"] = str(config_path.parent.absolute())

    return AuthzConfig.from_dict(raw_config)


def load_config(
    config_path: Optional[Union[str, Path]] = None,
    working_dir: Optional[Union[str, Path]] = None,
) -> AuthzConfig:
    """
    Load configuration with sensible defaults.

    Search order:
    1. Explicit config_path if provided
    2. authz.yaml, then config/authz.yaml, in working_dir
    3. The same two in the current directory
    4. Default configuration
    """
    if config_path:
        return load_config_from_file(config_path)

    search_paths = []

    if working_dir:
        working_dir = Path(working_dir)
        search_paths.append(working_dir / CONFIG_FILENAME)
        search_paths.append(working_dir / "config" / CONFIG_FILENAME)

    cwd = Path.cwd()
    search_paths.append(cwd / CONFIG_FILENAME)
    search_paths.append(cwd / "config" / CONFIG_FILENAME)

    for path in search_paths:
        if path.exists():
            logger.info(f"Found configuration at {path}")
            return load_config_from_file(path)

    logger.info(f"No {CONFIG_FILENAME} found, using default configuration")
    return AuthzConfig(working_dir=Path(working_dir) if working_dir else cwd)


def create_default_config(
    output_path: Optional[Union[str, Path]] = None,
    audience: str = "authz",
) -> Path:
    """
    Write a default authz.yaml.

    Args:
        output_path: Where to write the config (default: ./authz.yaml)
        audience: Token audience of the service

    Returns:
        Path to created configuration file
    """
    output_path = Path(output_path) if output_path else Path(CONFIG_FILENAME)

    default_config = f"""# Authorization engine configuration
# Environment variables can be used: ${{VAR_NAME}} or ${{VAR_NAME:-default}}

cache:
  ttl_seconds: 60
  sweep_interval_seconds: 300

tokens:
  audience: "{audience}"
  ttl_seconds: 900
  private_key_path: "${{AUTHZ_PRIVATE_KEY:-./keys/authz.pem}}"
  public_key_path: "${{AUTHZ_PUBLIC_KEY:-./keys/authz.pub.pem}}"
  # min_authz_version: 2

# Remote authorization service
# service:
#   base_url: "${{AUTHZ_URL:-http://localhost:8080}}"
#   timeout_seconds: 10

bootstrap:
  enabled: false
  # authn_url: "${{AUTHN_URL:-http://localhost:8081}}"

logging:
  level: INFO

# policies_path: "./config/policies.yaml"
"""

    with open(output_path, 'w') as f:
        f.write(default_config)

    logger.info(f"Created default configuration at {output_path}")
    return output_path
