# Copyright (c) 2025 Stephen Clau

# This file is part of Pyramid Limiter.

# Pyramid Limiter is dual-licensed:

# 1. GNU Affero General Public License v3.0 (AGPL-3.0)
#    See LICENSE file for full terms

# 2. Commercial License
#    For proprietary use without AGPL requirements
#    Contact: licensing@laudiversified.com

# SPDX-License-Identifier: AGPL-3.0-only OR Commercial

"""
Configuration module for Pyramid Limiter.

- pyramids.yml is OPTIONAL: a missing file disables gating (no zones)
- Zone bounds are read as-is; inverted bounds are not corrected
- Runtime settings come from environment variables or Docker secrets
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Any, List
import os
import yaml
import structlog

try:
    from .zone_index import Zone, DEFAULT_ZONE
except ImportError:
    from zone_index import Zone, DEFAULT_ZONE  # type: ignore

logger = structlog.get_logger()

PYRAMIDS_FILENAME = "pyramids.yml"
ZONE_BOUND_KEYS = ("minX", "maxX", "minY", "maxY", "minZ", "maxZ")


def _read_docker_secret(secret_name: str) -> Optional[str]:
    """
    Read a secret from Docker secrets location.

    Docker Swarm/Kubernetes mounts secrets at /run/secrets/{secret_name}.

    Args:
        secret_name: Name of the secret

    Returns:
        Secret value or None if not found
    """
    secret_path = Path(f"/run/secrets/{secret_name}")

    if secret_path.exists():
        try:
            return secret_path.read_text().strip()
        except (IOError, OSError) as e:
            logger.warning("docker_secret_read_error", secret=secret_name, error=str(e))
            return None

    return None


def get_config_value(
    env_var: str,
    secret_name: Optional[str] = None,
    required: bool = False,
    default: Optional[str] = None,
) -> Optional[str]:
    """
    Get configuration value from environment variables or Docker secrets.

    Tries in order:
    1. Docker secret file at /run/secrets/{secret_name}
    2. Environment variable {env_var}
    3. Default value if provided
    4. Raise error if required and not found

    Args:
        env_var: Environment variable name (e.g., 'LOG_LEVEL')
        secret_name: Docker secret name. If not provided, uses env_var lowercased
        required: If True, raises ValueError when value not found
        default: Default value if not found in env or secrets

    Returns:
        Configuration value from secret, env var, or default

    Raises:
        ValueError: If required=True and value not found
    """
    if secret_name is None:
        secret_name = env_var.lower()

    secret_value = _read_docker_secret(secret_name)
    if secret_value is not None:
        logger.debug("config_value_loaded_from_secret", source="docker_secret", var=env_var)
        return secret_value

    env_value = os.getenv(env_var)
    if env_value is not None:
        logger.debug("config_value_loaded_from_env", source="environment", var=env_var)
        return env_value

    if default is not None:
        logger.debug("config_value_loaded_from_default", source="default", var=env_var)
        return default

    if required:
        raise ValueError(
            f"Required configuration value not found for '{env_var}'. "
            f"Checked: Docker secret '{secret_name}', environment variable '{env_var}'"
        )

    return None


def _safe_int(value: Any, field_name: str, default: int) -> int:
    """
    Safely convert value to int with proper type checking.

    Args:
        value: Value to convert (can be None, int, or str)
        field_name: Field name for error messages
        default: Default value if None

    Returns:
        Converted int value

    Raises:
        ValueError: If conversion fails
    """
    if value is None:
        return default

    # bool is an int subclass; YAML "yes" must not become 1
    if isinstance(value, bool):
        raise ValueError(f"Cannot convert {field_name} to int: bool")

    if isinstance(value, int):
        return value

    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            raise ValueError(f"Invalid integer for {field_name}: {value}")

    raise ValueError(f"Cannot convert {field_name} to int: {type(value).__name__}")


def _safe_bool(value: Any, field_name: str, default: bool) -> bool:
    """
    Convert "true"/"false"-style strings to bool.

    Raises:
        ValueError: If the value is not a recognised boolean
    """
    if value is None:
        return default

    if isinstance(value, bool):
        return value

    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ("1", "true", "yes", "on"):
            return True
        if lowered in ("0", "false", "no", "off"):
            return False

    raise ValueError(f"Invalid boolean for {field_name}: {value}")


@dataclass
class Config:
    """Main application configuration."""

    zones: List[Zone] = field(default_factory=list)
    """Pyramid zones gating chest interactions. Empty disables gating."""

    pyramids_path: Path = field(default_factory=lambda: Path(PYRAMIDS_FILENAME))
    """Where the zones were read from."""

    use_default_zone: bool = False
    """Use the built-in fallback zone when pyramids.yml defines none."""

    # Health check configuration
    health_check_host: str = "0.0.0.0"
    """Host to bind health check server to. Default: 0.0.0.0"""

    health_check_port: int = 8080
    """Port to bind health check server to. 0 disables it. Default: 8080"""

    # Logging configuration
    log_level: str = "info"
    """Logging level: debug, info, warning, error. Default: info"""

    log_format: str = "console"
    """Logging format: console or json. Default: console"""

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        if not isinstance(self.pyramids_path, Path):
            self.pyramids_path = Path(self.pyramids_path)

        valid_levels = {"debug", "info", "warning", "error"}
        if self.log_level.lower() not in valid_levels:
            raise ValueError(
                f"Invalid log_level '{self.log_level}'. Must be one of: {', '.join(sorted(valid_levels))}"
            )

        if not 0 <= self.health_check_port <= 65535:
            raise ValueError(
                f"Invalid health_check_port: {self.health_check_port}. Must be 0-65535"
            )

        valid_formats = {"console", "json"}
        if self.log_format.lower() not in valid_formats:
            raise ValueError(
                f"Invalid log_format '{self.log_format}'. Must be one of: {', '.join(sorted(valid_formats))}"
            )


def _parse_zone(name: str, zone_data: dict) -> Zone:
    """Build a Zone from one pyramids.yml entry. Missing bounds read as 0."""
    bounds = [
        _safe_int(zone_data.get(key), f"Pyramid {name} {key}", 0)
        for key in ZONE_BOUND_KEYS
    ]
    return Zone(*bounds)


def load_zones(pyramids_path: Path) -> List[Zone]:
    """
    Load pyramid zones from a YAML file.

    The file holds a ``pyramids`` mapping of arbitrary names to
    ``{minX, maxX, minY, maxY, minZ, maxZ}`` records.

    Args:
        pyramids_path: Path to pyramids.yml

    Returns:
        Zones in file order. Empty if the file or the section is missing.

    Raises:
        ValueError: If a bound is not an integer
        yaml.YAMLError: If the file is not valid YAML
    """
    if not pyramids_path.exists():
        logger.warning("pyramids_config_not_found", path=str(pyramids_path))
        return []

    with open(pyramids_path) as f:
        data = yaml.safe_load(f)

    if not isinstance(data, dict) or not isinstance(data.get("pyramids"), dict):
        logger.warning("pyramids_section_missing", path=str(pyramids_path))
        return []

    zones: List[Zone] = []
    for name, zone_data in data["pyramids"].items():
        if not isinstance(zone_data, dict):
            logger.warning("pyramid_entry_skipped", name=str(name))
            continue

        zone = _parse_zone(str(name), zone_data)
        zones.append(zone)

        if zone.min_x > zone.max_x or zone.min_y > zone.max_y or zone.min_z > zone.max_z:
            logger.warning("pyramid_zone_inverted", name=str(name), zone=zone)

    logger.info("pyramids_loaded", path=str(pyramids_path), count=len(zones))
    return zones


def load_config() -> Config:
    """
    Load configuration from environment variables and pyramids.yml.

    Returns:
        Fully populated Config object with validation

    Raises:
        ValueError: If a config value is invalid
        yaml.YAMLError: If pyramids.yml is invalid YAML
    """
    config_dir = get_config_value(env_var="CONFIG_DIR", default=".")
    pyramids_path = Path(config_dir or ".") / PYRAMIDS_FILENAME

    zones = load_zones(pyramids_path)

    use_default_zone = _safe_bool(
        get_config_value(env_var="USE_DEFAULT_ZONE", default="false"),
        "use_default_zone",
        False,
    )
    if not zones and use_default_zone:
        logger.warning("pyramids_using_default_zone", zone=DEFAULT_ZONE)
        zones = [DEFAULT_ZONE]

    health_check_host = get_config_value(
        env_var="HEALTH_CHECK_HOST",
        default="0.0.0.0",
    )

    health_check_port = _safe_int(
        get_config_value(
            env_var="HEALTH_CHECK_PORT",
            default="8080",
        ),
        "health_check_port",
        8080,
    )

    log_level = get_config_value(
        env_var="LOG_LEVEL",
        default="info",
    )

    log_format = get_config_value(
        env_var="LOG_FORMAT",
        default="console",
    )

    return Config(
        zones=zones,
        pyramids_path=pyramids_path,
        use_default_zone=use_default_zone,
        health_check_host=health_check_host or "0.0.0.0",
        health_check_port=health_check_port,
        log_level=log_level or "info",
        log_format=log_format or "console",
    )
