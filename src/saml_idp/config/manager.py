"""Configuration manager for loading and managing configuration.

This module provides the main configuration loading and management functionality,
including support for JSON configuration files, environment variable overrides,
and configuration validation.
"""

import json
import logging
import os
from datetime import timedelta
from pathlib import Path
from typing import Any, Optional

from dotenv import load_dotenv
from pydantic import ValidationError

from saml_idp.config.defaults import DEFAULT_CONFIG, DEFAULT_CONFIG_PATH
from saml_idp.config.schema import Config, LoggingConfig, XMLSecConfig
from saml_idp.utils.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

# Environment variable prefix for all configuration overrides
ENV_PREFIX = "SAML_IDP_"


def load_config(config_path: Optional[Path] = None) -> Config:
    """Load configuration from file and environment variables.

    Configuration is loaded with the following precedence (highest to lowest):
    1. CLI arguments (handled by caller)
    2. Environment variables (SAML_IDP_* prefix)
    3. Configuration file (JSON)
    4. Default values

    Args:
        config_path: Path to configuration file. If None, uses ./config/config.json

    Returns:
        Validated Config instance

    Raises:
        ConfigurationError: If configuration is invalid or malformed

    Example:
        >>> config = load_config(Path("custom/config.json"))
        >>> sso_url = config.idp.sso_url
    """
    # Load .env file if present in project root
    load_dotenv()

    if config_path is None:
        config_path = Path(DEFAULT_CONFIG_PATH)

    config_dict = _load_config_file(config_path)

    _check_sensitive_values(config_dict)

    try:
        config_dict = _apply_env_overrides(config_dict)
    except ValueError as e:
        raise ConfigurationError(
            f"Invalid {ENV_PREFIX}* environment variable: {e}\n"
            f"Fix: Numeric settings must be numbers."
        ) from e

    try:
        return Config(**config_dict)
    except ValidationError as e:
        raise ConfigurationError(
            f"Configuration validation failed:\n{e}\n\n"
            f"Fix: Check your configuration file at {config_path} and ensure all "
            f"values match the expected format."
        ) from e


def _load_config_file(config_path: Path) -> dict[str, Any]:
    """Load configuration file or return defaults.

    Raises:
        ConfigurationError: If JSON is malformed or the file is unreadable
    """
    if config_path.exists():
        try:
            with open(config_path, "r", encoding="utf-8") as f:
                config_dict = json.load(f)
            logger.info(f"Loaded configuration from {config_path}")
            return config_dict
        except json.JSONDecodeError as e:
            raise ConfigurationError(
                f"Invalid JSON in config file: {config_path}\n"
                f"Error: {e}\n"
                f"Fix: Check JSON syntax at line {e.lineno}, column {e.colno}"
            ) from e
        except OSError as e:
            raise ConfigurationError(
                f"Failed to read config file: {config_path}\n"
                f"Error: {e}\n"
                f"Fix: Check file permissions and path"
            ) from e
    else:
        logger.info(f"Config file not found: {config_path}. Using default configuration.")
        # Deep copy so callers never mutate the defaults
        return json.loads(json.dumps(DEFAULT_CONFIG))


def _apply_env_overrides(config_dict: dict[str, Any]) -> dict[str, Any]:
    """Apply environment variable overrides with SAML_IDP_ prefix.

    Environment variables follow the pattern: SAML_IDP_<FIELD>
    For example: SAML_IDP_SSO_URL, SAML_IDP_XMLSEC_TIMEOUT

    Args:
        config_dict: Configuration dictionary to update

    Returns:
        Updated configuration dictionary with environment overrides applied

    Raises:
        ValueError: If a numeric override is not a number
    """
    # IdP section
    for field in (
        "entity_id",
        "metadata_url",
        "sso_url",
        "key_file",
        "cert_file",
        "privkey_pem",
        "pubkey_pem",
        "sp_metadata_url",
        "sp_acs_url",
    ):
        if value := os.getenv(f"{ENV_PREFIX}{field.upper()}"):
            config_dict.setdefault("idp", {})[field] = value
            logger.debug(f"Override: idp.{field} from environment")

    # Security section
    if allow_self_signed := os.getenv(f"{ENV_PREFIX}ALLOW_SELF_SIGNED_CERT"):
        config_dict.setdefault("security", {})["allow_self_signed_cert"] = _parse_bool(
            allow_self_signed
        )
        logger.debug("Override: allow_self_signed_cert from environment")

    if trust_unknown := os.getenv(f"{ENV_PREFIX}TRUST_UNKNOWN_AUTHORITY"):
        config_dict.setdefault("security", {})["trust_unknown_authority"] = _parse_bool(
            trust_unknown
        )
        logger.debug("Override: trust_unknown_authority from environment")

    # xmlsec section
    if binary := os.getenv(f"{ENV_PREFIX}XMLSEC_BINARY"):
        config_dict.setdefault("xmlsec", {})["binary"] = binary
        logger.debug("Override: xmlsec binary from environment")

    if timeout := os.getenv(f"{ENV_PREFIX}XMLSEC_TIMEOUT"):
        config_dict.setdefault("xmlsec", {})["timeout_seconds"] = float(timeout)
        logger.debug("Override: xmlsec timeout_seconds from environment")

    if dtd_file := os.getenv(f"{ENV_PREFIX}XMLSEC_DTD_FILE"):
        config_dict.setdefault("xmlsec", {})["dtd_file"] = dtd_file
        logger.debug("Override: xmlsec dtd_file from environment")

    # Issuance section
    if drift := os.getenv(f"{ENV_PREFIX}CLOCK_DRIFT_TOLERANCE"):
        config_dict.setdefault("issuance", {})["clock_drift_tolerance_seconds"] = int(drift)
        logger.debug("Override: clock_drift_tolerance_seconds from environment")

    # Metadata section
    if metadata_timeout := os.getenv(f"{ENV_PREFIX}METADATA_TIMEOUT"):
        config_dict.setdefault("metadata", {})["timeout_seconds"] = float(metadata_timeout)
        logger.debug("Override: metadata timeout_seconds from environment")

    if verify_tls := os.getenv(f"{ENV_PREFIX}VERIFY_TLS"):
        config_dict.setdefault("metadata", {})["verify_tls"] = _parse_bool(verify_tls)
        logger.debug("Override: verify_tls from environment")

    # Logging section
    if log_level := os.getenv(f"{ENV_PREFIX}LOG_LEVEL"):
        config_dict.setdefault("logging", {})["level"] = log_level
        logger.debug("Override: log_level from environment")

    if log_file := os.getenv(f"{ENV_PREFIX}LOG_FILE"):
        config_dict.setdefault("logging", {})["log_file"] = log_file
        logger.debug("Override: log_file from environment")

    if redact := os.getenv(f"{ENV_PREFIX}REDACT_SECRETS"):
        config_dict.setdefault("logging", {})["redact_secrets"] = _parse_bool(redact)
        logger.debug("Override: redact_secrets from environment")

    return config_dict


def _parse_bool(value: str) -> bool:
    """Parse boolean value from string (case-insensitive)."""
    return value.lower() in ("true", "1", "yes", "on")


def _check_sensitive_values(config_dict: dict[str, Any]) -> None:
    """Warn when a private key is stored inline in the configuration file.

    Inline keys belong in the SAML_IDP_PRIVKEY_PEM environment variable or a
    key file with restricted permissions.
    """
    idp = config_dict.get("idp") or {}
    if idp.get("privkey_pem"):
        logger.warning(
            "WARNING: Private key found in configuration file! "
            "Keys should not be stored in config files. "
            f"Use idp.key_file or the {ENV_PREFIX}PRIVKEY_PEM environment variable instead."
        )


def get_clock_drift_tolerance(config: Config) -> timedelta:
    """Get the clock drift tolerance as a timedelta.

    Example:
        >>> config = load_config()
        >>> get_clock_drift_tolerance(config)
        datetime.timedelta(0)
    """
    return timedelta(seconds=config.issuance.clock_drift_tolerance_seconds)


def get_xmlsec_config(config: Config) -> XMLSecConfig:
    """Get xmlsec1 configuration."""
    return config.xmlsec


def get_logging_config(config: Config) -> LoggingConfig:
    """Get logging configuration.

    Example:
        >>> config = load_config()
        >>> logging_cfg = get_logging_config(config)
        >>> log_level = logging_cfg.level
    """
    return config.logging
