"""Default configuration values.

This module defines the default configuration values used when no configuration
file is provided or when configuration values are not specified.
"""

from typing import Any

# Default configuration dictionary
# This is used as a fallback when no configuration file is present
DEFAULT_CONFIG: dict[str, Any] = {
    "idp": {
        # Local development IdP
        "metadata_url": "http://localhost:8000/saml/metadata",
        "sso_url": "http://localhost:8000/saml/sso",
        # No default key material - must be provided by user
        "key_file": None,
        "cert_file": None,
    },
    "security": {
        # Never waive certificate trust failures unless asked to
        "allow_self_signed_cert": False,
        "trust_unknown_authority": False,
    },
    "xmlsec": {
        "binary": "xmlsec1",
        # None waits for xmlsec1 indefinitely
        "timeout_seconds": None,
        "dtd_file": None,
    },
    "issuance": {
        "clock_drift_tolerance_seconds": 0,
    },
    "metadata": {
        "timeout_seconds": 10,
        "verify_tls": True,
        "cache_enabled": True,
    },
    "logging": {
        "level": "INFO",
        "log_file": "logs/saml-idp.log",
        "redact_secrets": True,
    },
}

# Default configuration file path
DEFAULT_CONFIG_PATH = "config/config.json"
