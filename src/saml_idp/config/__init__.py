"""Config module.

This module provides configuration management functionality.
"""

from saml_idp.config.manager import (
    get_clock_drift_tolerance,
    get_logging_config,
    get_xmlsec_config,
    load_config,
)
from saml_idp.config.schema import (
    Config,
    IdentityProviderConfig,
    IssuanceConfig,
    LoggingConfig,
    MetadataConfig,
    SecurityOptsConfig,
    XMLSecConfig,
)

__all__ = [
    # Main configuration loading
    "load_config",
    # Helper functions
    "get_clock_drift_tolerance",
    "get_logging_config",
    "get_xmlsec_config",
    # Configuration models
    "Config",
    "IdentityProviderConfig",
    "IssuanceConfig",
    "LoggingConfig",
    "MetadataConfig",
    "SecurityOptsConfig",
    "XMLSecConfig",
]
