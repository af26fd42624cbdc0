"""Configuration schema models using pydantic.

This module defines the configuration structure and validation rules using pydantic.
All configuration values are validated according to the schema defined here.
"""

from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator


def _validate_http_url(v: Optional[str]) -> Optional[str]:
    if v and not v.startswith(("http://", "https://")):
        raise ValueError(f"Invalid URL: {v}. Must start with http:// or https://")
    return v


class IdentityProviderConfig(BaseModel):
    """Configuration for the issuing identity provider.

    Key and certificate may be given as file paths or inline PEM; a file path
    takes precedence.

    Attributes:
        entity_id: IdP entity ID; defaults to metadata_url
        metadata_url: URL where the IdP metadata is published
        sso_url: IdP single sign-on endpoint
        key_file: Path to the IdP private key (PEM)
        cert_file: Path to the IdP certificate (PEM)
        privkey_pem: Inline IdP private key
        pubkey_pem: Inline IdP certificate
        sp_metadata_url: Default SP metadata URL
        sp_acs_url: Fixed SP assertion consumer service URL
    """

    entity_id: Optional[str] = None
    metadata_url: Optional[str] = Field(default=None, description="IdP metadata URL")
    sso_url: Optional[str] = Field(default=None, description="IdP SSO endpoint URL")
    key_file: Optional[Path] = None
    cert_file: Optional[Path] = None
    privkey_pem: Optional[str] = None
    pubkey_pem: Optional[str] = None
    sp_metadata_url: Optional[str] = None
    sp_acs_url: Optional[str] = None

    @field_validator("metadata_url", "sso_url", "sp_metadata_url", "sp_acs_url")
    @classmethod
    def validate_url(cls, v: Optional[str]) -> Optional[str]:
        """Validate URL is valid HTTP/HTTPS.

        Raises:
            ValueError: If URL does not start with http:// or https://
        """
        return _validate_http_url(v)

    @model_validator(mode="after")
    def validate_identity(self) -> "IdentityProviderConfig":
        """Require an entity ID or a metadata URL to derive it from.

        Raises:
            ValueError: If both entity_id and metadata_url are empty
        """
        if not self.entity_id and not self.metadata_url:
            raise ValueError(
                "IdP has no identity. "
                "Fix: Set idp.entity_id or idp.metadata_url."
            )
        return self


class SecurityOptsConfig(BaseModel):
    """Waivers for certificate trust failures reported by xmlsec1.

    Attributes:
        allow_self_signed_cert: Accept self-signed certificates
        trust_unknown_authority: Accept certificates with an unknown issuer
    """

    allow_self_signed_cert: bool = False
    trust_unknown_authority: bool = False


class XMLSecConfig(BaseModel):
    """Configuration for the xmlsec1 command line tool.

    Attributes:
        binary: xmlsec1 executable name or path
        timeout_seconds: Kill xmlsec1 after this many seconds (None: never)
        dtd_file: DTD declaring ID attributes, passed when signing
    """

    binary: str = Field(default="xmlsec1", min_length=1)
    timeout_seconds: Optional[float] = Field(
        default=None,
        gt=0,
        description="Seconds to wait for xmlsec1; None waits indefinitely"
    )
    dtd_file: Optional[Path] = None


class IssuanceConfig(BaseModel):
    """Configuration for assertion issuance.

    Attributes:
        clock_drift_tolerance_seconds: Seconds added on both sides of the
            Conditions validity window
    """

    clock_drift_tolerance_seconds: int = Field(default=0, ge=0, le=3600)


class MetadataConfig(BaseModel):
    """Configuration for SP metadata retrieval.

    Attributes:
        timeout_seconds: HTTP timeout in seconds
        verify_tls: Whether to verify TLS certificates
        cache_enabled: Keep fetched metadata per URL
    """

    timeout_seconds: float = Field(default=10, gt=0)
    verify_tls: bool = True
    cache_enabled: bool = True


class LoggingConfig(BaseModel):
    """Configuration for logging.

    Attributes:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Path to log file
        redact_secrets: Whether to redact private keys and e-mail addresses
    """

    level: str = Field(
        default="INFO",
        description="Log level: DEBUG, INFO, WARNING, ERROR, CRITICAL"
    )
    log_file: Path = Field(
        default=Path("logs/saml-idp.log"),
        description="Log file path"
    )
    redact_secrets: bool = Field(
        default=True,
        description="Redact private keys and e-mail addresses from logs"
    )

    @field_validator("level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level.

        Args:
            v: Log level string

        Returns:
            Validated log level (uppercase)

        Raises:
            ValueError: If log level is not valid
        """
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(
                f"Invalid log level: {v}. Must be one of: {', '.join(valid_levels)}"
            )
        return v_upper


class Config(BaseModel):
    """Root configuration model.

    Attributes:
        idp: Identity provider identity and key material
        security: Certificate trust waivers
        xmlsec: xmlsec1 invocation settings
        issuance: Assertion issuance settings
        metadata: SP metadata retrieval settings
        logging: Logging configuration

    Example:
        >>> config = Config(
        ...     idp=IdentityProviderConfig(
        ...         metadata_url="https://idp.example.com/saml/metadata",
        ...         sso_url="https://idp.example.com/saml/sso",
        ...     )
        ... )
        >>> config.idp.metadata_url
        'https://idp.example.com/saml/metadata'
        >>> config.security.allow_self_signed_cert
        False
    """

    idp: IdentityProviderConfig
    security: SecurityOptsConfig = SecurityOptsConfig()
    xmlsec: XMLSecConfig = XMLSecConfig()
    issuance: IssuanceConfig = IssuanceConfig()
    metadata: MetadataConfig = MetadataConfig()
    logging: LoggingConfig = LoggingConfig()
