"""Custom exception classes for the SAML IdP issuer.

All exceptions inherit from SAMLIdPError to allow catching all custom exceptions.

The hierarchy separates three families that callers handle differently:

- Security errors classified from xmlsec1 diagnostics (XMLSecError and its
  subclasses). Some of these may be waived by SecurityOpts.
- Engine invocation failures (SecurityEngineError): the process could not be
  started, exited without diagnostics, or timed out. Never waivable.
- Structural failures (MissingRequiredFieldError): a required value such as the
  response destination, a key, a certificate or SP metadata is absent.
"""

from enum import Enum
from typing import Optional


class SAMLIdPError(Exception):
    """Base exception for all SAML IdP issuer custom exceptions."""

    pass


class ConfigurationError(SAMLIdPError):
    """Raised when configuration loading or validation fails.

    Examples:
        - Missing required configuration
        - Invalid configuration file format
        - Configuration value out of range
    """

    pass


class CertificateLoadError(SAMLIdPError):
    """Raised when a certificate or key cannot be read or decoded.

    Examples:
        - Certificate file not found
        - Invalid PEM content
        - Corrupted base64 certificate in metadata
    """

    pass


class MissingRequiredFieldError(SAMLIdPError):
    """Raised when a value required to issue a response is absent.

    These are structural preconditions, never classified as security errors
    and never waivable.
    """

    pass


class MissingDestinationError(MissingRequiredFieldError):
    """Raised when no response destination could be resolved."""

    pass


class MissingKeyError(MissingRequiredFieldError):
    """Raised when the IdP private key is neither configured nor provided inline."""

    pass


class MissingCertificateError(MissingRequiredFieldError):
    """Raised when the IdP or SP certificate is not available.

    Examples:
        - No cert_file or pubkey_pem configured for the IdP
        - SP metadata carries no KeyDescriptor with a certificate
    """

    pass


class MissingMetadataError(MissingRequiredFieldError):
    """Raised when SP metadata is unavailable or incomplete.

    Examples:
        - No SP metadata URL could be determined
        - SP metadata has no SPSSODescriptor
    """

    pass


class MetadataError(SAMLIdPError):
    """Base exception for metadata retrieval failures."""

    pass


class MetadataTransportError(MetadataError):
    """Raised when metadata cannot be downloaded.

    Examples:
        - Connection refused or timed out
        - HTTP error status
    """

    pass


class MetadataParseError(MetadataError):
    """Raised when downloaded metadata is not a valid EntityDescriptor."""

    pass


class SecurityEngineError(SAMLIdPError):
    """Raised when the external security engine cannot be driven.

    Covers process start and pipe failures, non-zero exits without any
    diagnostic output, and timeouts. These are IO failures, not security
    classifications.
    """

    pass


class XMLSecInvocationError(SecurityEngineError):
    """Raised when xmlsec1 cannot be started or its pipes fail."""

    pass


class XMLSecProcessError(SecurityEngineError):
    """Raised when xmlsec1 fails without writing any diagnostics.

    Attributes:
        returncode: Process exit status
    """

    def __init__(self, message: str, returncode: int) -> None:
        super().__init__(message)
        self.returncode = returncode


class XMLSecTimeoutError(SecurityEngineError):
    """Raised when xmlsec1 does not finish within the configured deadline."""

    pass


class ErrorKind(Enum):
    """Classification of an xmlsec1 failure derived from its diagnostics.

    Attributes:
        SIGNATURE_FAILURE: Signature could not be produced or did not verify
        VALIDITY_ERROR: xmlsec1 reported a "validity error"
        SELF_SIGNED_CERTIFICATE: Certificate chain ends in a self-signed cert
        UNKNOWN_ISSUER: Issuer certificate could not be found locally
        UNCLASSIFIED: Any other failure with diagnostics
    """

    SIGNATURE_FAILURE = "signature_failure"
    VALIDITY_ERROR = "validity_error"
    SELF_SIGNED_CERTIFICATE = "self_signed_certificate"
    UNKNOWN_ISSUER = "unknown_issuer"
    UNCLASSIFIED = "unclassified"


class XMLSecError(SAMLIdPError):
    """Failure reported by xmlsec1 through its diagnostic stream.

    Used directly for unclassified failures; subclasses mark the named kinds.

    Attributes:
        diagnostic: Diagnostic text the classification was derived from
        output: Bytes xmlsec1 produced on its output stream before failing
    """

    kind = ErrorKind.UNCLASSIFIED

    def __init__(self, diagnostic: str, output: Optional[bytes] = None) -> None:
        self.diagnostic = diagnostic.strip()
        self.output = output
        super().__init__(f"xmlsec: {self.diagnostic}")


class SignatureFailureError(XMLSecError):
    """xmlsec1 reported "signature failed"."""

    kind = ErrorKind.SIGNATURE_FAILURE


class XMLSecValidityError(XMLSecError):
    """xmlsec1 reported a "validity error"."""

    kind = ErrorKind.VALIDITY_ERROR


class SelfSignedCertificateError(XMLSecError):
    """xmlsec1 rejected a self-signed certificate."""

    kind = ErrorKind.SELF_SIGNED_CERTIFICATE


class UnknownIssuerError(XMLSecError):
    """xmlsec1 could not find the issuer certificate locally."""

    kind = ErrorKind.UNKNOWN_ISSUER
