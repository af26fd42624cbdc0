"""Certificate and key file handling.

xmlsec1 reads keys and certificates from files. This module loads PEM
certificates with cryptography, converts between the metadata (base64 DER)
and PEM forms, and materializes inline PEM content as temporary files that
are removed when the caller is done with them.
"""

import base64
import binascii
import logging
import os
import tempfile
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Iterator, Optional, Union

from cryptography import x509
from cryptography.hazmat.primitives.serialization import Encoding

from ..utils.exceptions import CertificateLoadError

logger = logging.getLogger(__name__)


def load_pem_certificate(cert_path: Union[str, Path]) -> x509.Certificate:
    """Load PEM-encoded X.509 certificate from file.

    Args:
        cert_path: Path to PEM certificate file

    Returns:
        Loaded X.509 certificate

    Raises:
        CertificateLoadError: If file not found or certificate cannot be loaded

    Example:
        >>> cert = load_pem_certificate(Path("certs/idp.crt"))
        >>> print(cert.subject.rfc4514_string())
    """
    cert_path = Path(cert_path)
    if not cert_path.exists():
        raise CertificateLoadError(
            f"Certificate file not found: {cert_path}. "
            f"Verify the cert_file setting or provide pubkey_pem inline."
        )

    try:
        cert_data = cert_path.read_bytes()
    except OSError as e:
        raise CertificateLoadError(f"Failed to read certificate {cert_path}: {e}") from e

    cert = load_pem_certificate_bytes(cert_data, source=str(cert_path))
    logger.debug(f"Loaded PEM certificate from {cert_path.name}")
    return cert


def load_pem_certificate_bytes(data: bytes, source: str = "inline PEM") -> x509.Certificate:
    """Parse a PEM certificate held in memory."""
    try:
        return x509.load_pem_x509_certificate(data)
    except ValueError as e:
        raise CertificateLoadError(
            f"Failed to load PEM certificate from {source}: {e}. "
            f"Ensure it contains a -----BEGIN CERTIFICATE----- block."
        ) from e


def certificate_from_base64(value: str) -> x509.Certificate:
    """Decode a ds:X509Certificate value (base64 DER, whitespace allowed)."""
    try:
        der = base64.b64decode("".join(value.split()), validate=True)
        return x509.load_der_x509_certificate(der)
    except (binascii.Error, ValueError) as e:
        raise CertificateLoadError(f"Invalid base64 DER certificate in metadata: {e}") from e


def certificate_to_pem(cert: x509.Certificate) -> bytes:
    return cert.public_bytes(Encoding.PEM)


def check_expiration_warning(cert: x509.Certificate, warning_days: int = 30) -> bool:
    """Check if certificate is expiring soon and log warning.

    Args:
        cert: X.509 certificate to check
        warning_days: Number of days before expiration to warn (default: 30)

    Returns:
        True if certificate expires within warning_days, False otherwise
    """
    now = datetime.now(timezone.utc)
    warning_date = now + timedelta(days=warning_days)

    if cert.not_valid_after_utc < warning_date:
        days_remaining = (cert.not_valid_after_utc - now).days
        logger.warning(
            f"Certificate {cert.subject.rfc4514_string()} expiring soon: "
            f"{days_remaining} days remaining "
            f"(expires: {cert.not_valid_after_utc.strftime('%Y-%m-%d')})"
        )
        return True

    return False


@contextmanager
def materialize_pem(content: Union[str, bytes]) -> Iterator[str]:
    """Write PEM content to a private temporary file for the duration of a block.

    The file is created with mode 0600 and removed on exit, including when
    the block raises.

    Example:
        >>> with materialize_pem(pem_text) as path:
        ...     gateway.sign(data, path)
    """
    if isinstance(content, str):
        content = content.encode("utf-8")

    fd, path = tempfile.mkstemp(prefix="saml-idp-", suffix=".pem")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(content)
        yield path
    finally:
        try:
            os.remove(path)
        except FileNotFoundError:
            pass


@contextmanager
def resolve_pem_file(
    file_path: Optional[Union[str, Path]], inline_pem: Optional[str]
) -> Iterator[Optional[str]]:
    """Yield a usable path for a key or certificate.

    A configured file path wins; otherwise inline PEM content is written to a
    scoped temporary file. Yields None when neither is available, leaving the
    choice of error to the caller.
    """
    if file_path:
        yield str(file_path)
    elif inline_pem:
        with materialize_pem(inline_pem) as path:
            yield path
    else:
        yield None
