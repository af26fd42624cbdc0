"""Classification of xmlsec1 diagnostic output.

xmlsec1 reports failures as free text on stderr. This module turns that text
into one ErrorKind using an ordered table of substring markers, and builds the
matching exception. The wording is tied to xmlsec1/OpenSSL messages, so the
table is kept in one place.
"""

import logging
from typing import Dict, Optional, Tuple, Type

from ..utils.exceptions import (
    ErrorKind,
    SelfSignedCertificateError,
    SignatureFailureError,
    UnknownIssuerError,
    XMLSecError,
    XMLSecValidityError,
)

logger = logging.getLogger(__name__)

VALIDITY_ERROR_MARKER = "validity error"

# Order matters: first match wins.
DIAGNOSTIC_MARKERS: Tuple[Tuple[str, ErrorKind], ...] = (
    ("signature failed", ErrorKind.SIGNATURE_FAILURE),
    (VALIDITY_ERROR_MARKER, ErrorKind.VALIDITY_ERROR),
    ("msg=self signed certificate", ErrorKind.SELF_SIGNED_CERTIFICATE),
    ("msg=unable to get local issuer certificate", ErrorKind.UNKNOWN_ISSUER),
)

ERROR_CLASSES: Dict[ErrorKind, Type[XMLSecError]] = {
    ErrorKind.SIGNATURE_FAILURE: SignatureFailureError,
    ErrorKind.VALIDITY_ERROR: XMLSecValidityError,
    ErrorKind.SELF_SIGNED_CERTIFICATE: SelfSignedCertificateError,
    ErrorKind.UNKNOWN_ISSUER: UnknownIssuerError,
    ErrorKind.UNCLASSIFIED: XMLSecError,
}


def classify_diagnostic(diagnostic: str) -> Optional[ErrorKind]:
    """Classify xmlsec1 diagnostic text.

    Args:
        diagnostic: Text xmlsec1 wrote to stderr

    Returns:
        The ErrorKind of the first matching marker, ErrorKind.UNCLASSIFIED when
        nothing matches, or None when the text starts with "OK".

    Note:
        The "OK" check only runs on failure paths, where xmlsec1 should never
        have reported success. It is kept for parity with the engine protocol
        but is most likely unreachable.

    Example:
        >>> classify_diagnostic("func=xmlSecOpenSSLX509StoreVerify:msg=self signed certificate")
        <ErrorKind.SELF_SIGNED_CERTIFICATE: 'self_signed_certificate'>
    """
    if diagnostic.startswith("OK"):
        return None

    for marker, kind in DIAGNOSTIC_MARKERS:
        if marker in diagnostic:
            return kind

    return ErrorKind.UNCLASSIFIED


def xmlsec_error(diagnostic: str, output: Optional[bytes] = None) -> Optional[XMLSecError]:
    """Build the classified exception for a diagnostic, or None for "OK"."""
    kind = classify_diagnostic(diagnostic)
    if kind is None:
        logger.debug("xmlsec1 diagnostic starts with OK, not treated as an error")
        return None

    logger.debug(f"Classified xmlsec1 diagnostic as {kind.value}")
    return ERROR_CLASSES[kind](diagnostic, output)


def is_validity_error(diagnostic: bytes) -> bool:
    """Return True if xmlsec1 reported a validity error on its diagnostic stream."""
    return VALIDITY_ERROR_MARKER.encode() in diagnostic
