"""Security exception policy.

Decides whether a classified xmlsec1 failure aborts issuance or is waived by
the IdP's SecurityOpts.
"""

import logging
from dataclasses import dataclass

from ..logging_audit import log_audit_event
from ..utils.exceptions import (
    SelfSignedCertificateError,
    UnknownIssuerError,
)

logger = logging.getLogger(__name__)


@dataclass
class SecurityOpts:
    """Waivers for certificate trust failures.

    Attributes:
        allow_self_signed_cert: Accept self-signed certificates
        trust_unknown_authority: Accept certificates whose issuer is unknown
    """

    allow_self_signed_cert: bool = False
    trust_unknown_authority: bool = False


def is_waivable(error: BaseException, opts: SecurityOpts) -> bool:
    """Return True if ``opts`` waives ``error``.

    Only the two trust-related kinds can be waived. Signature failures,
    validity errors, unclassified failures and anything that is not an xmlsec1
    classification never are.

    Example:
        >>> is_waivable(SelfSignedCertificateError("msg=self signed certificate"),
        ...             SecurityOpts(allow_self_signed_cert=True))
        True
    """
    if isinstance(error, SelfSignedCertificateError):
        return opts.allow_self_signed_cert
    if isinstance(error, UnknownIssuerError):
        return opts.trust_unknown_authority
    return False


def is_security_exception(error: BaseException, opts: SecurityOpts) -> bool:
    """Return True if ``error`` is a failure not bypassed by ``opts``."""
    return not is_waivable(error, opts)


def gate(error: BaseException, opts: SecurityOpts, operation: str) -> None:
    """Re-raise ``error`` unless ``opts`` waives it.

    Args:
        error: Exception raised by a security operation
        opts: Waivers configured for the IdP
        operation: Operation name for logs ("sign", "encrypt", ...)

    Raises:
        The given error when it is not waivable
    """
    if is_security_exception(error, opts):
        log_audit_event(
            "SECURITY_EXCEPTION",
            {
                "status": "failure",
                "operation": operation,
                "error_type": type(error).__name__,
                "error_message": str(error),
            },
        )
        raise error

    logger.warning(f"Waived {type(error).__name__} during {operation}: {error}")
    log_audit_event(
        "SECURITY_EXCEPTION_WAIVED",
        {
            "status": "success",
            "operation": operation,
            "error_type": type(error).__name__,
        },
    )
