"""Audit trail functionality for the SAML IdP issuer.

This module provides structured audit logging for issued assertions,
responses and security exceptions.
"""

import time
import uuid
from typing import Any, Dict

from .logger import get_logger

logger = get_logger(__name__)

# Key fields, logged first in this order
FIELD_ORDER = [
    "status",
    "operation",
    "assertion_id",
    "response_id",
    "in_response_to",
    "destination",
    "duration",
    "error_type",
    "error_message",
    "correlation_id",
]


def log_audit_event(event_type: str, details: Dict[str, Any]) -> None:
    """Log an audit trail event.

    Creates a structured audit log entry. Events are logged at INFO level for
    successful operations and ERROR level for failures.

    Args:
        event_type: Type of event (e.g., "ASSERTION_ISSUED", "RESPONSE_ISSUED",
                   "SECURITY_EXCEPTION", "SECURITY_EXCEPTION_WAIVED")
        details: Dictionary with event details. Common fields include:
                - status: "success" or "failure"
                - assertion_id / response_id: Issued identifiers
                - in_response_to: AuthnRequest ID
                - destination: Response destination
                - duration: Operation duration in seconds
                - error_type / error_message: Error details on failure

    Example:
        >>> log_audit_event("RESPONSE_ISSUED", {
        ...     "status": "success",
        ...     "response_id": "id-4f2a",
        ...     "destination": "https://sp.example.com/acs",
        ... })
    """
    details = dict(details)
    details.setdefault("timestamp", time.time())
    details.setdefault("correlation_id", str(uuid.uuid4()))

    message_parts = [f"AUDIT [{event_type}]"]

    for field in FIELD_ORDER:
        if field in details:
            value = details[field]
            if field == "duration" and isinstance(value, (int, float)):
                message_parts.append(f"{field}={value:.3f}s")
            else:
                message_parts.append(f"{field}={value}")

    for key, value in details.items():
        if key not in FIELD_ORDER and key != "timestamp":
            message_parts.append(f"{key}={value}")

    audit_message = " | ".join(message_parts)

    if details.get("status") == "failure":
        logger.error(audit_message)
    else:
        logger.info(audit_message)
