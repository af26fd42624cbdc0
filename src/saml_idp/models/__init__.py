"""Models module.

This module provides the dataclasses exchanged by the issuance pipeline.
"""

from saml_idp.models.saml import (
    Assertion,
    AuthnRequest,
    IdpAuthnRequest,
    Metadata,
    Response,
    Session,
)

__all__ = [
    "Assertion",
    "AuthnRequest",
    "IdpAuthnRequest",
    "Metadata",
    "Response",
    "Session",
]
