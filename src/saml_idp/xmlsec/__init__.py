"""Wrapper around the xmlsec1 command line tool.

This module provides:
- XMLSecGateway: sign, verify, encrypt and decrypt through xmlsec1
- classify_diagnostic: map xmlsec1 diagnostics to an ErrorKind
- Signature and EncryptedData templates
"""

from saml_idp.xmlsec.errors import classify_diagnostic, xmlsec_error
from saml_idp.xmlsec.gateway import (
    Mode,
    SecurityEngine,
    ValidationOptions,
    XMLSecGateway,
)
from saml_idp.xmlsec.templates import encrypted_data_template, signature_template

__all__ = [
    "Mode",
    "SecurityEngine",
    "ValidationOptions",
    "XMLSecGateway",
    "classify_diagnostic",
    "xmlsec_error",
    "encrypted_data_template",
    "signature_template",
]
