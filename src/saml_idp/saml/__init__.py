"""SAML 2.0 assertion and response issuance.

This module provides functionality for:
- Building assertions from a resolved session (AssertionBuilder)
- Signing, encrypting and wrapping them in a Response (ResponseAssembler)
- Deciding which xmlsec1 failures are waived (security exception policy)
- Resolving IdP keys, SP metadata and SP encryption certificates
"""

from saml_idp.saml.assertion_builder import (
    ATTRIBUTE_TABLE,
    ISSUE_LIFETIME,
    AssertionBuilder,
    build_attributes,
    resolve_recipient,
)
from saml_idp.saml.identity_provider import IdentityProvider, select_sp_certificate
from saml_idp.saml.marshal import (
    decode_authn_request,
    encode_response,
    metadata_to_xml,
    parse_authn_request,
    parse_metadata,
    response_to_xml,
)
from saml_idp.saml.metadata import MetadataClient, get_metadata
from saml_idp.saml.policy import SecurityOpts, gate, is_security_exception, is_waivable
from saml_idp.saml.response_assembler import ResponseAssembler, strip_xml_declaration

__all__ = [
    # Assertion building
    "ATTRIBUTE_TABLE",
    "ISSUE_LIFETIME",
    "AssertionBuilder",
    "build_attributes",
    "resolve_recipient",
    # Response assembly
    "ResponseAssembler",
    "strip_xml_declaration",
    # Security exception policy
    "SecurityOpts",
    "gate",
    "is_security_exception",
    "is_waivable",
    # IdP and SP resolution
    "IdentityProvider",
    "MetadataClient",
    "get_metadata",
    "select_sp_certificate",
    # Serialization
    "decode_authn_request",
    "encode_response",
    "metadata_to_xml",
    "parse_authn_request",
    "parse_metadata",
    "response_to_xml",
]
