"""Data models for SAML assertions, responses and metadata.

This module defines the dataclasses exchanged by the issuance pipeline:
the resolved user session, the inbound AuthnRequest, the Assertion tree,
the outer Response envelope, and the subset of SAML metadata the IdP needs.
Serialization to XML lives in ``saml_idp.saml.marshal``.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from lxml import etree

# Protocol constants
SAML_VERSION = "2.0"
HTTP_POST_BINDING = "urn:oasis:names:tc:SAML:2.0:bindings:HTTP-POST"
HTTP_REDIRECT_BINDING = "urn:oasis:names:tc:SAML:2.0:bindings:HTTP-Redirect"
STATUS_SUCCESS = "urn:oasis:names:tc:SAML:2.0:status:Success"
NAMEID_FORMAT_TRANSIENT = "urn:oasis:names:tc:SAML:2.0:nameid-format:transient"
NAMEID_FORMAT_ENTITY = "urn:oasis:names:tc:SAML:2.0:nameid-format:entity"
ATTRNAME_FORMAT_URI = "urn:oasis:names:tc:SAML:2.0:attrname-format:uri"
CM_BEARER = "urn:oasis:names:tc:SAML:2.0:cm:bearer"
AC_PASSWORD_PROTECTED_TRANSPORT = (
    "urn:oasis:names:tc:SAML:2.0:ac:classes:PasswordProtectedTransport"
)


@dataclass
class Session:
    """A resolved user session.

    Produced by whatever authenticated the user; the assertion builder only
    reads it. Empty string fields are treated as absent.

    Attributes:
        id: Session identifier
        create_time: When the user authenticated (AuthnInstant)
        expire_time: When the session expires
        index: SessionIndex to advertise in the AuthnStatement
        name_id: Value of the transient NameID
        groups: Group memberships (eduPersonAffiliation values)
        user_id: Application user id
        user_fullname: Display name
        user_name: Login name (uid)
        user_email: E-mail address
        user_common_name: Common name (cn)
        user_surname: Surname (sn)
        user_given_name: Given name
    """

    id: str = ""
    create_time: Optional[datetime] = None
    expire_time: Optional[datetime] = None
    index: str = ""

    name_id: str = ""
    groups: List[str] = field(default_factory=list)
    user_id: str = ""
    user_fullname: str = ""
    user_name: str = ""
    user_email: str = ""
    user_common_name: str = ""
    user_surname: str = ""
    user_given_name: str = ""


@dataclass(frozen=True)
class AuthnRequest:
    """Inbound SAML AuthnRequest, reduced to the fields issuance needs."""

    id: str
    issuer: str = ""
    destination: str = ""
    assertion_consumer_service_url: str = ""
    protocol_binding: str = ""
    issue_instant: Optional[datetime] = None


@dataclass
class Issuer:
    value: str
    format: str = ""


@dataclass
class NameID:
    value: str
    format: str = ""
    name_qualifier: str = ""
    sp_name_qualifier: str = ""


@dataclass
class SubjectConfirmationData:
    """Bounds on who may present the assertion, and until when.

    Attributes:
        recipient: ACS URL the assertion is addressed to
        not_on_or_after: Expiry of the bearer confirmation
        in_response_to: ID of the AuthnRequest being answered
        address: Client address, if known
    """

    recipient: str
    not_on_or_after: datetime
    in_response_to: str = ""
    address: str = ""


@dataclass
class SubjectConfirmation:
    subject_confirmation_data: SubjectConfirmationData
    method: str = CM_BEARER


@dataclass
class Subject:
    name_id: NameID
    subject_confirmation: SubjectConfirmation


@dataclass
class AudienceRestriction:
    audience: str


@dataclass
class Conditions:
    not_before: datetime
    not_on_or_after: datetime
    audience_restriction: Optional[AudienceRestriction] = None


@dataclass
class AuthnStatement:
    authn_instant: Optional[datetime]
    session_index: str = ""
    subject_locality_address: str = ""
    authn_context_class_ref: str = AC_PASSWORD_PROTECTED_TRANSPORT


@dataclass
class AttributeValue:
    value: str
    type: str = "xs:string"


@dataclass
class Attribute:
    name: str
    values: List[AttributeValue]
    friendly_name: str = ""
    name_format: str = ""


@dataclass
class AttributeStatement:
    attributes: List[Attribute] = field(default_factory=list)


@dataclass
class Assertion:
    """SAML 2.0 Assertion as built by the IdP.

    Attributes:
        id: Assertion ID (also the signature reference target)
        issue_instant: Issuance timestamp
        issuer: Issuer element
        signature: Unsigned ds:Signature template, filled in by xmlsec1
        subject: Subject with NameID and bearer confirmation
        conditions: Validity window and optional audience restriction
        authn_statement: Authentication statement
        attribute_statement: Attribute statement (may hold no attributes)
        version: SAML version
    """

    id: str
    issue_instant: datetime
    issuer: Issuer
    signature: Optional[etree._Element] = None
    subject: Optional[Subject] = None
    conditions: Optional[Conditions] = None
    authn_statement: Optional[AuthnStatement] = None
    attribute_statement: Optional[AttributeStatement] = None
    version: str = SAML_VERSION

    def missing_fields(self) -> List[str]:
        """Return the names of required parts that are not populated."""
        required = {
            "subject": self.subject,
            "conditions": self.conditions,
            "authn_statement": self.authn_statement,
            "attribute_statement": self.attribute_statement,
        }
        return [name for name, value in required.items() if value is None]


@dataclass
class EncryptedAssertion:
    """Encrypted assertion payload: the xenc:EncryptedData markup as bytes."""

    encrypted_data: bytes


@dataclass
class Status:
    status_code: str = STATUS_SUCCESS


@dataclass
class Response:
    """Outer SAML protocol Response handed to the transport layer."""

    id: str
    in_response_to: str
    issue_instant: datetime
    issuer: Issuer
    destination: str
    encrypted_assertion: EncryptedAssertion
    status: Status = field(default_factory=Status)
    version: str = SAML_VERSION


@dataclass
class Endpoint:
    binding: str
    location: str


@dataclass
class IndexedEndpoint:
    binding: str
    location: str
    index: int = 0
    is_default: Optional[bool] = None


@dataclass
class EncryptionMethod:
    algorithm: str


@dataclass
class KeyDescriptor:
    """Key published in metadata.

    Attributes:
        use: "signing", "encryption" or empty (both)
        certificate: Base64 DER certificate from ds:X509Certificate
        encryption_methods: Advertised encryption algorithms
    """

    use: str = ""
    certificate: str = ""
    encryption_methods: List[EncryptionMethod] = field(default_factory=list)


@dataclass
class SPSSODescriptor:
    key_descriptors: List[KeyDescriptor] = field(default_factory=list)
    assertion_consumer_services: List[IndexedEndpoint] = field(default_factory=list)
    protocol_support_enumeration: str = "urn:oasis:names:tc:SAML:2.0:protocol"


@dataclass
class IDPSSODescriptor:
    key_descriptors: List[KeyDescriptor] = field(default_factory=list)
    name_id_formats: List[str] = field(default_factory=list)
    single_sign_on_services: List[Endpoint] = field(default_factory=list)
    protocol_support_enumeration: str = "urn:oasis:names:tc:SAML:2.0:protocol"


@dataclass
class Metadata:
    """SAML EntityDescriptor, reduced to the parts the IdP reads or publishes."""

    entity_id: str
    valid_until: Optional[datetime] = None
    idp_sso_descriptor: Optional[IDPSSODescriptor] = None
    sp_sso_descriptor: Optional[SPSSODescriptor] = None


@dataclass
class IdpAuthnRequest:
    """State of a single issuance, from inbound request to outbound response.

    One instance belongs to one issuance flow and is filled in stage by stage:
    ``assertion`` by the builder, ``assertion_buffer`` once the assertion is
    signed and encrypted, ``response`` last.

    Attributes:
        request: Parsed inbound AuthnRequest
        service_provider_metadata: Metadata of the requesting SP, when known
        acs_endpoint: ACS endpoint chosen explicitly by the caller
        address: Client address placed in SubjectConfirmationData
        relay_state: Opaque RelayState to echo back through the transport
        request_buffer: Raw AuthnRequest XML as received
        assertion: Built (unsigned) assertion
        assertion_buffer: Signed and encrypted assertion markup
        response: Assembled protocol Response
    """

    request: AuthnRequest
    service_provider_metadata: Optional[Metadata] = None
    acs_endpoint: Optional[IndexedEndpoint] = None
    address: str = ""
    relay_state: str = ""
    request_buffer: bytes = b""
    assertion: Optional[Assertion] = None
    assertion_buffer: Optional[bytes] = None
    response: Optional[Response] = None
