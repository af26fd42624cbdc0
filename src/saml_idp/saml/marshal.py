"""XML serialization for SAML models.

Builds lxml trees for Assertions, Responses and IdP metadata, and parses the
inbound documents the IdP consumes: SP metadata and AuthnRequests.
"""

import base64
import binascii
import copy
import logging
import zlib
from datetime import datetime, timezone
from typing import List, Optional

from lxml import etree

from ..models.saml import (
    Assertion,
    Attribute,
    AuthnRequest,
    Conditions,
    EncryptionMethod,
    Endpoint,
    IDPSSODescriptor,
    IndexedEndpoint,
    KeyDescriptor,
    Metadata,
    Response,
    SPSSODescriptor,
    Subject,
)
from ..xmlsec.templates import DS_NS

logger = logging.getLogger(__name__)

SAML_NS = "urn:oasis:names:tc:SAML:2.0:assertion"
SAMLP_NS = "urn:oasis:names:tc:SAML:2.0:protocol"
MD_NS = "urn:oasis:names:tc:SAML:2.0:metadata"
XS_NS = "http://www.w3.org/2001/XMLSchema"
XSI_NS = "http://www.w3.org/2001/XMLSchema-instance"

NS = {"saml": SAML_NS, "samlp": SAMLP_NS, "md": MD_NS, "ds": DS_NS}

TIME_FORMAT = "%Y-%m-%dT%H:%M:%SZ"


def _saml(tag: str) -> str:
    return f"{{{SAML_NS}}}{tag}"


def _samlp(tag: str) -> str:
    return f"{{{SAMLP_NS}}}{tag}"


def _md(tag: str) -> str:
    return f"{{{MD_NS}}}{tag}"


def _ds(tag: str) -> str:
    return f"{{{DS_NS}}}{tag}"


def secure_parser() -> etree.XMLParser:
    """Parser for untrusted input: no entity expansion, no network, no DTD loading."""
    return etree.XMLParser(
        resolve_entities=False,
        no_network=True,
        load_dtd=False,
        huge_tree=False,
    )


def format_time(value: datetime) -> str:
    """Format a timestamp as SAML xs:dateTime in UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime(TIME_FORMAT)


def parse_time(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromisoformat(value.strip().replace("Z", "+00:00"))


def _set_if(element: etree._Element, name: str, value: str) -> None:
    if value:
        element.set(name, value)


def assertion_to_element(assertion: Assertion) -> etree._Element:
    """Build the saml:Assertion element, children in schema order."""
    root = etree.Element(
        _saml("Assertion"),
        nsmap={"saml": SAML_NS, "xs": XS_NS, "xsi": XSI_NS},
    )
    root.set("ID", assertion.id)
    root.set("Version", assertion.version)
    root.set("IssueInstant", format_time(assertion.issue_instant))

    issuer = etree.SubElement(root, _saml("Issuer"))
    _set_if(issuer, "Format", assertion.issuer.format)
    issuer.text = assertion.issuer.value

    if assertion.signature is not None:
        root.append(copy.deepcopy(assertion.signature))

    if assertion.subject is not None:
        _add_subject(root, assertion.subject)

    if assertion.conditions is not None:
        _add_conditions(root, assertion.conditions)

    statement = assertion.authn_statement
    if statement is not None:
        authn = etree.SubElement(root, _saml("AuthnStatement"))
        if statement.authn_instant is not None:
            authn.set("AuthnInstant", format_time(statement.authn_instant))
        _set_if(authn, "SessionIndex", statement.session_index)
        locality = etree.SubElement(authn, _saml("SubjectLocality"))
        _set_if(locality, "Address", statement.subject_locality_address)
        context = etree.SubElement(authn, _saml("AuthnContext"))
        etree.SubElement(context, _saml("AuthnContextClassRef")).text = (
            statement.authn_context_class_ref
        )

    if assertion.attribute_statement is not None:
        attribute_statement = etree.SubElement(root, _saml("AttributeStatement"))
        for attribute in assertion.attribute_statement.attributes:
            _add_attribute(attribute_statement, attribute)

    return root


def _add_subject(root: etree._Element, subject: Subject) -> None:
    subject_elem = etree.SubElement(root, _saml("Subject"))

    name_id = etree.SubElement(subject_elem, _saml("NameID"))
    _set_if(name_id, "Format", subject.name_id.format)
    _set_if(name_id, "NameQualifier", subject.name_id.name_qualifier)
    _set_if(name_id, "SPNameQualifier", subject.name_id.sp_name_qualifier)
    name_id.text = subject.name_id.value

    confirmation = subject.subject_confirmation
    confirmation_elem = etree.SubElement(
        subject_elem, _saml("SubjectConfirmation"), Method=confirmation.method
    )
    data = confirmation.subject_confirmation_data
    data_elem = etree.SubElement(confirmation_elem, _saml("SubjectConfirmationData"))
    _set_if(data_elem, "Address", data.address)
    _set_if(data_elem, "InResponseTo", data.in_response_to)
    data_elem.set("NotOnOrAfter", format_time(data.not_on_or_after))
    _set_if(data_elem, "Recipient", data.recipient)


def _add_conditions(root: etree._Element, conditions: Conditions) -> None:
    conditions_elem = etree.SubElement(
        root,
        _saml("Conditions"),
        NotBefore=format_time(conditions.not_before),
        NotOnOrAfter=format_time(conditions.not_on_or_after),
    )
    if conditions.audience_restriction is not None:
        restriction = etree.SubElement(conditions_elem, _saml("AudienceRestriction"))
        etree.SubElement(restriction, _saml("Audience")).text = (
            conditions.audience_restriction.audience
        )


def _add_attribute(parent: etree._Element, attribute: Attribute) -> None:
    attribute_elem = etree.SubElement(parent, _saml("Attribute"))
    _set_if(attribute_elem, "FriendlyName", attribute.friendly_name)
    attribute_elem.set("Name", attribute.name)
    _set_if(attribute_elem, "NameFormat", attribute.name_format)
    for value in attribute.values:
        value_elem = etree.SubElement(attribute_elem, _saml("AttributeValue"))
        value_elem.set(f"{{{XSI_NS}}}type", value.type)
        value_elem.text = value.value


def assertion_to_xml(assertion: Assertion) -> bytes:
    return etree.tostring(assertion_to_element(assertion), encoding="UTF-8")


def response_to_element(response: Response) -> etree._Element:
    """Build the samlp:Response element with its EncryptedAssertion payload.

    Raises:
        ValueError: If the encrypted payload is not well-formed XML
    """
    root = etree.Element(_samlp("Response"), nsmap={"samlp": SAMLP_NS, "saml": SAML_NS})
    root.set("ID", response.id)
    _set_if(root, "InResponseTo", response.in_response_to)
    root.set("Version", response.version)
    root.set("IssueInstant", format_time(response.issue_instant))
    root.set("Destination", response.destination)

    issuer = etree.SubElement(root, _saml("Issuer"))
    _set_if(issuer, "Format", response.issuer.format)
    issuer.text = response.issuer.value

    status = etree.SubElement(root, _samlp("Status"))
    etree.SubElement(status, _samlp("StatusCode"), Value=response.status.status_code)

    encrypted = etree.SubElement(root, _saml("EncryptedAssertion"))
    try:
        payload = etree.fromstring(
            response.encrypted_assertion.encrypted_data, parser=secure_parser()
        )
    except etree.XMLSyntaxError as e:
        raise ValueError(
            f"Encrypted assertion payload is not well-formed XML: {e}. "
            f"Check the xmlsec1 encryption output."
        ) from e
    encrypted.append(payload)

    return root


def response_to_xml(response: Response) -> bytes:
    return etree.tostring(response_to_element(response), xml_declaration=True, encoding="UTF-8")


def encode_response(response: Response) -> str:
    """Base64 form of the Response, as posted in the SAMLResponse form field."""
    return base64.b64encode(response_to_xml(response)).decode("ascii")


def _key_descriptor_element(parent: etree._Element, key: KeyDescriptor) -> None:
    key_elem = etree.SubElement(parent, _md("KeyDescriptor"))
    _set_if(key_elem, "use", key.use)
    key_info = etree.SubElement(key_elem, _ds("KeyInfo"))
    x509_data = etree.SubElement(key_info, _ds("X509Data"))
    etree.SubElement(x509_data, _ds("X509Certificate")).text = key.certificate
    for method in key.encryption_methods:
        etree.SubElement(key_elem, _md("EncryptionMethod"), Algorithm=method.algorithm)


def metadata_to_element(metadata: Metadata) -> etree._Element:
    """Build an md:EntityDescriptor for the IdP's own metadata."""
    root = etree.Element(_md("EntityDescriptor"), nsmap={"md": MD_NS, "ds": DS_NS})
    root.set("entityID", metadata.entity_id)
    if metadata.valid_until is not None:
        root.set("validUntil", format_time(metadata.valid_until))

    idp = metadata.idp_sso_descriptor
    if idp is not None:
        idp_elem = etree.SubElement(
            root,
            _md("IDPSSODescriptor"),
            protocolSupportEnumeration=idp.protocol_support_enumeration,
        )
        for key in idp.key_descriptors:
            _key_descriptor_element(idp_elem, key)
        for name_id_format in idp.name_id_formats:
            etree.SubElement(idp_elem, _md("NameIDFormat")).text = name_id_format
        for endpoint in idp.single_sign_on_services:
            etree.SubElement(
                idp_elem,
                _md("SingleSignOnService"),
                Binding=endpoint.binding,
                Location=endpoint.location,
            )

    sp = metadata.sp_sso_descriptor
    if sp is not None:
        sp_elem = etree.SubElement(
            root,
            _md("SPSSODescriptor"),
            protocolSupportEnumeration=sp.protocol_support_enumeration,
        )
        for key in sp.key_descriptors:
            _key_descriptor_element(sp_elem, key)
        for acs in sp.assertion_consumer_services:
            acs_elem = etree.SubElement(
                sp_elem,
                _md("AssertionConsumerService"),
                Binding=acs.binding,
                Location=acs.location,
                index=str(acs.index),
            )
            if acs.is_default is not None:
                acs_elem.set("isDefault", "true" if acs.is_default else "false")

    return root


def metadata_to_xml(metadata: Metadata) -> bytes:
    return etree.tostring(
        metadata_to_element(metadata), xml_declaration=True, encoding="UTF-8", pretty_print=True
    )


def _parse_key_descriptors(descriptor: etree._Element) -> List[KeyDescriptor]:
    keys = []
    for key_elem in descriptor.findall("md:KeyDescriptor", NS):
        cert_elem = key_elem.find("ds:KeyInfo/ds:X509Data/ds:X509Certificate", NS)
        keys.append(
            KeyDescriptor(
                use=key_elem.get("use", ""),
                certificate=(cert_elem.text or "").strip() if cert_elem is not None else "",
                encryption_methods=[
                    EncryptionMethod(algorithm=m.get("Algorithm", ""))
                    for m in key_elem.findall("md:EncryptionMethod", NS)
                ],
            )
        )
    return keys


def parse_metadata(xml: bytes) -> Metadata:
    """Parse an md:EntityDescriptor (or the first one inside EntitiesDescriptor).

    Raises:
        etree.XMLSyntaxError: If the document is not well-formed
        ValueError: If no EntityDescriptor is present or a field is malformed
    """
    root = etree.fromstring(xml, parser=secure_parser())
    if root.tag == _md("EntitiesDescriptor"):
        entity = root.find("md:EntityDescriptor", NS)
    elif root.tag == _md("EntityDescriptor"):
        entity = root
    else:
        entity = None

    if entity is None:
        raise ValueError(f"Expected md:EntityDescriptor, found {root.tag}")

    metadata = Metadata(
        entity_id=entity.get("entityID", ""),
        valid_until=parse_time(entity.get("validUntil")),
    )

    sp_elem = entity.find("md:SPSSODescriptor", NS)
    if sp_elem is not None:
        metadata.sp_sso_descriptor = SPSSODescriptor(
            key_descriptors=_parse_key_descriptors(sp_elem),
            assertion_consumer_services=[
                IndexedEndpoint(
                    binding=acs.get("Binding", ""),
                    location=acs.get("Location", ""),
                    index=int(acs.get("index", "0")),
                    is_default=(
                        acs.get("isDefault") in ("true", "1")
                        if acs.get("isDefault") is not None
                        else None
                    ),
                )
                for acs in sp_elem.findall("md:AssertionConsumerService", NS)
            ],
            protocol_support_enumeration=sp_elem.get("protocolSupportEnumeration", ""),
        )

    idp_elem = entity.find("md:IDPSSODescriptor", NS)
    if idp_elem is not None:
        metadata.idp_sso_descriptor = IDPSSODescriptor(
            key_descriptors=_parse_key_descriptors(idp_elem),
            name_id_formats=[
                (e.text or "").strip() for e in idp_elem.findall("md:NameIDFormat", NS)
            ],
            single_sign_on_services=[
                Endpoint(binding=e.get("Binding", ""), location=e.get("Location", ""))
                for e in idp_elem.findall("md:SingleSignOnService", NS)
            ],
            protocol_support_enumeration=idp_elem.get("protocolSupportEnumeration", ""),
        )

    return metadata


def parse_authn_request(xml: bytes) -> AuthnRequest:
    """Parse a samlp:AuthnRequest document.

    Raises:
        etree.XMLSyntaxError: If the document is not well-formed
        ValueError: If the root is not an AuthnRequest or has no ID
    """
    root = etree.fromstring(xml, parser=secure_parser())
    if root.tag != _samlp("AuthnRequest"):
        raise ValueError(f"Expected samlp:AuthnRequest, found {root.tag}")

    request_id = root.get("ID", "")
    if not request_id:
        raise ValueError("AuthnRequest has no ID attribute")

    issuer = root.find("saml:Issuer", NS)
    return AuthnRequest(
        id=request_id,
        issuer=(issuer.text or "").strip() if issuer is not None else "",
        destination=root.get("Destination", ""),
        assertion_consumer_service_url=root.get("AssertionConsumerServiceURL", ""),
        protocol_binding=root.get("ProtocolBinding", ""),
        issue_instant=parse_time(root.get("IssueInstant")),
    )


def decode_authn_request(encoded: str, deflated: bool = False) -> bytes:
    """Decode a SAMLRequest parameter.

    The HTTP-Redirect binding sends raw-DEFLATE then base64; HTTP-POST sends
    base64 only.

    Raises:
        ValueError: If the value is not valid base64 or DEFLATE data
    """
    try:
        data = base64.b64decode(encoded, validate=False)
        if deflated:
            data = zlib.decompress(data, -15)
    except (binascii.Error, zlib.error) as e:
        raise ValueError(f"Invalid SAMLRequest encoding: {e}") from e
    return data
