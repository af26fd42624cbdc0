"""Assertion construction.

Maps a resolved Session and the inbound AuthnRequest onto an unsigned SAML
Assertion: issuer, signature template, transient subject, bearer
confirmation, conditions, authentication statement and attributes.
"""

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import TYPE_CHECKING, List, Optional

from ..models.saml import (
    ATTRNAME_FORMAT_URI,
    HTTP_POST_BINDING,
    NAMEID_FORMAT_ENTITY,
    NAMEID_FORMAT_TRANSIENT,
    Assertion,
    Attribute,
    AttributeStatement,
    AttributeValue,
    AudienceRestriction,
    AuthnRequest,
    AuthnStatement,
    Conditions,
    IndexedEndpoint,
    Issuer,
    Metadata,
    NameID,
    Session,
    Subject,
    SubjectConfirmation,
    SubjectConfirmationData,
)
from ..utils.clock import Clock, IDGenerator
from ..xmlsec.templates import signature_template

if TYPE_CHECKING:
    from .identity_provider import IdentityProvider

logger = logging.getLogger(__name__)

# Lifetime of the bearer confirmation and of the Conditions window
ISSUE_LIFETIME = timedelta(seconds=90)


@dataclass(frozen=True)
class AttributeMapping:
    """How one Session field is published as a SAML Attribute.

    Attributes:
        field: Session attribute name to read
        friendly_name: FriendlyName of the emitted Attribute
        name: Formal attribute Name
        name_format: NameFormat, empty to omit
        multi_valued: Field is a list; emit one AttributeValue per item
    """

    field: str
    friendly_name: str
    name: str
    name_format: str = ""
    multi_valued: bool = False


ATTRIBUTE_TABLE = (
    AttributeMapping("user_name", "uid", "urn:oid:0.9.2342.19200300.100.1.1", ATTRNAME_FORMAT_URI),
    AttributeMapping(
        "user_email",
        "eduPersonPrincipalName",
        "urn:oid:1.3.6.1.4.1.5923.1.1.1.6",
        ATTRNAME_FORMAT_URI,
    ),
    AttributeMapping("user_surname", "sn", "urn:oid:2.5.4.4", ATTRNAME_FORMAT_URI),
    AttributeMapping("user_given_name", "givenName", "urn:oid:2.5.4.42", ATTRNAME_FORMAT_URI),
    AttributeMapping("user_common_name", "cn", "urn:oid:2.5.4.3", ATTRNAME_FORMAT_URI),
    AttributeMapping("user_id", "MASTUsername", "userid"),
    AttributeMapping("user_email", "MASTEmail", "email"),
    AttributeMapping("user_fullname", "MASTName", "fullname"),
    AttributeMapping(
        "groups",
        "eduPersonAffiliation",
        "urn:oid:1.3.6.1.4.1.5923.1.1.1.1",
        ATTRNAME_FORMAT_URI,
        multi_valued=True,
    ),
)


def build_attributes(session: Session) -> List[Attribute]:
    """Build the attribute list for ``session``, skipping empty fields.

    An empty group list is skipped; the groups of a non-empty list are all
    kept, blank names included.

    Example:
        >>> attrs = build_attributes(Session(user_name="alice", groups=["staff", "member"]))
        >>> [(a.friendly_name, [v.value for v in a.values]) for a in attrs]
        [('uid', ['alice']), ('eduPersonAffiliation', ['staff', 'member'])]
    """
    attributes = []
    for mapping in ATTRIBUTE_TABLE:
        raw = getattr(session, mapping.field)
        if mapping.multi_valued:
            values = list(raw or [])
        else:
            values = [raw] if raw else []

        if not values:
            continue

        attributes.append(
            Attribute(
                name=mapping.name,
                friendly_name=mapping.friendly_name,
                name_format=mapping.name_format,
                values=[AttributeValue(value=value) for value in values],
            )
        )
    return attributes


def resolve_recipient(
    request: AuthnRequest,
    sp_metadata: Optional[Metadata] = None,
    acs_endpoint: Optional[IndexedEndpoint] = None,
) -> str:
    """Choose the ACS URL the assertion is addressed to.

    Precedence:
        1. the explicitly supplied ACS endpoint, even one with no location
        2. the first HTTP-POST AssertionConsumerService in SP metadata
        3. the AssertionConsumerServiceURL from the AuthnRequest
        4. empty string

    Returns:
        Recipient URL, possibly empty
    """
    if acs_endpoint is not None:
        return acs_endpoint.location

    if sp_metadata is not None and sp_metadata.sp_sso_descriptor is not None:
        for endpoint in sp_metadata.sp_sso_descriptor.assertion_consumer_services:
            if endpoint.binding == HTTP_POST_BINDING and endpoint.location:
                return endpoint.location

    return request.assertion_consumer_service_url or ""


class AssertionBuilder:
    """Builds unsigned assertions for an IdentityProvider.

    Args:
        idp: Issuing identity provider (supplies the signing certificate)
        clock: Time source
        id_generator: Source of assertion IDs
        clock_drift_tolerance: Widens the Conditions window on both sides;
            the bearer confirmation expiry is unaffected
    """

    def __init__(
        self,
        idp: "IdentityProvider",
        clock: Optional[Clock] = None,
        id_generator: Optional[IDGenerator] = None,
        clock_drift_tolerance: timedelta = timedelta(0),
    ) -> None:
        self.idp = idp
        self.clock = clock or Clock()
        self.id_generator = id_generator or IDGenerator()
        self.clock_drift_tolerance = clock_drift_tolerance

    def build_assertion(
        self,
        session: Session,
        request: AuthnRequest,
        idp_metadata: Metadata,
        sp_metadata: Optional[Metadata] = None,
        acs_endpoint: Optional[IndexedEndpoint] = None,
        address: str = "",
    ) -> Assertion:
        """Build the Assertion answering ``request`` for ``session``.

        Args:
            session: Authenticated user session
            request: Inbound AuthnRequest
            idp_metadata: This IdP's metadata (issuer and NameQualifier)
            sp_metadata: Requesting SP's metadata, when known
            acs_endpoint: ACS endpoint chosen by the caller, if any
            address: Client address for SubjectConfirmationData

        Returns:
            Fully populated, unsigned Assertion
        """
        now = self.clock.now()
        assertion_id = self.id_generator.new_id()
        sp_entity_id = sp_metadata.entity_id if sp_metadata is not None else ""
        recipient = resolve_recipient(request, sp_metadata, acs_endpoint)

        audience_restriction = None
        if sp_metadata is not None:
            audience_restriction = AudienceRestriction(audience=sp_entity_id)

        assertion = Assertion(
            id=assertion_id,
            issue_instant=now,
            issuer=Issuer(value=idp_metadata.entity_id, format=NAMEID_FORMAT_ENTITY),
            signature=signature_template(self.idp.cert(), f"#{assertion_id}"),
            subject=Subject(
                name_id=NameID(
                    value=session.name_id,
                    format=NAMEID_FORMAT_TRANSIENT,
                    name_qualifier=idp_metadata.entity_id,
                    sp_name_qualifier=sp_entity_id,
                ),
                subject_confirmation=SubjectConfirmation(
                    subject_confirmation_data=SubjectConfirmationData(
                        recipient=recipient,
                        not_on_or_after=now + ISSUE_LIFETIME,
                        in_response_to=request.id,
                        address=address,
                    )
                ),
            ),
            conditions=Conditions(
                not_before=now - self.clock_drift_tolerance,
                not_on_or_after=now + ISSUE_LIFETIME + self.clock_drift_tolerance,
                audience_restriction=audience_restriction,
            ),
            authn_statement=AuthnStatement(
                authn_instant=session.create_time,
                session_index=session.index,
                subject_locality_address=address,
            ),
            attribute_statement=AttributeStatement(attributes=build_attributes(session)),
        )

        if not recipient:
            logger.warning(f"Assertion {assertion_id} for request {request.id} has no recipient")

        logger.info(
            f"Built assertion {assertion_id} for request {request.id} "
            f"(audience: {sp_entity_id or 'none'}, "
            f"{len(assertion.attribute_statement.attributes)} attributes)"
        )
        return assertion
