"""Response assembly: sign, encrypt and wrap an assertion.

ResponseAssembler drives one issuance through the SecurityEngine. The
assertion is serialized, signed with the IdP key, encrypted for the SP
certificate and wrapped in a samlp:Response addressed to the assertion's
recipient. Classified engine failures go through the security exception
policy; waived ones continue with whatever output the engine produced, unless
encryption produced none.
"""

import logging
import re
import time
from typing import TYPE_CHECKING, Optional

from ..logging_audit import log_audit_event
from ..models.saml import (
    HTTP_POST_BINDING,
    NAMEID_FORMAT_ENTITY,
    Assertion,
    AuthnRequest,
    EncryptedAssertion,
    IdpAuthnRequest,
    IndexedEndpoint,
    Issuer,
    Metadata,
    Response,
    Session,
    Status,
)
from ..utils.clock import Clock, IDGenerator
from ..utils.exceptions import (
    MissingDestinationError,
    MissingRequiredFieldError,
    XMLSecError,
)
from ..xmlsec.gateway import SecurityEngine, ValidationOptions
from ..xmlsec.templates import AES128_CBC, RSA_OAEP_MGF1P, encrypted_data_template
from .assertion_builder import AssertionBuilder
from .marshal import assertion_to_xml
from .policy import gate

if TYPE_CHECKING:
    from .identity_provider import IdentityProvider

logger = logging.getLogger(__name__)

# xmlsec1 --session-key value matching the aes128-cbc EncryptedData template
SESSION_KEY = "aes-128-cbc"

_XML_DECLARATION = re.compile(rb"^\s*<\?xml[^>]*\?>")


def strip_xml_declaration(data: bytes) -> bytes:
    """Remove a leading XML declaration and surrounding whitespace.

    Example:
        >>> strip_xml_declaration(b'<?xml version="1.0"?>\\n<a/>\\n')
        b'<a/>'
    """
    return _XML_DECLARATION.sub(b"", data, count=1).strip()


def sp_metadata_url(ctx: IdpAuthnRequest) -> str:
    """URL of the requesting SP's metadata: the request Issuer, else the
    entity ID of the SP metadata already attached to ``ctx``."""
    if ctx.request.issuer:
        return ctx.request.issuer
    if ctx.service_provider_metadata is not None:
        return ctx.service_provider_metadata.entity_id
    return ""


class ResponseAssembler:
    """Issues encrypted SAML Responses for an IdentityProvider.

    Holds no per-issuance state; all of it lives in the IdpAuthnRequest
    passed to each call, so one assembler can serve concurrent issuances.

    Args:
        idp: Issuing identity provider
        engine: XML security engine (normally an XMLSecGateway)
        clock: Time source
        id_generator: Source of Response IDs
        builder: AssertionBuilder; one sharing clock and id_generator is
            created when omitted
        dtd_file: DTD passed to the engine when signing

    Example:
        >>> assembler = ResponseAssembler(idp, XMLSecGateway())
        >>> ctx = assembler.new_request(parse_authn_request(xml))
        >>> assembler.make_assertion(ctx, session)
        >>> response = assembler.make_response(ctx)
    """

    def __init__(
        self,
        idp: "IdentityProvider",
        engine: SecurityEngine,
        clock: Optional[Clock] = None,
        id_generator: Optional[IDGenerator] = None,
        builder: Optional[AssertionBuilder] = None,
        dtd_file: Optional[str] = None,
    ) -> None:
        self.idp = idp
        self.engine = engine
        self.clock = clock or idp.clock
        self.id_generator = id_generator or IDGenerator()
        self.builder = builder or AssertionBuilder(idp, self.clock, self.id_generator)
        self.dtd_file = dtd_file

    def new_request(
        self,
        request: AuthnRequest,
        request_buffer: bytes = b"",
        sp_metadata: Optional[Metadata] = None,
        acs_endpoint: Optional[IndexedEndpoint] = None,
        address: str = "",
        relay_state: str = "",
    ) -> IdpAuthnRequest:
        """Start an issuance for ``request``.

        A configured ``sp_acs_url`` on the IdP stands in for an explicit ACS
        endpoint when the caller supplies none.
        """
        if acs_endpoint is None and self.idp.sp_acs_url:
            acs_endpoint = IndexedEndpoint(binding=HTTP_POST_BINDING, location=self.idp.sp_acs_url)

        return IdpAuthnRequest(
            request=request,
            service_provider_metadata=sp_metadata,
            acs_endpoint=acs_endpoint,
            address=address,
            relay_state=relay_state,
            request_buffer=request_buffer,
        )

    def make_assertion(self, ctx: IdpAuthnRequest, session: Session) -> Assertion:
        """Build the unsigned assertion for ``ctx`` and store it there."""
        ctx.assertion = self.builder.build_assertion(
            session,
            ctx.request,
            self.idp.metadata(),
            sp_metadata=ctx.service_provider_metadata,
            acs_endpoint=ctx.acs_endpoint,
            address=ctx.address,
        )
        return ctx.assertion

    def marshal_assertion(self, ctx: IdpAuthnRequest) -> bytes:
        """Sign and encrypt the assertion in ``ctx``.

        Stores the resulting xenc:EncryptedData markup, without XML
        declaration, in ``ctx.assertion_buffer``.

        Raises:
            MissingRequiredFieldError: If the assertion is absent or incomplete,
                or the IdP key or SP certificate/metadata cannot be resolved
            XMLSecError: Classified engine failure not waived by SecurityOpts,
                or a waived encrypt failure that produced no output
            SecurityEngineError: The engine could not be run
        """
        assertion = self._require_assertion(ctx)
        missing = assertion.missing_fields()
        if missing:
            raise MissingRequiredFieldError(
                f"Assertion {assertion.id} is missing required fields: {', '.join(missing)}"
            )

        start_time = time.time()
        data = assertion_to_xml(assertion)

        sign_opts = ValidationOptions(dtd_file=self.dtd_file, enable_id_attr_hack=True)
        with self.idp.privkey_file() as key_path:
            try:
                signed = self.engine.sign(data, key_path, sign_opts)
            except XMLSecError as e:
                gate(e, self.idp.security_opts, "sign")
                signed = e.output or b""

        template = encrypted_data_template(AES128_CBC, RSA_OAEP_MGF1P)
        with self.idp.sp_cert_file(
            sp_metadata_url(ctx), metadata=ctx.service_provider_metadata
        ) as cert_path:
            try:
                encrypted = self.engine.encrypt(template, signed, cert_path, SESSION_KEY)
            except XMLSecError as e:
                gate(e, self.idp.security_opts, "encrypt")
                encrypted = e.output or b""
                if not encrypted.strip():
                    logger.error(f"Waived encrypt error left no output for assertion {assertion.id}")
                    raise

        ctx.assertion_buffer = strip_xml_declaration(encrypted)

        log_audit_event(
            "ASSERTION_ISSUED",
            {
                "status": "success",
                "assertion_id": assertion.id,
                "in_response_to": ctx.request.id,
                "duration": time.time() - start_time,
            },
        )
        return ctx.assertion_buffer

    def make_response(self, ctx: IdpAuthnRequest) -> Response:
        """Wrap the encrypted assertion in a Response and store it in ``ctx``.

        Runs marshal_assertion first if the assertion has not been signed and
        encrypted yet.

        Raises:
            MissingDestinationError: If the assertion has no recipient
        """
        assertion = self._require_assertion(ctx)
        destination = ""
        if assertion.subject is not None:
            destination = assertion.subject.subject_confirmation.subject_confirmation_data.recipient
        if not destination:
            raise MissingDestinationError(
                f"Missing destination for response to request {ctx.request.id}: "
                f"no ACS endpoint, POST ACS in SP metadata or AssertionConsumerServiceURL"
            )

        if ctx.assertion_buffer is None:
            self.marshal_assertion(ctx)

        response = Response(
            id=self.id_generator.new_id(),
            in_response_to=ctx.request.id,
            issue_instant=self.clock.now(),
            issuer=Issuer(value=self.idp.metadata_url or self.idp.entity_id, format=NAMEID_FORMAT_ENTITY),
            destination=destination,
            encrypted_assertion=EncryptedAssertion(encrypted_data=ctx.assertion_buffer),
            status=Status(),
        )
        ctx.response = response

        log_audit_event(
            "RESPONSE_ISSUED",
            {
                "status": "success",
                "response_id": response.id,
                "assertion_id": assertion.id,
                "in_response_to": response.in_response_to,
                "destination": response.destination,
            },
        )
        return response

    def issue(self, ctx: IdpAuthnRequest, session: Session) -> Response:
        """Build, sign, encrypt and wrap an assertion in one call."""
        self.make_assertion(ctx, session)
        return self.make_response(ctx)

    @staticmethod
    def _require_assertion(ctx: IdpAuthnRequest) -> Assertion:
        if ctx.assertion is None:
            raise MissingRequiredFieldError(
                f"No assertion built for request {ctx.request.id}: call make_assertion first"
            )
        return ctx.assertion
