"""Integration tests against a real xmlsec1 binary.

Signs, verifies, encrypts and decrypts SAML documents with the throwaway key
pairs from conftest. Skipped when xmlsec1 is not installed.
"""

import shutil

import pytest
from lxml import etree

from saml_idp.saml.assertion_builder import AssertionBuilder
from saml_idp.saml.marshal import NS, assertion_to_xml, response_to_xml
from saml_idp.saml.policy import SecurityOpts, gate
from saml_idp.saml.response_assembler import ResponseAssembler
from saml_idp.utils.exceptions import SAMLIdPError, XMLSecError
from saml_idp.xmlsec import ValidationOptions, XMLSecGateway, encrypted_data_template
from saml_idp.xmlsec.templates import XENC_NS

from tests.conftest import SP_ACS_POST

pytestmark = [
    pytest.mark.integration,
    pytest.mark.skipif(shutil.which("xmlsec1") is None, reason="xmlsec1 not installed"),
]

SAML_IDS = ValidationOptions(enable_id_attr_hack=True)
# Test certificates are self-signed
TEST_OPTS = SecurityOpts(allow_self_signed_cert=True, trust_unknown_authority=True)


@pytest.fixture
def gateway() -> XMLSecGateway:
    return XMLSecGateway(timeout=60)


@pytest.fixture
def assertion_xml(idp, clock, id_generator, session, authn_request, sp_metadata) -> bytes:
    builder = AssertionBuilder(idp, clock, id_generator)
    assertion = builder.build_assertion(session, authn_request, idp.metadata(), sp_metadata)
    return assertion_to_xml(assertion)


def _verify(gateway: XMLSecGateway, data: bytes, cert_path: str) -> None:
    try:
        gateway.verify(data, cert_path, SAML_IDS)
    except XMLSecError as e:
        gate(e, TEST_OPTS, "verify")


class TestSignVerify:
    def test_signed_assertion_verifies(self, gateway, assertion_xml, idp_key_file, idp_cert_file):
        signed = gateway.sign(assertion_xml, str(idp_key_file), SAML_IDS)

        signature_value = etree.fromstring(signed).find(
            "ds:Signature/ds:SignatureValue", NS
        )
        assert signature_value is not None and signature_value.text.strip()
        _verify(gateway, signed, str(idp_cert_file))

    def test_tampered_assertion_fails(self, gateway, assertion_xml, idp_key_file, idp_cert_file):
        signed = gateway.sign(assertion_xml, str(idp_key_file), SAML_IDS)
        tampered = signed.replace(b"alice@example.com", b"mallory@example.com")

        with pytest.raises(SAMLIdPError):
            _verify(gateway, tampered, str(idp_cert_file))


class TestEncryptDecrypt:
    def test_round_trip(self, gateway, assertion_xml, sp_cert_file, sp_key_file):
        encrypted = gateway.encrypt(
            encrypted_data_template(), assertion_xml, str(sp_cert_file), "aes-128-cbc"
        )

        assert etree.fromstring(encrypted).tag == f"{{{XENC_NS}}}EncryptedData"
        assert b"alice@example.com" not in encrypted

        decrypted = gateway.decrypt(encrypted, str(sp_key_file))
        assert b"alice@example.com" in decrypted

    def test_decrypt_with_wrong_key_fails(self, gateway, assertion_xml, sp_cert_file, idp_key_file):
        encrypted = gateway.encrypt(
            encrypted_data_template(), assertion_xml, str(sp_cert_file), "aes-128-cbc"
        )

        with pytest.raises(SAMLIdPError):
            gateway.decrypt(encrypted, str(idp_key_file))


class TestIssuance:
    def test_issued_response_decrypts_to_signed_assertion(
        self, idp, gateway, clock, id_generator, authn_request, sp_metadata, session,
        sp_key_file, idp_cert_file,
    ):
        idp.security_opts = TEST_OPTS
        assembler = ResponseAssembler(idp, gateway, clock=clock, id_generator=id_generator)
        ctx = assembler.new_request(authn_request, sp_metadata=sp_metadata)

        response = assembler.issue(ctx, session)

        root = etree.fromstring(response_to_xml(response))
        assert root.get("Destination") == SP_ACS_POST
        encrypted = etree.tostring(root.find("saml:EncryptedAssertion", NS)[0])
        assertion = gateway.decrypt(encrypted, str(sp_key_file))
        assert b"saml:Assertion" in assertion
        _verify(gateway, assertion, str(idp_cert_file))
