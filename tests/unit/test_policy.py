"""Unit tests for the security exception policy."""

import logging

import pytest

from saml_idp.saml.policy import SecurityOpts, gate, is_security_exception, is_waivable
from saml_idp.utils.exceptions import (
    MissingDestinationError,
    SelfSignedCertificateError,
    SignatureFailureError,
    UnknownIssuerError,
    XMLSecError,
    XMLSecProcessError,
    XMLSecValidityError,
)

ALL_WAIVERS = SecurityOpts(allow_self_signed_cert=True, trust_unknown_authority=True)
NO_WAIVERS = SecurityOpts()


class TestIsWaivable:
    """Test which errors each waiver covers."""

    def test_self_signed_waived_only_with_flag(self):
        error = SelfSignedCertificateError("msg=self signed certificate")

        assert is_waivable(error, SecurityOpts(allow_self_signed_cert=True))
        assert not is_waivable(error, NO_WAIVERS)
        assert not is_waivable(error, SecurityOpts(trust_unknown_authority=True))

    def test_unknown_issuer_waived_only_with_flag(self):
        error = UnknownIssuerError("msg=unable to get local issuer certificate")

        assert is_waivable(error, SecurityOpts(trust_unknown_authority=True))
        assert not is_waivable(error, NO_WAIVERS)
        assert not is_waivable(error, SecurityOpts(allow_self_signed_cert=True))

    @pytest.mark.parametrize(
        "error",
        [
            SignatureFailureError("signature failed"),
            XMLSecValidityError("validity error"),
            XMLSecError("unrecognised failure"),
            XMLSecProcessError("exit 1", 1),
            MissingDestinationError("no destination"),
        ],
    )
    def test_other_errors_never_waived(self, error):
        """Even with every waiver enabled, other failures are fatal."""
        assert not is_waivable(error, ALL_WAIVERS)
        assert is_security_exception(error, ALL_WAIVERS)

    def test_security_exception_is_negation(self):
        error = SelfSignedCertificateError("msg=self signed certificate")

        assert is_security_exception(error, NO_WAIVERS)
        assert not is_security_exception(error, ALL_WAIVERS)


class TestGate:
    """Test raising and waiving through gate()."""

    def test_non_waivable_error_is_reraised(self):
        error = SignatureFailureError("signature failed")

        with pytest.raises(SignatureFailureError) as exc_info:
            gate(error, ALL_WAIVERS, "sign")

        assert exc_info.value is error

    def test_waivable_error_returns(self):
        gate(SelfSignedCertificateError("msg=self signed certificate"), ALL_WAIVERS, "encrypt")

    def test_waived_error_is_logged(self, caplog):
        with caplog.at_level(logging.INFO):
            gate(UnknownIssuerError("msg=unable to get local issuer certificate"), ALL_WAIVERS, "sign")

        assert "Waived UnknownIssuerError during sign" in caplog.text
        assert "AUDIT [SECURITY_EXCEPTION_WAIVED]" in caplog.text

    def test_failure_is_audited(self, caplog):
        with caplog.at_level(logging.INFO):
            with pytest.raises(XMLSecValidityError):
                gate(XMLSecValidityError("validity error"), NO_WAIVERS, "sign")

        assert "AUDIT [SECURITY_EXCEPTION]" in caplog.text
        assert "status=failure" in caplog.text
        assert "error_type=XMLSecValidityError" in caplog.text
