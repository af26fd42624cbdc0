"""Unit tests for CLI commands.

This module tests the command-line interface for saml-idp: the main group,
metadata, classify, issue, config validation and the xmlsec subcommands.
"""

import base64
import json
import os
from pathlib import Path
from unittest.mock import patch

import pytest
from click.testing import CliRunner

from saml_idp import __version__
from saml_idp.cli.main import cli
from saml_idp.saml.metadata import MetadataClient

from tests.conftest import IDP_METADATA_URL, IDP_SSO_URL, SP_ACS_POST, SP_ENTITY_ID

AUTHN_REQUEST = f"""<samlp:AuthnRequest xmlns:samlp="urn:oasis:names:tc:SAML:2.0:protocol"
    xmlns:saml="urn:oasis:names:tc:SAML:2.0:assertion"
    ID="req-cli-1" Version="2.0" IssueInstant="2024-03-01T11:59:30Z">
  <saml:Issuer>{SP_ENTITY_ID}</saml:Issuer>
</samlp:AuthnRequest>"""

# sign echoes the document back; encrypt ignores input and emits a stub EncryptedData
FAKE_XMLSEC = """case "$1" in
  --sign) cat ;;
  --encrypt)
    cat > /dev/null
    echo '<?xml version="1.0"?>'
    echo '<xenc:EncryptedData xmlns:xenc="http://www.w3.org/2001/04/xmlenc#"/>'
    ;;
  *) cat > /dev/null; echo "unexpected $1" >&2; exit 2 ;;
esac"""


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in list(os.environ):
        if name.startswith("SAML_IDP_"):
            monkeypatch.delenv(name)


@pytest.fixture(autouse=True)
def mock_configure_logging():
    """Keep CLI runs from installing real log handlers."""
    with patch("saml_idp.cli.main.configure_logging") as mock_config:
        yield mock_config


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture
def write_config(tmp_path, idp_key_file, idp_cert_file, fake_xmlsec):
    """Return a factory writing a config file; keyword args update sections."""

    def factory(**sections) -> Path:
        data = {
            "idp": {
                "metadata_url": IDP_METADATA_URL,
                "sso_url": IDP_SSO_URL,
                "key_file": str(idp_key_file),
                "cert_file": str(idp_cert_file),
            },
            "xmlsec": {"binary": fake_xmlsec(FAKE_XMLSEC)},
            "logging": {"log_file": str(tmp_path / "logs" / "cli.log")},
        }
        for name, values in sections.items():
            data.setdefault(name, {}).update(values)
        path = tmp_path / "config.json"
        path.write_text(json.dumps(data))
        return path

    return factory


class TestMainCLI:
    """Test cases for main CLI entry point."""

    def test_cli_help(self, runner):
        result = runner.invoke(cli, ["--help"])

        assert result.exit_code == 0
        assert "SAML IdP issuer" in result.output
        assert "--verbose" in result.output

    def test_cli_version(self, runner):
        result = runner.invoke(cli, ["--version"])

        assert result.exit_code == 0
        assert "saml-idp" in result.output
        assert __version__ in result.output

    def test_cli_version_command(self, runner, write_config):
        result = runner.invoke(cli, ["--config", str(write_config()), "version"])

        assert result.exit_code == 0
        assert f"saml-idp version {__version__}" in result.output

    def test_verbose_flag_configures_logging(self, runner, write_config, mock_configure_logging):
        result = runner.invoke(cli, ["--config", str(write_config()), "--verbose", "version"])

        assert result.exit_code == 0
        assert mock_configure_logging.call_args.kwargs["level"] == "DEBUG"

    def test_log_file_option_overrides_config(self, runner, write_config, tmp_path, mock_configure_logging):
        log_file = tmp_path / "override.log"

        runner.invoke(cli, ["--config", str(write_config()), "--log-file", str(log_file), "version"])

        assert mock_configure_logging.call_args.kwargs["log_file"] == log_file

    def test_invalid_config_exits(self, runner, write_config):
        config_file = write_config(idp={"metadata_url": "not-a-url"})

        result = runner.invoke(cli, ["--config", str(config_file), "version"])

        assert result.exit_code == 1
        assert "Error loading configuration" in result.output

    def test_missing_config_file(self, runner, tmp_path):
        result = runner.invoke(cli, ["--config", str(tmp_path / "missing.json"), "version"])

        assert result.exit_code == 2


class TestMetadataCommand:
    def test_prints_metadata(self, runner, write_config):
        result = runner.invoke(cli, ["--config", str(write_config()), "metadata"])

        assert result.exit_code == 0
        assert f'entityID="{IDP_METADATA_URL}"' in result.output
        assert "IDPSSODescriptor" in result.output

    def test_saves_metadata(self, runner, write_config, tmp_path):
        output = tmp_path / "idp-metadata.xml"

        result = runner.invoke(
            cli, ["--config", str(write_config()), "metadata", "--output", str(output)]
        )

        assert result.exit_code == 0
        assert "Metadata saved to" in result.output
        assert output.read_bytes().startswith(b"<?xml")

    def test_missing_certificate(self, runner, write_config):
        config_file = write_config(idp={"cert_file": None})

        result = runner.invoke(cli, ["--config", str(config_file), "metadata"])

        assert result.exit_code == 1
        assert "Failed to build metadata" in result.output


class TestClassifyCommand:
    """Test diagnostic classification from stdin or file."""

    @pytest.mark.parametrize(
        "diagnostic, expected",
        [
            ("func=xmlSecOpenSSLEvpSignatureVerify:signature failed", "signature_failure (waivable: no)"),
            ("/dev/stdin:1: validity error : IDREF", "validity_error (waivable: no)"),
            ("err=18;msg=self signed certificate", "self_signed_certificate (waivable: no)"),
            ("err=20;msg=unable to get local issuer certificate", "unknown_issuer (waivable: no)"),
            ("key is not found", "unclassified (waivable: no)"),
            ("OK\n", "ok"),
        ],
    )
    def test_classifies_stdin(self, runner, write_config, diagnostic, expected):
        result = runner.invoke(
            cli, ["--config", str(write_config()), "classify"], input=diagnostic
        )

        assert result.exit_code == 0
        assert result.output.strip() == expected

    def test_waiver_from_config(self, runner, write_config):
        config_file = write_config(security={"allow_self_signed_cert": True})

        result = runner.invoke(
            cli, ["--config", str(config_file), "classify"], input="msg=self signed certificate"
        )

        assert result.output.strip() == "self_signed_certificate (waivable: yes)"

    def test_reads_file(self, runner, write_config, tmp_path):
        diagnostic = tmp_path / "stderr.txt"
        diagnostic.write_text("msg=unable to get local issuer certificate")

        result = runner.invoke(cli, ["--config", str(write_config()), "classify", str(diagnostic)])

        assert result.output.strip() == "unknown_issuer (waivable: no)"


class TestIssueCommand:
    """Test end-to-end issuance through a fake xmlsec1."""

    @pytest.fixture
    def session_file(self, tmp_path) -> Path:
        path = tmp_path / "session.json"
        path.write_text(
            json.dumps(
                {
                    "name_id": "transient-abc",
                    "user_name": "alice",
                    "user_email": "alice@example.com",
                    "groups": ["staff"],
                    "create_time": "2024-03-01T11:55:00Z",
                }
            )
        )
        return path

    @pytest.fixture
    def request_file(self, tmp_path) -> Path:
        path = tmp_path / "authn-request.xml"
        path.write_text(AUTHN_REQUEST)
        return path

    def test_issues_response(self, runner, write_config, session_file, request_file, sp_metadata):
        with patch.object(MetadataClient, "fetch", return_value=sp_metadata) as fetch:
            result = runner.invoke(
                cli,
                ["--config", str(write_config()), "issue", str(session_file), str(request_file)],
            )

        assert result.exit_code == 0, result.output
        fetch.assert_called_once_with(SP_ENTITY_ID)
        assert f'Destination="{SP_ACS_POST}"' in result.output
        assert 'InResponseTo="req-cli-1"' in result.output
        assert "EncryptedData" in result.output

    def test_explicit_acs_url(self, runner, write_config, session_file, request_file, sp_metadata):
        with patch.object(MetadataClient, "fetch", return_value=sp_metadata):
            result = runner.invoke(
                cli,
                [
                    "--config",
                    str(write_config()),
                    "issue",
                    str(session_file),
                    str(request_file),
                    "--acs-url",
                    "https://sp.example.com/explicit",
                ],
            )

        assert result.exit_code == 0, result.output
        assert 'Destination="https://sp.example.com/explicit"' in result.output

    def test_base64_request_and_output_file(
        self, runner, write_config, session_file, tmp_path, sp_metadata
    ):
        request_file = tmp_path / "request.b64"
        request_file.write_text(base64.b64encode(AUTHN_REQUEST.encode()).decode())
        output = tmp_path / "response.txt"

        with patch.object(MetadataClient, "fetch", return_value=sp_metadata):
            result = runner.invoke(
                cli,
                [
                    "--config",
                    str(write_config()),
                    "issue",
                    str(session_file),
                    str(request_file),
                    "--encoding",
                    "base64",
                    "--base64",
                    "--output",
                    str(output),
                ],
            )

        assert result.exit_code == 0, result.output
        assert "Response saved to" in result.output
        assert b"samlp:Response" in base64.b64decode(output.read_text())

    def test_unknown_session_field(self, runner, write_config, request_file, tmp_path):
        session_file = tmp_path / "bad-session.json"
        session_file.write_text(json.dumps({"user_name": "alice", "shoe_size": 9}))

        result = runner.invoke(
            cli, ["--config", str(write_config()), "issue", str(session_file), str(request_file)]
        )

        assert result.exit_code == 2
        assert "shoe_size" in result.output

    def test_invalid_request(self, runner, write_config, session_file, tmp_path):
        request_file = tmp_path / "bad.xml"
        request_file.write_text("<samlp:AuthnRequest")

        result = runner.invoke(
            cli, ["--config", str(write_config()), "issue", str(session_file), str(request_file)]
        )

        assert result.exit_code == 2
        assert "Invalid AuthnRequest" in result.output

    def test_engine_failure_exits(self, runner, write_config, session_file, request_file, sp_metadata, fake_xmlsec):
        failing = fake_xmlsec('cat > /dev/null\necho "err=18;msg=self signed certificate" >&2\nexit 1')
        config_file = write_config(xmlsec={"binary": failing})

        with patch.object(MetadataClient, "fetch", return_value=sp_metadata):
            result = runner.invoke(
                cli, ["--config", str(config_file), "issue", str(session_file), str(request_file)]
            )

        assert result.exit_code == 1
        assert "Issuance failed" in result.output

    def test_waived_encrypt_failure_without_output_exits(
        self, runner, write_config, session_file, request_file, sp_metadata, fake_xmlsec
    ):
        script = """case "$1" in
  --sign) cat ;;
  *) cat > /dev/null; echo "msg=unable to get local issuer certificate" >&2; exit 1 ;;
esac"""
        config_file = write_config(
            xmlsec={"binary": fake_xmlsec(script)},
            security={"trust_unknown_authority": True},
        )

        with patch.object(MetadataClient, "fetch", return_value=sp_metadata):
            result = runner.invoke(
                cli, ["--config", str(config_file), "issue", str(session_file), str(request_file)]
            )

        assert result.exit_code == 1
        assert "Issuance failed" in result.output
        assert "samlp:Response" not in result.output


class TestConfigValidate:
    def test_valid(self, runner, write_config):
        config_file = write_config()

        result = runner.invoke(cli, ["--config", str(config_file), "config", "validate", str(config_file)])

        assert result.exit_code == 0
        assert "Configuration is valid" in result.output
        assert IDP_METADATA_URL in result.output

    def test_invalid(self, runner, write_config, tmp_path):
        bad = tmp_path / "bad.json"
        bad.write_text(json.dumps({"idp": {"sso_url": "https://idp.example.com/sso"}}))

        result = runner.invoke(
            cli, ["--config", str(write_config()), "config", "validate", str(bad)]
        )

        assert result.exit_code == 1
        assert "Configuration validation failed" in result.output


class TestXMLSecCommands:
    """Test the xmlsec debugging subcommands."""

    def test_sign(self, runner, write_config, tmp_path, idp_key_file):
        document = tmp_path / "doc.xml"
        document.write_text("<doc/>")

        result = runner.invoke(
            cli,
            ["--config", str(write_config()), "xmlsec", "sign", str(document), "--key", str(idp_key_file)],
        )

        assert result.exit_code == 0, result.output
        assert "<doc/>" in result.output

    def test_verify_failure_reports_kind(self, runner, write_config, tmp_path, idp_cert_file, fake_xmlsec):
        document = tmp_path / "doc.xml"
        document.write_text("<doc/>")
        config_file = write_config(
            xmlsec={"binary": fake_xmlsec('cat > /dev/null\necho "signature failed" >&2\nexit 1')}
        )

        result = runner.invoke(
            cli,
            ["--config", str(config_file), "xmlsec", "verify", str(document), "--cert", str(idp_cert_file)],
        )

        assert result.exit_code == 1
        assert "[signature_failure]" in result.output

    def test_verify_success(self, runner, write_config, tmp_path, idp_cert_file, fake_xmlsec):
        document = tmp_path / "doc.xml"
        document.write_text("<doc/>")
        config_file = write_config(xmlsec={"binary": fake_xmlsec("cat > /dev/null")})

        result = runner.invoke(
            cli,
            ["--config", str(config_file), "xmlsec", "verify", str(document), "--cert", str(idp_cert_file)],
        )

        assert result.exit_code == 0
        assert "Signature valid" in result.output

    def test_encrypt_to_file(self, runner, write_config, tmp_path, sp_cert_file):
        document = tmp_path / "doc.xml"
        document.write_text("<doc/>")
        output = tmp_path / "encrypted.xml"

        result = runner.invoke(
            cli,
            [
                "--config",
                str(write_config()),
                "xmlsec",
                "encrypt",
                str(document),
                "--cert",
                str(sp_cert_file),
                "--output",
                str(output),
            ],
        )

        assert result.exit_code == 0, result.output
        assert b"EncryptedData" in output.read_bytes()

    def test_decrypt(self, runner, write_config, tmp_path, sp_key_file, fake_xmlsec):
        document = tmp_path / "encrypted.xml"
        document.write_text("<xenc:EncryptedData xmlns:xenc=\"http://www.w3.org/2001/04/xmlenc#\"/>")
        config_file = write_config(
            xmlsec={"binary": fake_xmlsec("cat > /dev/null\necho '<plain/>'")}
        )

        result = runner.invoke(
            cli,
            ["--config", str(config_file), "xmlsec", "decrypt", str(document), "--key", str(sp_key_file)],
        )

        assert result.exit_code == 0, result.output
        assert "<plain/>" in result.output
