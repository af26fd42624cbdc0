"""
Shared pytest configuration and fixtures.

This module provides fixtures and configuration used across all test suites
(unit and integration tests): throwaway RSA key pairs and certificates, a
fake xmlsec1 executable, pinned clocks and identifier generators, and
sample sessions, requests and metadata.
"""

import stat
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Tuple

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID

from saml_idp.models.saml import (
    HTTP_POST_BINDING,
    HTTP_REDIRECT_BINDING,
    AuthnRequest,
    IndexedEndpoint,
    KeyDescriptor,
    Metadata,
    Session,
    SPSSODescriptor,
)
from saml_idp.saml.identity_provider import IdentityProvider
from saml_idp.saml.metadata import MetadataClient
from saml_idp.utils.clock import FixedClock, SequenceIDGenerator
from saml_idp.xmlsec.templates import certificate_to_base64

FIXED_NOW = datetime(2024, 3, 1, 12, 0, 0, tzinfo=timezone.utc)

IDP_METADATA_URL = "https://idp.example.com/saml/metadata"
IDP_SSO_URL = "https://idp.example.com/saml/sso"
SP_ENTITY_ID = "https://sp.example.com/saml/metadata"
SP_ACS_POST = "https://sp.example.com/saml/acs"
SP_ACS_REDIRECT = "https://sp.example.com/saml/acs-redirect"


def _make_key_pair(common_name: str) -> Tuple[rsa.RSAPrivateKey, x509.Certificate]:
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
    now = datetime.now(timezone.utc)
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(days=1))
        .not_valid_after(now + timedelta(days=365))
        .sign(key, hashes.SHA256())
    )
    return key, cert


def _key_pem(key: rsa.RSAPrivateKey) -> bytes:
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    )


@pytest.fixture(scope="session")
def idp_key_pair() -> Tuple[rsa.RSAPrivateKey, x509.Certificate]:
    """
    Return a self-signed RSA key pair for the IdP.

    Returns:
        Tuple of (private key, certificate).
    """
    return _make_key_pair("idp.example.com")


@pytest.fixture(scope="session")
def sp_key_pair() -> Tuple[rsa.RSAPrivateKey, x509.Certificate]:
    """
    Return a self-signed RSA key pair for the SP.

    Returns:
        Tuple of (private key, certificate).
    """
    return _make_key_pair("sp.example.com")


@pytest.fixture(scope="session")
def idp_key_file(tmp_path_factory: pytest.TempPathFactory, idp_key_pair) -> Path:
    """Return the path of the IdP private key in PEM form."""
    path = tmp_path_factory.mktemp("idp") / "idp.key"
    path.write_bytes(_key_pem(idp_key_pair[0]))
    return path


@pytest.fixture(scope="session")
def idp_cert_file(tmp_path_factory: pytest.TempPathFactory, idp_key_pair) -> Path:
    """Return the path of the IdP certificate in PEM form."""
    path = tmp_path_factory.mktemp("idp") / "idp.crt"
    path.write_bytes(idp_key_pair[1].public_bytes(serialization.Encoding.PEM))
    return path


@pytest.fixture(scope="session")
def sp_key_file(tmp_path_factory: pytest.TempPathFactory, sp_key_pair) -> Path:
    """Return the path of the SP private key in PEM form."""
    path = tmp_path_factory.mktemp("sp") / "sp.key"
    path.write_bytes(_key_pem(sp_key_pair[0]))
    return path


@pytest.fixture(scope="session")
def sp_cert_file(tmp_path_factory: pytest.TempPathFactory, sp_key_pair) -> Path:
    """Return the path of the SP certificate in PEM form."""
    path = tmp_path_factory.mktemp("sp") / "sp.crt"
    path.write_bytes(sp_key_pair[1].public_bytes(serialization.Encoding.PEM))
    return path


@pytest.fixture
def clock() -> FixedClock:
    """Return a clock pinned to FIXED_NOW."""
    return FixedClock(FIXED_NOW)


@pytest.fixture
def id_generator() -> SequenceIDGenerator:
    """Return a deterministic ID generator (id-1, id-2, ...)."""
    return SequenceIDGenerator()


@pytest.fixture
def sp_metadata(sp_key_pair) -> Metadata:
    """
    Return SP metadata with a signing and an encryption key and two ACS endpoints.

    The Redirect ACS is listed first so tests can check POST is preferred.
    """
    cert_b64 = certificate_to_base64(sp_key_pair[1])
    return Metadata(
        entity_id=SP_ENTITY_ID,
        sp_sso_descriptor=SPSSODescriptor(
            key_descriptors=[
                KeyDescriptor(use="signing", certificate=cert_b64),
                KeyDescriptor(use="encryption", certificate=cert_b64),
            ],
            assertion_consumer_services=[
                IndexedEndpoint(binding=HTTP_REDIRECT_BINDING, location=SP_ACS_REDIRECT, index=0),
                IndexedEndpoint(binding=HTTP_POST_BINDING, location=SP_ACS_POST, index=1),
            ],
        ),
    )


@pytest.fixture
def session() -> Session:
    """Return a fully populated user session."""
    return Session(
        id="session-1",
        create_time=FIXED_NOW - timedelta(minutes=5),
        expire_time=FIXED_NOW + timedelta(hours=8),
        index="session-index-1",
        name_id="transient-abc",
        groups=["staff", "member"],
        user_id="1001",
        user_fullname="Alice Example",
        user_name="alice",
        user_email="alice@example.com",
        user_common_name="Alice Example",
        user_surname="Example",
        user_given_name="Alice",
    )


@pytest.fixture
def authn_request() -> AuthnRequest:
    """Return an AuthnRequest from the sample SP."""
    return AuthnRequest(
        id="request-1",
        issuer=SP_ENTITY_ID,
        destination=IDP_SSO_URL,
        assertion_consumer_service_url="https://sp.example.com/saml/acs-from-request",
        protocol_binding=HTTP_POST_BINDING,
        issue_instant=FIXED_NOW,
    )


@pytest.fixture
def idp(idp_key_file: Path, idp_cert_file: Path, sp_metadata: Metadata, clock) -> IdentityProvider:
    """Return an IdentityProvider with file-based keys and preloaded SP metadata."""
    return IdentityProvider(
        metadata_url=IDP_METADATA_URL,
        sso_url=IDP_SSO_URL,
        key_file=idp_key_file,
        cert_file=idp_cert_file,
        sp_metadata=sp_metadata,
        metadata_client=MetadataClient(cache_enabled=False),
        clock=clock,
    )


@pytest.fixture
def fake_xmlsec(tmp_path: Path) -> Callable[[str], str]:
    """
    Return a factory writing a fake xmlsec1 shell script.

    The factory takes the script body (POSIX sh) and returns the path of an
    executable that runs it. The body sees the gateway's arguments in "$@".

    Example:
        binary = fake_xmlsec('cat')  # echo stdin to stdout, exit 0
    """
    counter = {"n": 0}

    def factory(body: str) -> str:
        counter["n"] += 1
        script = tmp_path / f"fake-xmlsec1-{counter['n']}"
        script.write_text(f"#!/bin/sh\n{body}\n")
        script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return str(script)

    return factory
