"""Identity provider settings and key material resolution.

IdentityProvider holds the IdP's own identity (entity ID, SSO URL, keys) and
the service provider it issues for. It resolves keys and certificates into
files xmlsec1 can read, publishes the IdP metadata, and looks up the SP's
encryption certificate.
"""

import logging
from contextlib import contextmanager
from datetime import timedelta
from pathlib import Path
from threading import Lock
from typing import TYPE_CHECKING, Iterator, Optional, Union

from cryptography import x509

from ..models.saml import (
    HTTP_POST_BINDING,
    HTTP_REDIRECT_BINDING,
    NAMEID_FORMAT_TRANSIENT,
    EncryptionMethod,
    Endpoint,
    IDPSSODescriptor,
    KeyDescriptor,
    Metadata,
)
from ..utils.clock import Clock
from ..utils.exceptions import (
    MissingCertificateError,
    MissingKeyError,
    MissingMetadataError,
)
from ..xmlsec.templates import (
    AES128_CBC,
    AES192_CBC,
    AES256_CBC,
    RSA_OAEP_MGF1P,
    certificate_to_base64,
)
from .certificates import (
    certificate_from_base64,
    certificate_to_pem,
    check_expiration_warning,
    load_pem_certificate,
    load_pem_certificate_bytes,
    materialize_pem,
    resolve_pem_file,
)
from .metadata import MetadataClient
from .policy import SecurityOpts

if TYPE_CHECKING:
    from ..config.schema import Config

logger = logging.getLogger(__name__)

# How long published IdP metadata stays valid
DEFAULT_VALID_DURATION = timedelta(days=2)


def select_sp_certificate(metadata: Metadata) -> str:
    """Pick the SP certificate to encrypt for.

    Prefers the first KeyDescriptor with use="encryption", then the first
    KeyDescriptor carrying any certificate.

    Returns:
        Base64 DER certificate

    Raises:
        MissingMetadataError: If the metadata has no SPSSODescriptor
        MissingCertificateError: If no KeyDescriptor carries a certificate
    """
    descriptor = metadata.sp_sso_descriptor
    if descriptor is None:
        raise MissingMetadataError(f"Missing SP SSO descriptor in metadata for {metadata.entity_id}")

    for key in descriptor.key_descriptors:
        if key.use == "encryption" and key.certificate:
            return key.certificate

    for key in descriptor.key_descriptors:
        if key.certificate:
            return key.certificate

    raise MissingCertificateError(f"Missing SP certificate in metadata for {metadata.entity_id}")


class IdentityProvider:
    """An identity provider and the service provider it serves.

    Attributes:
        entity_id: IdP entity identifier (a URI); defaults to metadata_url
        metadata_url: Where the IdP metadata is published
        sso_url: IdP single sign-on endpoint
        security_opts: Waivers for certificate trust failures
        key_file: Filesystem path of the IdP private key (PEM)
        cert_file: Filesystem path of the IdP certificate (PEM)
        privkey_pem: Inline private key, used when key_file is not set
        pubkey_pem: Inline certificate, used when cert_file is not set
        sp_metadata_url: Default SP metadata location
        sp_metadata: Pre-loaded SP metadata, used instead of fetching
        sp_acs_url: Fixed SP assertion consumer URL, overriding metadata
    """

    def __init__(
        self,
        entity_id: str = "",
        metadata_url: str = "",
        sso_url: str = "",
        security_opts: Optional[SecurityOpts] = None,
        key_file: Optional[Union[str, Path]] = None,
        cert_file: Optional[Union[str, Path]] = None,
        privkey_pem: Optional[str] = None,
        pubkey_pem: Optional[str] = None,
        sp_metadata_url: str = "",
        sp_metadata: Optional[Metadata] = None,
        sp_acs_url: str = "",
        metadata_client: Optional[MetadataClient] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self.entity_id = entity_id or metadata_url
        self.metadata_url = metadata_url
        self.sso_url = sso_url
        self.security_opts = security_opts or SecurityOpts()
        self.key_file = key_file
        self.cert_file = cert_file
        self.privkey_pem = privkey_pem
        self.pubkey_pem = pubkey_pem
        self.sp_metadata_url = sp_metadata_url
        self.sp_metadata = sp_metadata
        self.sp_acs_url = sp_acs_url
        self.metadata_client = metadata_client or MetadataClient()
        self.clock = clock or Clock()

        self._cert: Optional[x509.Certificate] = None
        self._cert_lock = Lock()

    @classmethod
    def from_config(
        cls,
        config: "Config",
        metadata_client: Optional[MetadataClient] = None,
        clock: Optional[Clock] = None,
    ) -> "IdentityProvider":
        """Create an IdentityProvider from validated configuration."""
        idp = config.idp
        if metadata_client is None:
            metadata_client = MetadataClient(
                timeout=config.metadata.timeout_seconds,
                verify_tls=config.metadata.verify_tls,
                cache_enabled=config.metadata.cache_enabled,
            )
        return cls(
            entity_id=idp.entity_id or "",
            metadata_url=idp.metadata_url or "",
            sso_url=idp.sso_url or "",
            security_opts=SecurityOpts(
                allow_self_signed_cert=config.security.allow_self_signed_cert,
                trust_unknown_authority=config.security.trust_unknown_authority,
            ),
            key_file=idp.key_file,
            cert_file=idp.cert_file,
            privkey_pem=idp.privkey_pem,
            pubkey_pem=idp.pubkey_pem,
            sp_metadata_url=idp.sp_metadata_url or "",
            sp_acs_url=idp.sp_acs_url or "",
            metadata_client=metadata_client,
            clock=clock,
        )

    @contextmanager
    def privkey_file(self) -> Iterator[str]:
        """Yield a path where the IdP private key can be read.

        Inline keys are written to a temporary file removed on exit.

        Raises:
            MissingKeyError: If neither key_file nor privkey_pem is set
        """
        with resolve_pem_file(self.key_file, self.privkey_pem) as path:
            if path is None:
                raise MissingKeyError("Missing IdP private key: set key_file or privkey_pem")
            yield path

    @contextmanager
    def pubkey_file(self) -> Iterator[str]:
        """Yield a path where the IdP certificate can be read.

        Raises:
            MissingCertificateError: If neither cert_file nor pubkey_pem is set
        """
        with resolve_pem_file(self.cert_file, self.pubkey_pem) as path:
            if path is None:
                raise MissingCertificateError(
                    "Missing IdP public key: set cert_file or pubkey_pem"
                )
            yield path

    def cert(self) -> x509.Certificate:
        """Return the IdP certificate, loading it once.

        Raises:
            MissingCertificateError: If no certificate is configured
            CertificateLoadError: If the certificate cannot be decoded
        """
        with self._cert_lock:
            if self._cert is not None:
                return self._cert

            if self.cert_file:
                cert = load_pem_certificate(self.cert_file)
            elif self.pubkey_pem:
                cert = load_pem_certificate_bytes(self.pubkey_pem.encode("utf-8"))
            else:
                raise MissingCertificateError(
                    "Missing IdP public key: set cert_file or pubkey_pem"
                )

            check_expiration_warning(cert)
            self._cert = cert
            return cert

    def metadata(self) -> Metadata:
        """Build the IdP's own metadata document."""
        cert_str = certificate_to_base64(self.cert())

        return Metadata(
            entity_id=self.entity_id,
            valid_until=self.clock.now() + DEFAULT_VALID_DURATION,
            idp_sso_descriptor=IDPSSODescriptor(
                key_descriptors=[
                    KeyDescriptor(use="signing", certificate=cert_str),
                    KeyDescriptor(
                        use="encryption",
                        certificate=cert_str,
                        encryption_methods=[
                            EncryptionMethod(algorithm=AES128_CBC),
                            EncryptionMethod(algorithm=AES192_CBC),
                            EncryptionMethod(algorithm=AES256_CBC),
                            EncryptionMethod(algorithm=RSA_OAEP_MGF1P),
                        ],
                    ),
                ],
                name_id_formats=[NAMEID_FORMAT_TRANSIENT],
                single_sign_on_services=[
                    Endpoint(binding=HTTP_REDIRECT_BINDING, location=self.sso_url),
                    Endpoint(binding=HTTP_POST_BINDING, location=self.sso_url),
                ],
            ),
        )

    def get_sp_metadata(self, sp_metadata_url: str = "") -> Metadata:
        """Return SP metadata: the pre-loaded document, else fetched by URL.

        Args:
            sp_metadata_url: URL to fetch from; falls back to the configured
                sp_metadata_url

        Raises:
            MissingMetadataError: If no metadata is loaded and no URL is known
            MetadataError: If fetching or parsing fails
        """
        if self.sp_metadata is not None:
            return self.sp_metadata

        url = sp_metadata_url or self.sp_metadata_url
        if not url:
            raise MissingMetadataError("Missing SP metadata url")

        return self.metadata_client.fetch(url)

    @contextmanager
    def sp_cert_file(
        self, sp_metadata_url: str = "", metadata: Optional[Metadata] = None
    ) -> Iterator[str]:
        """Yield a path to the SP encryption certificate in PEM form.

        The certificate comes from ``metadata`` when given, else from
        get_sp_metadata(sp_metadata_url). The file is temporary and removed
        on exit.
        """
        if metadata is None:
            metadata = self.get_sp_metadata(sp_metadata_url)
        cert = certificate_from_base64(select_sp_certificate(metadata))
        with materialize_pem(certificate_to_pem(cert)) as path:
            yield path
