"""XML Signature and XML Encryption templates for xmlsec1.

xmlsec1 does not build signatures or encrypted data from scratch: it fills in
templates. These helpers build them with lxml.
"""

import base64
from typing import Optional

from cryptography import x509
from cryptography.hazmat.primitives.serialization import Encoding
from lxml import etree

DS_NS = "http://www.w3.org/2000/09/xmldsig#"
XENC_NS = "http://www.w3.org/2001/04/xmlenc#"

EXC_C14N = "http://www.w3.org/2001/10/xml-exc-c14n#"
ENVELOPED_SIGNATURE = "http://www.w3.org/2000/09/xmldsig#enveloped-signature"
RSA_SHA256 = "http://www.w3.org/2001/04/xmldsig-more#rsa-sha256"
SHA256 = "http://www.w3.org/2001/04/xmlenc#sha256"

AES128_CBC = "http://www.w3.org/2001/04/xmlenc#aes128-cbc"
AES192_CBC = "http://www.w3.org/2001/04/xmlenc#aes192-cbc"
AES256_CBC = "http://www.w3.org/2001/04/xmlenc#aes256-cbc"
RSA_OAEP_MGF1P = "http://www.w3.org/2001/04/xmlenc#rsa-oaep-mgf1p"
ELEMENT_TYPE = "http://www.w3.org/2001/04/xmlenc#Element"


def _ds(tag: str) -> str:
    return f"{{{DS_NS}}}{tag}"


def _xenc(tag: str) -> str:
    return f"{{{XENC_NS}}}{tag}"


def certificate_to_base64(cert: x509.Certificate) -> str:
    """Return the base64 DER form used in ds:X509Certificate."""
    return base64.b64encode(cert.public_bytes(Encoding.DER)).decode("ascii")


def signature_template(
    certificate: Optional[x509.Certificate], reference_uri: str = ""
) -> etree._Element:
    """Build an enveloped ds:Signature template.

    Args:
        certificate: Signer certificate to publish in KeyInfo (optional)
        reference_uri: Reference target, "" for the whole document or
            "#<ID>" for an element carrying that ID attribute

    Returns:
        ds:Signature element with empty DigestValue and SignatureValue

    Example:
        >>> sig = signature_template(None, "#id-123")
        >>> sig.find(f"{{{DS_NS}}}SignedInfo/{{{DS_NS}}}Reference").get("URI")
        '#id-123'
    """
    signature = etree.Element(_ds("Signature"), nsmap={"ds": DS_NS})
    signed_info = etree.SubElement(signature, _ds("SignedInfo"))
    etree.SubElement(signed_info, _ds("CanonicalizationMethod"), Algorithm=EXC_C14N)
    etree.SubElement(signed_info, _ds("SignatureMethod"), Algorithm=RSA_SHA256)

    reference = etree.SubElement(signed_info, _ds("Reference"), URI=reference_uri)
    transforms = etree.SubElement(reference, _ds("Transforms"))
    etree.SubElement(transforms, _ds("Transform"), Algorithm=ENVELOPED_SIGNATURE)
    etree.SubElement(transforms, _ds("Transform"), Algorithm=EXC_C14N)
    etree.SubElement(reference, _ds("DigestMethod"), Algorithm=SHA256)
    etree.SubElement(reference, _ds("DigestValue"))

    etree.SubElement(signature, _ds("SignatureValue"))

    if certificate is not None:
        key_info = etree.SubElement(signature, _ds("KeyInfo"))
        x509_data = etree.SubElement(key_info, _ds("X509Data"))
        etree.SubElement(x509_data, _ds("X509Certificate")).text = certificate_to_base64(
            certificate
        )

    return signature


def encrypted_data_template(
    data_algorithm: str = AES128_CBC, key_algorithm: str = RSA_OAEP_MGF1P
) -> etree._Element:
    """Build an xenc:EncryptedData template for element encryption.

    The content is encrypted with a fresh session key (``data_algorithm``),
    which is itself encrypted for the recipient certificate
    (``key_algorithm``) and carried in an EncryptedKey inside KeyInfo.
    """
    encrypted_data = etree.Element(
        _xenc("EncryptedData"),
        nsmap={"xenc": XENC_NS, "ds": DS_NS},
        Type=ELEMENT_TYPE,
    )
    etree.SubElement(encrypted_data, _xenc("EncryptionMethod"), Algorithm=data_algorithm)

    key_info = etree.SubElement(encrypted_data, _ds("KeyInfo"))
    encrypted_key = etree.SubElement(key_info, _xenc("EncryptedKey"))
    etree.SubElement(encrypted_key, _xenc("EncryptionMethod"), Algorithm=key_algorithm)
    key_cipher_data = etree.SubElement(encrypted_key, _xenc("CipherData"))
    etree.SubElement(key_cipher_data, _xenc("CipherValue"))

    cipher_data = etree.SubElement(encrypted_data, _xenc("CipherData"))
    etree.SubElement(cipher_data, _xenc("CipherValue"))

    return encrypted_data
