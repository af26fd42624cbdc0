"""Gateway to the xmlsec1 command line tool.

xmlsec1 (https://www.aleksey.com/xmlsec/) performs the four XML security
operations the IdP needs: sign, verify, encrypt and decrypt. Each call runs
one xmlsec1 process that reads the document on stdin, writes the result on
stdout and reports problems on stderr. stderr is the only input to error
classification.

Security:
    Signature references are restricted to ``empty,same-doc``. The ``local``
    value must never be enabled: it lets a crafted
    ``<Reference URI="file:///etc/passwd">`` read files from this host.
"""

import logging
import os
import subprocess
import tempfile
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterator, List, Optional, Tuple, Union

from lxml import etree

from ..utils.exceptions import (
    XMLSecInvocationError,
    XMLSecProcessError,
    XMLSecTimeoutError,
)
from .errors import is_validity_error, xmlsec_error

logger = logging.getLogger(__name__)

ATTR_NAME_RESPONSE = "urn:oasis:names:tc:SAML:2.0:protocol:Response"
ATTR_NAME_ASSERTION = "urn:oasis:names:tc:SAML:2.0:assertion:Assertion"
ATTR_NAME_AUTHN_REQUEST = "urn:oasis:names:tc:SAML:2.0:protocol:AuthnRequest"

ENABLED_REFERENCE_URIS = "empty,same-doc"

DEFAULT_BINARY = "xmlsec1"


class Mode(Enum):
    """xmlsec1 operation, used as the ``--<mode>`` flag."""

    SIGN = "sign"
    VERIFY = "verify"
    ENCRYPT = "encrypt"
    DECRYPT = "decrypt"


@dataclass
class ValidationOptions:
    """Per-invocation options for sign and verify.

    Attributes:
        dtd_file: DTD to load so xmlsec1 knows which attributes are IDs
        enable_id_attr_hack: Declare the SAML Response, Assertion and
            AuthnRequest ``ID`` attributes (plus ``id_attrs``) as XML IDs
        id_attrs: Extra qualified element names whose ``ID`` attribute is an
            XML ID, e.g. ``urn:example:ns:Element``
    """

    dtd_file: Optional[str] = None
    enable_id_attr_hack: bool = False
    id_attrs: List[str] = field(default_factory=list)


class SecurityEngine(ABC):
    """The four XML security operations the issuance pipeline depends on.

    Failures raise ``XMLSecError`` subclasses (classified from diagnostics,
    with any partial output attached) or ``SecurityEngineError`` subclasses
    (the engine could not be driven).
    """

    @abstractmethod
    def sign(
        self, data: bytes, private_key_path: str, opts: Optional[ValidationOptions] = None
    ) -> bytes:
        """Fill in the signature template embedded in ``data``."""

    @abstractmethod
    def verify(
        self, data: bytes, public_cert_path: str, opts: Optional[ValidationOptions] = None
    ) -> None:
        """Verify the signature embedded in ``data``."""

    @abstractmethod
    def encrypt(
        self,
        template: Union[etree._Element, bytes],
        data: bytes,
        public_cert_path: str,
        session_key: str,
    ) -> bytes:
        """Encrypt ``data`` into ``template`` for the holder of the certificate."""

    @abstractmethod
    def decrypt(self, data: bytes, private_key_path: str) -> bytes:
        """Decrypt the EncryptedData in ``data``."""


class XMLSecGateway(SecurityEngine):
    """SecurityEngine backed by the xmlsec1 binary.

    Every call is self-contained: its own process, pipes and temporary files.
    Instances hold no per-call state and may be shared between threads.

    Attributes:
        binary: xmlsec1 executable name or path
        timeout: Seconds to wait for xmlsec1 before killing it; None waits
            forever

    Example:
        >>> gateway = XMLSecGateway()
        >>> signed = gateway.sign(xml_bytes, "/etc/idp/key.pem",
        ...                       ValidationOptions(enable_id_attr_hack=True))
    """

    def __init__(self, binary: str = DEFAULT_BINARY, timeout: Optional[float] = None) -> None:
        self.binary = binary
        self.timeout = timeout

    def sign(
        self, data: bytes, private_key_path: str, opts: Optional[ValidationOptions] = None
    ) -> bytes:
        args = [
            self.binary,
            "--sign",
            "--privkey-pem",
            private_key_path,
            "--enabled-reference-uris",
            ENABLED_REFERENCE_URIS,
        ]
        args.extend(option_args(opts))
        args.extend(["--output", "/dev/stdout", "/dev/stdin"])

        returncode, stdout, stderr = self._run(Mode.SIGN, args, data)
        if returncode != 0 or is_validity_error(stderr):
            return self._fail(Mode.SIGN, returncode, stdout, stderr)
        return stdout

    def verify(
        self, data: bytes, public_cert_path: str, opts: Optional[ValidationOptions] = None
    ) -> None:
        args = [
            self.binary,
            "--verify",
            "--pubkey-cert-pem",
            public_cert_path,
            "--enabled-reference-uris",
            ENABLED_REFERENCE_URIS,
        ]
        args.extend(option_args(opts))
        args.append("/dev/stdin")

        returncode, stdout, stderr = self._run(Mode.VERIFY, args, data)
        if returncode != 0 or is_validity_error(stderr):
            self._fail(Mode.VERIFY, returncode, stdout, stderr)

    def encrypt(
        self,
        template: Union[etree._Element, bytes],
        data: bytes,
        public_cert_path: str,
        session_key: str,
    ) -> bytes:
        with template_file(template) as template_path:
            args = [
                self.binary,
                "--encrypt",
                "--session-key",
                session_key,
                "--pubkey-cert-pem",
                public_cert_path,
                "--output",
                "/dev/stdout",
                "--xml-data",
                "/dev/stdin",
                template_path,
            ]
            returncode, stdout, stderr = self._run(Mode.ENCRYPT, args, data)

        if returncode != 0:
            return self._fail(Mode.ENCRYPT, returncode, stdout, stderr)
        return stdout

    def decrypt(self, data: bytes, private_key_path: str) -> bytes:
        args = [
            self.binary,
            "--decrypt",
            "--privkey-pem",
            private_key_path,
            "--output",
            "/dev/stdout",
            "/dev/stdin",
        ]
        returncode, stdout, stderr = self._run(Mode.DECRYPT, args, data)
        if returncode != 0:
            return self._fail(Mode.DECRYPT, returncode, stdout, stderr)
        return stdout

    def _run(self, mode: Mode, args: List[str], data: bytes) -> Tuple[int, bytes, bytes]:
        """Run xmlsec1, feeding ``data`` and collecting both output streams.

        communicate() writes stdin and drains stdout and stderr concurrently,
        so a child blocked on a full output pipe never deadlocks against a
        parent blocked on writing input.
        """
        logger.debug(f"Running xmlsec1 --{mode.value}: {len(data)} bytes of input")

        try:
            process = subprocess.Popen(
                args,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
            )
        except OSError as e:
            raise XMLSecInvocationError(
                f"Failed to start {self.binary} for {mode.value}: {e}. "
                f"Ensure xmlsec1 is installed and on PATH."
            ) from e

        with process:
            try:
                stdout, stderr = process.communicate(input=data, timeout=self.timeout)
            except subprocess.TimeoutExpired as e:
                process.kill()
                process.communicate()
                raise XMLSecTimeoutError(
                    f"xmlsec1 --{mode.value} did not finish within {self.timeout}s"
                ) from e
            except OSError as e:
                process.kill()
                raise XMLSecInvocationError(
                    f"I/O error talking to xmlsec1 --{mode.value}: {e}"
                ) from e

        logger.debug(
            f"xmlsec1 --{mode.value} exited with {process.returncode}: "
            f"{len(stdout)} bytes output, {len(stderr)} bytes diagnostics"
        )
        return process.returncode, stdout, stderr

    def _fail(self, mode: Mode, returncode: int, stdout: bytes, stderr: bytes) -> bytes:
        """Raise the error for a failed invocation.

        Returns ``stdout`` only when the diagnostics classify as "OK", in which
        case the invocation is treated as successful.
        """
        if not stderr:
            logger.warning(f"xmlsec1 --{mode.value} failed with exit status {returncode}")
            raise XMLSecProcessError(
                f"xmlsec1 --{mode.value} exited with status {returncode} "
                f"and no diagnostics",
                returncode,
            )

        error = xmlsec_error(stderr.decode("utf-8", errors="replace"), stdout)
        if error is None:
            return stdout

        logger.warning(f"xmlsec1 --{mode.value} failed ({error.kind.value}): {error.diagnostic}")
        raise error


def option_args(opts: Optional[ValidationOptions]) -> List[str]:
    """Translate ValidationOptions into xmlsec1 flags."""
    if opts is None:
        return []

    args: List[str] = []
    if opts.dtd_file:
        args.extend(["--dtd-file", opts.dtd_file])

    if opts.enable_id_attr_hack:
        for name in (ATTR_NAME_RESPONSE, ATTR_NAME_ASSERTION, ATTR_NAME_AUTHN_REQUEST):
            args.extend(["--id-attr:ID", name])
        for name in opts.id_attrs:
            args.extend(["--id-attr:ID", name])

    return args


@contextmanager
def template_file(template: Union[etree._Element, bytes]) -> Iterator[str]:
    """Write an encryption template to a temporary file, removed on exit."""
    if isinstance(template, bytes):
        content = template
    else:
        content = etree.tostring(template, xml_declaration=True, encoding="UTF-8")

    fd, path = tempfile.mkstemp(prefix="xmlsec", suffix=".xml")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(content)
        yield path
    finally:
        try:
            os.remove(path)
        except FileNotFoundError:
            pass
