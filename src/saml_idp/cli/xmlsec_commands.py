"""xmlsec1 CLI commands for debugging the security engine.

This module provides thin wrappers around XMLSecGateway:
- xmlsec sign: Fill in an embedded signature template
- xmlsec verify: Verify an embedded signature
- xmlsec encrypt: Encrypt a document for a certificate
- xmlsec decrypt: Decrypt an EncryptedData document
"""

import logging
from pathlib import Path
from typing import Optional

import click

from saml_idp.config import Config
from saml_idp.utils.exceptions import SAMLIdPError, XMLSecError
from saml_idp.xmlsec import ValidationOptions, XMLSecGateway, encrypted_data_template

logger = logging.getLogger(__name__)


def _gateway(ctx: click.Context) -> XMLSecGateway:
    config: Config = ctx.obj["config"]
    return XMLSecGateway(binary=config.xmlsec.binary, timeout=config.xmlsec.timeout_seconds)


def _fail(operation: str, error: SAMLIdPError) -> None:
    """Report a failed operation and exit with status 1."""
    message = f" xmlsec1 {operation} failed: {error}"
    if isinstance(error, XMLSecError):
        message += f" [{error.kind.value}]"
    click.echo(click.style("✗", fg="red", bold=True) + message, err=True)
    logger.error(f"xmlsec1 {operation} failed: {error}")
    raise click.exceptions.Exit(1)


def _write_output(data: bytes, output: Optional[Path]) -> None:
    if output:
        output.write_bytes(data)
        click.echo(click.style("✓", fg="green", bold=True) + f" Output saved to: {output}", err=True)
    else:
        click.echo(data, nl=False)


@click.group(name="xmlsec")
def xmlsec_group() -> None:
    """Run single xmlsec1 operations.

    Useful for checking keys, certificates and SP metadata outside a full
    issuance.
    """
    pass


@xmlsec_group.command(name="sign")
@click.argument("file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option(
    "--key",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    required=True,
    help="Private key file (PEM)",
)
@click.option("--id-attr-hack", is_flag=True, help="Declare SAML ID attributes as XML IDs")
@click.option("--id-attr", "id_attrs", multiple=True, help="Extra element name with an ID attribute")
@click.option("--output", type=click.Path(path_type=Path), help="Save signed document to file")
@click.pass_context
def sign(
    ctx: click.Context,
    file: Path,
    key: Path,
    id_attr_hack: bool,
    id_attrs: tuple,
    output: Optional[Path],
) -> None:
    """Sign FILE, which must contain a ds:Signature template.

    Example:

        saml-idp xmlsec sign assertion.xml --key certs/idp.key --id-attr-hack
    """
    config: Config = ctx.obj["config"]
    opts = ValidationOptions(
        dtd_file=str(config.xmlsec.dtd_file) if config.xmlsec.dtd_file else None,
        enable_id_attr_hack=id_attr_hack,
        id_attrs=list(id_attrs),
    )
    try:
        signed = _gateway(ctx).sign(file.read_bytes(), str(key), opts)
    except SAMLIdPError as e:
        _fail("sign", e)
        return
    _write_output(signed, output)


@xmlsec_group.command(name="verify")
@click.argument("file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option(
    "--cert",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    required=True,
    help="Signer certificate file (PEM)",
)
@click.option("--id-attr-hack", is_flag=True, help="Declare SAML ID attributes as XML IDs")
@click.pass_context
def verify(ctx: click.Context, file: Path, cert: Path, id_attr_hack: bool) -> None:
    """Verify the signature embedded in FILE.

    Example:

        saml-idp xmlsec verify response.xml --cert certs/idp.crt --id-attr-hack
    """
    try:
        _gateway(ctx).verify(
            file.read_bytes(), str(cert), ValidationOptions(enable_id_attr_hack=id_attr_hack)
        )
    except SAMLIdPError as e:
        _fail("verify", e)
        return
    click.echo(click.style("✓", fg="green", bold=True) + " Signature valid")


@xmlsec_group.command(name="encrypt")
@click.argument("file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option(
    "--cert",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    required=True,
    help="Recipient certificate file (PEM)",
)
@click.option("--session-key", default="aes-128-cbc", show_default=True, help="Session key type")
@click.option("--output", type=click.Path(path_type=Path), help="Save encrypted document to file")
@click.pass_context
def encrypt(
    ctx: click.Context, file: Path, cert: Path, session_key: str, output: Optional[Path]
) -> None:
    """Encrypt FILE for the holder of CERT.

    Example:

        saml-idp xmlsec encrypt signed.xml --cert certs/sp.crt
    """
    try:
        encrypted = _gateway(ctx).encrypt(
            encrypted_data_template(), file.read_bytes(), str(cert), session_key
        )
    except SAMLIdPError as e:
        _fail("encrypt", e)
        return
    _write_output(encrypted, output)


@xmlsec_group.command(name="decrypt")
@click.argument("file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option(
    "--key",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    required=True,
    help="Private key file (PEM)",
)
@click.option("--output", type=click.Path(path_type=Path), help="Save decrypted document to file")
@click.pass_context
def decrypt(ctx: click.Context, file: Path, key: Path, output: Optional[Path]) -> None:
    """Decrypt the EncryptedData in FILE.

    Example:

        saml-idp xmlsec decrypt encrypted.xml --key certs/sp.key
    """
    try:
        decrypted = _gateway(ctx).decrypt(file.read_bytes(), str(key))
    except SAMLIdPError as e:
        _fail("decrypt", e)
        return
    _write_output(decrypted, output)
