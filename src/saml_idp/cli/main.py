"""Main CLI entry point for the SAML IdP issuer.

This module provides the main Click command group for the saml-idp CLI.
"""

import dataclasses
import json
import logging
from pathlib import Path
from typing import Any, Optional

import click
from lxml import etree

from saml_idp import __version__
from saml_idp.cli.xmlsec_commands import xmlsec_group
from saml_idp.config import Config, get_clock_drift_tolerance, load_config
from saml_idp.logging_audit import configure_logging
from saml_idp.models.saml import HTTP_POST_BINDING, IndexedEndpoint, Session
from saml_idp.saml import (
    AssertionBuilder,
    IdentityProvider,
    ResponseAssembler,
    SecurityOpts,
    decode_authn_request,
    encode_response,
    is_waivable,
    metadata_to_xml,
    parse_authn_request,
    response_to_xml,
)
from saml_idp.saml.marshal import parse_time
from saml_idp.utils.clock import Clock, IDGenerator
from saml_idp.utils.exceptions import ConfigurationError, SAMLIdPError
from saml_idp.xmlsec import XMLSecGateway, classify_diagnostic, xmlsec_error

logger = logging.getLogger(__name__)


@click.group()
@click.version_option(version=__version__, prog_name="saml-idp")
@click.option(
    "--config",
    type=click.Path(exists=True, path_type=Path),
    default=None,
    help="Path to configuration file (default: ./config/config.json)",
)
@click.option("--verbose", is_flag=True, help="Enable verbose logging (DEBUG level)")
@click.option(
    "--log-file",
    type=click.Path(path_type=Path),
    default=None,
    help="Path to log file (overrides config file)",
)
@click.pass_context
def cli(
    ctx: click.Context,
    config: Optional[Path],
    verbose: bool,
    log_file: Optional[Path],
) -> None:
    """SAML IdP issuer - signed and encrypted SAML 2.0 responses via xmlsec1.

    Common usage:

        # Print the IdP metadata
        saml-idp metadata

        # Issue a response for a session and an AuthnRequest
        saml-idp issue session.json authn-request.xml

        # Explain an xmlsec1 error message
        xmlsec1 --verify ... 2>&1 | saml-idp classify

    Use --help with any command for more information.
    """
    ctx.ensure_object(dict)

    try:
        config_obj = load_config(config)
    except ConfigurationError as e:
        click.echo(f"Error loading configuration: {e}", err=True)
        ctx.exit(1)
        return

    ctx.obj["config"] = config_obj
    ctx.obj["verbose"] = verbose

    # Precedence: CLI flags > config file > defaults
    configure_logging(
        level="DEBUG" if verbose else config_obj.logging.level,
        log_file=log_file if log_file else config_obj.logging.log_file,
        redact_secrets=config_obj.logging.redact_secrets,
    )


cli.add_command(xmlsec_group)


def _identity_provider(ctx: click.Context) -> IdentityProvider:
    return IdentityProvider.from_config(ctx.obj["config"])


def _load_session(path: Path) -> Session:
    """Read a Session from a JSON object with Session field names as keys."""
    try:
        data: dict[str, Any] = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise click.BadParameter(f"Invalid JSON in {path}: {e}", param_hint="SESSION_FILE") from e

    if not isinstance(data, dict):
        raise click.BadParameter(f"{path} must contain a JSON object", param_hint="SESSION_FILE")

    known = {f.name for f in dataclasses.fields(Session)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise click.BadParameter(
            f"Unknown session fields: {', '.join(unknown)}", param_hint="SESSION_FILE"
        )

    try:
        for field in ("create_time", "expire_time"):
            if field in data:
                data[field] = parse_time(data[field])
    except ValueError as e:
        raise click.BadParameter(f"Invalid timestamp in {path}: {e}", param_hint="SESSION_FILE") from e

    return Session(**data)


@cli.command()
@click.option("--output", type=click.Path(path_type=Path), help="Save metadata to file")
@click.pass_context
def metadata(ctx: click.Context, output: Optional[Path]) -> None:
    """Print the IdP metadata document.

    Example:

        saml-idp metadata --output idp-metadata.xml
    """
    try:
        xml = metadata_to_xml(_identity_provider(ctx).metadata())
    except SAMLIdPError as e:
        click.echo(click.style("✗", fg="red", bold=True) + f" Failed to build metadata: {e}", err=True)
        logger.error(f"Failed to build IdP metadata: {e}")
        raise click.exceptions.Exit(1)

    if output:
        output.write_bytes(xml)
        click.echo(click.style("✓", fg="green", bold=True) + f" Metadata saved to: {output}")
    else:
        click.echo(xml.decode("utf-8"), nl=False)


@cli.command()
@click.argument("diagnostic", type=click.File("r"), default="-")
@click.pass_context
def classify(ctx: click.Context, diagnostic: Any) -> None:
    """Classify xmlsec1 diagnostic text read from DIAGNOSTIC (default: stdin).

    Prints the error kind and whether the configured security options waive it.

    Example:

        echo "msg=self signed certificate" | saml-idp classify
    """
    config: Config = ctx.obj["config"]
    text = diagnostic.read()
    kind = classify_diagnostic(text)
    if kind is None:
        click.echo("ok")
        return

    error = xmlsec_error(text)
    opts = SecurityOpts(
        allow_self_signed_cert=config.security.allow_self_signed_cert,
        trust_unknown_authority=config.security.trust_unknown_authority,
    )
    waived = error is not None and is_waivable(error, opts)
    click.echo(f"{kind.value} (waivable: {'yes' if waived else 'no'})")


@cli.command()
@click.argument("session_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.argument("request_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option(
    "--encoding",
    type=click.Choice(["xml", "base64", "deflate"]),
    default="xml",
    help="How REQUEST_FILE is encoded: raw XML, POST-binding base64, "
    "or Redirect-binding deflate+base64 (default: xml)",
)
@click.option("--acs-url", type=str, help="Explicit assertion consumer service URL")
@click.option("--address", type=str, default="", help="Client address for the subject confirmation")
@click.option("--base64", "as_base64", is_flag=True, help="Print the SAMLResponse form value")
@click.option("--output", type=click.Path(path_type=Path), help="Save response to file")
@click.pass_context
def issue(
    ctx: click.Context,
    session_file: Path,
    request_file: Path,
    encoding: str,
    acs_url: Optional[str],
    address: str,
    as_base64: bool,
    output: Optional[Path],
) -> None:
    """Issue a signed and encrypted Response for SESSION_FILE and REQUEST_FILE.

    SESSION_FILE is a JSON object with Session fields (user_name, user_email,
    groups, ...). REQUEST_FILE holds the SP's AuthnRequest.

    Example:

        saml-idp issue session.json authn-request.xml --base64
    """
    config: Config = ctx.obj["config"]
    session = _load_session(session_file)

    try:
        raw = request_file.read_bytes()
        if encoding != "xml":
            raw = decode_authn_request(raw.decode("ascii").strip(), deflated=encoding == "deflate")
        request = parse_authn_request(raw)
    except (ValueError, UnicodeDecodeError, etree.XMLSyntaxError) as e:
        raise click.BadParameter(f"Invalid AuthnRequest: {e}", param_hint="REQUEST_FILE") from e

    clock = Clock()
    id_generator = IDGenerator()
    idp = IdentityProvider.from_config(config, clock=clock)
    assembler = ResponseAssembler(
        idp,
        XMLSecGateway(binary=config.xmlsec.binary, timeout=config.xmlsec.timeout_seconds),
        clock=clock,
        id_generator=id_generator,
        builder=AssertionBuilder(
            idp, clock, id_generator, clock_drift_tolerance=get_clock_drift_tolerance(config)
        ),
        dtd_file=str(config.xmlsec.dtd_file) if config.xmlsec.dtd_file else None,
    )

    try:
        sp_metadata = idp.get_sp_metadata(request.issuer)
        acs_endpoint = None
        if acs_url:
            acs_endpoint = IndexedEndpoint(binding=HTTP_POST_BINDING, location=acs_url)
        authn = assembler.new_request(
            request,
            request_buffer=raw,
            sp_metadata=sp_metadata,
            acs_endpoint=acs_endpoint,
            address=address,
        )
        response = assembler.issue(authn, session)
    except SAMLIdPError as e:
        click.echo(click.style("✗", fg="red", bold=True) + f" Issuance failed: {e}", err=True)
        logger.error(f"Issuance failed for request {request.id}: {e}")
        raise click.exceptions.Exit(1)

    if as_base64:
        result = encode_response(response).encode("ascii")
    else:
        result = response_to_xml(response)

    if output:
        output.write_bytes(result)
        click.echo(click.style("✓", fg="green", bold=True) + f" Response saved to: {output}")
    else:
        click.echo(result.decode("utf-8"))


@cli.group(name="config")
def config_group() -> None:
    """Configuration management commands."""
    pass


@config_group.command()
@click.argument("config_file", type=click.Path(exists=True, path_type=Path))
def validate(config_file: Path) -> None:
    """Validate a configuration file.

    Example:

        saml-idp config validate config/config.json
    """
    try:
        config_obj = load_config(config_file)
    except ConfigurationError as e:
        click.echo(click.style("✗", fg="red", bold=True) + " Configuration validation failed")
        click.echo(f"\n{e}", err=True)
        raise click.exceptions.Exit(1)

    click.echo(click.style("✓", fg="green", bold=True) + " Configuration is valid")
    click.echo(f"\nConfiguration file: {config_file}")
    click.echo("\nIdentity provider:")
    click.echo(f"  Entity ID:    {config_obj.idp.entity_id or config_obj.idp.metadata_url}")
    click.echo(f"  SSO URL:      {config_obj.idp.sso_url or 'Not configured'}")
    click.echo(f"  Key file:     {config_obj.idp.key_file or 'Not configured'}")
    click.echo(f"  Cert file:    {config_obj.idp.cert_file or 'Not configured'}")
    click.echo("\nSecurity:")
    click.echo(f"  Allow self-signed:       {config_obj.security.allow_self_signed_cert}")
    click.echo(f"  Trust unknown authority: {config_obj.security.trust_unknown_authority}")
    click.echo("\nxmlsec1:")
    click.echo(f"  Binary:       {config_obj.xmlsec.binary}")
    click.echo(f"  Timeout:      {config_obj.xmlsec.timeout_seconds or 'none'}")


@cli.command()
def version() -> None:
    """Display version information."""
    click.echo(f"saml-idp version {__version__}")


if __name__ == "__main__":
    cli()
