"""Command line interface for the SAML IdP issuer."""
