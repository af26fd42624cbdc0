"""SAML IdP Issuer.

Issuing side of SAML 2.0 web single sign-on: builds assertions from resolved
user sessions, signs and encrypts them through the xmlsec1 command line tool,
and wraps them into protocol responses.
"""

__version__ = "0.1.0"
