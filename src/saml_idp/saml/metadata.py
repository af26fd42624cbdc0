"""SAML metadata retrieval.

Downloads SP metadata over HTTP(S) with requests and parses it into Metadata
dataclasses. Transport and parse failures are reported as distinct errors.
"""

import logging
from threading import Lock
from typing import Dict, Optional

import requests
from lxml import etree

from ..models.saml import Metadata
from ..utils.exceptions import MetadataParseError, MetadataTransportError
from .marshal import parse_metadata

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10


class MetadataClient:
    """Fetches and caches SAML metadata documents by URL.

    Thread-safe: the cache is guarded by a lock; downloads happen outside it.

    Attributes:
        timeout: Request timeout in seconds
        verify_tls: Whether to verify TLS certificates
        cache_enabled: Keep parsed metadata per URL for reuse

    Example:
        >>> client = MetadataClient(timeout=5)
        >>> metadata = client.fetch("https://sp.example.com/saml/metadata")
        >>> metadata.entity_id
        'https://sp.example.com/saml/metadata'
    """

    def __init__(
        self,
        timeout: float = DEFAULT_TIMEOUT,
        verify_tls: bool = True,
        cache_enabled: bool = True,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.timeout = timeout
        self.verify_tls = verify_tls
        self.cache_enabled = cache_enabled
        self._session = session or requests.Session()
        self._cache: Dict[str, Metadata] = {}
        self._lock = Lock()

    def fetch(self, url: str) -> Metadata:
        """Download and parse the metadata document at ``url``.

        Raises:
            MetadataTransportError: Connection failure or HTTP error status
            MetadataParseError: Body is not a valid EntityDescriptor
        """
        if self.cache_enabled:
            with self._lock:
                cached = self._cache.get(url)
            if cached is not None:
                logger.debug(f"Metadata cache hit for {url}")
                return cached

        logger.info(f"Fetching SAML metadata from {url}")
        try:
            response = self._session.get(url, timeout=self.timeout, verify=self.verify_tls)
            response.raise_for_status()
        except requests.RequestException as e:
            raise MetadataTransportError(f"Failed to get metadata url {url}: {e}") from e

        try:
            metadata = parse_metadata(response.content)
        except (etree.XMLSyntaxError, ValueError) as e:
            raise MetadataParseError(f"Failed to parse metadata from {url}: {e}") from e

        if self.cache_enabled:
            with self._lock:
                self._cache[url] = metadata

        return metadata

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()


def get_metadata(metadata_url: str, timeout: float = DEFAULT_TIMEOUT) -> Metadata:
    """Download and parse a metadata document without caching."""
    return MetadataClient(timeout=timeout, cache_enabled=False).fetch(metadata_url)
