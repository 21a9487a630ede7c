"""
Standin Proxy Forwarder

Forwards requests to a real upstream server and returns its response
unchanged. Used for proxy mode and for expectations configured with a
forward target.
"""

import logging
from typing import List, Dict, Optional, Tuple

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .expectation import ResponseDescriptor
from .request import RequestView
from ..common import filter_hop_by_hop_headers, join_url

logger = logging.getLogger("standin.proxy")


def _merge_headers(headers: List[Tuple[str, str]]) -> Dict[str, str]:
    """Fold repeated headers into one field each, keeping the first name's casing."""
    merged: Dict[str, str] = {}
    names: Dict[str, str] = {}
    for name, value in headers:
        key = name.lower()
        if key in names:
            separator = '; ' if key == 'cookie' else ', '
            merged[names[key]] = f"{merged[names[key]]}{separator}{value}"
        else:
            names[key] = name
            merged[name] = value
    return merged


class ProxyForwarder:
    """Interface between the dispatcher and an upstream transport."""

    def forward(self, request: RequestView, target_url: Optional[str] = None) -> ResponseDescriptor:
        raise NotImplementedError


class HttpProxyForwarder(ProxyForwarder):
    """
    Forward requests over HTTP using a pooled requests session.

    Example:
        forwarder = HttpProxyForwarder('http://localhost:3000')
        response = forwarder.forward(view)
    """

    def __init__(
        self,
        target_url: Optional[str] = None,
        timeout: int = 30,
        verify_ssl: bool = True,
        max_retries: int = 0
    ):
        """
        Initialize the forwarder.

        Args:
            target_url: Default upstream base URL
            timeout: Request timeout in seconds
            verify_ssl: Whether to verify SSL certificates
            max_retries: Retry attempts for connection errors and 502/503/504
        """
        self.target_url = target_url
        self.timeout = timeout
        self.verify_ssl = verify_ssl
        self.max_retries = max_retries
        self.session = self._create_session()

    def _create_session(self) -> requests.Session:
        """Create HTTP session with retry configuration."""
        session = requests.Session()

        retry_strategy = Retry(
            total=self.max_retries,
            backoff_factor=0.5,
            status_forcelist=[502, 503, 504],
            allowed_methods=["HEAD", "GET", "PUT", "DELETE", "OPTIONS"],
            raise_on_status=False
        )

        adapter = HTTPAdapter(max_retries=retry_strategy)
        session.mount("http://", adapter)
        session.mount("https://", adapter)

        return session

    def forward(self, request: RequestView, target_url: Optional[str] = None) -> ResponseDescriptor:
        """
        Send the request upstream and wrap the upstream response.

        Args:
            request: Inbound request view
            target_url: Upstream base URL, overriding the default

        Returns:
            ResponseDescriptor with the upstream status, headers and raw body

        Raises:
            ValueError: If no target URL is configured
            requests.RequestException: If the upstream cannot be reached
        """
        base_url = target_url or self.target_url
        if not base_url:
            raise ValueError("No proxy target URL configured")

        url = join_url(base_url, request.path, request.query)
        headers = filter_hop_by_hop_headers(request.headers)

        logger.debug(f"Forwarding {request.method} {request.path} -> {url}")

        response = self.session.request(
            method=request.method,
            url=url,
            headers=_merge_headers(headers),
            data=request.body or None,
            timeout=self.timeout,
            verify=self.verify_ssl,
            allow_redirects=False
        )

        # requests has already decoded any Content-Encoding
        response_headers = [
            (k, v) for k, v in filter_hop_by_hop_headers(response.headers.items())
            if k.lower() != 'content-encoding'
        ]

        logger.debug(f"Upstream responded {response.status_code} for {request.method} {url}")

        return ResponseDescriptor(
            status=response.status_code,
            headers=response_headers,
            body=response.content
        )

    def close(self):
        self.session.close()
