"""
DAS-API JSON-RPC Client

Thin HTTP wrapper used to POST JSON-RPC bodies to the reference host, the
testing host and the chain RPC endpoint. It only knows about transport: status
codes and JSON decoding. Comparing or interpreting the payloads is left to the
callers.
"""

import json
import logging
from typing import Any, Optional, Union

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .errors import RequestError, ResponseDecodeError, ResponseStatusCodeError
from .rpc_body import Body

logger = logging.getLogger(__name__)


class DasApiClient:
    """
    Client for POSTing JSON-RPC requests to DAS-API compatible hosts.

    A single client is shared by every method category, so the underlying
    session pools connections to both hosts across threads.
    """

    def __init__(
        self,
        timeout: Optional[float] = None,
        max_retries: int = 0,
        pool_maxsize: int = 32
    ):
        """
        Initialize the client.

        Args:
            timeout: Request timeout in seconds (default: None, no timeout)
            max_retries: Transport-level retry attempts (default: 0, the
                comparison engine runs its own retry loop)
            pool_maxsize: Connections kept per host
        """
        self.timeout = timeout

        # Configure session with retry strategy
        self.session = requests.Session()
        retry_strategy = Retry(
            total=max_retries,
            backoff_factor=1,
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=["POST"],
            raise_on_status=False
        )
        adapter = HTTPAdapter(max_retries=retry_strategy, pool_maxsize=pool_maxsize)
        self.session.mount("http://", adapter)
        self.session.mount("https://", adapter)

        self.session.headers.update({
            'Accept': 'application/json',
            'Content-Type': 'application/json'
        })

    def make_request(self, url: str, body: Union[Body, str]) -> Any:
        """
        POST one JSON-RPC body and decode the response.

        Args:
            url: Host URL
            body: Request body, or an already serialised JSON string

        Returns:
            Decoded JSON response (any JSON value)

        Raises:
            RequestError: connection failure
            ResponseStatusCodeError: status other than 200; the body is not read
            ResponseDecodeError: 200 response whose body is not JSON
        """
        payload = body.to_json() if isinstance(body, Body) else body

        try:
            response = self.session.post(url, data=payload, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            raise RequestError(url, e) from e

        if response.status_code != 200:
            raise ResponseStatusCodeError(response.status_code, url)

        try:
            return json.loads(response.text)
        except ValueError as e:
            raise ResponseDecodeError(url, e) from e

    def close(self):
        """Close the session."""
        self.session.close()

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()
