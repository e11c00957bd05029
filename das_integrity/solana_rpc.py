"""
Chain state reader.

Reads raw account bytes from a Solana JSON-RPC endpoint. Only the single call
the proof verifier needs is implemented: getAccountInfo with base64 encoding
at a caller-chosen commitment level.
"""

import base64
import binascii
import logging
from typing import Optional

from .das_api_client import DasApiClient
from .errors import ResponseFieldError, RpcError
from .rpc_body import Body

logger = logging.getLogger(__name__)

COMMITMENT_PROCESSED = "processed"
COMMITMENT_CONFIRMED = "confirmed"
COMMITMENT_FINALIZED = "finalized"


class SolanaRpcClient:
    """Reads account data from the chain RPC endpoint."""

    def __init__(self, endpoint: str, api: Optional[DasApiClient] = None):
        self.endpoint = endpoint
        self.api = api or DasApiClient()

    def get_account_data(
        self,
        pubkey: str,
        commitment: str = COMMITMENT_PROCESSED
    ) -> Optional[bytes]:
        """
        Fetch the raw data of one account.

        Args:
            pubkey: Base58 account address
            commitment: processed, confirmed or finalized

        Returns:
            Account data bytes, or None when the account does not exist

        Raises:
            TransportError: endpoint unreachable or bad response
            RpcError: endpoint answered with a JSON-RPC error
            ResponseFieldError: response lacks the account data fields
        """
        body = Body(
            "getAccountInfo",
            [pubkey, {"encoding": "base64", "commitment": commitment}],
            id=1,
        )
        response = self.api.make_request(self.endpoint, body)

        if not isinstance(response, dict):
            raise ResponseFieldError("result")
        if response.get('error') is not None:
            raise RpcError("getAccountInfo", response['error'])

        result = response.get('result')
        if not isinstance(result, dict) or 'value' not in result:
            raise ResponseFieldError("result.value")

        value = result['value']
        if value is None:
            return None

        data = value.get('data') if isinstance(value, dict) else None
        if not isinstance(data, list) or not data or not isinstance(data[0], str):
            raise ResponseFieldError("result.value.data")

        try:
            return base64.b64decode(data[0], validate=True)
        except (binascii.Error, ValueError) as e:
            raise ResponseFieldError("result.value.data") from e
