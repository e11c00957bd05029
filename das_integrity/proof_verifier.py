"""
Validation of getAssetProof responses against live tree state.

The API may trim the top of a proof when those levels are cached in the
tree's canopy. The verifier re-reads the tree account at processed commitment,
completes the proof from the canopy and hashes the leaf up to the current root.
"""

import logging
from concurrent.futures import Executor, ThreadPoolExecutor, wait
from typing import Any, List, Optional

import base58

from .das_api_client import DasApiClient
from .errors import InvalidPubkeyError, NullAssetAccountError, ResponseFieldError
from .merkle_tree import NODE_SIZE, fill_in_proof_from_canopy, load_tree_account
from .request_params import build_get_asset
from .solana_rpc import COMMITMENT_PROCESSED, SolanaRpcClient

logger = logging.getLogger(__name__)


def decode_pubkey(value: str) -> bytes:
    """Decode a base58 key or hash into its 32 bytes."""
    try:
        raw = base58.b58decode(value)
    except ValueError as e:
        raise InvalidPubkeyError(value, str(e)) from e
    if len(raw) != NODE_SIZE:
        raise InvalidPubkeyError(value, f"decoded to {len(raw)} bytes")
    return raw


def _result(response: Any) -> dict:
    result = response.get('result') if isinstance(response, dict) else None
    if not isinstance(result, dict):
        raise ResponseFieldError("result")
    return result


def _required_str(result: dict, name: str) -> str:
    value = result.get(name)
    if not isinstance(value, str):
        raise ResponseFieldError(name)
    return value


def extract_proof_nodes(result: dict) -> List[bytes]:
    """Proof nodes from a getAssetProof result; undecodable entries are skipped."""
    proof = result.get('proof')
    if not isinstance(proof, list):
        raise ResponseFieldError("proof")
    nodes = []
    for entry in proof:
        if not isinstance(entry, str):
            continue
        try:
            nodes.append(decode_pubkey(entry))
        except InvalidPubkeyError:
            logger.debug(f"Skipping undecodable proof node {entry!r}")
    return nodes


def extract_leaf_index(get_asset_response: Any) -> int:
    """Leaf index of an asset from a getAsset response."""
    compression = _result(get_asset_response).get('compression')
    leaf_id = compression.get('leaf_id') if isinstance(compression, dict) else None
    if isinstance(leaf_id, bool) or not isinstance(leaf_id, int) or leaf_id < 0:
        raise ResponseFieldError("leaf_id")
    return leaf_id


class ProofVerifier:
    """Checks asset proofs returned by the testing host."""

    def __init__(
        self,
        reference_host: str,
        api: DasApiClient,
        chain: SolanaRpcClient,
        executor: Optional[Executor] = None
    ):
        self.reference_host = reference_host
        self.api = api
        self.chain = chain
        self._executor = executor or ThreadPoolExecutor(max_workers=2)

    def validate(self, asset_id: str, response: Any) -> bool:
        """
        Validate the proof in a getAssetProof response.

        Args:
            asset_id: Asset the proof was requested for
            response: Full JSON-RPC response from the testing host

        Returns:
            True when the leaf hashes up to the tree's current root

        Raises:
            ResponseFieldError: tree_id, leaf, proof or leaf_id missing
            InvalidPubkeyError: tree_id or leaf not valid base58 hashes
            NullAssetAccountError: tree account does not exist
            TreeStructureError: account bytes do not parse as a tree, or leaf_id lies outside it
            TransportError: reference host or chain RPC unreachable
        """
        result = _result(response)
        tree_id = _required_str(result, 'tree_id')
        leaf = decode_pubkey(_required_str(result, 'leaf'))
        decode_pubkey(tree_id)
        proof_nodes = extract_proof_nodes(result)

        proof_root = None
        root_value = result.get('root')
        if isinstance(root_value, str):
            try:
                proof_root = decode_pubkey(root_value)
            except InvalidPubkeyError:
                logger.debug(f"Ignoring undecodable proof root {root_value!r}")

        get_asset_future = self._executor.submit(
            self.api.make_request, self.reference_host, build_get_asset(asset_id)
        )
        account_future = self._executor.submit(
            self.chain.get_account_data, tree_id, COMMITMENT_PROCESSED
        )
        wait([get_asset_future, account_future])
        get_asset_response = get_asset_future.result()
        account_data = account_future.result()

        leaf_index = extract_leaf_index(get_asset_response)
        if account_data is None:
            raise NullAssetAccountError(tree_id)

        header, tree, canopy_bytes = load_tree_account(account_data)
        proof = fill_in_proof_from_canopy(
            canopy_bytes, header.max_depth, leaf_index, proof_nodes
        )
        return tree.prove_leaf(leaf, proof, leaf_index, proof_root=proof_root)
