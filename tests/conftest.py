"""Shared fixtures: synthetic tree accounts and test doubles for the hosts."""

import json
import struct
import threading
from typing import Any, Callable, Dict, List, Optional

import base58
import pytest

from das_integrity.config import IntegrityVerificationConfig
from das_integrity.errors import FetchKeysError
from das_integrity.merkle_tree import (
    EMPTY_NODE,
    ConcurrentMerkleTreeHeader,
    empty_node,
    hashv,
)


def b58(raw: bytes) -> str:
    return base58.b58encode(raw).decode('ascii')


def make_leaf(n: int) -> bytes:
    return hashv(b"leaf", n.to_bytes(4, 'little'))


class TreeBuilder:
    """
    In-memory concurrent Merkle tree that serialises to account bytes.

    Every set_leaf() records a changelog entry the way the on-chain program
    does, so proofs taken at one point in history can be replayed later.
    """

    def __init__(self, max_depth: int = 5, max_buffer_size: int = 8):
        self.max_depth = max_depth
        self.max_buffer_size = max_buffer_size
        self.leaves = [EMPTY_NODE] * (1 << max_depth)
        self.rightmost_index = 0
        # Initialisation writes the empty root as the first changelog entry
        self.changelogs = [(empty_node(max_depth), [empty_node(h) for h in range(max_depth)], 0)]

    def levels(self) -> List[List[bytes]]:
        levels = [list(self.leaves)]
        for _ in range(self.max_depth):
            prev = levels[-1]
            levels.append([hashv(prev[i], prev[i + 1]) for i in range(0, len(prev), 2)])
        return levels

    def root(self) -> bytes:
        return self.levels()[self.max_depth][0]

    def proof(self, index: int) -> List[bytes]:
        levels = self.levels()
        return [levels[h][(index >> h) ^ 1] for h in range(self.max_depth)]

    def set_leaf(self, index: int, leaf: bytes):
        self.leaves[index] = leaf
        levels = self.levels()
        path = [levels[h][index >> h] for h in range(self.max_depth)]
        self.changelogs.append((levels[self.max_depth][0], path, index))
        self.rightmost_index = max(self.rightmost_index, index + 1)

    def append(self, leaf: bytes) -> int:
        index = self.rightmost_index
        self.set_leaf(index, leaf)
        return index

    def canopy(self, canopy_depth: int, zero_empty: bool = True) -> bytes:
        levels = self.levels()
        nodes = []
        for depth in range(1, canopy_depth + 1):
            height = self.max_depth - depth
            for node in levels[height]:
                if zero_empty and node == empty_node(height):
                    node = EMPTY_NODE
                nodes.append(node)
        return b''.join(nodes)

    def account_data(self, canopy_depth: int = 2, zero_empty: bool = True) -> bytes:
        depth, buffer = self.max_depth, self.max_buffer_size
        header = ConcurrentMerkleTreeHeader(
            account_type=1,
            version=0,
            max_buffer_size=buffer,
            max_depth=depth,
            authority=bytes(range(32)),
            creation_slot=123,
        )

        slots: List[Optional[tuple]] = [None] * buffer
        for position, entry in enumerate(self.changelogs):
            slots[position % buffer] = entry
        active_index = (len(self.changelogs) - 1) % buffer
        buffer_size = min(len(self.changelogs), buffer)

        out = bytearray(header.to_bytes())
        out += struct.pack("<QQQ", len(self.changelogs) - 1, active_index, buffer_size)
        for entry in slots:
            if entry is None:
                out += bytes(32 + 32 * depth + 8)
                continue
            root, path, index = entry
            out += root + b''.join(path) + struct.pack("<I4x", index)

        last = max(self.rightmost_index - 1, 0)
        out += b''.join(self.proof(last)) + self.leaves[last]
        out += struct.pack("<I4x", self.rightmost_index)
        out += self.canopy(canopy_depth, zero_empty)
        return bytes(out)


class FakeApi:
    """
    Stand-in for DasApiClient.

    handlers maps a host URL to a callable taking the decoded body dict and
    returning a JSON value or raising.
    """

    def __init__(self, handlers: Dict[str, Callable[[Dict[str, Any]], Any]]):
        self.handlers = handlers
        self.calls: List[tuple] = []
        self._lock = threading.Lock()

    def make_request(self, url, body):
        payload = json.loads(body) if isinstance(body, str) else body.to_dict()
        with self._lock:
            self.calls.append((url, payload))
        return self.handlers[url](payload)

    def calls_to(self, url: str) -> List[Dict[str, Any]]:
        return [payload for called_url, payload in self.calls if called_url == url]


class FakeChain:
    """SolanaRpcClient double returning fixed account bytes."""

    def __init__(self, data):
        self.data = data
        self.calls: List[tuple] = []

    def get_account_data(self, pubkey, commitment="processed"):
        self.calls.append((pubkey, commitment))
        return self.data


class FakeKeysFetcher:
    """KeysFetcher double returning fixed lists."""

    def __init__(self, keys: Optional[Dict[str, Any]] = None, failing=()):
        self.keys = keys or {}
        self.failing = set(failing)

    def _get(self, name):
        if name in self.failing:
            raise FetchKeysError(f"{name} unavailable")
        return list(self.keys.get(name, []))

    def get_verification_required_owners_keys(self):
        return self._get('owners')

    def get_verification_required_creators_keys(self):
        return self._get('creators')

    def get_verification_required_authorities_keys(self):
        return self._get('authorities')

    def get_verification_required_groups_keys(self):
        return self._get('groups')

    def get_verification_required_assets_keys(self):
        return self._get('assets')

    def get_verification_required_assets_proof_keys(self):
        return self._get('proofs')

    def get_verification_required_tokens_by_owner(self):
        return self._get('tokens_by_owner')

    def get_verification_required_tokens_by_mint(self):
        return self._get('tokens_by_mint')

    def get_verification_required_tokens_by_owner_and_mint(self):
        return self._get('tokens_by_owner_and_mint')

    def get_verification_required_signatures_for_asset(self):
        return self._get('signatures')


REFERENCE_HOST = "http://reference.test/"
TESTING_HOST = "http://testing.test/"
RPC_ENDPOINT = "http://rpc.test/"


@pytest.fixture
def make_config():
    def _make(**overrides) -> IntegrityVerificationConfig:
        values = dict(
            reference_host=REFERENCE_HOST,
            testing_host=TESTING_HOST,
            rpc_endpoint=RPC_ENDPOINT,
            testing_file_path="keys.txt",
            test_retries=3,
            requests_interval_millis=0,
        )
        values.update(overrides)
        return IntegrityVerificationConfig(**values)
    return _make


@pytest.fixture
def tree_builder():
    builder = TreeBuilder(max_depth=5, max_buffer_size=8)
    for n in range(6):
        builder.append(make_leaf(n))
    return builder
