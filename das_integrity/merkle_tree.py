"""
Concurrent Merkle tree account parsing and proof checking.

An on-chain tree account is laid out as:

    [ header (56 bytes) | tree (size from depth/buffer) | canopy (rest) ]

The header fixes max_depth and max_buffer_size, which in turn fix the tree
size; whatever follows the tree is the canopy. All integers are little-endian.

Tree region:
    sequence_number u64, active_index u64, buffer_size u64,
    change_logs[max_buffer_size]: root, path[max_depth], index u32, pad u32
    rightmost_proof: proof[max_depth], leaf, index u32, pad u32

Canopy: the top levels of the tree (without the root) in heap order, so the
node with heap index i (root = 1) lives at canopy slot i - 2.

Hashing is keccak256 over the two concatenated children.
"""

import struct
from dataclasses import dataclass, field
from functools import lru_cache
from typing import List, Optional, Sequence, Tuple

from Crypto.Hash import keccak

from .errors import (
    CannotCreateMerkleTreeError,
    CanopyLengthMismatchError,
    LeafIndexOutOfBoundsError,
    ProofLengthError,
    TreeDataLengthError,
    TreeHeaderError,
)

NODE_SIZE = 32
EMPTY_NODE = bytes(NODE_SIZE)

CONCURRENT_MERKLE_TREE_ACCOUNT_TYPE = 1
HEADER_VERSION_V1 = 0
CONCURRENT_MERKLE_TREE_HEADER_SIZE_V1 = 56

# Deepest tree the on-chain program supports
MAX_SUPPORTED_DEPTH = 30

# (max_depth, max_buffer_size) pairs the on-chain program can allocate
SUPPORTED_TREE_SIZES = frozenset([
    (3, 8), (5, 8),
    (6, 16), (7, 16), (8, 16), (9, 16),
    (10, 32), (11, 32), (12, 32), (13, 32),
    (14, 64), (14, 256), (14, 1024), (14, 2048),
    (15, 64), (16, 64), (17, 64), (18, 64), (19, 64),
    (20, 64), (20, 256), (20, 1024), (20, 2048),
    (24, 64), (24, 256), (24, 512), (24, 1024), (24, 2048),
    (26, 512), (26, 1024), (26, 2048),
    (30, 512), (30, 1024), (30, 2048),
])

_HEADER_STRUCT = struct.Struct("<BBII32sQ?5x")
_TREE_PREFIX_STRUCT = struct.Struct("<QQQ")
_INDEX_STRUCT = struct.Struct("<I4x")


# ========== Hashing ==========

def hashv(*parts: bytes) -> bytes:
    h = keccak.new(digest_bits=256)
    for part in parts:
        h.update(part)
    return h.digest()


def hash_to_parent(node: bytes, sibling: bytes, is_left: bool) -> bytes:
    if is_left:
        return hashv(node, sibling)
    return hashv(sibling, node)


@lru_cache(maxsize=None)
def empty_node(level: int) -> bytes:
    """Root hash of an empty subtree of the given height."""
    if level == 0:
        return EMPTY_NODE
    child = empty_node(level - 1)
    return hashv(child, child)


def recompute(leaf: bytes, proof: Sequence[bytes], index: int) -> bytes:
    """Hash a leaf up through its proof (leaf to root order)."""
    node = leaf
    for depth, sibling in enumerate(proof):
        node = hash_to_parent(node, sibling, (index >> depth) & 1 == 0)
    return node


# ========== Header ==========

@dataclass
class ConcurrentMerkleTreeHeader:
    """Fixed-layout header at the start of every tree account."""
    account_type: int
    version: int
    max_buffer_size: int
    max_depth: int
    authority: bytes
    creation_slot: int
    is_batch_initialized: bool = False

    @classmethod
    def parse(cls, data: bytes) -> 'ConcurrentMerkleTreeHeader':
        """
        Parse the header from the first bytes of an account.

        Raises:
            TreeHeaderError: short buffer, wrong account type or version
        """
        if len(data) < CONCURRENT_MERKLE_TREE_HEADER_SIZE_V1:
            raise TreeHeaderError(
                f"Account data is {len(data)} bytes, header needs "
                f"{CONCURRENT_MERKLE_TREE_HEADER_SIZE_V1}"
            )
        (account_type, version, max_buffer_size, max_depth,
         authority, creation_slot, is_batch_initialized) = _HEADER_STRUCT.unpack_from(data, 0)

        if account_type != CONCURRENT_MERKLE_TREE_ACCOUNT_TYPE:
            raise TreeHeaderError(f"Unexpected account type {account_type}")
        if version != HEADER_VERSION_V1:
            raise TreeHeaderError(f"Unsupported header version {version}")

        return cls(
            account_type=account_type,
            version=version,
            max_buffer_size=max_buffer_size,
            max_depth=max_depth,
            authority=authority,
            creation_slot=creation_slot,
            is_batch_initialized=is_batch_initialized,
        )

    def to_bytes(self) -> bytes:
        return _HEADER_STRUCT.pack(
            self.account_type, self.version, self.max_buffer_size, self.max_depth,
            self.authority, self.creation_slot, self.is_batch_initialized,
        )


def changelog_size(max_depth: int) -> int:
    return NODE_SIZE + NODE_SIZE * max_depth + _INDEX_STRUCT.size


def path_size(max_depth: int) -> int:
    return NODE_SIZE * max_depth + NODE_SIZE + _INDEX_STRUCT.size


def merkle_tree_get_size(header: ConcurrentMerkleTreeHeader) -> int:
    """
    Size in bytes of the tree region for this header.

    Raises:
        CannotCreateMerkleTreeError: unsupported depth/buffer combination
    """
    key = (header.max_depth, header.max_buffer_size)
    if key not in SUPPORTED_TREE_SIZES:
        raise CannotCreateMerkleTreeError(header.max_depth, header.max_buffer_size)
    return (
        _TREE_PREFIX_STRUCT.size
        + header.max_buffer_size * changelog_size(header.max_depth)
        + path_size(header.max_depth)
    )


def split_tree_account(data: bytes) -> Tuple[ConcurrentMerkleTreeHeader, bytes, bytes]:
    """
    Split raw account bytes into (header, tree bytes, canopy bytes).

    The two byte regions follow the header back to back and cover the rest of
    the account exactly.
    """
    header = ConcurrentMerkleTreeHeader.parse(data)
    rest = data[CONCURRENT_MERKLE_TREE_HEADER_SIZE_V1:]
    tree_size = merkle_tree_get_size(header)
    if len(rest) < tree_size:
        raise TreeDataLengthError(
            f"Tree region needs {tree_size} bytes, account has {len(rest)} after the header"
        )
    return header, rest[:tree_size], rest[tree_size:]


# ========== Canopy ==========

def _nodes(data: bytes) -> List[bytes]:
    return [data[i:i + NODE_SIZE] for i in range(0, len(data), NODE_SIZE)]


def get_cached_path_length(canopy_len: int, max_depth: int) -> int:
    """
    Number of tree levels held in a canopy of canopy_len nodes.

    A canopy is a full binary tree without its root, so canopy_len + 2 must be
    a power of two, and it cannot be larger than the tree itself.
    """
    closest_power_of_2 = canopy_len + 2
    if closest_power_of_2 & (closest_power_of_2 - 1) != 0:
        raise CanopyLengthMismatchError(
            f"Canopy length {canopy_len} is not 2 less than a power of 2"
        )
    if closest_power_of_2 > (1 << (max_depth + 1)):
        raise CanopyLengthMismatchError(
            f"Canopy size is too large. Size: {canopy_len}. "
            f"Max size: {(1 << (max_depth + 1)) - 2}"
        )
    # trailing zeros minus one, the root is not stored
    return closest_power_of_2.bit_length() - 2


def fill_in_proof_from_canopy(
    canopy_bytes: bytes,
    max_depth: int,
    index: int,
    proof: Sequence[bytes]
) -> List[bytes]:
    """
    Complete a truncated proof with the siblings cached in the canopy.

    Args:
        canopy_bytes: Canopy region of the tree account
        max_depth: Tree depth from the header
        index: Leaf index
        proof: Proof as returned by the API, leaf to root, possibly truncated

    Returns:
        Full proof of exactly max_depth nodes

    Raises:
        CanopyLengthMismatchError: canopy bytes do not form a canopy
        LeafIndexOutOfBoundsError: index outside the tree
        ProofLengthError: proof and canopy together do not cover the tree depth
    """
    if max_depth > MAX_SUPPORTED_DEPTH:
        raise CanopyLengthMismatchError(f"Tree depth {max_depth} is above {MAX_SUPPORTED_DEPTH}")
    capacity = 1 << max_depth
    if not 0 <= index < capacity:
        raise LeafIndexOutOfBoundsError(index, capacity)
    if len(canopy_bytes) % NODE_SIZE != 0:
        raise CanopyLengthMismatchError(
            f"Canopy byte length {len(canopy_bytes)} is not a multiple of {NODE_SIZE}"
        )
    canopy = _nodes(canopy_bytes)
    path_len = get_cached_path_length(len(canopy), max_depth)

    # Heap index of the node where the leaf's path enters the canopy
    node_idx = ((1 << max_depth) + index) >> (max_depth - path_len)
    inferred_nodes = []
    while node_idx > 1:
        shifted_index = node_idx - 2
        cached_idx = shifted_index + 1 if shifted_index % 2 == 0 else shifted_index - 1
        if canopy[cached_idx] == EMPTY_NODE:
            level = max_depth - (node_idx.bit_length() - 1)
            inferred_nodes.append(empty_node(level))
        else:
            inferred_nodes.append(canopy[cached_idx])
        node_idx >>= 1

    overlap = max(len(proof) + len(inferred_nodes) - max_depth, 0)
    full_proof = list(proof) + inferred_nodes[overlap:]
    if len(full_proof) != max_depth:
        raise ProofLengthError(len(full_proof), max_depth)
    return full_proof


# ========== Tree ==========

@dataclass
class ChangeLog:
    """One entry of the changelog ring buffer."""
    root: bytes
    path: List[bytes]
    index: int

    def get_leaf(self) -> bytes:
        return self.path[0]

    def update_proof_or_leaf(self, leaf_index: int, proof: List[bytes], leaf: bytes) -> bytes:
        """
        Advance a proof over this change.

        A change at another index touches exactly one node of our proof, at
        the highest bit where the two indices differ. A change at our own
        index replaces the leaf. Returns the leaf now stored at leaf_index.
        """
        if leaf_index != self.index:
            critbit_index = (leaf_index ^ self.index).bit_length() - 1
            proof[critbit_index] = self.path[critbit_index]
            return leaf
        return self.get_leaf()


@dataclass
class MerklePath:
    proof: List[bytes]
    leaf: bytes
    index: int


@dataclass
class ConcurrentMerkleTree:
    """Decoded tree region of a concurrent Merkle tree account."""
    max_depth: int
    max_buffer_size: int
    sequence_number: int
    active_index: int
    buffer_size: int
    change_logs: List[ChangeLog] = field(default_factory=list)
    rightmost_proof: Optional[MerklePath] = None

    @classmethod
    def load(cls, tree_bytes: bytes, max_depth: int, max_buffer_size: int) -> 'ConcurrentMerkleTree':
        """
        Decode the tree region.

        Raises:
            TreeDataLengthError: tree_bytes shorter than the layout requires
            TreeHeaderError: counters inconsistent with the header
        """
        expected = (
            _TREE_PREFIX_STRUCT.size
            + max_buffer_size * changelog_size(max_depth)
            + path_size(max_depth)
        )
        if len(tree_bytes) < expected:
            raise TreeDataLengthError(
                f"Tree region is {len(tree_bytes)} bytes, expected {expected}"
            )

        sequence_number, active_index, buffer_size = _TREE_PREFIX_STRUCT.unpack_from(tree_bytes, 0)
        if active_index >= max_buffer_size or buffer_size > max_buffer_size:
            raise TreeHeaderError(
                f"Changelog counters out of range: active_index={active_index}, "
                f"buffer_size={buffer_size}, max_buffer_size={max_buffer_size}"
            )

        offset = _TREE_PREFIX_STRUCT.size
        change_logs = []
        for _ in range(max_buffer_size):
            root = tree_bytes[offset:offset + NODE_SIZE]
            offset += NODE_SIZE
            path = _nodes(tree_bytes[offset:offset + NODE_SIZE * max_depth])
            offset += NODE_SIZE * max_depth
            (index,) = _INDEX_STRUCT.unpack_from(tree_bytes, offset)
            offset += _INDEX_STRUCT.size
            change_logs.append(ChangeLog(root=root, path=path, index=index))

        proof = _nodes(tree_bytes[offset:offset + NODE_SIZE * max_depth])
        offset += NODE_SIZE * max_depth
        leaf = tree_bytes[offset:offset + NODE_SIZE]
        offset += NODE_SIZE
        (index,) = _INDEX_STRUCT.unpack_from(tree_bytes, offset)

        return cls(
            max_depth=max_depth,
            max_buffer_size=max_buffer_size,
            sequence_number=sequence_number,
            active_index=active_index,
            buffer_size=buffer_size,
            change_logs=change_logs,
            rightmost_proof=MerklePath(proof=proof, leaf=leaf, index=index),
        )

    def get_root(self) -> bytes:
        """Current root: the root of the newest changelog entry."""
        return self.change_logs[self.active_index].root

    def find_root(self, root: bytes) -> Optional[int]:
        """Changelog slot holding root, searching newest first."""
        mask = self.max_buffer_size - 1
        for i in range(self.buffer_size):
            slot = (self.active_index - i) & mask
            if self.change_logs[slot].root == root:
                return slot
        return None

    def prove_leaf(
        self,
        leaf: bytes,
        proof: Sequence[bytes],
        leaf_index: int,
        proof_root: Optional[bytes] = None
    ) -> bool:
        """
        Check that leaf sits at leaf_index under the current root.

        Args:
            leaf: Leaf hash
            proof: Full proof, leaf to root, max_depth nodes
            leaf_index: Position of the leaf
            proof_root: Root the proof was built against; when it is still in
                the changelog buffer the proof is advanced through every later
                change before hashing. A later change to leaf_index itself
                means the leaf was modified and the proof is rejected.

        Raises:
            LeafIndexOutOfBoundsError: index outside the tree or past the
                rightmost appended leaf
            ProofLengthError: proof is not max_depth nodes long
        """
        capacity = 1 << self.max_depth
        if not 0 <= leaf_index < capacity:
            raise LeafIndexOutOfBoundsError(leaf_index, capacity)
        if self.rightmost_proof is not None and leaf_index > self.rightmost_proof.index:
            raise LeafIndexOutOfBoundsError(leaf_index, self.rightmost_proof.index)
        if len(proof) != self.max_depth:
            raise ProofLengthError(len(proof), self.max_depth)

        proof = list(proof)
        slot = self.find_root(proof_root) if proof_root is not None else None
        if slot is not None:
            mask = self.max_buffer_size - 1
            updated_leaf = leaf
            while slot != self.active_index:
                slot = (slot + 1) & mask
                updated_leaf = self.change_logs[slot].update_proof_or_leaf(
                    leaf_index, proof, updated_leaf
                )
            if updated_leaf != leaf:
                # leaf contents modified since proof_root
                return False

        return recompute(leaf, proof, leaf_index) == self.get_root()


def load_tree_account(data: bytes) -> Tuple[ConcurrentMerkleTreeHeader, ConcurrentMerkleTree, bytes]:
    """Parse a whole account into (header, tree, canopy bytes)."""
    header, tree_bytes, canopy_bytes = split_tree_account(data)
    tree = ConcurrentMerkleTree.load(tree_bytes, header.max_depth, header.max_buffer_size)
    return header, tree, canopy_bytes
