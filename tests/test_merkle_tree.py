"""Tests for merkle_tree module."""

import pytest

from conftest import TreeBuilder, make_leaf
from das_integrity.errors import (
    CannotCreateMerkleTreeError,
    CanopyLengthMismatchError,
    LeafIndexOutOfBoundsError,
    ProofLengthError,
    TreeDataLengthError,
    TreeHeaderError,
)
from das_integrity.merkle_tree import (
    CONCURRENT_MERKLE_TREE_HEADER_SIZE_V1,
    EMPTY_NODE,
    ConcurrentMerkleTreeHeader,
    empty_node,
    fill_in_proof_from_canopy,
    get_cached_path_length,
    hashv,
    load_tree_account,
    merkle_tree_get_size,
    recompute,
    split_tree_account,
)


def _header(max_depth=5, max_buffer_size=8, account_type=1, version=0):
    return ConcurrentMerkleTreeHeader(
        account_type=account_type,
        version=version,
        max_buffer_size=max_buffer_size,
        max_depth=max_depth,
        authority=b"\x07" * 32,
        creation_slot=42,
    )


class TestHashing:
    """Tests for the hashing helpers."""

    def test_empty_node_levels(self) -> None:
        """Test empty subtree hashes are built from zero leaves."""
        assert empty_node(0) == EMPTY_NODE
        assert empty_node(1) == hashv(EMPTY_NODE, EMPTY_NODE)
        assert empty_node(2) == hashv(empty_node(1), empty_node(1))

    def test_empty_tree_root(self) -> None:
        """Test an empty tree's root equals the empty node of its depth."""
        assert TreeBuilder(max_depth=3).root() == empty_node(3)

    def test_recompute_matches_tree_root(self, tree_builder) -> None:
        """Test hashing every leaf up its proof gives the root."""
        for index in range(tree_builder.rightmost_index):
            leaf = tree_builder.leaves[index]
            assert recompute(leaf, tree_builder.proof(index), index) == tree_builder.root()

    def test_recompute_order_depends_on_index_bits(self) -> None:
        """Test sibling ordering follows the index bits."""
        leaf, sibling = make_leaf(1), make_leaf(2)
        assert recompute(leaf, [sibling], 0) == hashv(leaf, sibling)
        assert recompute(leaf, [sibling], 1) == hashv(sibling, leaf)


class TestHeader:
    """Tests for header parsing and tree sizing."""

    def test_parse_roundtrip(self) -> None:
        """Test a packed header parses back to the same fields."""
        header = _header()
        raw = header.to_bytes()

        assert len(raw) == CONCURRENT_MERKLE_TREE_HEADER_SIZE_V1
        parsed = ConcurrentMerkleTreeHeader.parse(raw)
        assert parsed.max_depth == 5
        assert parsed.max_buffer_size == 8
        assert parsed.authority == b"\x07" * 32
        assert parsed.creation_slot == 42

    def test_short_header(self) -> None:
        """Test a buffer shorter than the header is rejected."""
        with pytest.raises(TreeHeaderError):
            ConcurrentMerkleTreeHeader.parse(b"\x01" * 10)

    def test_wrong_account_type(self) -> None:
        """Test an uninitialized account is rejected."""
        with pytest.raises(TreeHeaderError):
            ConcurrentMerkleTreeHeader.parse(_header(account_type=0).to_bytes())

    def test_unknown_version(self) -> None:
        """Test an unknown header version is rejected."""
        with pytest.raises(TreeHeaderError):
            ConcurrentMerkleTreeHeader.parse(_header(version=1).to_bytes())

    def test_tree_size(self) -> None:
        """Test the tree size formula for a supported pair."""
        # 24 + 8 * (40 + 32 * 3) + (40 + 32 * 3)
        assert merkle_tree_get_size(_header(max_depth=3, max_buffer_size=8)) == 1248
        assert merkle_tree_get_size(_header(max_depth=14, max_buffer_size=64)) == (
            24 + 65 * (40 + 32 * 14)
        )

    def test_unsupported_size(self) -> None:
        """Test an unsupported depth/buffer pair is rejected."""
        with pytest.raises(CannotCreateMerkleTreeError):
            merkle_tree_get_size(_header(max_depth=4, max_buffer_size=8))


class TestSplitAccount:
    """Tests for splitting account bytes into regions."""

    def test_regions_partition_account(self, tree_builder) -> None:
        """Test header, tree and canopy cover the account exactly."""
        data = tree_builder.account_data(canopy_depth=2)

        header, tree_bytes, canopy_bytes = split_tree_account(data)

        assert len(tree_bytes) == merkle_tree_get_size(header)
        assert len(canopy_bytes) == 6 * 32
        assert CONCURRENT_MERKLE_TREE_HEADER_SIZE_V1 + len(tree_bytes) + len(canopy_bytes) == len(data)

    def test_short_tree_region(self, tree_builder) -> None:
        """Test truncated account data is a structural error."""
        data = tree_builder.account_data(canopy_depth=0)

        with pytest.raises(TreeDataLengthError):
            split_tree_account(data[:-1])

    def test_load_tree_counters(self, tree_builder) -> None:
        """Test the decoded tree exposes the current root and counters."""
        _, tree, _ = load_tree_account(tree_builder.account_data())

        assert tree.get_root() == tree_builder.root()
        assert tree.active_index == 6
        assert tree.buffer_size == 7
        assert tree.rightmost_proof.index == 6


class TestCanopy:
    """Tests for canopy-based proof completion."""

    def test_cached_path_length(self) -> None:
        """Test canopy sizes map to level counts."""
        assert get_cached_path_length(0, 5) == 0
        assert get_cached_path_length(2, 5) == 1
        assert get_cached_path_length(6, 5) == 2
        assert get_cached_path_length(14, 5) == 3

    def test_cached_path_length_not_power_of_two(self) -> None:
        """Test a canopy that is not a full tree is rejected."""
        with pytest.raises(CanopyLengthMismatchError):
            get_cached_path_length(3, 5)

    def test_cached_path_length_too_large(self) -> None:
        """Test a canopy bigger than the tree is rejected."""
        with pytest.raises(CanopyLengthMismatchError):
            get_cached_path_length(6, 1)

    def test_canopy_bytes_not_node_aligned(self) -> None:
        """Test canopy bytes must hold whole nodes."""
        with pytest.raises(CanopyLengthMismatchError):
            fill_in_proof_from_canopy(b"\x00" * 33, 5, 0, [])

    @pytest.mark.parametrize("index", [0, 1, 4, 5])
    def test_truncated_proof_completed(self, tree_builder, index) -> None:
        """Test a proof trimmed by the canopy depth is completed exactly."""
        full = tree_builder.proof(index)
        canopy = tree_builder.canopy(2)

        completed = fill_in_proof_from_canopy(canopy, 5, index, full[:3])

        assert len(completed) == 5
        assert completed == full

    def test_non_empty_canopy_nodes_used(self, tree_builder) -> None:
        """Test stored canopy nodes are used when not zeroed."""
        full = tree_builder.proof(2)
        canopy = tree_builder.canopy(2, zero_empty=False)

        assert fill_in_proof_from_canopy(canopy, 5, 2, full[:3]) == full

    def test_full_proof_left_alone(self, tree_builder) -> None:
        """Test a proof that is already complete gains nothing."""
        full = tree_builder.proof(3)

        assert fill_in_proof_from_canopy(tree_builder.canopy(2), 5, 3, full) == full
        assert fill_in_proof_from_canopy(b"", 5, 3, full) == full

    def test_partial_overlap(self, tree_builder) -> None:
        """Test a proof that already holds some canopy levels is not duplicated."""
        full = tree_builder.proof(1)

        assert fill_in_proof_from_canopy(tree_builder.canopy(2), 5, 1, full[:4]) == full

    @pytest.mark.parametrize("canopy_depth", [0, 2])
    @pytest.mark.parametrize("index", [-1, 32, 40])
    def test_index_outside_tree(self, tree_builder, canopy_depth, index) -> None:
        """Test an index beyond 2^depth is a structural error, not a lookup failure."""
        with pytest.raises(LeafIndexOutOfBoundsError):
            fill_in_proof_from_canopy(tree_builder.canopy(canopy_depth), 5, index, tree_builder.proof(0)[:3])

    def test_too_short_proof(self, tree_builder) -> None:
        """Test a proof shorter than the canopy can fill is rejected."""
        with pytest.raises(ProofLengthError):
            fill_in_proof_from_canopy(tree_builder.canopy(2), 5, 0, tree_builder.proof(0)[:2])


class TestProveLeaf:
    """Tests for leaf proving against the current root."""

    def test_valid_leaf(self, tree_builder) -> None:
        """Test a correct leaf and proof validate."""
        _, tree, _ = load_tree_account(tree_builder.account_data())

        assert tree.prove_leaf(make_leaf(4), tree_builder.proof(4), 4) is True

    def test_flipped_leaf_byte(self, tree_builder) -> None:
        """Test changing one byte of the leaf fails validation."""
        _, tree, _ = load_tree_account(tree_builder.account_data())
        leaf = bytearray(make_leaf(4))
        leaf[0] ^= 0x01

        assert tree.prove_leaf(bytes(leaf), tree_builder.proof(4), 4) is False

    def test_deterministic(self, tree_builder) -> None:
        """Test repeated validation gives the same answer."""
        _, tree, _ = load_tree_account(tree_builder.account_data())
        proof = tree_builder.proof(2)

        results = {tree.prove_leaf(make_leaf(2), proof, 2) for _ in range(5)}

        assert results == {True}

    def test_index_outside_tree(self, tree_builder) -> None:
        """Test an index beyond 2^depth is a structural error."""
        _, tree, _ = load_tree_account(tree_builder.account_data())

        with pytest.raises(LeafIndexOutOfBoundsError):
            tree.prove_leaf(make_leaf(0), tree_builder.proof(0), 32)

    def test_index_past_rightmost(self, tree_builder) -> None:
        """Test an index past the last appended leaf is rejected."""
        _, tree, _ = load_tree_account(tree_builder.account_data())

        with pytest.raises(LeafIndexOutOfBoundsError):
            tree.prove_leaf(EMPTY_NODE, tree_builder.proof(10), 10)

    def test_wrong_proof_length(self, tree_builder) -> None:
        """Test a proof of the wrong length is rejected."""
        _, tree, _ = load_tree_account(tree_builder.account_data())

        with pytest.raises(ProofLengthError):
            tree.prove_leaf(make_leaf(0), tree_builder.proof(0)[:4], 0)

    def test_stale_proof_fast_forwarded(self, tree_builder) -> None:
        """Test a proof against an older root is advanced through the changelog."""
        old_root = tree_builder.root()
        old_proof = tree_builder.proof(1)
        tree_builder.append(make_leaf(6))
        tree_builder.set_leaf(3, make_leaf(33))
        _, tree, _ = load_tree_account(tree_builder.account_data())

        assert tree.prove_leaf(make_leaf(1), old_proof, 1) is False
        assert tree.prove_leaf(make_leaf(1), old_proof, 1, proof_root=old_root) is True

    def test_modified_leaf_rejected(self, tree_builder) -> None:
        """Test a later change at the same index rejects the old leaf."""
        old_root = tree_builder.root()
        old_proof = tree_builder.proof(2)
        tree_builder.set_leaf(2, make_leaf(22))
        _, tree, _ = load_tree_account(tree_builder.account_data())

        assert tree.prove_leaf(make_leaf(2), old_proof, 2, proof_root=old_root) is False
        assert tree.prove_leaf(b"\x07" * 32, old_proof, 2, proof_root=old_root) is False

    def test_rewrite_with_same_leaf_accepted(self, tree_builder) -> None:
        """Test rewriting a leaf with identical contents keeps it provable."""
        old_root = tree_builder.root()
        old_proof = tree_builder.proof(2)
        tree_builder.set_leaf(2, make_leaf(2))
        tree_builder.append(make_leaf(6))
        _, tree, _ = load_tree_account(tree_builder.account_data())

        assert tree.prove_leaf(make_leaf(2), old_proof, 2, proof_root=old_root) is True

    def test_evicted_root_not_fast_forwarded(self) -> None:
        """Test a root pushed out of the changelog buffer is not used."""
        builder = TreeBuilder(max_depth=3, max_buffer_size=8)
        builder.append(make_leaf(0))
        old_root = builder.root()
        old_proof = builder.proof(0)
        for n in range(1, 8):
            builder.append(make_leaf(n))
        builder.set_leaf(7, make_leaf(70))
        builder.set_leaf(6, make_leaf(60))
        _, tree, _ = load_tree_account(builder.account_data(canopy_depth=0))

        assert tree.find_root(old_root) is None
        assert tree.prove_leaf(make_leaf(0), old_proof, 0, proof_root=old_root) is False
        assert tree.prove_leaf(make_leaf(0), builder.proof(0), 0) is True
