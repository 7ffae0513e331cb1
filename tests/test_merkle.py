"""Tests for the incremental commitment tree."""

import threading

import pytest

from rln.crypto.field import FieldElement
from rln.crypto.hasher import Sha256FieldHasher
from rln.crypto.merkle import (
    CommitmentTree,
    compute_root_from_proof,
    verify_merkle_proof,
)
from rln.errors import CapacityExceeded


def _leaf(n: int) -> FieldElement:
    return Sha256FieldHasher().hash1(FieldElement(n + 1))


def _naive_root(leaves: list[FieldElement], depth: int, hasher: Sha256FieldHasher) -> FieldElement:
    """Full rebuild: pad to 2^depth with zero leaves and hash pairwise."""
    layer = leaves + [FieldElement.zero()] * ((1 << depth) - len(leaves))
    for _ in range(depth):
        layer = [hasher.hash2(layer[i], layer[i + 1]) for i in range(0, len(layer), 2)]
    return layer[0]


class TestCommitmentTree:
    def test_empty_root_is_top_zero(self) -> None:
        h = Sha256FieldHasher()
        tree = CommitmentTree(depth=4, hasher=h)
        zeros = tree.zero_values
        assert len(zeros) == 5
        assert zeros[0] == FieldElement.zero()
        assert zeros[1] == h.hash2(zeros[0], zeros[0])
        assert tree.root() == zeros[4]
        assert tree.is_known_root(zeros[4])

    def test_custom_empty_leaf(self) -> None:
        h = Sha256FieldHasher()
        tree = CommitmentTree(depth=2, hasher=h, empty_leaf=FieldElement(7))
        assert tree.zero_values[0] == FieldElement(7)

    def test_insert_returns_sequential_indices(self) -> None:
        tree = CommitmentTree(depth=3, hasher=Sha256FieldHasher())
        assert [tree.insert(_leaf(i)) for i in range(5)] == [0, 1, 2, 3, 4]
        assert tree.leaf_count == 5
        assert tree.leaves() == [_leaf(i) for i in range(5)]

    def test_incremental_root_matches_full_rebuild(self) -> None:
        h = Sha256FieldHasher()
        tree = CommitmentTree(depth=4, hasher=h)
        leaves = []
        for i in range(11):
            leaves.append(_leaf(i))
            tree.insert(leaves[-1])
            assert tree.root() == _naive_root(leaves, 4, h)

    def test_proof_round_trip_for_every_leaf(self) -> None:
        h = Sha256FieldHasher()
        tree = CommitmentTree(depth=3, hasher=h)
        for i in range(6):
            tree.insert(_leaf(i))
        for i in range(6):
            proof = tree.proof(i)
            assert proof.depth == 3
            assert proof.leaf == _leaf(i)
            assert proof.root == tree.root()
            assert verify_merkle_proof(_leaf(i), proof, h)

    def test_proof_rejects_wrong_leaf(self) -> None:
        h = Sha256FieldHasher()
        tree = CommitmentTree(depth=3, hasher=h)
        tree.insert(_leaf(0))
        tree.insert(_leaf(1))
        assert not verify_merkle_proof(_leaf(1), tree.proof(0), h)

    def test_odd_trailing_node_pairs_with_zero(self) -> None:
        h = Sha256FieldHasher()
        tree = CommitmentTree(depth=2, hasher=h)
        tree.insert(_leaf(0))
        proof = tree.proof(0)
        assert proof.siblings[0] == tree.zero_values[0]
        assert proof.siblings[1] == tree.zero_values[1]
        assert proof.directions == (0, 0)

    def test_proof_index_out_of_range(self) -> None:
        tree = CommitmentTree(depth=2, hasher=Sha256FieldHasher())
        tree.insert(_leaf(0))
        with pytest.raises(IndexError):
            tree.proof(1)
        with pytest.raises(IndexError):
            tree.proof(-1)

    def test_capacity_exceeded(self) -> None:
        depth = 3
        tree = CommitmentTree(depth=depth, hasher=Sha256FieldHasher())
        for i in range(2 ** depth):
            tree.insert(_leaf(i))
        root = tree.root()
        with pytest.raises(CapacityExceeded):
            tree.insert(_leaf(99))
        assert tree.leaf_count == 2 ** depth
        assert tree.root() == root

    def test_historical_roots_remain_known(self) -> None:
        tree = CommitmentTree(depth=3, hasher=Sha256FieldHasher())
        tree.insert(_leaf(0))
        old_root = tree.root()
        tree.insert(_leaf(1))
        assert tree.root() != old_root
        assert tree.is_known_root(old_root)
        assert not tree.is_known_root(FieldElement(12345))

    def test_old_proof_still_verifies_against_old_root(self) -> None:
        h = Sha256FieldHasher()
        tree = CommitmentTree(depth=3, hasher=h)
        tree.insert(_leaf(0))
        old_proof = tree.proof(0)
        tree.insert(_leaf(1))
        assert verify_merkle_proof(_leaf(0), old_proof, h)
        assert tree.is_known_root(old_proof.root)

    def test_depth_must_be_positive(self) -> None:
        with pytest.raises(ValueError):
            CommitmentTree(depth=0, hasher=Sha256FieldHasher())

    def test_concurrent_inserts_get_distinct_indices(self) -> None:
        h = Sha256FieldHasher()
        tree = CommitmentTree(depth=6, hasher=h)
        indices: list[int] = []
        lock = threading.Lock()

        def worker(offset: int) -> None:
            for i in range(8):
                index = tree.insert(_leaf(offset * 8 + i))
                with lock:
                    indices.append(index)

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sorted(indices) == list(range(32))
        assert tree.root() == _naive_root(tree.leaves(), 6, h)


class TestComputeRoot:
    def test_bad_direction(self) -> None:
        h = Sha256FieldHasher()
        with pytest.raises(ValueError):
            compute_root_from_proof(FieldElement(1), (FieldElement(2),), (2,), h)

    def test_length_mismatch(self) -> None:
        h = Sha256FieldHasher()
        with pytest.raises(ValueError):
            compute_root_from_proof(FieldElement(1), (FieldElement(2),), (0, 1), h)
