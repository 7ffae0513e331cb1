"""Fixed-depth, append-only commitment tree over field elements.

Leaves are identity commitments in registration order (no sorting: the
leaf index is part of each member's proof). Missing nodes are filled with
per-level zero values:

    Z[0] = empty leaf
    Z[k] = H(Z[k-1], Z[k-1])

An odd trailing node at level L is paired with Z[L], never with itself,
so a leaf's proof stays valid however many leaves are appended later.

Inserts are incremental: only the new leaf's path is rehashed, O(depth).
Every root the tree has ever had is remembered so that proofs built
against an older root are still recognised.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass

from rln.crypto.field import FieldElement
from rln.crypto.hasher import FieldHasher
from rln.errors import CapacityExceeded

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MerkleProof:
    """An inclusion proof for a single leaf.

    directions[i] is 0 when the path node at level i is a left child
    (sibling on the right) and 1 when it is a right child.
    """
    leaf: FieldElement
    index: int
    siblings: tuple[FieldElement, ...]
    directions: tuple[int, ...]
    root: FieldElement

    @property
    def depth(self) -> int:
        return len(self.siblings)


class CommitmentTree:
    """An incremental Merkle tree of fixed depth.

    Usage:
        tree = CommitmentTree(depth=20, hasher=Sha256FieldHasher())
        index = tree.insert(commitment)
        proof = tree.proof(index)
        assert verify_merkle_proof(commitment, proof, hasher)
    """

    def __init__(
        self,
        depth: int,
        hasher: FieldHasher,
        empty_leaf: FieldElement | None = None,
    ) -> None:
        if depth < 1:
            raise ValueError("Tree depth must be at least 1")
        self._depth = depth
        self._hasher = hasher
        self._lock = threading.Lock()

        zero = empty_leaf if empty_leaf is not None else FieldElement.zero()
        self._zeros: list[FieldElement] = [zero]
        for _ in range(depth):
            self._zeros.append(hasher.hash2(self._zeros[-1], self._zeros[-1]))

        # _layers[0] holds leaves, _layers[depth] holds at most the root.
        self._layers: list[list[FieldElement]] = [[] for _ in range(depth + 1)]
        self._known_roots: set[FieldElement] = {self._zeros[depth]}

    @property
    def depth(self) -> int:
        return self._depth

    @property
    def capacity(self) -> int:
        return 1 << self._depth

    @property
    def leaf_count(self) -> int:
        return len(self._layers[0])

    @property
    def zero_values(self) -> tuple[FieldElement, ...]:
        return tuple(self._zeros)

    def leaves(self) -> list[FieldElement]:
        return list(self._layers[0])

    def root(self) -> FieldElement:
        """Current root; the all-zero root when the tree is empty."""
        top = self._layers[self._depth]
        return top[0] if top else self._zeros[self._depth]

    def insert(self, leaf: FieldElement) -> int:
        """Append a leaf and return its index.

        Raises CapacityExceeded (tree unchanged) when all 2^depth leaves
        are taken.
        """
        with self._lock:
            index = len(self._layers[0])
            if index >= self.capacity:
                raise CapacityExceeded(self.capacity)

            self._layers[0].append(leaf)
            node_index = index
            for level in range(self._depth):
                layer = self._layers[level]
                left_index = node_index & ~1
                left = layer[left_index]
                right = (
                    layer[left_index + 1]
                    if left_index + 1 < len(layer)
                    else self._zeros[level]
                )
                parent = self._hasher.hash2(left, right)
                node_index >>= 1
                upper = self._layers[level + 1]
                if node_index < len(upper):
                    upper[node_index] = parent
                else:
                    upper.append(parent)

            root = self._layers[self._depth][0]
            self._known_roots.add(root)
            logger.debug("Inserted leaf %d, root %s", index, root.to_hex())
            return index

    def proof(self, index: int) -> MerkleProof:
        """Build the inclusion proof for the leaf at ``index``."""
        if index < 0 or index >= self.leaf_count:
            raise IndexError(
                f"Leaf index {index} out of range (leaf count {self.leaf_count})"
            )

        siblings: list[FieldElement] = []
        directions: list[int] = []
        node_index = index
        for level in range(self._depth):
            layer = self._layers[level]
            sibling_index = node_index ^ 1
            if sibling_index < len(layer):
                siblings.append(layer[sibling_index])
            else:
                siblings.append(self._zeros[level])
            directions.append(node_index & 1)
            node_index >>= 1

        return MerkleProof(
            leaf=self._layers[0][index],
            index=index,
            siblings=tuple(siblings),
            directions=tuple(directions),
            root=self.root(),
        )

    def is_known_root(self, root: FieldElement) -> bool:
        """True if the tree has ever had this root (including the empty root)."""
        return root in self._known_roots


def compute_root_from_proof(
    leaf: FieldElement,
    siblings: tuple[FieldElement, ...],
    directions: tuple[int, ...],
    hasher: FieldHasher,
) -> FieldElement:
    """Re-derive the root from a leaf and its sibling path."""
    if len(siblings) != len(directions):
        raise ValueError("siblings and directions must have the same length")
    node = leaf
    for sibling, direction in zip(siblings, directions):
        if direction == 0:
            node = hasher.hash2(node, sibling)
        elif direction == 1:
            node = hasher.hash2(sibling, node)
        else:
            raise ValueError(f"direction must be 0 or 1, got {direction}")
    return node


def verify_merkle_proof(
    leaf: FieldElement,
    proof: MerkleProof,
    hasher: FieldHasher,
) -> bool:
    """Check that ``leaf`` with ``proof``'s path hashes to ``proof.root``."""
    return compute_root_from_proof(leaf, proof.siblings, proof.directions, hasher) == proof.root
