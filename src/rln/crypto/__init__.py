"""Cryptographic primitives — field arithmetic, field hash, commitment tree, epochs."""

from rln.crypto.field import FIELD_MODULUS, FieldElement
from rln.crypto.hasher import FieldHasher, Sha256FieldHasher, hash_bytes
from rln.crypto.merkle import CommitmentTree, MerkleProof, verify_merkle_proof
from rln.crypto.epoch import epoch_for, external_nullifier

__all__ = [
    "FIELD_MODULUS",
    "FieldElement",
    "FieldHasher",
    "Sha256FieldHasher",
    "hash_bytes",
    "CommitmentTree",
    "MerkleProof",
    "verify_merkle_proof",
    "epoch_for",
    "external_nullifier",
]
