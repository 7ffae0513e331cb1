"""Proof oracle boundary."""

from rln.proof.oracle import DigestProofOracle, ProofOracle, SnarkjsProofOracle

__all__ = ["DigestProofOracle", "ProofOracle", "SnarkjsProofOracle"]
