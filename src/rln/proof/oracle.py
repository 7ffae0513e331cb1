"""Proof oracle adapters — the boundary to the external proving system.

The engine never looks inside a proof. It hands the oracle a Statement
(the five public inputs, in order) and an opaque proof object and takes
the boolean verdict as authoritative.

Two adapters ship with the package:
- DigestProofOracle: a development stand-in. Its "proof" is a SHA-256
  digest of the public inputs, so any tampered input is rejected. It
  proves nothing about membership or secrets and must not guard real
  stake.
- SnarkjsProofOracle: shells out to ``snarkjs groth16 verify`` with a
  verification key from a circuit build.

An oracle that cannot reach a verdict raises OracleUnavailable.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
import shutil
import subprocess
import tempfile
from pathlib import Path
from typing import Any, Optional, Protocol, runtime_checkable

from rln.errors import OracleUnavailable
from rln.models.share import Statement

logger = logging.getLogger(__name__)


@runtime_checkable
class ProofOracle(Protocol):
    """Anything that can judge a proof against a public statement."""

    def verify(self, statement: Statement, proof: Any) -> bool:
        ...


def public_signals(statement: Statement) -> list[str]:
    """Decimal strings of the public inputs, in statement order."""
    return [str(v.value) for v in statement.public_inputs()]


class DigestProofOracle:
    """Development oracle binding a proof to the exact public inputs.

    Usage:
        oracle = DigestProofOracle()
        proof = oracle.prove(statement)
        assert oracle.verify(statement, proof)
    """

    SCHEME = "digest-v1"

    def prove(self, statement: Statement) -> dict[str, str]:
        return {"scheme": self.SCHEME, "digest": self._digest(statement)}

    def verify(self, statement: Statement, proof: Any) -> bool:
        if not isinstance(proof, dict) or proof.get("scheme") != self.SCHEME:
            return False
        digest = proof.get("digest")
        if not isinstance(digest, str):
            return False
        return hmac.compare_digest(digest, self._digest(statement))

    @staticmethod
    def _digest(statement: Statement) -> str:
        canonical = json.dumps(public_signals(statement)).encode("utf-8")
        return hashlib.sha256(canonical).hexdigest()


class SnarkjsProofOracle:
    """Verifies Groth16 proofs with the snarkjs CLI.

    The proof is the snarkjs proof JSON object (pi_a, pi_b, pi_c, ...).

    The circuit recomputes commitments, shares and nullifiers with its own
    hash, so statements only verify when the engine's FieldHasher is the
    same function. ``circuit_hash`` names that function; RLNService refuses
    to pair this oracle with a hasher of another name. The bundled
    Sha256FieldHasher ("sha256-field-v1") does not match the usual
    Poseidon RLN circuit.
    """

    def __init__(
        self,
        verification_key: Path,
        snarkjs: Optional[str] = None,
        timeout_seconds: float = 60.0,
        circuit_hash: str = "poseidon",
    ) -> None:
        self._verification_key = Path(verification_key)
        self._snarkjs = snarkjs
        self._timeout = timeout_seconds
        self.circuit_hash = circuit_hash

    def find_snarkjs(self) -> str:
        if self._snarkjs:
            return self._snarkjs
        candidate = shutil.which("snarkjs")
        if candidate:
            return candidate
        raise OracleUnavailable("snarkjs not found in PATH. Pass snarkjs= explicitly.")

    def verify(self, statement: Statement, proof: Any) -> bool:
        if not self._verification_key.exists():
            raise OracleUnavailable(f"Verification key not found: {self._verification_key}")
        snarkjs = self.find_snarkjs()

        with tempfile.TemporaryDirectory(prefix="rln_verify_") as tmp:
            public_path = Path(tmp) / "public.json"
            proof_path = Path(tmp) / "proof.json"
            public_path.write_text(json.dumps(public_signals(statement)), encoding="utf-8")
            proof_path.write_text(json.dumps(proof), encoding="utf-8")

            try:
                proc = subprocess.run(
                    [
                        snarkjs, "groth16", "verify",
                        str(self._verification_key), str(public_path), str(proof_path),
                    ],
                    capture_output=True,
                    text=True,
                    check=False,
                    timeout=self._timeout,
                )
            except FileNotFoundError as exc:
                raise OracleUnavailable(f"Cannot run snarkjs: {exc}") from exc
            except subprocess.TimeoutExpired as exc:
                raise OracleUnavailable(
                    f"snarkjs did not answer within {self._timeout}s"
                ) from exc

        output = (proc.stdout.strip() + "\n" + proc.stderr.strip()).strip()
        ok = proc.returncode == 0 and "OK" in output
        if not ok:
            logger.warning("snarkjs rejected proof: %s", output.splitlines()[-1:] or "")
        return ok
