"""RLN service — the host-facing facade over the protocol engine.

One RLNService owns one set of protocol state:
- the commitment tree (membership),
- the membership registry (stakes, slashed flags),
- the rate-limit ledger (nullifiers per epoch),
- collision evidence waiting to be slashed,
and an optional append-only event log recording every state change.

Host operations return ServiceResult; component errors (RLNError
subclasses) are converted into failed results carrying the error code in
data["reason"]. Client helpers (prepare_message, external_nullifier) raise
instead, since they are called by the publisher's own code.

Writes follow a fixed order: validate everything first, append the event
second, mutate state last. A failed log append leaves state untouched.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Optional, Union

from rln.config import RLNConfig
from rln.crypto.epoch import epoch_for, external_nullifier
from rln.crypto.field import FieldElement
from rln.crypto.hasher import FieldHasher, Sha256FieldHasher
from rln.crypto.merkle import CommitmentTree, MerkleProof
from rln.engine.ledger import RateLimitLedger
from rln.engine.recovery import derive_slope, recover_secret
from rln.engine.share_engine import ShareEngine
from rln.errors import (
    CapacityExceeded,
    DuplicateNullifier,
    EpochOutOfRange,
    NonRecoverable,
    OracleUnavailable,
    RLNError,
    UnknownIdentity,
    UnknownRoot,
)
from rln.models.identity import Identity, Registration
from rln.models.share import LedgerEntry, Share, SlashingEvidence, Statement
from rln.persistence.event_log import EventKind, EventLog, EventRecord
from rln.proof.oracle import ProofOracle
from rln.staking.registry import MembershipRegistry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ServiceResult:
    """Result of a service operation."""
    success: bool
    errors: list[str] = field(default_factory=list)
    data: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class PreparedMessage:
    """Everything a publisher needs to send one signal.

    The proof itself comes from the external prover, fed with the
    statement, the share's secret inputs and merkle_proof.
    """
    epoch: int
    share: Share
    statement: Statement
    merkle_proof: MerkleProof


class RLNService:
    """Rate-limiting nullifier engine facade.

    Usage:
        service = RLNService(RLNConfig(), DigestProofOracle())
        identity = Identity.generate(service.hasher)
        service.register_identity(identity.commitment, Decimal("1"))

        prepared = service.prepare_message(identity, "hello")
        proof = oracle.prove(prepared.statement)
        result = service.post_message(prepared.statement, proof)
    """

    def __init__(
        self,
        config: RLNConfig,
        oracle: ProofOracle,
        hasher: Optional[FieldHasher] = None,
        event_log: Optional[EventLog] = None,
    ) -> None:
        self._config = config
        self._oracle = oracle
        self._hasher = hasher or Sha256FieldHasher()
        circuit_hash = getattr(oracle, "circuit_hash", None)
        hasher_name = getattr(self._hasher, "name", type(self._hasher).__name__)
        if circuit_hash is not None and circuit_hash != hasher_name:
            raise ValueError(
                f"Proof oracle expects {circuit_hash!r} hashing but the engine uses {hasher_name!r}"
            )
        self._event_log = event_log
        self._lock = threading.RLock()

        self._tree = CommitmentTree(
            config.tree_depth, self._hasher, FieldElement(config.empty_leaf),
        )
        self._registry = MembershipRegistry(min_stake=config.min_stake)
        self._ledger = RateLimitLedger()
        self._engine = ShareEngine(self._hasher, config.share_variant)
        self._evidence: dict[FieldElement, SlashingEvidence] = {}

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def config(self) -> RLNConfig:
        return self._config

    @property
    def hasher(self) -> FieldHasher:
        return self._hasher

    @property
    def engine(self) -> ShareEngine:
        return self._engine

    @property
    def event_log(self) -> Optional[EventLog]:
        return self._event_log

    def root(self) -> FieldElement:
        return self._tree.root()

    def is_known_root(self, root: FieldElement) -> bool:
        return self._tree.is_known_root(root)

    def current_epoch(self, now: Optional[datetime] = None) -> int:
        return epoch_for(now, self._config.epoch_length)

    def external_nullifier(self, epoch: int) -> FieldElement:
        return external_nullifier(self._hasher, epoch, self._config.app_id)

    def get_registration(self, commitment: FieldElement) -> Optional[Registration]:
        return self._registry.get(commitment)

    def registrations(self) -> list[Registration]:
        return self._registry.registrations()

    # ------------------------------------------------------------------
    # Membership
    # ------------------------------------------------------------------

    def register_identity(
        self,
        commitment: FieldElement,
        stake: Union[Decimal, int, str],
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        """Stake against a commitment and append it to the tree."""
        if now is None:
            now = datetime.now(timezone.utc)
        try:
            stake = _to_decimal(stake)
        except ValueError as e:
            return ServiceResult(success=False, errors=[str(e)], data={"reason": "invalid_stake"})

        with self._lock:
            try:
                self._registry.check_stake(commitment, stake)
                if self._tree.leaf_count >= self._tree.capacity:
                    raise CapacityExceeded(self._tree.capacity)
            except RLNError as e:
                logger.warning("Registration rejected (%s): %s", e.code, e)
                return _failure(e)

            index = self._tree.leaf_count
            log_error = self._record_event(
                EventKind.IDENTITY_REGISTERED,
                commitment.to_hex(),
                {"commitment": commitment.to_hex(), "index": index, "stake": str(stake)},
                now,
            )
            if log_error:
                return ServiceResult(success=False, errors=[log_error])

            self._tree.insert(commitment)
            self._registry.register(commitment, index, stake, now=now)
            root = self._tree.root()

        logger.info("Registered commitment %s at leaf %d", commitment.to_hex(), index)
        return ServiceResult(
            success=True,
            data={"index": index, "commitment": commitment, "root": root},
        )

    # ------------------------------------------------------------------
    # Publishing
    # ------------------------------------------------------------------

    def post_message(
        self,
        statement: Statement,
        proof: Any,
        message_id: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        """Judge one signal and record its nullifier if accepted.

        Checks, in order: the external nullifier belongs to this app and
        an epoch inside the tolerance window; the root is one the tree
        has had; then the ledger decides (duplicate before proof
        verdict). Every duplicate is rejected. A proven duplicate with a
        different signal hash is a collision; its two shares are kept as
        slashing evidence once they trace back to a registered member.
        """
        if now is None:
            now = datetime.now(timezone.utc)
        share = statement.to_share(message_id)

        try:
            epoch = self._resolve_epoch(statement.external_nullifier, now)
            if not self._tree.is_known_root(statement.root):
                raise UnknownRoot(f"Unknown merkle root: {statement.root.to_hex()}")
        except RLNError as e:
            return self._reject(share, e, now)

        try:
            verdict = bool(self._oracle.verify(statement, proof))
        except OracleUnavailable as e:
            return self._reject(share, e, now, epoch=epoch)

        with self._lock:
            if verdict and not self._ledger.is_nullifier_used(share.nullifier):
                log_error = self._record_event(
                    EventKind.MESSAGE_ACCEPTED,
                    share.nullifier.to_hex(),
                    {"epoch": epoch, "root": statement.root.to_hex(), "share": share.to_dict()},
                    now,
                )
                if log_error:
                    return ServiceResult(success=False, errors=[log_error])
            try:
                entry = self._ledger.submit(share, verdict, epoch, now=now)
            except DuplicateNullifier as e:
                if verdict and e.is_collision:
                    return self._collision(e, share, epoch, now)
                return self._reject(share, e, now, epoch=epoch)
            except RLNError as e:
                return self._reject(share, e, now, epoch=epoch)

        logger.info(
            "Accepted message in epoch %d (nullifier %s)", epoch, entry.nullifier.to_hex(),
        )
        return ServiceResult(
            success=True,
            data={"status": "accepted", "epoch": epoch, "nullifier": entry.nullifier},
        )

    def prepare_message(
        self,
        identity: Identity,
        signal: Union[bytes, str],
        message_id: int = 0,
        epoch: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> PreparedMessage:
        """Build the share and public statement for a registered identity.

        Raises ValueError when message_id is outside [0, message_limit),
        and UnknownIdentity when the identity is not registered.
        """
        if not 0 <= message_id < self._config.message_limit:
            raise ValueError(
                f"message_id must be in [0, {self._config.message_limit}), got {message_id}"
            )
        registration = self._registry.get(identity.commitment)
        if registration is None:
            raise UnknownIdentity(f"Unknown commitment: {identity.commitment.to_hex()}")
        if epoch is None:
            epoch = self.current_epoch(now)

        share = self._engine.compute_share(
            identity.secret,
            self.external_nullifier(epoch),
            message_id,
            self._engine.hash_signal(signal),
        )
        merkle_proof = self._tree.proof(registration.leaf_index)
        return PreparedMessage(
            epoch=epoch,
            share=share,
            statement=Statement.from_share(share, merkle_proof.root),
            merkle_proof=merkle_proof,
        )

    def get_epoch_entries(self, epoch: int) -> list[FieldElement]:
        return self._ledger.entries_for_epoch(epoch)

    def get_entry(self, nullifier: FieldElement) -> Optional[LedgerEntry]:
        return self._ledger.get(nullifier)

    def entries(self, epoch: Optional[int] = None) -> list[LedgerEntry]:
        if epoch is None:
            return self._ledger.entries()
        return [self._ledger.get(n) for n in self._ledger.entries_for_epoch(epoch)]

    def is_nullifier_used(self, nullifier: FieldElement) -> bool:
        return self._ledger.is_nullifier_used(nullifier)

    # ------------------------------------------------------------------
    # Slashing
    # ------------------------------------------------------------------

    def pending_evidence(self) -> list[SlashingEvidence]:
        with self._lock:
            return list(self._evidence.values())

    def slash(
        self,
        share1: Share,
        share2: Share,
        commitment: FieldElement,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        """Recover the secret behind two colliding shares and slash its stake.

        The recovered secret must hash to ``commitment`` and both shares
        must follow the share rule for that secret; otherwise the shares
        do not incriminate that identity and nothing changes.
        """
        if now is None:
            now = datetime.now(timezone.utc)

        with self._lock:
            try:
                registration = self._registry.check_slashable(commitment)
                secret, slope, message_id = self._trace_line(share1, share2)
                if self._hasher.hash1(secret) != commitment:
                    raise NonRecoverable(
                        f"Recovered secret does not match commitment {commitment.to_hex()}"
                    )
            except RLNError as e:
                logger.warning("Slash rejected (%s): %s", e.code, e)
                return _failure(e)

            log_error = self._record_event(
                EventKind.IDENTITY_SLASHED,
                commitment.to_hex(),
                {
                    "commitment": commitment.to_hex(),
                    "nullifier": share1.nullifier.to_hex(),
                    "leaf_index": registration.leaf_index,
                    "stake": str(registration.stake),
                },
                now,
            )
            if log_error:
                return ServiceResult(success=False, errors=[log_error])

            self._registry.mark_slashed(commitment, now=now)
            self._evidence.pop(share1.nullifier, None)

        logger.info(
            "Slashed commitment %s (leaf %d), forfeited %s",
            commitment.to_hex(), registration.leaf_index, registration.stake,
        )
        return ServiceResult(
            success=True,
            data={
                "commitment": commitment,
                "secret": secret,
                "slope": slope,
                "message_id": message_id,
                "leaf_index": registration.leaf_index,
                "forfeited": registration.stake,
            },
        )

    def slash_evidence(
        self,
        nullifier: FieldElement,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        """Slash the identity behind stored collision evidence.

        The commitment is derived from the recovered secret, so an
        observer only needs the nullifier.
        """
        with self._lock:
            evidence = self._evidence.get(nullifier)
        if evidence is None:
            return _failure(
                NonRecoverable(f"No collision evidence for nullifier {nullifier.to_hex()}")
            )
        try:
            secret = recover_secret(evidence.first, evidence.second)
        except NonRecoverable as e:
            return _failure(e)
        return self.slash(evidence.first, evidence.second, self._hasher.hash1(secret), now=now)

    # ------------------------------------------------------------------
    # Status and reconstruction
    # ------------------------------------------------------------------

    def status(self) -> dict[str, Any]:
        registrations = self._registry.registrations()
        return {
            "app_id": self._config.app_id,
            "share_variant": self._engine.variant.value,
            "hasher": getattr(self._hasher, "name", type(self._hasher).__name__),
            "epoch_length": self._config.epoch_length,
            "current_epoch": self.current_epoch(),
            "message_limit": self._config.message_limit,
            "tree_depth": self._tree.depth,
            "capacity": self._tree.capacity,
            "members": len(registrations),
            "slashed": sum(1 for r in registrations if r.slashed),
            "root": self._tree.root().to_hex(),
            "nullifiers": len(self._ledger),
            "pending_evidence": len(self._evidence),
            "total_staked": str(self._registry.total_staked),
            "total_forfeited": str(self._registry.total_forfeited),
            "events": len(self._event_log) if self._event_log is not None else 0,
        }

    @classmethod
    def replay(
        cls,
        config: RLNConfig,
        oracle: ProofOracle,
        event_log: EventLog,
        hasher: Optional[FieldHasher] = None,
    ) -> RLNService:
        """Rebuild a service from its event log.

        Events are applied in log order without re-verifying proofs; the
        log's integrity check already ran when it was loaded. The returned
        service keeps appending to the same log.
        """
        service = cls(config, oracle, hasher=hasher)
        for event in event_log:
            service._apply(event)
        service._event_log = event_log
        logger.info("Replayed %d events", len(event_log))
        return service

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _resolve_epoch(self, ext: FieldElement, now: datetime) -> int:
        current = self.current_epoch(now)
        tolerance = self._config.epoch_tolerance
        for epoch in range(max(0, current - tolerance), current + tolerance + 1):
            if self.external_nullifier(epoch) == ext:
                return epoch
        raise EpochOutOfRange(
            f"External nullifier {ext.to_hex()} matches no epoch within "
            f"{tolerance} of {current} for app {self._config.app_id!r}",
            current_epoch=current,
        )

    def _trace_line(
        self, share1: Share, share2: Share,
    ) -> tuple[FieldElement, FieldElement, int]:
        """Recover (secret, a1, message_id) behind two colliding shares.

        Both shares must come from the recovered secret under this
        engine's share rule: they agree on a1, and some message slot below
        the limit reproduces both a1 and the nullifier. Raises
        NonRecoverable otherwise.
        """
        if share1.external_nullifier != share2.external_nullifier:
            raise NonRecoverable("Shares belong to different external nullifiers")
        secret = recover_secret(share1, share2)
        slopes = {
            derive_slope(secret, s) for s in (share1, share2) if not s.signal_hash.is_zero()
        }
        if len(slopes) != 1:
            raise NonRecoverable("Shares disagree on the slope of the recovered line")
        slope = slopes.pop()

        ext = share1.external_nullifier
        for message_id in range(self._config.message_limit):
            if (
                self._engine.slope(secret, ext, message_id) == slope
                and self._engine.nullifier(slope, message_id) == share1.nullifier
            ):
                return secret, slope, message_id
        raise NonRecoverable(
            f"Shares on nullifier {share1.nullifier.to_hex()} do not follow the share rule"
        )

    def _collision(
        self,
        error: DuplicateNullifier,
        share: Share,
        epoch: int,
        now: datetime,
    ) -> ServiceResult:
        # Caller holds the lock.
        previous, incoming = error.previous, error.incoming
        evidence = self._evidence.get(previous.nullifier)
        if evidence is None:
            candidate = SlashingEvidence(
                nullifier=previous.nullifier,
                epoch=previous.epoch,
                first=previous.to_share(),
                second=incoming.to_share(),
            )
            try:
                secret, _, _ = self._trace_line(candidate.first, candidate.second)
                if self._registry.get(self._hasher.hash1(secret)) is None:
                    raise UnknownIdentity("Recovered secret matches no registered commitment")
            except RLNError as e:
                logger.warning(
                    "Duplicate on nullifier %s is not slashable: %s",
                    previous.nullifier.to_hex(), e,
                )
                return self._reject(share, error, now, epoch=epoch)

            evidence = candidate
            log_error = self._record_event(
                EventKind.COLLISION_DETECTED,
                previous.nullifier.to_hex(),
                {
                    "epoch": previous.epoch,
                    "first": evidence.first.to_dict(),
                    "second": evidence.second.to_dict(),
                },
                now,
            )
            if log_error:
                return ServiceResult(success=False, errors=[str(error), log_error])
            self._evidence[previous.nullifier] = evidence

        logger.warning(
            "Collision on nullifier %s in epoch %d", previous.nullifier.to_hex(), previous.epoch,
        )
        return ServiceResult(
            success=False,
            errors=[str(error)],
            data={
                "status": "rejected",
                "reason": error.code,
                "collision": True,
                "evidence": evidence,
                "share": share,
            },
        )

    def _reject(
        self,
        share: Share,
        error: RLNError,
        now: datetime,
        epoch: Optional[int] = None,
    ) -> ServiceResult:
        logger.warning("Rejected message (%s): %s", error.code, error)
        errors = [str(error)]
        log_error = self._record_event(
            EventKind.MESSAGE_REJECTED,
            share.nullifier.to_hex(),
            {"reason": error.code, "epoch": epoch, "share": share.to_dict()},
            now,
        )
        if log_error:
            errors.append(log_error)
        data: dict[str, Any] = {"status": "rejected", "reason": error.code, "share": share}
        if isinstance(error, DuplicateNullifier):
            data["collision"] = False
        return ServiceResult(success=False, errors=errors, data=data)

    def _record_event(
        self,
        kind: EventKind,
        subject: str,
        payload: dict[str, Any],
        now: datetime,
    ) -> Optional[str]:
        """Append an event if a log is attached. Returns error string or None."""
        if self._event_log is None:
            return None
        try:
            self._event_log.record(kind, subject, payload, timestamp_utc=now)
        except (ValueError, OSError) as e:
            logger.error("Event log append failed: %s", e)
            return f"Event log failure: {e}"
        return None

    def _apply(self, event: EventRecord) -> None:
        payload = event.payload
        at = event.occurred_at
        if event.kind == EventKind.IDENTITY_REGISTERED:
            commitment = FieldElement.parse(payload["commitment"])
            index = self._tree.insert(commitment)
            if index != payload["index"]:
                raise ValueError(
                    f"Event {event.event_id}: replayed leaf index {index} "
                    f"!= logged {payload['index']}"
                )
            self._registry.register(commitment, index, Decimal(payload["stake"]), now=at)
        elif event.kind == EventKind.MESSAGE_ACCEPTED:
            share = Share.from_dict(payload["share"])
            self._ledger.restore(LedgerEntry(
                nullifier=share.nullifier,
                epoch=payload["epoch"],
                external_nullifier=share.external_nullifier,
                signal_hash=share.signal_hash,
                y=share.y,
                message_id=share.message_id,
                recorded_utc=at,
            ))
        elif event.kind == EventKind.COLLISION_DETECTED:
            first = Share.from_dict(payload["first"])
            self._evidence[first.nullifier] = SlashingEvidence(
                nullifier=first.nullifier,
                epoch=payload["epoch"],
                first=first,
                second=Share.from_dict(payload["second"]),
            )
        elif event.kind == EventKind.IDENTITY_SLASHED:
            self._registry.mark_slashed(FieldElement.parse(payload["commitment"]), now=at)
            self._evidence.pop(FieldElement.parse(payload["nullifier"]), None)
        # MESSAGE_REJECTED events are audit-only.


def _to_decimal(value: Union[Decimal, int, str]) -> Decimal:
    if isinstance(value, Decimal):
        amount = value
    else:
        try:
            amount = Decimal(str(value))
        except InvalidOperation as e:
            raise ValueError(f"Invalid stake amount: {value!r}") from e
    if not amount.is_finite():
        raise ValueError(f"Stake must be a finite amount: {value!r}")
    return amount


def _failure(error: RLNError) -> ServiceResult:
    return ServiceResult(success=False, errors=[str(error)], data={"reason": error.code})
