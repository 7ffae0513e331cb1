"""Append-only event log for the RLN engine.

Each registration, message decision, detected collision and slash is
recorded as an immutable EventRecord. Replaying the log in order through
RLNService.replay rebuilds the tree, the registry and the nullifier ledger
exactly, so the JSONL file is the only state the CLI needs between runs.

Every record carries "sha256:<hex>" over its canonical JSON form. Loading
is fail-closed: a record whose hash no longer matches, or an event ID seen
twice, aborts the load with ValueError.
"""

from __future__ import annotations

import enum
import hashlib
import json
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator, Optional


TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%SZ"


class EventKind(str, enum.Enum):
    IDENTITY_REGISTERED = "identity_registered"
    MESSAGE_ACCEPTED = "message_accepted"
    MESSAGE_REJECTED = "message_rejected"
    COLLISION_DETECTED = "collision_detected"
    IDENTITY_SLASHED = "identity_slashed"


def _record_hash(
    event_id: str,
    kind: str,
    timestamp_utc: str,
    subject: str,
    payload: dict[str, Any],
) -> str:
    body = json.dumps(
        {
            "event_id": event_id,
            "kind": kind,
            "timestamp_utc": timestamp_utc,
            "subject": subject,
            "payload": payload,
        },
        sort_keys=True,
        separators=(",", ":"),
    )
    return "sha256:" + hashlib.sha256(body.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class EventRecord:
    """One immutable engine event.

    subject is the public handle the event concerns (a commitment or a
    nullifier, hex encoded). Identity secrets never appear in events.
    """
    event_id: str
    kind: EventKind
    timestamp_utc: str
    subject: str
    payload: dict[str, Any]
    event_hash: str

    @classmethod
    def create(
        cls,
        event_id: str,
        kind: EventKind,
        subject: str,
        payload: dict[str, Any],
        timestamp_utc: Optional[datetime] = None,
    ) -> EventRecord:
        ts = (timestamp_utc or datetime.now(timezone.utc)).strftime(TIMESTAMP_FORMAT)
        return cls(
            event_id=event_id,
            kind=kind,
            timestamp_utc=ts,
            subject=subject,
            payload=payload,
            event_hash=_record_hash(event_id, kind.value, ts, subject, payload),
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EventRecord:
        return cls(
            event_id=data["event_id"],
            kind=EventKind(data["kind"]),
            timestamp_utc=data["timestamp_utc"],
            subject=data["subject"],
            payload=data["payload"],
            event_hash=data["event_hash"],
        )

    def expected_hash(self) -> str:
        return _record_hash(
            self.event_id, self.kind.value, self.timestamp_utc, self.subject, self.payload,
        )

    def verify(self) -> bool:
        return self.event_hash == self.expected_hash()

    @property
    def occurred_at(self) -> datetime:
        return datetime.strptime(self.timestamp_utc, TIMESTAMP_FORMAT).replace(
            tzinfo=timezone.utc,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_id": self.event_id,
            "kind": self.kind.value,
            "timestamp_utc": self.timestamp_utc,
            "subject": self.subject,
            "payload": self.payload,
            "event_hash": self.event_hash,
        }


class EventLog:
    """Append-only sequence of EventRecords, optionally mirrored to JSONL.

    Records are never rewritten. With a storage path, each append is
    written to disk before it becomes visible in memory.
    """

    def __init__(self, storage_path: Optional[Path] = None) -> None:
        self._storage_path = storage_path
        self._records: list[EventRecord] = []
        self._ids: set[str] = set()
        self._lock = threading.Lock()

        if storage_path is not None and storage_path.exists():
            for record in self._read(storage_path):
                self._records.append(record)
                self._ids.add(record.event_id)

    @property
    def storage_path(self) -> Optional[Path]:
        return self._storage_path

    def next_event_id(self) -> str:
        return f"evt-{len(self._records) + 1:06d}"

    def record(
        self,
        kind: EventKind,
        subject: str,
        payload: dict[str, Any],
        timestamp_utc: Optional[datetime] = None,
    ) -> EventRecord:
        """Create and append a record under the next sequential ID."""
        with self._lock:
            event = EventRecord.create(
                self.next_event_id(), kind, subject, payload, timestamp_utc,
            )
            self._append_locked(event)
        return event

    def events(self, kind: Optional[EventKind] = None) -> list[EventRecord]:
        if kind is None:
            return list(self._records)
        return [r for r in self._records if r.kind == kind]

    def __iter__(self) -> Iterator[EventRecord]:
        return iter(list(self._records))

    def __len__(self) -> int:
        return len(self._records)

    def _append_locked(self, event: EventRecord) -> None:
        if event.event_id in self._ids:
            raise ValueError(f"Duplicate event ID: {event.event_id}")
        if self._storage_path is not None:
            self._storage_path.parent.mkdir(parents=True, exist_ok=True)
            with self._storage_path.open("a", encoding="utf-8") as fh:
                fh.write(json.dumps(event.to_dict(), sort_keys=True) + "\n")
        self._records.append(event)
        self._ids.add(event.event_id)

    @staticmethod
    def _read(path: Path) -> list[EventRecord]:
        records: list[EventRecord] = []
        seen: set[str] = set()
        with path.open("r", encoding="utf-8") as fh:
            for line_num, line in enumerate(fh, 1):
                line = line.strip()
                if not line:
                    continue
                record = EventRecord.from_dict(json.loads(line))
                if record.event_id in seen:
                    raise ValueError(
                        f"Duplicate event ID at line {line_num}: {record.event_id}"
                    )
                if not record.verify():
                    raise ValueError(
                        f"Integrity check failed at line {line_num}: event "
                        f"{record.event_id} stored {record.event_hash}, "
                        f"computed {record.expected_hash()}"
                    )
                seen.add(record.event_id)
                records.append(record)
        return records
