"""Persistence — append-only event log and the CLI identity wallet."""

from rln.persistence.event_log import EventKind, EventLog, EventRecord
from rln.persistence.identity_store import IdentityStore

__all__ = ["EventKind", "EventLog", "EventRecord", "IdentityStore"]
