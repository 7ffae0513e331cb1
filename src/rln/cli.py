"""RLN CLI — command-line demonstration of the anti-spam engine.

Usage:
    rln setup --names alice bob charlie
    rln register --name dave --stake 2.5
    rln list-identities
    rln post-message --name alice --message "hello"
    rln post-message --name alice --message "spam" --message-id 0
    rln list-messages --epoch 480000
    rln verify-message --index 0
    rln detect-spam
    rln slash --nullifier 0x...
    rln stats
    rln status

State lives in the data directory: events.jsonl (replayed on every run),
identities.json (local secrets) and messages.jsonl (posted texts with
their statements and proofs).
"""

from __future__ import annotations

import argparse
import dataclasses
import json
import logging
import sys
from collections import Counter
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Any, Optional, Union

from rln.config import RLNConfig
from rln.crypto.epoch import epoch_start
from rln.crypto.field import FieldElement
from rln.errors import RLNError
from rln.models.identity import Identity
from rln.models.share import Statement
from rln.persistence.event_log import EventLog
from rln.persistence.identity_store import IdentityStore
from rln.proof.oracle import DigestProofOracle
from rln.service import RLNService


DEFAULT_NAMES = ["alice", "bob", "charlie"]

logger = logging.getLogger(__name__)


def _load_config(args: argparse.Namespace) -> RLNConfig:
    if args.config is not None:
        config = RLNConfig.from_file(args.config)
    else:
        config = RLNConfig.from_env()
    if args.data_dir is not None:
        config = dataclasses.replace(config, data_dir=args.data_dir)
    return config


def _make_service(args: argparse.Namespace) -> tuple[RLNService, IdentityStore, DigestProofOracle]:
    """Rebuild the service from the data directory's event log."""
    config = _load_config(args)
    config.data_dir.mkdir(parents=True, exist_ok=True)
    oracle = DigestProofOracle()
    event_log = EventLog(storage_path=config.data_dir / "events.jsonl")
    service = RLNService.replay(config, oracle, event_log)
    store = IdentityStore(config.data_dir / "identities.json", service.hasher)
    return service, store, oracle


def _messages_path(service: RLNService) -> Path:
    return service.config.data_dir / "messages.jsonl"


def _read_messages(service: RLNService) -> list[dict[str, Any]]:
    path = _messages_path(service)
    if not path.exists():
        return []
    with path.open("r", encoding="utf-8") as fh:
        return [json.loads(line) for line in fh if line.strip()]


def _append_message(service: RLNService, record: dict[str, Any]) -> None:
    with _messages_path(service).open("a", encoding="utf-8") as fh:
        fh.write(json.dumps(record, sort_keys=True) + "\n")


def _register(
    service: RLNService, store: IdentityStore, name: str, stake: Union[Decimal, str],
) -> int:
    if store.get(name) is not None:
        print(f"Identity already exists: {name}", file=sys.stderr)
        return 1
    identity = Identity.generate(service.hasher)
    result = service.register_identity(identity.commitment, stake)
    if not result.success:
        print(f"Failed to register {name}: {'; '.join(result.errors)}", file=sys.stderr)
        return 1
    store.add(name, identity)
    print(f"Created identity: {name}")
    print(f"   Index: {result.data['index']}")
    print(f"   Commitment: {result.data['commitment'].to_hex()}")
    return 0


def cmd_setup(args: argparse.Namespace) -> int:
    service, store, _ = _make_service(args)
    stake = service.config.min_stake
    failures = 0
    for name in args.names:
        if store.get(name) is not None:
            print(f"Skipping existing identity: {name}")
            continue
        failures += _register(service, store, name, stake)
    print(f"\nMerkle tree root: {service.root().to_hex()}")
    return 1 if failures else 0


def cmd_register(args: argparse.Namespace) -> int:
    service, store, _ = _make_service(args)
    stake = args.stake if args.stake is not None else service.config.min_stake
    return _register(service, store, args.name, stake)


def cmd_list_identities(args: argparse.Namespace) -> int:
    service, store, _ = _make_service(args)
    registrations = service.registrations()
    if not registrations:
        print("No identities found. Run: rln setup")
        return 0
    for registration in registrations:
        name = store.name_for(registration.commitment) or "(external)"
        print(f"[{registration.leaf_index}] {name} ({registration.state.value})")
        print(f"    Commitment: {registration.commitment.to_hex()}")
        print(f"    Stake: {registration.stake}")
    return 0


def cmd_post_message(args: argparse.Namespace) -> int:
    service, store, oracle = _make_service(args)
    identity = store.get(args.name)
    if identity is None:
        print(f"Unknown identity: {args.name}", file=sys.stderr)
        return 1

    try:
        prepared = service.prepare_message(
            identity, args.message, message_id=args.message_id, epoch=args.epoch,
        )
    except (ValueError, RLNError) as e:
        print(f"Failed: {e}", file=sys.stderr)
        return 1

    proof = oracle.prove(prepared.statement)
    result = service.post_message(prepared.statement, proof, message_id=args.message_id)
    status = result.data.get("status", "rejected")
    _append_message(service, {
        "name": args.name,
        "text": args.message,
        "epoch": prepared.epoch,
        "message_id": args.message_id,
        "nullifier": prepared.share.nullifier.to_hex(),
        "status": status,
        "statement": [v.to_hex() for v in prepared.statement.public_inputs()],
        "proof": proof,
        "timestamp": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
    })

    print(f"Identity: {args.name}")
    print(f"Epoch: {prepared.epoch}")
    print(f"Nullifier: {prepared.share.nullifier.to_hex()}")
    if result.success:
        print("Message accepted.")
        return 0
    if result.data.get("collision"):
        print("SPAM DETECTED: nullifier reused with a different message.")
        print("Run: rln detect-spam")
    print(f"Rejected ({result.data.get('reason')}): {'; '.join(result.errors)}", file=sys.stderr)
    return 1


def cmd_list_messages(args: argparse.Namespace) -> int:
    service, _, _ = _make_service(args)
    messages = _read_messages(service)
    if args.epoch is not None:
        messages = [m for m in messages if m["epoch"] == args.epoch]
    if not messages:
        print("No messages found.")
        return 0
    for i, msg in enumerate(messages):
        started = epoch_start(msg["epoch"], service.config.epoch_length)
        print(
            f"[{i}] {msg['name']} (epoch {msg['epoch']} from "
            f"{started:%Y-%m-%d %H:%M} UTC, {msg['status']})"
        )
        print(f"    {msg['text']!r}")
        print(f"    Nullifier: {msg['nullifier']}")
    print(f"Total messages: {len(messages)}")
    return 0


def cmd_verify_message(args: argparse.Namespace) -> int:
    service, _, oracle = _make_service(args)
    messages = _read_messages(service)
    if not 0 <= args.index < len(messages):
        print(f"Invalid message index: {args.index}", file=sys.stderr)
        return 1
    msg = messages[args.index]
    if "statement" not in msg:
        print(f"Message {args.index} has no stored proof", file=sys.stderr)
        return 1

    statement = Statement.from_public_inputs(msg["statement"])
    print(f"Message: {msg['text']!r}")
    print(f"Identity: {msg['name']}")
    print(f"Epoch: {msg['epoch']}")
    try:
        valid = oracle.verify(statement, msg.get("proof"))
    except RLNError as e:
        print(f"Verification failed: {e}", file=sys.stderr)
        return 1

    print(f"Proof verification: {'VALID' if valid else 'INVALID'}")
    print(f"   Known merkle root: {'yes' if service.is_known_root(statement.root) else 'no'}")
    print(f"   Nullifier recorded: {'yes' if service.is_nullifier_used(statement.nullifier) else 'no'}")
    return 0 if valid else 1


def cmd_detect_spam(args: argparse.Namespace) -> int:
    service, _, _ = _make_service(args)
    evidence = service.pending_evidence()
    if not evidence:
        print("No spam detected. All nullifiers are unique per epoch.")
        return 0
    for item in evidence:
        print(f"SPAM DETECTED in epoch {item.epoch}")
        print(f"   Nullifier: {item.nullifier.to_hex()}")
        print(f"   Signal hashes: {item.first.signal_hash.to_hex()}, {item.second.signal_hash.to_hex()}")
        print(f"   Slash with: rln slash --nullifier {item.nullifier.to_hex()}")
    return 0


def cmd_slash(args: argparse.Namespace) -> int:
    service, store, _ = _make_service(args)
    try:
        nullifier = FieldElement.parse(args.nullifier)
    except ValueError as e:
        print(f"Invalid nullifier: {e}", file=sys.stderr)
        return 1
    result = service.slash_evidence(nullifier)
    if not result.success:
        print(f"Failed ({result.data.get('reason')}): {'; '.join(result.errors)}", file=sys.stderr)
        return 1
    commitment = result.data["commitment"]
    name = store.name_for(commitment) or "(external)"
    print(f"Slashed {name} at leaf {result.data['leaf_index']}")
    print(f"   Commitment: {commitment.to_hex()}")
    print(f"   Forfeited stake: {result.data['forfeited']}")
    return 0


def cmd_stats(args: argparse.Namespace) -> int:
    service, store, _ = _make_service(args)
    messages = _read_messages(service)
    print("RLN System Statistics")
    print(f"   Identities: {len(service.registrations())} ({len(store)} local)")
    print(f"   Messages: {len(messages)}")
    print(f"   Accepted nullifiers: {len(service.entries())}")

    per_epoch = Counter(entry.epoch for entry in service.entries())
    if per_epoch:
        print("Accepted per epoch:")
        for epoch, count in sorted(per_epoch.items()):
            print(f"   Epoch {epoch}: {count}")
    per_name = Counter(m["name"] for m in messages)
    if per_name:
        print("Messages per identity:")
        for name, count in sorted(per_name.items()):
            print(f"   {name}: {count}")

    print("Configuration:")
    print(f"   Epoch length: {service.config.epoch_length} seconds")
    print(f"   App ID: {service.config.app_id}")
    print(f"   Data directory: {service.config.data_dir}")
    return 0


def cmd_status(args: argparse.Namespace) -> int:
    service, _, _ = _make_service(args)
    print(json.dumps(service.status(), indent=2))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="rln",
        description="Rate-Limiting Nullifier anti-spam engine",
    )
    parser.add_argument("--config", type=Path, help="JSON config file (default: RLN_* environment)")
    parser.add_argument("--data-dir", type=Path, help="Data directory (overrides config)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")

    sub = parser.add_subparsers(dest="command")

    p_setup = sub.add_parser("setup", help="Create and register sample identities")
    p_setup.add_argument("--names", nargs="+", default=DEFAULT_NAMES, help="Identity names")

    p_reg = sub.add_parser("register", help="Create and register one identity")
    p_reg.add_argument("--name", required=True, help="Identity name")
    p_reg.add_argument("--stake", help="Stake amount (default: configured minimum)")

    sub.add_parser("list-identities", help="List registered identities")

    p_post = sub.add_parser("post-message", help="Post a message with an RLN share")
    p_post.add_argument("--name", required=True, help="Identity name")
    p_post.add_argument("--message", required=True, help="Message text")
    p_post.add_argument("--message-id", type=int, default=0, help="Message slot (default: 0)")
    p_post.add_argument("--epoch", type=int, help="Epoch (default: current)")

    p_list = sub.add_parser("list-messages", help="List posted messages")
    p_list.add_argument("--epoch", type=int, help="Filter by epoch")

    p_verify = sub.add_parser("verify-message", help="Re-verify a stored message proof")
    p_verify.add_argument("--index", "-i", type=int, required=True, help="Message index")

    sub.add_parser("detect-spam", help="Show collisions awaiting slashing")

    p_slash = sub.add_parser("slash", help="Slash the identity behind a collision")
    p_slash.add_argument("--nullifier", required=True, help="Colliding nullifier (hex)")

    sub.add_parser("stats", help="Show message statistics")
    sub.add_parser("status", help="Show engine status as JSON")

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command is None:
        parser.print_help()
        return 0

    commands = {
        "setup": cmd_setup,
        "register": cmd_register,
        "list-identities": cmd_list_identities,
        "post-message": cmd_post_message,
        "list-messages": cmd_list_messages,
        "verify-message": cmd_verify_message,
        "detect-spam": cmd_detect_spam,
        "slash": cmd_slash,
        "stats": cmd_stats,
        "status": cmd_status,
    }

    handler = commands.get(args.command)
    if handler is None:
        print(f"Unknown command: {args.command}", file=sys.stderr)
        return 1

    try:
        return handler(args)
    except (ValueError, RLNError) as e:
        logger.debug("Command %s failed", args.command, exc_info=True)
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
