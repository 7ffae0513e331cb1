"""Local identity wallet for the CLI.

Identity secrets are the one thing the engine must never hold, so the CLI
keeps them in a separate JSON file under the data directory:

    [{"name": "alice", "secret": "0x...", "type": "RLNIdentity", "version": "1.0"}, ...]

Commitments are recomputed from secrets on load.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Optional

from rln.crypto.field import FieldElement
from rln.crypto.hasher import FieldHasher
from rln.models.identity import Identity


IDENTITY_TYPE = "RLNIdentity"
IDENTITY_VERSION = "1.0"


class IdentityStore:
    """Named identities persisted to a JSON file."""

    def __init__(self, path: Path, hasher: FieldHasher) -> None:
        self._path = path
        self._hasher = hasher
        self._identities: dict[str, Identity] = {}
        if path.exists():
            self._load()

    def add(self, name: str, identity: Identity) -> None:
        if not name:
            raise ValueError("Identity name must be non-empty")
        if name in self._identities:
            raise ValueError(f"Identity name already exists: {name}")
        self._identities[name] = identity
        self._save()

    def get(self, name: str) -> Optional[Identity]:
        return self._identities.get(name)

    def names(self) -> list[str]:
        return list(self._identities)

    def items(self) -> list[tuple[str, Identity]]:
        return list(self._identities.items())

    def name_for(self, commitment: FieldElement) -> Optional[str]:
        for name, identity in self._identities.items():
            if identity.commitment == commitment:
                return name
        return None

    def __len__(self) -> int:
        return len(self._identities)

    def _load(self) -> None:
        data = json.loads(self._path.read_text(encoding="utf-8"))
        for item in data:
            if item.get("type") != IDENTITY_TYPE or item.get("version") != IDENTITY_VERSION:
                raise ValueError(f"Invalid identity data for {item.get('name')!r}")
            secret = FieldElement.parse(item["secret"])
            self._identities[item["name"]] = Identity.from_secret(secret, self._hasher)

    def _save(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        data = [
            {
                "name": name,
                "secret": identity.secret.to_hex(),
                "type": IDENTITY_TYPE,
                "version": IDENTITY_VERSION,
            }
            for name, identity in self._identities.items()
        ]
        self._path.write_text(json.dumps(data, indent=2), encoding="utf-8")
