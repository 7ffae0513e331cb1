"""Engine configuration.

Values come from, in order of use:
1. A JSON file (RLNConfig.from_file), keys in lower case.
2. The process environment, optionally seeded from a .env file
   (RLNConfig.from_env), keys prefixed with RLN_.
3. The defaults below.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Optional

from dotenv import load_dotenv

from rln.crypto.epoch import DEFAULT_EPOCH_LENGTH
from rln.engine.share_engine import ShareVariant


DEFAULT_TREE_DEPTH = 20
DEFAULT_APP_ID = "rln-demo"
DEFAULT_MIN_STAKE = Decimal("1.0")
MAX_TREE_DEPTH = 32

_ENV_KEYS = {
    "tree_depth": "RLN_TREE_DEPTH",
    "epoch_length": "RLN_EPOCH_LENGTH",
    "app_id": "RLN_APP_ID",
    "min_stake": "RLN_MIN_STAKE",
    "message_limit": "RLN_MESSAGE_LIMIT",
    "epoch_tolerance": "RLN_EPOCH_TOLERANCE",
    "share_variant": "RLN_SHARE_VARIANT",
    "empty_leaf": "RLN_EMPTY_LEAF",
    "data_dir": "RLN_DATA_DIR",
}


@dataclass(frozen=True)
class RLNConfig:
    """Protocol parameters for one engine instance."""
    tree_depth: int = DEFAULT_TREE_DEPTH
    epoch_length: int = DEFAULT_EPOCH_LENGTH
    app_id: str = DEFAULT_APP_ID
    min_stake: Decimal = DEFAULT_MIN_STAKE
    message_limit: int = 1
    epoch_tolerance: int = 1
    share_variant: ShareVariant = ShareVariant.PER_MESSAGE
    empty_leaf: int = 0
    data_dir: Path = field(default_factory=lambda: Path("data"))

    def __post_init__(self) -> None:
        if not 1 <= self.tree_depth <= MAX_TREE_DEPTH:
            raise ValueError(f"tree_depth must be in [1, {MAX_TREE_DEPTH}]")
        if self.epoch_length <= 0:
            raise ValueError("epoch_length must be positive")
        if not self.app_id:
            raise ValueError("app_id must be non-empty")
        if not self.min_stake.is_finite():
            raise ValueError("min_stake must be a finite amount")
        if self.min_stake < Decimal("0"):
            raise ValueError("min_stake must not be negative")
        if self.message_limit < 1:
            raise ValueError("message_limit must be at least 1")
        if self.share_variant == ShareVariant.EPOCH_SCOPED and self.message_limit != 1:
            raise ValueError(
                "epoch_scoped shares allow one message per epoch; set message_limit to 1"
            )
        if self.epoch_tolerance < 0:
            raise ValueError("epoch_tolerance must not be negative")
        if self.empty_leaf < 0:
            raise ValueError("empty_leaf must not be negative")

    @classmethod
    def from_mapping(cls, raw: dict[str, Any]) -> RLNConfig:
        """Build a config from loosely-typed values (strings allowed)."""
        kwargs: dict[str, Any] = {}
        for key in ("tree_depth", "epoch_length", "message_limit", "epoch_tolerance", "empty_leaf"):
            if raw.get(key) is not None:
                kwargs[key] = int(raw[key])
        if raw.get("app_id") is not None:
            kwargs["app_id"] = str(raw["app_id"])
        if raw.get("min_stake") is not None:
            try:
                kwargs["min_stake"] = Decimal(str(raw["min_stake"]))
            except InvalidOperation as exc:
                raise ValueError(f"Invalid min_stake: {raw['min_stake']!r}") from exc
        if raw.get("share_variant") is not None:
            kwargs["share_variant"] = ShareVariant(str(raw["share_variant"]))
        if raw.get("data_dir") is not None:
            kwargs["data_dir"] = Path(raw["data_dir"])

        unknown = set(raw) - set(_ENV_KEYS)
        if unknown:
            raise ValueError(f"Unknown config keys: {', '.join(sorted(unknown))}")
        return cls(**kwargs)

    @classmethod
    def from_file(cls, path: Path) -> RLNConfig:
        """Load a JSON config file."""
        data = json.loads(Path(path).read_text(encoding="utf-8"))
        if not isinstance(data, dict):
            raise ValueError(f"Config file must contain a JSON object: {path}")
        return cls.from_mapping(data)

    @classmethod
    def from_env(cls, env_file: Optional[Path] = None) -> RLNConfig:
        """Load RLN_* settings from the environment (and a .env file if present).

        Variables already set in the environment win over the .env file.
        """
        if env_file is not None:
            load_dotenv(env_file)
        else:
            load_dotenv()
        raw = {
            key: os.getenv(env_name)
            for key, env_name in _ENV_KEYS.items()
            if os.getenv(env_name)
        }
        return cls.from_mapping(raw)

    def to_dict(self) -> dict[str, Any]:
        return {
            "tree_depth": self.tree_depth,
            "epoch_length": self.epoch_length,
            "app_id": self.app_id,
            "min_stake": str(self.min_stake),
            "message_limit": self.message_limit,
            "epoch_tolerance": self.epoch_tolerance,
            "share_variant": self.share_variant.value,
            "empty_leaf": self.empty_leaf,
            "data_dir": str(self.data_dir),
        }
