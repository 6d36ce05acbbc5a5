# src/bookledger/runtime/chain_config.py
from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

from bookledger.crypto.sig import is_canonical_pubkey_hex

Json = Dict[str, Any]


def _as_str(v: Any, default: str) -> str:
    if v is None:
        return str(default)
    s = str(v)
    return s if s.strip() else str(default)


def _as_bool(v: Any, default: bool) -> bool:
    if v is None:
        return bool(default)
    if isinstance(v, bool):
        return v
    s = str(v).strip().lower()
    if s in {"1", "true", "yes", "y", "on"}:
        return True
    if s in {"0", "false", "no", "n", "off"}:
        return False
    return bool(default)


@dataclass(frozen=True)
class ChainConfig:
    chain_id: str
    mode: str  # "dev" | "prod"

    # Single SQLite DB file path; ":memory:" selects the in-process store.
    db_path: str

    # Administrator identity fixed at genesis.
    owner: str

    require_signatures: bool

    log_level: str


_ALLOWED_MODES = {"dev", "prod"}
_ALLOWED_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


def validate_chain_config(cfg: ChainConfig) -> None:
    """Fail-fast validation for operator config."""

    if not isinstance(cfg.chain_id, str) or not cfg.chain_id.strip():
        raise ValueError("chain_id must be a non-empty string")

    mode = str(cfg.mode or "").strip().lower()
    if mode not in _ALLOWED_MODES:
        raise ValueError(f"mode must be one of {_ALLOWED_MODES}; got: {cfg.mode!r}")

    if not isinstance(cfg.db_path, str) or not cfg.db_path.strip():
        raise ValueError("db_path must be a non-empty string")

    if not isinstance(cfg.owner, str) or not cfg.owner.strip():
        raise ValueError("owner must be a non-empty string")

    if cfg.require_signatures and not is_canonical_pubkey_hex(cfg.owner):
        raise ValueError("owner must be a lower-case hex ed25519 public key when require_signatures is true")

    if mode == "prod" and not cfg.require_signatures:
        # Without signatures anyone can claim the owner identity.
        raise ValueError("require_signatures must be true in prod mode")

    if str(cfg.log_level or "").strip().upper() not in _ALLOWED_LOG_LEVELS:
        raise ValueError(f"log_level must be one of {_ALLOWED_LOG_LEVELS}; got: {cfg.log_level!r}")


def default_chain_config() -> ChainConfig:
    return ChainConfig(
        chain_id="bookledger-dev",
        mode="dev",
        db_path="./data/bookledger.db",
        owner="owner",
        require_signatures=False,
        log_level="INFO",
    )


def read_chain_config_file(path: str) -> ChainConfig:
    p = Path(path)
    raw = json.loads(p.read_text(encoding="utf-8"))
    if not isinstance(raw, dict):
        raise ValueError("chain config must be a JSON object")

    d = default_chain_config()

    cfg = ChainConfig(
        chain_id=_as_str(raw.get("chain_id"), d.chain_id),
        mode=_as_str(raw.get("mode"), d.mode).strip().lower(),
        db_path=_as_str(raw.get("db_path"), d.db_path),
        owner=_as_str(raw.get("owner"), d.owner),
        require_signatures=_as_bool(raw.get("require_signatures"), d.require_signatures),
        log_level=_as_str(raw.get("log_level"), d.log_level).strip().upper(),
    )

    validate_chain_config(cfg)
    return cfg


def load_chain_config(*, config_path: Optional[str] = None) -> ChainConfig:
    """Load config from a JSON file, else from BOOKLEDGER_* env over defaults."""
    p = config_path or os.environ.get("BOOKLEDGER_CHAIN_CONFIG_PATH")
    if p:
        return read_chain_config_file(p)

    d = default_chain_config()
    cfg = ChainConfig(
        chain_id=_as_str(os.environ.get("BOOKLEDGER_CHAIN_ID"), d.chain_id),
        mode=_as_str(os.environ.get("BOOKLEDGER_MODE"), d.mode).strip().lower(),
        db_path=_as_str(os.environ.get("BOOKLEDGER_DB_PATH"), d.db_path),
        owner=_as_str(os.environ.get("BOOKLEDGER_OWNER"), d.owner),
        require_signatures=_as_bool(os.environ.get("BOOKLEDGER_REQUIRE_SIGNATURES"), d.require_signatures),
        log_level=_as_str(os.environ.get("BOOKLEDGER_LOG_LEVEL"), d.log_level).strip().upper(),
    )
    validate_chain_config(cfg)
    return cfg
