# src/bookledger/runtime/executor_boot.py

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

from bookledger.env import load_dotenv_if_present
from bookledger.runtime.chain_config import load_chain_config
from bookledger.runtime.executor import LedgerExecutor
from bookledger.runtime.ledger_logging import configure_structured_logging


@dataclass
class ExecutorBootConfig:
    db_path: str
    chain_id: str
    owner: str
    require_signatures: bool
    single_writer: bool
    log_level: str = "INFO"


def boot_config_from_env() -> ExecutorBootConfig:
    """Resolve boot config from .env, BOOKLEDGER_CHAIN_CONFIG_PATH or BOOKLEDGER_* vars."""
    load_dotenv_if_present()
    cfg = load_chain_config()

    single_writer = (os.environ.get("BOOKLEDGER_SINGLE_WRITER") or "1").strip().lower() in {"1", "true", "yes", "on"}

    return ExecutorBootConfig(
        db_path=cfg.db_path,
        chain_id=cfg.chain_id,
        owner=cfg.owner,
        require_signatures=cfg.require_signatures,
        single_writer=single_writer,
        log_level=cfg.log_level,
    )


def build_executor(cfg: Optional[ExecutorBootConfig] = None) -> LedgerExecutor:
    """
    Build a LedgerExecutor from an explicit boot config or, if omitted,
    from the environment.
    """
    c = cfg or boot_config_from_env()
    configure_structured_logging(c.log_level)
    return LedgerExecutor(
        db_path=c.db_path,
        chain_id=c.chain_id,
        owner=c.owner,
        require_signatures=c.require_signatures,
        single_writer=c.single_writer,
    )
