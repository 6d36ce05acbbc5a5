# src/bookledger/runtime/domain_apply.py
# ---------------------------------------------------------------------------
# Public, stable import path for applying tx envelopes.
# ---------------------------------------------------------------------------

from __future__ import annotations

import copy
from typing import Any, Dict

from bookledger.runtime.domain_dispatch import apply_tx
from bookledger.runtime.errors import ApplyError
from bookledger.runtime.tx_admission_types import TxEnvelope

Json = Dict[str, Any]


def _consume_nonce(state: Json, env: TxEnvelope) -> None:
    """Record env.nonce as the signer's last consumed nonce.

    Only called after a successful apply, so env.signer has already passed
    the canonical-signer check in apply_tx. A rejected tx consumes nothing.
    """

    signer = env.signer

    accounts = state.setdefault("accounts", {})
    acct = accounts.get(signer)
    if not isinstance(acct, dict):
        acct = {}
        accounts[signer] = acct

    acct["nonce"] = int(env.nonce)


def apply_tx_atomic(state: Json, env: Any) -> Json:
    """Apply a tx with fail-atomic semantics.

    On success:
      - state is updated as if apply_tx() ran directly
      - the signer's nonce is consumed

    On ApplyError:
      - state remains unchanged

    Callers observe either the pre-call or the post-call state, never an
    intermediate one.
    """

    env_norm: Any = env
    if isinstance(env, dict):
        env_norm = TxEnvelope.from_json(env)

    # Apply on a deep copy to guarantee atomicity.
    snapshot = copy.deepcopy(state)

    meta = apply_tx(snapshot, env_norm)
    _consume_nonce(snapshot, env_norm)

    # Commit by replacing contents in-place so callers holding references
    # to `state` see the updated view.
    state.clear()
    state.update(snapshot)
    return meta


__all__ = ["ApplyError", "apply_tx", "apply_tx_atomic", "Json"]
