# src/bookledger/runtime/state_invariants.py
from __future__ import annotations

"""State invariants / normalization helpers.

Ledger state is a nested JSON-like dict mutated deterministically by the
apply modules. This is the one place that:

  - validates the state is dict-like
  - ensures core top-level containers exist (accounts + params)

Domain containers (e.g. "library") stay the responsibility of the
corresponding apply module.
"""

from collections.abc import MutableMapping
from typing import Any, Dict

Json = Dict[str, Any]


def ensure_state(st: Any) -> Json:
    """Ensure `st` is a dict and contains core keys.

    Returns the (possibly mutated) dict.

    Raises:
        TypeError: if st is not a MutableMapping
    """
    if not isinstance(st, MutableMapping):
        raise TypeError(f"state must be MutableMapping, got {type(st)}")

    # Accounts anchor per-signer nonces.
    acc = st.get("accounts")
    if acc is None:
        st["accounts"] = {}
    elif not isinstance(acc, dict):
        # Fail closed: do not attempt to coerce arbitrary types.
        raise TypeError(f"state['accounts'] must be dict, got {type(acc)}")

    # Params carries genesis params (owner, chain_id, require_signatures).
    params = st.get("params")
    if params is None:
        st["params"] = {}
    elif not isinstance(params, dict):
        raise TypeError(f"state['params'] must be dict, got {type(params)}")

    return st  # type: ignore[return-value]


__all__ = ["ensure_state"]
