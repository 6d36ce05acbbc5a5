# src/bookledger/runtime/domain_dispatch.py

from __future__ import annotations

from typing import Any, Callable, Dict, Optional

from bookledger.runtime.errors import ApplyError
from bookledger.runtime.state_invariants import ensure_state
from bookledger.runtime.tx_admission_types import TxEnvelope, signer_reject_reason

# Domain appliers (each returns Optional[Json]; returning None means "not claimed")
from bookledger.runtime.apply.library import apply_library

Json = Dict[str, Any]
ApplyFn = Callable[[Json, Any], Optional[Json]]


def _get(env: Any, key: str, default: Any = None) -> Any:
    """Read a field from either a TxEnvelope-like object or a dict.

    Tests and tools often pass raw dict envelopes directly into apply_tx(),
    while the executor passes a TxEnvelope object.
    """

    if isinstance(env, dict):
        return env.get(key, default)
    return getattr(env, key, default)


def _tx_type(env: Any) -> str:
    return str(_get(env, "tx_type", "") or "").strip().upper()


_APPLIERS: tuple[ApplyFn, ...] = (apply_library,)


def apply_tx(state: Json, env: Any) -> Json:
    """Dispatch a TxEnvelope to the first domain applier that claims it.

    Mutates `state` in place. Use domain_apply.apply_tx_atomic when a
    rejected tx must leave no trace.
    """

    ensure_state(state)

    env_norm: Any = env
    if isinstance(env, dict):
        env_norm = TxEnvelope.from_json(env)

    t = _tx_type(env_norm)
    if not t:
        raise ApplyError("invalid_tx", "missing_tx_type", {"tx_type": t})

    # Appliers compare signer strings verbatim; refuse any non-canonical spelling.
    signer = _get(env_norm, "signer", "")
    require_pubkey = bool(state["params"].get("require_signatures", False))
    bad_signer = signer_reject_reason(signer, require_pubkey=require_pubkey)
    if bad_signer is not None:
        raise ApplyError("invalid_tx", bad_signer, {"tx_type": t, "signer": signer})

    for fn in _APPLIERS:
        try:
            out = fn(state, env_norm)
        except ApplyError:
            raise
        except Exception as e:
            code = getattr(e, "code", None)
            reason = getattr(e, "reason", None)
            details = getattr(e, "details", None)

            if code is not None or reason is not None:
                raise ApplyError(
                    str(code or "domain_error"),
                    str(reason or type(e).__name__),
                    details if details is not None else {"tx_type": t, "domain": fn.__name__},
                ) from e

            raise ApplyError(
                "domain_error",
                type(e).__name__,
                {"tx_type": t, "domain": fn.__name__, "error": str(e)},
            ) from e

        if out is not None:
            return out

    raise ApplyError("tx_unimplemented", "tx_type_not_implemented", {"tx_type": t})
