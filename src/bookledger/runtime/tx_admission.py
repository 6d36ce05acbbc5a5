from __future__ import annotations

import json
import os
from typing import Any, Dict, Optional, Tuple

from bookledger.ledger.state import LedgerView
from bookledger.runtime.sigverify import verify_tx_signature
from bookledger.runtime.supported_txs import SUPPORTED_TX_TYPES
from bookledger.runtime.tx_admission_types import TxEnvelope, TxVerdict, signer_reject_reason
from bookledger.runtime.tx_schema import validate_payload

Json = Dict[str, Any]


def _env_int(name: str, default: int) -> int:
    v = os.getenv(name)
    if v is None:
        return int(default)
    try:
        return int(str(v).strip())
    except ValueError:
        return int(default)


def _json_size_bytes(obj: Any) -> int:
    """Compute JSON byte size. If not serializable, return -1 (unknown)."""
    try:
        return len(json.dumps(obj, separators=(",", ":"), ensure_ascii=False, sort_keys=True).encode("utf-8"))
    except (TypeError, ValueError):
        return -1


def _validate_payload_limits(payload: Any) -> Optional[TxVerdict]:
    """Generic payload validation (shape + size caps)."""
    if payload is None:
        return TxVerdict.reject("invalid_payload", "payload_required", {"expected": "object"})
    if not isinstance(payload, dict):
        return TxVerdict.reject("invalid_payload", "payload_must_be_object", {"type": str(type(payload))})

    max_payload_bytes = _env_int("BOOKLEDGER_MAX_TX_PAYLOAD_BYTES", 4 * 1024)
    max_payload_keys = _env_int("BOOKLEDGER_MAX_TX_PAYLOAD_KEYS", 16)
    max_string_bytes = _env_int("BOOKLEDGER_MAX_TX_STRING_BYTES", 1024)

    if len(payload) > int(max_payload_keys):
        return TxVerdict.reject(
            "invalid_payload",
            "payload_too_many_keys",
            {"keys": len(payload), "max_keys": int(max_payload_keys)},
        )

    payload_bytes = _json_size_bytes(payload)
    if payload_bytes < 0:
        return TxVerdict.reject("invalid_payload", "payload_not_json", {})
    if payload_bytes > int(max_payload_bytes):
        return TxVerdict.reject(
            "payload_too_large",
            "payload_exceeds_size_limit",
            {"bytes": int(payload_bytes), "max_bytes": int(max_payload_bytes)},
        )

    for k, v in payload.items():
        if isinstance(v, str):
            b = len(v.encode("utf-8", errors="ignore"))
            if b > int(max_string_bytes):
                return TxVerdict.reject(
                    "invalid_payload",
                    "string_too_large",
                    {"key": k, "bytes": int(b), "max_bytes": int(max_string_bytes)},
                )

    return None


def _parse_nonce(v: Any) -> Tuple[bool, int]:
    if isinstance(v, bool):
        return False, 0
    if isinstance(v, int):
        return True, int(v)
    if isinstance(v, str) and v.strip().isdigit():
        return True, int(v.strip())
    return False, 0


def admit_tx(tx: Any, ledger: LedgerView, *, chain_id: str) -> TxVerdict:
    """Decide whether a tx may be applied against `ledger`.

    Checks, in order:
      - envelope is an object with a supported tx_type and a canonical signer
      - nonce is exactly last consumed nonce + 1
      - payload size caps and schema
      - signature, when the ledger requires signatures

    Ownership, availability and borrow status are NOT checked here; those are
    apply-time semantics with their own error types.
    """
    if isinstance(tx, TxEnvelope):
        tx = tx.to_json()
    if not isinstance(tx, dict):
        return TxVerdict.reject("invalid_tx", "tx_must_be_object", {"type": str(type(tx))})

    tx_type = str(tx.get("tx_type") or "").strip().upper()
    if not tx_type:
        return TxVerdict.reject("invalid_tx", "missing_tx_type", {})
    if tx_type not in SUPPORTED_TX_TYPES:
        return TxVerdict.reject("unsupported_tx", "tx_type_not_supported", {"tx_type": tx_type})

    signer = tx.get("signer")
    bad_signer = signer_reject_reason(signer, require_pubkey=ledger.requires_signatures())
    if bad_signer is not None:
        return TxVerdict.reject("invalid_tx", bad_signer, {"tx_type": tx_type, "signer": signer})

    ok, nonce = _parse_nonce(tx.get("nonce"))
    if not ok:
        return TxVerdict.reject("invalid_tx", "bad_nonce_type", {"nonce": tx.get("nonce")})
    expected = ledger.get_nonce(signer) + 1
    if nonce != expected:
        return TxVerdict.reject("bad_nonce", "nonce_mismatch", {"expected": expected, "got": nonce})

    payload = tx.get("payload")
    rej = _validate_payload_limits(payload)
    if rej is not None:
        return rej

    ok_schema, code, reason, details = validate_payload(tx_type=tx_type, payload=payload)
    if not ok_schema:
        return TxVerdict.reject(code, reason, details)

    if ledger.requires_signatures():
        if not verify_tx_signature(chain_id=chain_id, tx=tx):
            return TxVerdict.reject("bad_signature", "signature_verification_failed", {"signer": signer})

    return TxVerdict.admit()


__all__ = ["admit_tx"]
