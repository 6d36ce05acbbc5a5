# src/bookledger/runtime/sigverify.py

from __future__ import annotations

from typing import Any, Dict

from bookledger.crypto.sig import canonical_tx_message, is_canonical_pubkey_hex, verify_ed25519_signature

Json = Dict[str, Any]


def verify_tx_signature(*, chain_id: str, tx: Json) -> bool:
    """Verify tx['sig'] against the signer identity.

    The signer *is* the lower-case hex Ed25519 public key, so no key registry
    is consulted and other spellings of the same key are refused. Missing or
    malformed signatures fail closed.
    """
    if not isinstance(tx, dict):
        return False

    signer = tx.get("signer")
    sig = tx.get("sig")
    if not is_canonical_pubkey_hex(signer) or not isinstance(sig, str) or not sig:
        return False

    try:
        nonce = int(tx.get("nonce") or 0)
    except (TypeError, ValueError):
        return False

    msg = canonical_tx_message(
        chain_id=chain_id,
        tx_type=str(tx.get("tx_type") or ""),
        signer=signer,
        nonce=nonce,
        payload=tx.get("payload") if isinstance(tx.get("payload"), dict) else {},
    )
    return verify_ed25519_signature(message=msg, sig=sig, pubkey=signer)
