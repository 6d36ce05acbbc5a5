# src/bookledger/crypto/sig.py
"""Ed25519 helpers for tx envelopes.

Keys and signatures travel as lower-case hex. A signer identity in signed
mode is the 32-byte raw public key in that form, so one key has exactly one
spelling.
"""

from __future__ import annotations

import json
from typing import Any, Dict

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey, Ed25519PublicKey
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat

Json = Dict[str, Any]

ED25519_KEY_BYTES = 32


def is_canonical_pubkey_hex(s: Any) -> bool:
    """True iff s is a 32-byte key written as lower-case hex."""
    if not isinstance(s, str) or len(s) != 2 * ED25519_KEY_BYTES:
        return False
    try:
        return bytes.fromhex(s).hex() == s
    except ValueError:
        return False


def canonical_tx_message(
    *,
    chain_id: str,
    tx_type: str,
    signer: str,
    nonce: int,
    payload: Json,
) -> bytes:
    """Bytes a signer commits to. Includes chain_id so a tx cannot replay across ledgers."""
    obj: Json = {
        "chain_id": str(chain_id),
        "tx_type": str(tx_type),
        "signer": str(signer),
        "nonce": int(nonce),
        "payload": payload if isinstance(payload, dict) else {},
    }
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def verify_ed25519_signature(*, message: bytes, sig: str, pubkey: str) -> bool:
    if not is_canonical_pubkey_hex(pubkey):
        return False
    try:
        key = Ed25519PublicKey.from_public_bytes(bytes.fromhex(pubkey))
        key.verify(bytes.fromhex(sig), message)
    except (InvalidSignature, ValueError):
        return False
    return True


def _private_key(privkey: str) -> Ed25519PrivateKey:
    seed = bytes.fromhex(privkey)
    if len(seed) != ED25519_KEY_BYTES:
        raise ValueError("ed25519 privkey must be a 32-byte seed in hex")
    return Ed25519PrivateKey.from_private_bytes(seed)


def public_key_hex(privkey: str) -> str:
    """Signer identity (lower-case hex public key) for a hex seed."""
    return _private_key(privkey).public_key().public_bytes(Encoding.Raw, PublicFormat.Raw).hex()


def sign_tx_envelope_dict(*, tx: Json, chain_id: str, privkey: str) -> Json:
    """Return a copy of tx with 'sig' set over canonical_tx_message(...)."""
    out = dict(tx)
    out["tx_type"] = str(tx.get("tx_type") or "")
    out["signer"] = str(tx.get("signer") or "")
    out["nonce"] = int(tx.get("nonce") or 0)
    out["payload"] = tx.get("payload") if isinstance(tx.get("payload"), dict) else {}

    msg = canonical_tx_message(
        chain_id=chain_id,
        tx_type=out["tx_type"],
        signer=out["signer"],
        nonce=out["nonce"],
        payload=out["payload"],
    )
    out["sig"] = _private_key(privkey).sign(msg).hex()
    return out
