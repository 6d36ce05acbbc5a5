# src/bookledger/runtime/tx_id.py
from __future__ import annotations

import hashlib
from typing import Any, Dict, Union

from bookledger.crypto.sig import canonical_tx_message
from bookledger.runtime.tx_admission_types import TxEnvelope

Json = Dict[str, Any]


def compute_tx_id(chain_id: str, tx: Union[Json, TxEnvelope]) -> str:
    """sha256 hex over the signed message: chain_id included, sig excluded.

    A tx id therefore names exactly what the signer committed to.
    """
    j = tx.to_json() if isinstance(tx, TxEnvelope) else tx
    try:
        nonce = int(j.get("nonce", 0))
    except (TypeError, ValueError):
        nonce = 0

    msg = canonical_tx_message(
        chain_id=chain_id,
        tx_type=str(j.get("tx_type", "")),
        signer=str(j.get("signer", "")),
        nonce=nonce,
        payload=j.get("payload", {}),
    )
    return hashlib.sha256(msg).hexdigest()
