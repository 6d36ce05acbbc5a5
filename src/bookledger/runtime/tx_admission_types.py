from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterator, Optional

from bookledger.crypto.sig import is_canonical_pubkey_hex
from bookledger.runtime.errors import AdmissionRejected

Json = Dict[str, Any]


def signer_reject_reason(signer: Any, *, require_pubkey: bool) -> Optional[str]:
    """Reason a signer string is unusable as an identity, or None.

    Identities are compared byte for byte everywhere (owner gate, nonce
    accounts, borrow records), so only one spelling per identity is accepted:
    no surrounding whitespace, and lower-case hex when signatures are on.
    """
    if not isinstance(signer, str) or not signer.strip():
        return "missing_signer"
    if signer != signer.strip():
        return "signer_not_canonical"
    if require_pubkey and not is_canonical_pubkey_hex(signer):
        return "signer_not_canonical"
    return None


@dataclass(frozen=True)
class TxReject:
    code: str
    reason: str
    details: Optional[Json] = None


@dataclass(frozen=True)
class TxVerdict:
    ok: bool
    code: str
    reason: str
    details: Optional[Json] = None

    def __iter__(self) -> Iterator[Any]:
        """Unpack as `ok, rej` where rej is None for admitted txs."""
        yield self.ok
        yield None if self.ok else TxReject(self.code, self.reason, self.details)

    def raise_if_rejected(self) -> None:
        if not self.ok:
            raise AdmissionRejected(self.code, self.reason, self.details)

    @staticmethod
    def admit() -> "TxVerdict":
        return TxVerdict(True, "ok", "admitted", None)

    @staticmethod
    def reject(code: str, reason: str, details: Optional[Json] = None) -> "TxVerdict":
        return TxVerdict(False, code, reason, details)


@dataclass(frozen=True)
class TxEnvelope:
    """A request to mutate the ledger.

    `signer` is the caller identity every guard check consults. It is kept
    verbatim; signer_reject_reason decides whether it may be used at all.
    """

    tx_type: str
    signer: str
    nonce: int
    payload: Json
    sig: str = ""

    @classmethod
    def from_json(cls, j: Any) -> "TxEnvelope":
        if isinstance(j, TxEnvelope):
            return j
        if not isinstance(j, dict):
            raise TypeError(f"tx envelope must be a dict, got {type(j)}")
        payload = j.get("payload")
        return cls(
            tx_type=str(j.get("tx_type") or "").strip().upper(),
            signer=str(j.get("signer") or ""),
            nonce=int(j.get("nonce") or 0),
            payload=dict(payload) if isinstance(payload, dict) else {},
            sig=str(j.get("sig") or ""),
        )

    def to_json(self) -> Json:
        return {
            "tx_type": self.tx_type,
            "signer": self.signer,
            "nonce": self.nonce,
            "payload": dict(self.payload),
            "sig": self.sig,
        }
