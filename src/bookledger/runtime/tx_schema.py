from __future__ import annotations

"""Transaction payload schemas.

Early shape checks (types/required keys) run by tx_admission before a tx is
applied. Unknown keys are rejected.

Apply-layer code still enforces semantics (ownership, availability, borrow
status). These schemas only keep malformed payloads away from it.
"""

from typing import Any, Dict, Optional, Tuple, Type

from pydantic import BaseModel, ConfigDict, Field, StrictInt, StrictStr, ValidationError

from bookledger.runtime.supported_txs import BOOK_BORROW, BOOK_REGISTER, BOOK_RETURN

Json = Dict[str, Any]


class _StrictModel(BaseModel):
    """Strict model: reject unknown keys."""

    model_config = ConfigDict(extra="forbid")


class BookRegisterPayload(_StrictModel):
    title: StrictStr = Field(..., min_length=1)
    copies: StrictInt = Field(..., ge=0)


class BookIdPayload(_StrictModel):
    book_id: StrictInt = Field(..., ge=0)


Schema = Type[BaseModel]

_SCHEMA_BY_TX_TYPE: Dict[str, Schema] = {
    BOOK_REGISTER: BookRegisterPayload,
    BOOK_BORROW: BookIdPayload,
    BOOK_RETURN: BookIdPayload,
}


def _schema_for(tx_type: str) -> Optional[Schema]:
    t = str(tx_type or "").strip().upper()
    if not t:
        return None
    return _SCHEMA_BY_TX_TYPE.get(t)


def validate_payload(*, tx_type: str, payload: Any) -> Tuple[bool, str, str, Optional[Dict[str, Any]]]:
    """Validate payload against its schema.

    Returns: (ok, code, reason, details)
    """
    sch = _schema_for(tx_type)
    if sch is None:
        return False, "schema:unknown_tx_type", "no_schema_for_tx_type", {"tx_type": tx_type}

    if payload is None:
        return False, "schema:payload_missing", "payload_required", None

    if not isinstance(payload, dict):
        return False, "schema:payload_not_object", "payload_must_be_object", None

    try:
        sch(**payload)
        return True, "", "", None
    except ValidationError as ve:
        return False, "schema:validation_error", "payload_schema_mismatch", {"errors": ve.errors(include_url=False)}
