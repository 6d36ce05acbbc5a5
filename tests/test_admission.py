# tests/test_admission.py
from __future__ import annotations

from typing import Any, Dict

import pytest

from bookledger.ledger.state import LedgerView
from bookledger.runtime.tx_admission import TxEnvelope, admit_tx
from bookledger.testing.sigtools import identity_for, sign_tx_dict

Json = Dict[str, Any]

CHAIN_ID = "bookledger-test"


def _ledger(*, nonces: Dict[str, int] | None = None, require_signatures: bool = False) -> LedgerView:
    st: Json = {
        "accounts": {k: {"nonce": v} for k, v in (nonces or {}).items()},
        "params": {"owner": "owner", "chain_id": CHAIN_ID, "require_signatures": require_signatures},
        "library": {},
    }
    return LedgerView.from_ledger(st)


def _tx(tx_type: str = "BOOK_BORROW", signer: str = "alice", nonce: Any = 1, payload: Any = None) -> Json:
    return {
        "tx_type": tx_type,
        "signer": signer,
        "nonce": nonce,
        "payload": {"book_id": 1} if payload is None else payload,
    }


def test_admits_well_formed_tx() -> None:
    verdict = admit_tx(_tx(), _ledger(), chain_id=CHAIN_ID)
    assert verdict.ok is True

    ok, rej = verdict
    assert ok is True
    assert rej is None


def test_admits_tx_envelope_objects() -> None:
    env = TxEnvelope(tx_type="BOOK_RETURN", signer="alice", nonce=1, payload={"book_id": 3})
    assert admit_tx(env, _ledger(), chain_id=CHAIN_ID).ok is True


def test_rejects_non_object() -> None:
    verdict = admit_tx(["BOOK_BORROW"], _ledger(), chain_id=CHAIN_ID)
    assert verdict.ok is False
    assert verdict.reason == "tx_must_be_object"


def test_rejects_unsupported_tx_type() -> None:
    ok, rej = admit_tx(_tx(tx_type="BOOK_BURN"), _ledger(), chain_id=CHAIN_ID)
    assert ok is False
    assert rej is not None
    assert rej.code == "unsupported_tx"
    assert rej.details == {"tx_type": "BOOK_BURN"}


def test_rejects_missing_signer() -> None:
    verdict = admit_tx(_tx(signer=""), _ledger(), chain_id=CHAIN_ID)
    assert verdict.code == "invalid_tx"
    assert verdict.reason == "missing_signer"


@pytest.mark.parametrize("nonce", [None, True, "x", 1.0])
def test_rejects_bad_nonce_type(nonce: Any) -> None:
    verdict = admit_tx(_tx(nonce=nonce), _ledger(), chain_id=CHAIN_ID)
    assert verdict.code == "invalid_tx"
    assert verdict.reason == "bad_nonce_type"


def test_nonce_must_be_last_plus_one() -> None:
    ledger = _ledger(nonces={"alice": 4})

    for n in (3, 4, 6):
        verdict = admit_tx(_tx(nonce=n), ledger, chain_id=CHAIN_ID)
        assert verdict.code == "bad_nonce"
        assert verdict.details == {"expected": 5, "got": n}

    assert admit_tx(_tx(nonce=5), ledger, chain_id=CHAIN_ID).ok is True


def test_nonces_are_per_signer() -> None:
    ledger = _ledger(nonces={"alice": 2})
    assert admit_tx(_tx(signer="bob", nonce=1), ledger, chain_id=CHAIN_ID).ok is True
    assert admit_tx(_tx(signer="alice", nonce=1), ledger, chain_id=CHAIN_ID).ok is False


@pytest.mark.parametrize(
    "tx_type,payload",
    [
        ("BOOK_REGISTER", {"title": "Book1"}),
        ("BOOK_REGISTER", {"title": "", "copies": 1}),
        ("BOOK_REGISTER", {"title": "Book1", "copies": -1}),
        ("BOOK_REGISTER", {"title": "Book1", "copies": "3"}),
        ("BOOK_REGISTER", {"title": "Book1", "copies": 3, "author": "x"}),
        ("BOOK_BORROW", {}),
        ("BOOK_BORROW", {"book_id": "1"}),
        ("BOOK_RETURN", {"book_id": -2}),
    ],
)
def test_rejects_payload_schema_mismatch(tx_type: str, payload: Json) -> None:
    verdict = admit_tx(_tx(tx_type=tx_type, payload=payload), _ledger(), chain_id=CHAIN_ID)
    assert verdict.ok is False
    assert verdict.code == "schema:validation_error"


def test_rejects_non_object_payload() -> None:
    verdict = admit_tx(_tx(payload=[1]), _ledger(), chain_id=CHAIN_ID)
    assert verdict.code == "invalid_payload"
    assert verdict.reason == "payload_must_be_object"


def test_payload_string_limit_is_configurable(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("BOOKLEDGER_MAX_TX_STRING_BYTES", "8")

    verdict = admit_tx(
        _tx(tx_type="BOOK_REGISTER", signer="owner", payload={"title": "A very long title", "copies": 1}),
        _ledger(),
        chain_id=CHAIN_ID,
    )
    assert verdict.code == "invalid_payload"
    assert verdict.reason == "string_too_large"


def test_payload_size_limit(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("BOOKLEDGER_MAX_TX_PAYLOAD_BYTES", "16")

    verdict = admit_tx(
        _tx(tx_type="BOOK_REGISTER", signer="owner", payload={"title": "Moby Dick", "copies": 1}),
        _ledger(),
        chain_id=CHAIN_ID,
    )
    assert verdict.code == "payload_too_large"


def test_signature_required_when_enabled() -> None:
    alice = identity_for("alice")
    ledger = _ledger(require_signatures=True)

    unsigned = _tx(signer=alice)
    verdict = admit_tx(unsigned, ledger, chain_id=CHAIN_ID)
    assert verdict.code == "bad_signature"

    signed = sign_tx_dict(unsigned, chain_id=CHAIN_ID, label="alice")
    assert admit_tx(signed, ledger, chain_id=CHAIN_ID).ok is True


def test_signature_is_bound_to_chain_and_payload() -> None:
    alice = identity_for("alice")
    ledger = _ledger(require_signatures=True)

    other_chain = sign_tx_dict(_tx(signer=alice), chain_id="other-chain", label="alice")
    assert admit_tx(other_chain, ledger, chain_id=CHAIN_ID).code == "bad_signature"

    tampered = sign_tx_dict(_tx(signer=alice), chain_id=CHAIN_ID, label="alice")
    tampered["payload"] = {"book_id": 2}
    assert admit_tx(tampered, ledger, chain_id=CHAIN_ID).code == "bad_signature"


def test_signature_by_another_key_is_rejected() -> None:
    alice = identity_for("alice")
    forged = sign_tx_dict(_tx(signer=alice), chain_id=CHAIN_ID, label="mallory")
    verdict = admit_tx(forged, _ledger(require_signatures=True), chain_id=CHAIN_ID)
    assert verdict.code == "bad_signature"


@pytest.mark.parametrize("signer", [" alice", "alice ", "alice\n"])
def test_rejects_signer_with_surrounding_whitespace(signer: str) -> None:
    verdict = admit_tx(_tx(signer=signer), _ledger(), chain_id=CHAIN_ID)
    assert verdict.code == "invalid_tx"
    assert verdict.reason == "signer_not_canonical"


def test_signed_mode_requires_lower_case_hex_signer() -> None:
    alice = identity_for("alice")
    ledger = _ledger(require_signatures=True)

    for spelling in (alice.upper(), alice[:-2], "alice"):
        tx = sign_tx_dict(_tx(signer=spelling), chain_id=CHAIN_ID, label="alice")
        verdict = admit_tx(tx, ledger, chain_id=CHAIN_ID)
        assert verdict.reason == "signer_not_canonical", spelling
