"""
Unit tests for PKCE helpers and state (CSRF) helpers.

These tests are CI-safe (no network), cover:
* Code-verifier / S256 challenge generation
* State build / parse happy-path
* Signature tamper detection
"""

from __future__ import annotations

import base64
import re
from hashlib import sha256

import pytest

from crm_auth.credentials.pkce import (
    code_challenge_s256,
    generate_code_verifier,
    validate_code_verifier,
)
from crm_auth.credentials.state import InvalidStateError, build_state, parse_state

ALLOWED_CHARS_RE = re.compile(r"^[A-Za-z0-9\-._~]+$")  # RFC-7636


# --------------------------------------------------------------------------- #
# PKCE                                                                        #
# --------------------------------------------------------------------------- #
def test_generate_code_verifier_default_length() -> None:
    verifier = generate_code_verifier()
    assert len(verifier) == 43
    assert ALLOWED_CHARS_RE.match(verifier), "Verifier contains non-RFC chars"


@pytest.mark.parametrize("num_bytes", [32, 48, 64, 96])
def test_generate_code_verifier_within_rfc_bounds(num_bytes: int) -> None:
    verifier = generate_code_verifier(num_bytes)
    assert 43 <= len(verifier) <= 128
    assert ALLOWED_CHARS_RE.match(verifier)


@pytest.mark.parametrize("num_bytes", [0, 31, 97])
def test_generate_code_verifier_invalid_len(num_bytes: int) -> None:
    with pytest.raises(ValueError):
        generate_code_verifier(num_bytes)


def test_verifiers_are_unique() -> None:
    assert len({generate_code_verifier() for _ in range(50)}) == 50


def test_code_challenge_s256_matches_rfc_example() -> None:
    # Appendix B of RFC 7636
    verifier = "dBjftJeZ4CVP-mB92K27uhbUJU1p1r_wW1gFWFOEjXk"
    assert code_challenge_s256(verifier) == "E9Melhoa2OwvFrEMTJguCHaoeK1t8URWbuGJSstw-cM"


def test_code_challenge_is_unpadded_base64url_sha256() -> None:
    verifier = generate_code_verifier()
    expected = base64.urlsafe_b64encode(sha256(verifier.encode()).digest()).rstrip(b"=").decode()
    challenge = code_challenge_s256(verifier)
    assert challenge == expected
    assert "=" not in challenge


def test_validate_code_verifier() -> None:
    good = "a" * 43
    assert validate_code_verifier(good) == good
    for bad in ("a" * 42, "a" * 129, "a" * 42 + "!"):
        with pytest.raises(ValueError):
            validate_code_verifier(bad)


# --------------------------------------------------------------------------- #
# State                                                                       #
# --------------------------------------------------------------------------- #
SECRET = "super-secret"


def test_state_roundtrip_returns_txn_and_timestamp() -> None:
    state = build_state("txn123", SECRET, clock=lambda: 1_700_000_000.9)
    assert parse_state(state, SECRET) == ("txn123", 1_700_000_000)


def test_state_is_url_safe() -> None:
    state = build_state("txn123", SECRET, clock=lambda: 1000.0)
    assert ALLOWED_CHARS_RE.match(state)


def test_state_signature_tamper_detected() -> None:
    state = build_state("txn123", SECRET, clock=lambda: 1000.0)
    decoded = base64.urlsafe_b64decode(state + "=" * (-len(state) % 4)).decode()
    txn_id, ts, sig = decoded.split(":")
    forged = base64.urlsafe_b64encode(f"other:{ts}:{sig}".encode()).rstrip(b"=").decode()
    with pytest.raises(InvalidStateError):
        parse_state(forged, SECRET)


def test_state_wrong_secret_rejected() -> None:
    state = build_state("txn123", SECRET, clock=lambda: 1000.0)
    with pytest.raises(InvalidStateError):
        parse_state(state, "another-secret")


@pytest.mark.parametrize("garbage", ["", "%%%", "bm90LWEtc3RhdGU"])
def test_state_garbage_rejected(garbage: str) -> None:
    with pytest.raises(InvalidStateError):
        parse_state(garbage, SECRET)
