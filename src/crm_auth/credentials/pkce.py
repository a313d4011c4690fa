"""PKCE (Proof Key for Code Exchange) helpers.

RFC 7636 defines PKCE to protect OAuth clients against authorization-code
interception.  A *code verifier* (random high-entropy string) is generated at
the beginning of the flow and a *code challenge* derived from that verifier is
sent to the authorization endpoint.  The token exchange must then present the
original verifier.

Only the S256 transformation is implemented; Salesforce requires it.

This module intentionally performs **no logging** of verifiers or challenges.
"""

from __future__ import annotations

import base64
import re
import secrets
from hashlib import sha256
from typing import Final

# 32 random bytes encode to exactly 43 base64url characters (no padding).
_VERIFIER_BYTES: Final[int] = 32
_VERIFIER_RE: Final[re.Pattern[str]] = re.compile(r"^[A-Za-z0-9\-._~]{43,128}$")


def _b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def generate_code_verifier(num_bytes: int = _VERIFIER_BYTES) -> str:
    """Generate a high-entropy code verifier.

    Parameters
    ----------
    num_bytes:
        Amount of random entropy; 32-96 bytes yields a verifier of
        43-128 characters.

    Returns
    -------
    str
        Base64url-encoded random bytes without padding.
    """
    if not 32 <= num_bytes <= 96:
        raise ValueError("code verifier entropy must be 32-96 bytes")
    return _b64url(secrets.token_bytes(num_bytes))


def validate_code_verifier(verifier: str) -> str:
    """Return *verifier* unchanged if it satisfies RFC-7636 §4.1."""
    if not _VERIFIER_RE.match(verifier or ""):
        raise ValueError("code verifier must be 43-128 unreserved characters")
    return verifier


def code_challenge_s256(verifier: str) -> str:
    """Compute the *S256* PKCE code challenge for a given verifier.

    Parameters
    ----------
    verifier:
        The code verifier string.

    Returns
    -------
    str
        Base64url-encoded SHA-256 hash without padding.
    """
    return _b64url(sha256(verifier.encode("ascii")).digest())
