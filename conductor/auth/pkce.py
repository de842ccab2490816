"""PKCE helpers and unverified JWT claim decoding."""

import base64
import binascii
import hashlib
import json
import secrets
from typing import Any

AUTH_CLAIM = "https://api.openai.com/auth"


def _b64url(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def generate_pkce() -> tuple[str, str]:
    """Return ``(code_verifier, code_challenge)`` using the S256 method."""
    verifier = _b64url(secrets.token_bytes(32))
    challenge = _b64url(hashlib.sha256(verifier.encode("ascii")).digest())
    return verifier, challenge


def generate_state() -> str:
    """Random anti-CSRF state: 16 bytes, hex encoded."""
    return secrets.token_hex(16)


def parse_jwt(token: str | None) -> dict[str, Any] | None:
    """Decode a JWT payload without verifying it. None if it is not a JWT.

    The signature is not checked: the token came straight from the token
    endpoint over TLS and is only read for expiry and display claims.
    """
    if not token or token.count(".") != 2:
        return None
    payload = token.split(".")[1]
    payload += "=" * (-len(payload) % 4)
    try:
        claims = json.loads(base64.urlsafe_b64decode(payload))
    except (binascii.Error, ValueError):
        return None
    return claims if isinstance(claims, dict) else None


def _claim_text(value: Any) -> str:
    return value if isinstance(value, str) else ""


def extract_account_info(id_token: str | None) -> dict[str, Any]:
    """Account identity from id-token claims; empty dict if unreadable.

    Missing, null or oddly typed claims come back as empty values.
    """
    claims = parse_jwt(id_token)
    if not claims:
        return {}
    auth = claims.get(AUTH_CLAIM)
    if not isinstance(auth, dict):
        auth = {}
    organizations = auth.get("organizations")
    return {
        "accountId": _claim_text(auth.get("chatgpt_account_id")),
        "planType": _claim_text(auth.get("chatgpt_plan_type")),
        "email": _claim_text(claims.get("email")),
        "name": _claim_text(claims.get("name")),
        "organizations": organizations if isinstance(organizations, list) else [],
    }

