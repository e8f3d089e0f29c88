from __future__ import annotations

import base64
import hashlib
import hmac
import json
import re
import secrets
from datetime import UTC, datetime, timedelta
from typing import Any

SESSION_ID_PREFIX = "session_"
SESSION_ID_RANDOM_BYTES = 32
_SESSION_ID_PATTERN = re.compile(r"^session_[0-9a-f]{64}$")


def generate_session_id() -> str:
    return f"{SESSION_ID_PREFIX}{secrets.token_hex(SESSION_ID_RANDOM_BYTES)}"


def is_valid_session_id(value: str) -> bool:
    return bool(_SESSION_ID_PATTERN.fullmatch(value))


def create_signed_token(
    *,
    claims: dict[str, Any],
    secret_key: str,
    ttl_minutes: int,
) -> str:
    issued_at = datetime.now(UTC)
    expires_at = issued_at + timedelta(minutes=ttl_minutes)

    payload = {
        **claims,
        "iat": int(issued_at.timestamp()),
        "exp": int(expires_at.timestamp()),
    }
    payload_bytes = json.dumps(
        payload,
        separators=(",", ":"),
        sort_keys=True,
    ).encode("utf-8")
    payload_segment = _b64url_encode(payload_bytes)
    signature = hmac.new(
        secret_key.encode("utf-8"),
        payload_segment.encode("utf-8"),
        hashlib.sha256,
    ).digest()
    signature_segment = _b64url_encode(signature)
    return f"{payload_segment}.{signature_segment}"


def decode_signed_token(token: str, secret_key: str) -> dict[str, Any] | None:
    try:
        payload_segment, signature_segment = token.split(".", maxsplit=1)
    except ValueError:
        return None

    expected_signature = hmac.new(
        secret_key.encode("utf-8"),
        payload_segment.encode("utf-8"),
        hashlib.sha256,
    ).digest()
    try:
        provided_signature = _b64url_decode(signature_segment)
        payload_bytes = _b64url_decode(payload_segment)
    except (ValueError, UnicodeEncodeError):
        return None
    if not hmac.compare_digest(expected_signature, provided_signature):
        return None

    try:
        payload = json.loads(payload_bytes.decode("utf-8"))
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None

    if not isinstance(payload, dict):
        return None

    raw_expiration = payload.get("exp")
    if not isinstance(raw_expiration, int):
        return None
    if raw_expiration < int(datetime.now(UTC).timestamp()):
        return None

    return payload


def _b64url_encode(value: bytes) -> str:
    return base64.urlsafe_b64encode(value).decode("ascii").rstrip("=")


def _b64url_decode(value: str) -> bytes:
    padding_size = (-len(value)) % 4
    padded = f"{value}{'=' * padding_size}"
    return base64.urlsafe_b64decode(padded.encode("ascii"))
