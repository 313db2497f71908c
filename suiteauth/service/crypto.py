"""Password hashing, opaque tokens and HS256 bearer tokens.

Password hashes are ``base64(salt || pbkdf2_sha256(password, salt))``; bearer
tokens are compact JWS strings signed with HMAC-SHA256.
"""
from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import json
import secrets
import time
from typing import Any, Mapping, Optional

from suiteauth.logging import get_logger

logger = get_logger(__name__)

SALT_BYTES = 16
KEY_BYTES = 32
DEFAULT_ITERATIONS = 100_000
TOKEN_ALGORITHM = "HS256"


def _derive(password: str, salt: bytes, iterations: int) -> bytes:
    return hashlib.pbkdf2_hmac(
        "sha256", password.encode("utf-8"), salt, iterations, dklen=KEY_BYTES
    )


def hash_password(password: str, *, iterations: int = DEFAULT_ITERATIONS) -> str:
    salt = secrets.token_bytes(SALT_BYTES)
    derived = _derive(password, salt, iterations)
    return base64.b64encode(salt + derived).decode("ascii")


def verify_password(
    password: str, password_hash: Optional[str], *, iterations: int = DEFAULT_ITERATIONS
) -> bool:
    """Re-derive and compare in constant time; any malformed hash fails closed."""
    if not password_hash or not isinstance(password, str):
        return False
    try:
        blob = base64.b64decode(password_hash.encode("ascii"), validate=True)
    except (binascii.Error, ValueError, UnicodeEncodeError):
        logger.warning("password_hash_undecodable")
        return False
    if len(blob) != SALT_BYTES + KEY_BYTES:
        logger.warning("password_hash_wrong_length", length=len(blob))
        return False
    salt, expected = blob[:SALT_BYTES], blob[SALT_BYTES:]
    return hmac.compare_digest(_derive(password, salt, iterations), expected)


def _encode_segment(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def _decode_segment(segment: str) -> bytes:
    padding = "=" * ((4 - len(segment) % 4) % 4)
    return base64.urlsafe_b64decode((segment + padding).encode("ascii"))


def generate_token(length: int = 32) -> str:
    """``length`` random bytes, URL-safe base64 without padding."""
    if length <= 0:
        raise ValueError("token length must be positive")
    return _encode_segment(secrets.token_bytes(length))


def _signature(signing_input: str, secret: str) -> str:
    digest = hmac.new(secret.encode("utf-8"), signing_input.encode("ascii"), hashlib.sha256)
    return _encode_segment(digest.digest())


def sign(
    claims: Mapping[str, Any],
    secret: str,
    ttl_seconds: int,
    *,
    now: Optional[float] = None,
) -> str:
    issued_at = int(now if now is not None else time.time())
    payload = {**claims, "iat": issued_at, "exp": issued_at + int(ttl_seconds)}
    header_enc = _encode_segment(
        json.dumps({"alg": TOKEN_ALGORITHM, "typ": "JWT"}, separators=(",", ":")).encode()
    )
    payload_enc = _encode_segment(json.dumps(payload, separators=(",", ":")).encode())
    signing_input = f"{header_enc}.{payload_enc}"
    return f"{signing_input}.{_signature(signing_input, secret)}"


def verify(
    token: Optional[str], secret: str, *, now: Optional[float] = None
) -> Optional[dict[str, Any]]:
    """Return the claims of a correctly signed, unexpired token, else None.

    Never raises: a missing segment, bad base64, non-JSON payload, foreign
    algorithm or missing ``exp`` all yield None.
    """
    if not token or not isinstance(token, str):
        return None
    parts = token.split(".")
    if len(parts) != 3:
        return None
    header_b64, payload_b64, sig_b64 = parts

    try:
        header = json.loads(_decode_segment(header_b64))
    except (ValueError, UnicodeError, binascii.Error):
        return None
    # Reject alg=none and friends before touching the signature
    if not isinstance(header, dict) or header.get("alg") != TOKEN_ALGORITHM:
        alg = header.get("alg") if isinstance(header, dict) else None
        logger.warning("token_invalid_algorithm", alg=alg)
        return None

    signing_input = f"{header_b64}.{payload_b64}"
    try:
        expected = _signature(signing_input, secret)
    except UnicodeEncodeError:
        return None
    if not hmac.compare_digest(expected.encode("ascii"), sig_b64.encode("utf-8")):
        return None

    try:
        payload = json.loads(_decode_segment(payload_b64))
    except (ValueError, UnicodeError, binascii.Error):
        return None
    if not isinstance(payload, dict):
        return None
    exp = payload.get("exp")
    if isinstance(exp, bool) or not isinstance(exp, (int, float)):
        return None
    current = now if now is not None else time.time()
    if exp < current:
        return None
    return payload


__all__ = [
    "hash_password",
    "verify_password",
    "generate_token",
    "sign",
    "verify",
]
