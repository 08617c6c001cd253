"""
security helpers:
- Argon2 hashing for passwords and client secrets via argon2-cffi
- JWT encoding/decoding via PyJWT
- random identifiers and SHA-256 digests for opaque tokens
"""
from __future__ import annotations

import hashlib
import secrets
import uuid
from datetime import datetime, timezone
from typing import Dict, Any, Iterable

import jwt
from argon2 import PasswordHasher
from argon2.exceptions import VerifyMismatchError, VerificationError, InvalidHashError

ph = PasswordHasher()

# verified against when a lookup misses, so unknown ids cost the same time
_DUMMY_HASH = ph.hash("dummy-secret-for-timing")


def hash_password(password: str) -> str:
    """Hash a plaintext password or client secret using Argon2
    """
    return ph.hash(password)


def verify_password(password: str, password_hash: str | None) -> bool:
    """ Verify a plaintext password using argon2. A missing hash still pays
    for one verification and then fails.
    """
    if not password_hash:
        try:
            ph.verify(_DUMMY_HASH, password or "")
        except (VerificationError, InvalidHashError):
            pass
        return False
    try:
        return ph.verify(password_hash, password or "")
    except (VerifyMismatchError, VerificationError, InvalidHashError):
        return False


def generate_jti() -> str:
    """Generate a unique JTI (JWT ID).
    """
    return uuid.uuid4().hex


def generate_opaque_token(nbytes: int = 48) -> str:
    """High-entropy URL-safe value for refresh tokens and authorization codes."""
    return secrets.token_urlsafe(nbytes)


def hash_token(value: str) -> str:
    """SHA-256 hex digest used as the storage key of an opaque token."""
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def utcnow() -> datetime:
    """Naive UTC now; every stored timestamp uses this convention."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_epoch(value: datetime) -> int:
    return int(value.replace(tzinfo=timezone.utc).timestamp())


def from_epoch(value: int) -> datetime:
    return datetime.fromtimestamp(int(value), tz=timezone.utc).replace(tzinfo=None)


def encode_token(payload: Dict[str, Any], key: str, algorithm: str) -> str:
    return jwt.encode(payload, key, algorithm=algorithm)


def decode_token(token: str, key: str, algorithms: Iterable[str], issuer: str | None = None) -> Dict[str, Any]:
    """
    Decode a JWT and check its signature and structure only.
    Expiry and issuance time are left to the caller, which decides them
    against its own clock.
    Raises jwt.InvalidTokenError on any failure.
    """
    return jwt.decode(
        token,
        key,
        algorithms=list(algorithms),
        issuer=issuer,
        options={"verify_exp": False, "verify_iat": False, "require": ["exp", "iat", "jti", "sub"]},
    )


def parse_scope(raw: str | Iterable[str] | None) -> list[str]:
    """Split a space-delimited scope string into a de-duplicated, sorted list."""
    if raw is None:
        return []
    parts = raw.split() if isinstance(raw, str) else list(raw)
    return sorted({p.strip() for p in parts if p and p.strip()})


def format_scope(scopes: Iterable[str]) -> str:
    return " ".join(sorted(set(scopes)))
