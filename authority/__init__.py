"""
Token authority: the OAuth 2.0 core that issues, verifies, rotates and
revokes credentials.
"""
from authority.errors import (
    ErrorKind,
    OAuthError,
    InvalidRequest,
    InvalidClient,
    InvalidGrant,
    InvalidScope,
    UnsupportedGrantType,
    RateLimited,
    StoreUnavailable,
    InvalidToken,
)
from authority.service import TokenAuthority

__all__ = [
    "ErrorKind",
    "OAuthError",
    "InvalidRequest",
    "InvalidClient",
    "InvalidGrant",
    "InvalidScope",
    "UnsupportedGrantType",
    "RateLimited",
    "StoreUnavailable",
    "InvalidToken",
    "TokenAuthority",
]
