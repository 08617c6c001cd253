"""
Error taxonomy of the token authority.

Every failure the authority reports is one of the ErrorKind values below. The
enum values are the OAuth 2.0 wire strings, so the HTTP layer can put
`kind.value` straight into the `error` field of the response body.

InvalidClient and InvalidGrant always carry the same public description no
matter what went wrong. The real cause travels in `reason` and is only ever
logged.
"""
from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    INVALID_REQUEST = "invalid_request"
    INVALID_CLIENT = "invalid_client"
    INVALID_GRANT = "invalid_grant"
    INVALID_SCOPE = "invalid_scope"
    UNSUPPORTED_GRANT_TYPE = "unsupported_grant_type"
    RATE_LIMITED = "rate_limited"
    STORE_UNAVAILABLE = "server_error"
    INVALID_TOKEN = "invalid_token"


class OAuthError(Exception):
    """Base class for every error the authority raises on purpose."""

    kind: ErrorKind = ErrorKind.INVALID_REQUEST
    status: int = 400
    default_description = "The request is invalid."

    def __init__(self, description: str | None = None, reason: str | None = None):
        self.description = description or self.default_description
        # internal cause, never sent to the caller
        self.reason = reason or self.description
        super().__init__(self.description)

    def to_dict(self) -> dict:
        return {"error": self.kind.value, "error_description": self.description}


class InvalidRequest(OAuthError):
    kind = ErrorKind.INVALID_REQUEST
    status = 400
    default_description = "The request is missing a required parameter or is malformed."


class InvalidClient(OAuthError):
    kind = ErrorKind.INVALID_CLIENT
    status = 401
    default_description = "Client authentication failed."

    def __init__(self, reason: str | None = None):
        super().__init__(None, reason=reason)


class InvalidGrant(OAuthError):
    kind = ErrorKind.INVALID_GRANT
    status = 400
    default_description = "The provided authorization grant is invalid, expired, or revoked."

    def __init__(self, reason: str | None = None):
        super().__init__(None, reason=reason)


class InvalidScope(OAuthError):
    kind = ErrorKind.INVALID_SCOPE
    status = 400
    default_description = "The requested scope is invalid or exceeds the granted scope."


class UnsupportedGrantType(OAuthError):
    kind = ErrorKind.UNSUPPORTED_GRANT_TYPE
    status = 400
    default_description = "The authorization grant type is not supported."


class RateLimited(OAuthError):
    kind = ErrorKind.RATE_LIMITED
    status = 429
    default_description = "Too many requests, try again later."

    def __init__(self, retry_after_seconds: int, description: str | None = None):
        self.retry_after_seconds = max(1, int(retry_after_seconds))
        super().__init__(description)

    def to_dict(self) -> dict:
        body = super().to_dict()
        body["retry_after"] = self.retry_after_seconds
        return body


class StoreUnavailable(OAuthError):
    """A backing store failed or timed out. The outcome of a write is unknown."""

    kind = ErrorKind.STORE_UNAVAILABLE
    status = 500
    default_description = "The authorization server encountered an unexpected condition."


class InvalidToken(OAuthError):
    kind = ErrorKind.INVALID_TOKEN
    status = 401

    INVALID = "invalid"
    EXPIRED = "expired"
    REVOKED = "revoked"

    def __init__(self, reason: str = INVALID):
        super().__init__(reason, reason=reason)
