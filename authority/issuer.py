"""
Token issuer: mints signed access tokens and opaque refresh tokens, and owns
the verification path every protected route goes through.

Access tokens are self-contained JWTs and are never persisted. Refresh tokens
are random values; only their SHA-256 is written to the `refresh_tokens`
table, tied to a family id shared by every rotation of one original grant.
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, List, Optional

import jwt
from sqlalchemy.exc import SQLAlchemyError

from authority.errors import InvalidToken, StoreUnavailable
from models import DBStorage, RefreshToken, RefreshTokenStatus
from utils.security import (
    decode_token,
    encode_token,
    format_scope,
    from_epoch,
    generate_jti,
    generate_opaque_token,
    hash_token,
    parse_scope,
    to_epoch,
    utcnow,
)

logger = logging.getLogger(__name__)

SUBJECT_USER = "user"
SUBJECT_CLIENT = "client"


@dataclass
class Claims:
    subject: str
    subject_type: str
    client_id: str
    scopes: List[str]
    issued_at: datetime
    expires_at: datetime
    jti: str

    def to_dict(self) -> dict:
        return {
            "sub": self.subject,
            "sub_type": self.subject_type,
            "client_id": self.client_id,
            "scope": format_scope(self.scopes),
            "iat": to_epoch(self.issued_at),
            "exp": to_epoch(self.expires_at),
            "jti": self.jti,
        }


@dataclass
class TokenSet:
    access_token: str
    expires_in: int
    scopes: List[str]
    jti: str
    access_expires_at: datetime
    refresh_token: Optional[str] = None
    family_id: Optional[str] = None
    token_type: str = "bearer"
    refresh_row: Optional[RefreshToken] = field(default=None, repr=False)

    def to_response(self) -> dict:
        body = {
            "access_token": self.access_token,
            "token_type": self.token_type,
            "expires_in": self.expires_in,
            "scope": format_scope(self.scopes),
        }
        if self.refresh_token is not None:
            body["refresh_token"] = self.refresh_token
        return body


class TokenIssuer:
    def __init__(
        self,
        storage: DBStorage,
        revocation,
        signing_key: str,
        algorithm: str = "HS256",
        verification_key: str | None = None,
        issuer: str = "token-authority",
        access_ttl: timedelta = timedelta(minutes=15),
        refresh_ttl: timedelta = timedelta(days=7),
        clock: Callable[[], datetime] = utcnow,
    ):
        self._storage = storage
        self._revocation = revocation
        self._signing_key = signing_key
        self._verification_key = verification_key or signing_key
        self._algorithm = algorithm
        self._issuer = issuer
        self.access_ttl = access_ttl
        self.refresh_ttl = refresh_ttl
        self._clock = clock

    def _now(self) -> datetime:
        return self._clock().replace(microsecond=0)

    def mint(
        self,
        subject: str,
        client_id: str,
        scopes,
        include_refresh: bool,
        family_id: str | None = None,
        subject_type: str = SUBJECT_USER,
        commit: bool = True,
        refresh_scopes=None,
    ) -> TokenSet:
        """Mint an access token and, when asked, a refresh token.

        With commit=False the refresh row is only added to the session, so
        the caller can commit it in the same transaction as its own
        conditional update. refresh_scopes lets a rotation keep the family's
        full grant on the new refresh token while the access token carries a
        narrowed scope.
        """
        scopes = parse_scope(scopes)
        now = self._now()
        expires_at = now + self.access_ttl
        jti = generate_jti()
        payload = {
            "iss": self._issuer,
            "sub": str(subject),
            "sub_type": subject_type,
            "client_id": client_id,
            "scope": format_scope(scopes),
            "iat": to_epoch(now),
            "exp": to_epoch(expires_at),
            "jti": jti,
            "typ": "access",
        }
        access_token = encode_token(payload, self._signing_key, self._algorithm)
        token_set = TokenSet(
            access_token=access_token,
            expires_in=int(self.access_ttl.total_seconds()),
            scopes=scopes,
            jti=jti,
            access_expires_at=expires_at,
        )

        if include_refresh:
            value = generate_opaque_token()
            row = RefreshToken(
                token_hash=hash_token(value),
                client_id=client_id,
                user_id=str(subject),
                scopes=parse_scope(refresh_scopes) if refresh_scopes is not None else scopes,
                family_id=family_id or str(uuid.uuid4()),
                issued_at=now,
                expires_at=now + self.refresh_ttl,
                status=RefreshTokenStatus.ACTIVE,
                access_jti=jti,
                access_expires_at=expires_at,
            )
            self._storage.new(row)
            if commit:
                try:
                    self._storage.save()
                except SQLAlchemyError as exc:
                    raise StoreUnavailable(reason=f"refresh token insert: {exc}") from exc
            token_set.refresh_token = value
            token_set.family_id = row.family_id
            token_set.refresh_row = row

        logger.info(
            "Minted token jti=%s client=%s sub_type=%s refresh=%s",
            jti, client_id, subject_type, include_refresh,
        )
        return token_set

    def inspect(self, token: str) -> Optional[Claims]:
        """Signature and structure check only. None when the token is not ours."""
        try:
            payload = decode_token(token, self._verification_key, [self._algorithm], issuer=self._issuer)
        except jwt.InvalidTokenError:
            return None
        if payload.get("typ") != "access":
            return None
        try:
            return Claims(
                subject=str(payload["sub"]),
                subject_type=payload.get("sub_type", SUBJECT_USER),
                client_id=str(payload["client_id"]),
                scopes=parse_scope(payload.get("scope", "")),
                issued_at=from_epoch(payload["iat"]),
                expires_at=from_epoch(payload["exp"]),
                jti=str(payload["jti"]),
            )
        except (KeyError, TypeError, ValueError, OverflowError):
            return None

    def verify(self, token: str) -> Claims:
        """Signature -> expiry -> denylist -> client marker, cheapest first."""
        if not token:
            raise InvalidToken(InvalidToken.INVALID)
        claims = self.inspect(token)
        if claims is None:
            raise InvalidToken(InvalidToken.INVALID)
        if self._clock() >= claims.expires_at:
            raise InvalidToken(InvalidToken.EXPIRED)
        if self._revocation.is_access_token_revoked(claims.jti):
            raise InvalidToken(InvalidToken.REVOKED)
        if self._revocation.is_client_revoked_since(claims.client_id, claims.issued_at):
            raise InvalidToken(InvalidToken.REVOKED)
        return claims
