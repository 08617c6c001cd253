"""
Refresh token rotation with reuse detection.

Each successful refresh retires the presented token (active -> rotated) and
issues its successor in the same family. Presenting a token that is no longer
active means either an attacker replayed an old token or two rotations of
the same token raced. Both are treated as theft: the whole family is revoked
before the caller hears `invalid_grant`.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable

from sqlalchemy.exc import SQLAlchemyError

from authority import audit
from authority.errors import InvalidGrant, InvalidScope, StoreUnavailable
from authority.issuer import TokenIssuer, TokenSet
from authority.revocation import RevocationService
from models import DBStorage, RefreshToken, RefreshTokenStatus
from utils.security import hash_token, parse_scope, utcnow

logger = logging.getLogger(__name__)


class RefreshRotator:
    def __init__(
        self,
        storage: DBStorage,
        issuer: TokenIssuer,
        revocation: RevocationService,
        audit_recorder: audit.AuditRecorder | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._storage = storage
        self._issuer = issuer
        self._revocation = revocation
        self._audit = audit_recorder
        self._clock = clock

    def rotate(self, refresh_token_value: str, client_id: str, scopes=None) -> TokenSet:
        if not refresh_token_value:
            raise InvalidGrant(reason="empty refresh token")
        token_hash = hash_token(refresh_token_value)
        session = self._storage.get_session()

        try:
            row = (
                session.query(RefreshToken)
                .populate_existing()
                .filter(RefreshToken.token_hash == token_hash)
                .first()
            )
        except SQLAlchemyError as exc:
            session.rollback()
            raise StoreUnavailable(reason=f"refresh token lookup: {exc}") from exc

        if row is None:
            raise InvalidGrant(reason="unknown refresh token")
        if row.client_id != client_id:
            raise InvalidGrant(reason="refresh token issued to another client")

        family_id = row.family_id
        if row.status != RefreshTokenStatus.ACTIVE:
            self._reuse_detected(family_id, client_id, row.status.value)
        if self._clock() >= row.expires_at:
            raise InvalidGrant(reason="refresh token expired")

        granted = list(row.scopes or [])
        requested = parse_scope(scopes) if scopes else granted
        if not set(requested) <= set(granted):
            raise InvalidScope(reason="requested scope exceeds the refresh grant")

        successor = self._issuer.mint(
            subject=row.user_id,
            client_id=client_id,
            scopes=requested,
            refresh_scopes=granted,
            include_refresh=True,
            family_id=family_id,
            commit=False,
        )
        new_hash = successor.refresh_row.token_hash

        try:
            self._revocation.lock_family(session, family_id)
            won = (
                session.query(RefreshToken)
                .filter(
                    RefreshToken.token_hash == token_hash,
                    RefreshToken.status == RefreshTokenStatus.ACTIVE,
                )
                .update(
                    {
                        RefreshToken.status: RefreshTokenStatus.ROTATED,
                        RefreshToken.replaced_by: new_hash,
                    },
                    synchronize_session=False,
                )
            )
            if won != 1:
                # another rotation of the same token committed first
                session.rollback()
            else:
                session.commit()
        except SQLAlchemyError as exc:
            session.rollback()
            raise StoreUnavailable(reason=f"refresh token rotation: {exc}") from exc

        if won != 1:
            self._reuse_detected(family_id, client_id, "lost rotation race")

        logger.info("Refresh token rotated family=%s client=%s", family_id, client_id)
        return successor

    def _reuse_detected(self, family_id: str, client_id: str, status: str) -> None:
        # revocation errors propagate as StoreUnavailable: a failed defense
        # must not look like a successful one
        revoked = self._revocation.revoke_family(family_id)
        logger.warning(
            "Refresh token reuse detected family=%s client=%s status=%s revoked=%d",
            family_id, client_id, status, revoked,
        )
        audit.report(
            self._audit,
            audit.REFRESH_TOKEN_REUSE,
            family_id=family_id,
            client_id=client_id,
            presented_status=status,
        )
        raise InvalidGrant(reason=f"refresh token reuse ({status})")
