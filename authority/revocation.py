"""
Revocation service.

Access tokens are revoked by denylisting their jti in the fast store for the
rest of their lifetime; the entry expires on its own once the token would have.
Refresh tokens are revoked on their persisted rows (status = revoked), one
token or a whole family at a time. Revoking rows also denylists the access
tokens that were minted alongside them, except on client revocation where
the client revocation policy decides.

Every operation here is idempotent: revoking something already revoked, or
something that never existed, changes nothing and does not fail.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Callable, Iterable

from sqlalchemy.exc import SQLAlchemyError

from authority.errors import StoreUnavailable
from authority.store import FastStore
from models import AuthorizationCode, DBStorage, RefreshToken, RefreshTokenStatus
from utils.security import hash_token, to_epoch, utcnow

logger = logging.getLogger(__name__)

JTI_PREFIX = "denylist:jti:"
CLIENT_PREFIX = "denylist:client:"


class RevocationService:
    def __init__(
        self,
        storage: DBStorage,
        fast_store: FastStore,
        access_ttl: timedelta = timedelta(minutes=15),
        revoke_access_on_client_revocation: bool = False,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._storage = storage
        self._fast_store = fast_store
        self._access_ttl = access_ttl
        self._client_policy = revoke_access_on_client_revocation
        self._clock = clock

    # ---- access tokens -------------------------------------------------

    def revoke_access_token(self, jti: str, ttl_seconds: int) -> None:
        if not jti or ttl_seconds <= 0:
            # already past its expiry, verification rejects it anyway
            return
        self._fast_store.set(JTI_PREFIX + jti, "1", ttl_seconds)
        logger.info("Access token denylisted jti=%s ttl=%ss", jti, ttl_seconds)

    def is_access_token_revoked(self, jti: str) -> bool:
        return self._fast_store.exists(JTI_PREFIX + jti)

    def is_client_revoked_since(self, client_id: str, issued_at: datetime) -> bool:
        if not self._client_policy:
            return False
        revoked_at = self._fast_store.get(CLIENT_PREFIX + client_id)
        return revoked_at is not None and to_epoch(issued_at) <= int(revoked_at)

    def _denylist_rows(self, rows: Iterable[tuple]) -> None:
        now = self._clock()
        for jti, expires_at in rows:
            if jti and expires_at:
                self.revoke_access_token(jti, int((expires_at - now).total_seconds()))

    # ---- refresh tokens ------------------------------------------------

    @staticmethod
    def _lock_where(session, *criteria) -> None:
        # SELECT ... FOR UPDATE; a no-op on sqlite, whose writes are serialized anyway
        session.query(RefreshToken.id).filter(*criteria).with_for_update().all()

    def lock_family(self, session, family_id: str) -> None:
        """Row-lock a family until the caller's transaction ends.

        Rotation takes this lock before retiring a token and revocation takes
        it before revoking, so a family revocation waits for an in-flight
        rotation and then sees the successor it committed.
        """
        self._lock_where(session, RefreshToken.family_id == family_id)

    def _revoke_where(self, *criteria, denylist_access: bool = True) -> int:
        """Mark every matching row revoked and, optionally, denylist their access tokens."""
        session = self._storage.get_session()
        try:
            self._lock_where(session, *criteria)
            linked = (
                session.query(RefreshToken.access_jti, RefreshToken.access_expires_at)
                .filter(*criteria)
                .all()
            )
            count = (
                session.query(RefreshToken)
                .filter(*criteria)
                .filter(RefreshToken.status != RefreshTokenStatus.REVOKED)
                .update({RefreshToken.status: RefreshTokenStatus.REVOKED}, synchronize_session="fetch")
            )
            session.commit()
        except SQLAlchemyError as exc:
            session.rollback()
            raise StoreUnavailable(reason=f"refresh token revocation: {exc}") from exc
        if denylist_access:
            self._denylist_rows(linked)
        return count

    def revoke_refresh_token(self, token_hash: str) -> int:
        count = self._revoke_where(RefreshToken.token_hash == token_hash)
        logger.info("Refresh token revoked hash=%s... rows=%d", token_hash[:10], count)
        return count

    def revoke_family(self, family_id: str) -> int:
        if not family_id:
            return 0
        count = self._revoke_where(RefreshToken.family_id == family_id)
        logger.warning("Refresh token family revoked family=%s rows=%d", family_id, count)
        return count

    def family_of(self, refresh_token_value: str) -> str | None:
        session = self._storage.get_session()
        try:
            row = (
                session.query(RefreshToken.family_id)
                .filter(RefreshToken.token_hash == hash_token(refresh_token_value))
                .first()
            )
        except SQLAlchemyError as exc:
            session.rollback()
            raise StoreUnavailable(reason=f"refresh token lookup: {exc}") from exc
        return row[0] if row else None

    def revoke_client(self, client_id: str) -> int:
        """Revoke every refresh family of a client that is being revoked.

        Outstanding access tokens of the client stay valid until they expire
        unless the client revocation policy is enabled.
        """
        count = self._revoke_where(RefreshToken.client_id == client_id, denylist_access=self._client_policy)
        if self._client_policy:
            ttl = int(self._access_ttl.total_seconds())
            self._fast_store.set(CLIENT_PREFIX + client_id, str(to_epoch(self._clock())), ttl)
        logger.warning("Client revoked client=%s refresh_rows=%d", client_id, count)
        return count

    # ---- housekeeping --------------------------------------------------

    def purge_expired(self) -> dict:
        """Delete expired authorization codes and refresh tokens."""
        now = self._clock()
        session = self._storage.get_session()
        try:
            codes = (
                session.query(AuthorizationCode)
                .filter(AuthorizationCode.expires_at < now)
                .delete(synchronize_session=False)
            )
            tokens = (
                session.query(RefreshToken)
                .filter(RefreshToken.expires_at < now)
                .delete(synchronize_session=False)
            )
            session.commit()
        except SQLAlchemyError as exc:
            session.rollback()
            raise StoreUnavailable(reason=f"purge: {exc}") from exc
        logger.info("Purged %d authorization codes and %d refresh tokens", codes, tokens)
        return {"authorization_codes": codes, "refresh_tokens": tokens}
