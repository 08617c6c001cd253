"""
Authorization code manager: issues codes at the authorize step and redeems
each one exactly once at the token endpoint.

A code is consumed by a single conditional UPDATE (`consumed = false` guard)
that also records the refresh-token family created by the exchange. A second
exchange of the same code is a replay: the family is revoked and the event is
reported before `invalid_grant` goes back to the caller.
"""
from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta
from typing import Callable

from sqlalchemy.exc import SQLAlchemyError

from authority import audit
from authority.credentials import CredentialStore
from authority.errors import (
    InvalidClient,
    InvalidGrant,
    InvalidRequest,
    InvalidScope,
    StoreUnavailable,
)
from authority.issuer import TokenIssuer, TokenSet
from authority.revocation import RevocationService
from models import AuthorizationCode, DBStorage
from utils.security import generate_opaque_token, hash_token, parse_scope, utcnow

logger = logging.getLogger(__name__)

GRANT_TYPE = "authorization_code"


class AuthorizationCodeManager:
    def __init__(
        self,
        storage: DBStorage,
        issuer: TokenIssuer,
        revocation: RevocationService,
        credentials: CredentialStore,
        audit_recorder: audit.AuditRecorder | None = None,
        code_ttl: timedelta = timedelta(minutes=10),
        clock: Callable[[], datetime] = utcnow,
    ):
        self._storage = storage
        self._issuer = issuer
        self._revocation = revocation
        self._credentials = credentials
        self._audit = audit_recorder
        self.code_ttl = code_ttl
        self._clock = clock

    def issue(self, client_id: str, user_id: str, redirect_uri: str, scopes=None) -> str:
        """Create a code for `user_id` after they approved `client_id`."""
        client = self._credentials.get_client(client_id)
        if client is None or not client.is_active or not client.allows_grant(GRANT_TYPE):
            raise InvalidClient(reason=f"client {client_id!r} cannot use the authorization code grant")
        if not redirect_uri or redirect_uri not in (client.redirect_uris or []):
            raise InvalidRequest("redirect_uri is not registered for this client.")

        allowed = set(client.allowed_scopes or [])
        requested = parse_scope(scopes) or sorted(allowed)
        if not set(requested) <= allowed:
            raise InvalidScope(reason=f"scopes {requested} exceed client grant")

        code = generate_opaque_token(32)
        now = self._clock()
        row = AuthorizationCode(
            code_hash=hash_token(code),
            client_id=client_id,
            user_id=str(user_id),
            redirect_uri=redirect_uri,
            scopes=requested,
            issued_at=now,
            expires_at=now + self.code_ttl,
            consumed=False,
        )
        self._storage.new(row)
        try:
            self._storage.save()
        except SQLAlchemyError as exc:
            raise StoreUnavailable(reason=f"authorization code insert: {exc}") from exc
        logger.info("Authorization code issued client=%s user=%s", client_id, user_id)
        return code

    def exchange(self, code: str, client_id: str, redirect_uri: str) -> TokenSet:
        if not code:
            raise InvalidGrant(reason="empty authorization code")
        code_hash = hash_token(code)
        session = self._storage.get_session()

        try:
            row = (
                session.query(AuthorizationCode)
                .populate_existing()
                .filter(AuthorizationCode.code_hash == code_hash)
                .first()
            )
        except SQLAlchemyError as exc:
            session.rollback()
            raise StoreUnavailable(reason=f"authorization code lookup: {exc}") from exc

        if row is None:
            raise InvalidGrant(reason="unknown authorization code")
        if self._clock() >= row.expires_at:
            raise InvalidGrant(reason="authorization code expired")
        if row.consumed:
            self._replay_detected(row.family_id, client_id)
        if row.client_id != client_id or row.redirect_uri != redirect_uri:
            raise InvalidGrant(reason="client or redirect_uri mismatch")

        user = self._credentials.get_user_by_id(row.user_id)
        if user is None or not user.is_active:
            raise InvalidGrant(reason="resource owner missing or inactive")

        family_id = str(uuid.uuid4())
        token_set = self._issuer.mint(
            subject=row.user_id,
            client_id=client_id,
            scopes=row.scopes,
            include_refresh=True,
            family_id=family_id,
            commit=False,
        )

        try:
            won = (
                session.query(AuthorizationCode)
                .filter(
                    AuthorizationCode.code_hash == code_hash,
                    AuthorizationCode.consumed.is_(False),
                )
                .update(
                    {
                        AuthorizationCode.consumed: True,
                        AuthorizationCode.consumed_at: self._clock(),
                        AuthorizationCode.family_id: family_id,
                    },
                    synchronize_session=False,
                )
            )
            if won != 1:
                session.rollback()
                winner_family = (
                    session.query(AuthorizationCode.family_id)
                    .filter(AuthorizationCode.code_hash == code_hash)
                    .scalar()
                )
            else:
                session.commit()
        except SQLAlchemyError as exc:
            session.rollback()
            raise StoreUnavailable(reason=f"authorization code exchange: {exc}") from exc

        if won != 1:
            self._replay_detected(winner_family, client_id)

        logger.info("Authorization code exchanged client=%s family=%s", client_id, family_id)
        return token_set

    def _replay_detected(self, family_id: str | None, client_id: str) -> None:
        revoked = self._revocation.revoke_family(family_id) if family_id else 0
        logger.warning(
            "Authorization code replay client=%s family=%s revoked=%d",
            client_id, family_id, revoked,
        )
        audit.report(
            self._audit,
            audit.AUTHORIZATION_CODE_REPLAY,
            client_id=client_id,
            family_id=family_id,
        )
        raise InvalidGrant(reason="authorization code already used")
