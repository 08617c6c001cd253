"""
TokenAuthority: the composition root that wires the store handles into every
component and exposes the operations the HTTP layer and the CLI call.
"""
from __future__ import annotations

import logging
import math
from datetime import datetime, timedelta
from typing import Callable, Mapping, Optional

from authority import audit
from authority.codes import AuthorizationCodeManager
from authority.credentials import CredentialStore, SQLCredentialStore
from authority.grants import Grant, GrantDispatcher
from authority.issuer import Claims, TokenIssuer, TokenSet
from authority.rate_limiter import Admission, RateLimiter, RateLimitPolicy
from authority.revocation import RevocationService
from authority.rotation import RefreshRotator
from authority.store import FastStore, create_fast_store
from models import DBStorage
from utils.security import utcnow

logger = logging.getLogger(__name__)


class TokenAuthority:
    def __init__(
        self,
        storage: DBStorage,
        fast_store: FastStore,
        signing_key: str,
        algorithm: str = "HS256",
        verification_key: str | None = None,
        issuer_name: str = "token-authority",
        access_ttl: timedelta = timedelta(minutes=15),
        refresh_ttl: timedelta = timedelta(days=7),
        code_ttl: timedelta = timedelta(minutes=10),
        rate_limits: Optional[Mapping[str, RateLimitPolicy]] = None,
        rate_limit_enabled: bool = True,
        revoke_access_on_client_revocation: bool = False,
        credentials: CredentialStore | None = None,
        audit_recorder: audit.AuditRecorder | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.storage = storage
        self.fast_store = fast_store
        self.credentials = credentials or SQLCredentialStore(storage)
        self.audit = audit_recorder or audit.LoggingAuditRecorder()
        self._clock = clock

        self.revocation = RevocationService(
            storage,
            fast_store,
            access_ttl=access_ttl,
            revoke_access_on_client_revocation=revoke_access_on_client_revocation,
            clock=clock,
        )
        self.issuer = TokenIssuer(
            storage,
            self.revocation,
            signing_key=signing_key,
            algorithm=algorithm,
            verification_key=verification_key,
            issuer=issuer_name,
            access_ttl=access_ttl,
            refresh_ttl=refresh_ttl,
            clock=clock,
        )
        self.rotator = RefreshRotator(storage, self.issuer, self.revocation, self.audit, clock=clock)
        self.codes = AuthorizationCodeManager(
            storage,
            self.issuer,
            self.revocation,
            self.credentials,
            self.audit,
            code_ttl=code_ttl,
            clock=clock,
        )
        self.rate_limiter = RateLimiter(fast_store, rate_limits or {}, enabled=rate_limit_enabled)
        self.dispatcher = GrantDispatcher(
            self.credentials, self.issuer, self.codes, self.rotator, rate_limiter=self.rate_limiter
        )

    @classmethod
    def from_config(
        cls,
        config: Mapping,
        storage: DBStorage | None = None,
        fast_store: FastStore | None = None,
        **overrides,
    ) -> "TokenAuthority":
        """Build an authority from a Flask config mapping."""
        if storage is None:
            storage = DBStorage(config.get("DATABASE_URL"), pool_timeout=config.get("STORE_TIMEOUT_SECONDS", 5))
            storage.reload()
        if fast_store is None:
            fast_store = create_fast_store(
                config.get("FAST_STORE", "redis"),
                config.get("REDIS_URL"),
                timeout_seconds=config.get("STORE_TIMEOUT_SECONDS", 0.5),
            )
        algorithm = config.get("JWT_ALGORITHM", "HS256")
        if algorithm.startswith("HS"):
            signing_key = verification_key = config["JWT_SECRET"]
        else:
            signing_key, verification_key = config["JWT_PRIVATE_KEY"], config["JWT_PUBLIC_KEY"]
        policies = {
            name: RateLimitPolicy.from_config(raw)
            for name, raw in (config.get("RATE_LIMITS") or {}).items()
        }
        return cls(
            storage,
            fast_store,
            signing_key=signing_key,
            algorithm=algorithm,
            verification_key=verification_key,
            issuer_name=config.get("JWT_ISSUER", "token-authority"),
            access_ttl=config.get("ACCESS_TOKEN_EXPIRES", timedelta(minutes=15)),
            refresh_ttl=config.get("REFRESH_TOKEN_EXPIRES", timedelta(days=7)),
            code_ttl=config.get("AUTH_CODE_EXPIRES", timedelta(minutes=10)),
            rate_limits=policies,
            rate_limit_enabled=config.get("RATE_LIMIT_ENABLED", True),
            revoke_access_on_client_revocation=config.get("REVOKE_ACCESS_TOKENS_ON_CLIENT_REVOCATION", False),
            **overrides,
        )

    # ---- token endpoint ------------------------------------------------

    def token(self, grant: Grant) -> TokenSet:
        return self.dispatcher.dispatch(grant)

    def issue_code(self, client_id: str, user_id: str, redirect_uri: str, scopes=None) -> str:
        return self.codes.issue(client_id, user_id, redirect_uri, scopes)

    # ---- verification and revocation -------------------------------------

    def verify(self, token: str) -> Claims:
        return self.issuer.verify(token)

    def revoke(self, token: str, token_type_hint: str | None = None) -> None:
        """Revoke an access or refresh token. Unknown tokens are a no-op."""
        if token_type_hint != "refresh_token" and self._revoke_access(token):
            return
        family_id = self.revocation.family_of(token)
        if family_id:
            self.revocation.revoke_family(family_id)
            return
        if token_type_hint == "refresh_token":
            self._revoke_access(token)

    def _revoke_access(self, token: str) -> bool:
        claims = self.issuer.inspect(token)
        if claims is None:
            return False
        remaining = (claims.expires_at - self._clock()).total_seconds()
        self.revocation.revoke_access_token(claims.jti, math.ceil(remaining))
        return True

    def revoke_client(self, client_id: str) -> int:
        count = self.revocation.revoke_client(client_id)
        audit.report(self.audit, audit.CLIENT_REVOKED, client_id=client_id, refresh_tokens=count)
        return count

    def purge_expired(self) -> dict:
        return self.revocation.purge_expired()

    # ---- admission -----------------------------------------------------

    def admit(self, principal: str, route_class: str) -> Admission:
        return self.rate_limiter.check(principal, route_class)

    def health(self) -> dict:
        return {
            "database": self.storage.ping(),
            "fast_store": self.fast_store.ping(),
        }
