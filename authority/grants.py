"""
Grant types and the dispatcher that routes a token request to its handler.

The four grants are a closed set of frozen dataclasses, each carrying only
the fields valid for it. The dispatcher authenticates the client once, for
every grant, and collapses every authentication failure into the same
InvalidClient so callers cannot tell which check failed.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import ClassVar, Optional, Union

from authority.credentials import CredentialStore
from authority.errors import InvalidClient, InvalidGrant, InvalidScope, UnsupportedGrantType
from authority.issuer import SUBJECT_CLIENT, SUBJECT_USER, TokenIssuer, TokenSet
from authority.rate_limiter import RateLimiter
from models import Client
from utils.security import parse_scope

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuthorizationCodeGrant:
    grant_type: ClassVar[str] = "authorization_code"
    code: str
    redirect_uri: str
    client_id: str = ""
    client_secret: str = field(default="", repr=False)


@dataclass(frozen=True)
class RefreshTokenGrant:
    grant_type: ClassVar[str] = "refresh_token"
    refresh_token: str = field(repr=False)
    client_id: str = ""
    client_secret: str = field(default="", repr=False)
    scope: Optional[str] = None


@dataclass(frozen=True)
class ClientCredentialsGrant:
    grant_type: ClassVar[str] = "client_credentials"
    client_id: str = ""
    client_secret: str = field(default="", repr=False)
    scope: Optional[str] = None


@dataclass(frozen=True)
class PasswordGrant:
    grant_type: ClassVar[str] = "password"
    username: str
    password: str = field(repr=False)
    client_id: str = ""
    client_secret: str = field(default="", repr=False)
    scope: Optional[str] = None


Grant = Union[AuthorizationCodeGrant, RefreshTokenGrant, ClientCredentialsGrant, PasswordGrant]


class GrantDispatcher:
    def __init__(
        self,
        credentials: CredentialStore,
        issuer: TokenIssuer,
        codes,
        rotator,
        rate_limiter: Optional[RateLimiter] = None,
    ):
        self._credentials = credentials
        self._issuer = issuer
        self._codes = codes
        self._rotator = rotator
        self._rate_limiter = rate_limiter

    def authenticate_client(self, client_id: str, client_secret: str, grant_type: str) -> Client:
        client = self._credentials.get_client(client_id)
        # the secret is always checked, even for unknown clients
        secret_ok = self._credentials.verify_client_secret(client, client_secret)
        if client is None:
            raise InvalidClient(reason=f"unknown client {client_id!r}")
        if not secret_ok:
            raise InvalidClient(reason=f"bad secret for client {client_id!r}")
        if not client.is_active:
            raise InvalidClient(reason=f"client {client_id!r} is revoked")
        if not client.allows_grant(grant_type):
            raise InvalidClient(reason=f"client {client_id!r} may not use {grant_type}")
        return client

    @staticmethod
    def _scopes_for(client: Client, requested: Optional[str]) -> list[str]:
        allowed = set(client.allowed_scopes or [])
        scopes = parse_scope(requested) or sorted(allowed)
        if not set(scopes) <= allowed:
            raise InvalidScope(reason=f"scopes {scopes} exceed client grant")
        return scopes

    def dispatch(self, grant: Grant) -> TokenSet:
        client = self.authenticate_client(grant.client_id, grant.client_secret, grant.grant_type)
        if self._rate_limiter is not None:
            # only authenticated clients spend their own budget
            self._rate_limiter.check(f"client:{client.client_id}", "token")
        logger.debug("Dispatching %s for client %s", grant.grant_type, client.client_id)

        if isinstance(grant, AuthorizationCodeGrant):
            return self._codes.exchange(grant.code, client.client_id, grant.redirect_uri)

        if isinstance(grant, RefreshTokenGrant):
            return self._rotator.rotate(grant.refresh_token, client.client_id, grant.scope)

        if isinstance(grant, ClientCredentialsGrant):
            # no user context, so never a refresh token
            return self._issuer.mint(
                subject=client.client_id,
                client_id=client.client_id,
                scopes=self._scopes_for(client, grant.scope),
                include_refresh=False,
                subject_type=SUBJECT_CLIENT,
            )

        if isinstance(grant, PasswordGrant):
            user = self._credentials.get_user(grant.username)
            password_ok = self._credentials.verify_user_password(user, grant.password)
            if user is None or not password_ok or not user.is_active:
                raise InvalidGrant(reason="bad resource owner credentials")
            return self._issuer.mint(
                subject=user.id,
                client_id=client.client_id,
                scopes=self._scopes_for(client, grant.scope),
                include_refresh=True,
                subject_type=SUBJECT_USER,
            )

        raise UnsupportedGrantType()
