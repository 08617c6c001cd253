"""
Credential store collaborator: read-only lookups of clients and users.

SQLCredentialStore backs the interface with the `clients` and `users` tables.
Client and user management (create, update, revoke) lives outside the token
authority; the management CLI writes those rows directly.
"""
from __future__ import annotations

from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

from authority.errors import StoreUnavailable
from models import Client, User, DBStorage
from utils.security import verify_password


class CredentialStore:
    def get_client(self, client_id: str) -> Optional[Client]:
        raise NotImplementedError

    def get_user(self, username: str) -> Optional[User]:
        raise NotImplementedError

    def get_user_by_id(self, user_id: str) -> Optional[User]:
        raise NotImplementedError

    def verify_client_secret(self, client: Optional[Client], secret: str) -> bool:
        """Constant-cost secret check; a missing client still pays for one hash."""
        return verify_password(secret, client.secret_hash if client else None)

    def verify_user_password(self, user: Optional[User], password: str) -> bool:
        return verify_password(password, user.password_hash if user else None)


class SQLCredentialStore(CredentialStore):
    def __init__(self, storage: DBStorage):
        self._storage = storage

    def _one(self, query):
        try:
            return query.first()
        except SQLAlchemyError as exc:
            self._storage.rollback()
            raise StoreUnavailable(reason=f"credential lookup: {exc}") from exc

    def get_client(self, client_id: str) -> Optional[Client]:
        if not client_id:
            return None
        session = self._storage.get_session()
        return self._one(session.query(Client).filter(Client.client_id == client_id))

    def get_user(self, username: str) -> Optional[User]:
        if not username:
            return None
        session = self._storage.get_session()
        return self._one(session.query(User).filter(User.username == username))

    def get_user_by_id(self, user_id: str) -> Optional[User]:
        if not user_id:
            return None
        session = self._storage.get_session()
        return self._one(session.query(User).filter(User.id == user_id))
