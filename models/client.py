"""
Client model: a registered OAuth client as the credential store keeps it.

The token authority only reads these rows; the secret is stored as an argon2
hash and never leaves the credential store.
"""
from enum import Enum

from sqlalchemy import Column, String, JSON
from sqlalchemy.types import Enum as SAEnum

from models.base_model import BaseModel, Base


class ClientStatus(str, Enum):
    ACTIVE = "active"
    REVOKED = "revoked"


class Client(BaseModel, Base):
    __tablename__ = "clients"
    SENSITIVE_FIELDS = ("secret_hash",)

    client_id = Column(String(128), nullable=False, unique=True, index=True)
    secret_hash = Column(String(255), nullable=False)
    name = Column(String(255), nullable=True)
    grant_types = Column(JSON, nullable=False, default=lambda: ["authorization_code", "refresh_token"])
    redirect_uris = Column(JSON, nullable=False, default=list)
    allowed_scopes = Column(JSON, nullable=False, default=list)
    status = Column(
        SAEnum(ClientStatus, name="client_status", native_enum=False),
        nullable=False,
        default=ClientStatus.ACTIVE,
    )

    @property
    def is_active(self) -> bool:
        return self.status == ClientStatus.ACTIVE

    def allows_grant(self, grant_type: str) -> bool:
        return grant_type in (self.grant_types or [])

    def __repr__(self):
        return f"<Client client_id={self.client_id} status={self.status}>"
