"""
RefreshToken model: one link in a refresh-token family.

Fields:
- token_hash (SHA-256 of the opaque value; the value itself is never stored)
- family_id shared by every token descended from one original issuance
- status: active -> rotated (replaced_by points at the successor) or revoked
- access_jti / access_expires_at: the access token minted with this refresh
  token, denylisted when the family is revoked

Within a family at most one row is active at any time.
"""
from enum import Enum

from sqlalchemy import Column, String, DateTime, JSON
from sqlalchemy.types import Enum as SAEnum

from models.base_model import BaseModel, Base


class RefreshTokenStatus(str, Enum):
    ACTIVE = "active"
    ROTATED = "rotated"
    REVOKED = "revoked"


class RefreshToken(BaseModel, Base):
    __tablename__ = "refresh_tokens"
    SENSITIVE_FIELDS = ("token_hash",)

    token_hash = Column(String(64), nullable=False, unique=True, index=True)
    client_id = Column(String(128), nullable=False, index=True)
    user_id = Column(String(36), nullable=False, index=True)
    scopes = Column(JSON, nullable=False, default=list)
    family_id = Column(String(36), nullable=False, index=True)
    issued_at = Column(DateTime, nullable=False)
    expires_at = Column(DateTime, nullable=False, index=True)
    status = Column(
        SAEnum(RefreshTokenStatus, name="refresh_token_status", native_enum=False),
        nullable=False,
        default=RefreshTokenStatus.ACTIVE,
    )
    replaced_by = Column(String(64), nullable=True)
    access_jti = Column(String(64), nullable=True)
    access_expires_at = Column(DateTime, nullable=True)

    def __repr__(self):
        return f"<RefreshToken family={self.family_id} status={self.status}>"
