"""
AuthorizationCode model: a single-use code waiting to be exchanged.

Only the SHA-256 of the code is stored. `consumed` and `family_id` are set
together by one conditional UPDATE at exchange time, so a replayed code always
points at the refresh-token family its first exchange created.
"""
from sqlalchemy import Column, String, Boolean, DateTime, JSON

from models.base_model import BaseModel, Base


class AuthorizationCode(BaseModel, Base):
    __tablename__ = "authorization_codes"
    SENSITIVE_FIELDS = ("code_hash",)

    code_hash = Column(String(64), nullable=False, unique=True, index=True)
    client_id = Column(String(128), nullable=False, index=True)
    user_id = Column(String(36), nullable=False)
    redirect_uri = Column(String(2048), nullable=False)
    scopes = Column(JSON, nullable=False, default=list)
    issued_at = Column(DateTime, nullable=False)
    expires_at = Column(DateTime, nullable=False, index=True)
    consumed = Column(Boolean, nullable=False, default=False)
    consumed_at = Column(DateTime, nullable=True)
    family_id = Column(String(36), nullable=True)

    def __repr__(self):
        return f"<AuthorizationCode client_id={self.client_id} consumed={self.consumed}>"
