from models.base_model import Base, BaseModel
from sqlalchemy import Column, String, Boolean


class User(BaseModel, Base):
    __tablename__ = "users"
    SENSITIVE_FIELDS = ("password_hash",)

    username = Column(String(255), nullable=False, unique=True, index=True)
    password_hash = Column(String(255), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)

    @property
    def password(self):
        raise AttributeError("Password: Write-only field")
