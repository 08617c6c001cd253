from models.base_model import Base, BaseModel
from models.client import Client, ClientStatus
from models.user import User
from models.authorization_code import AuthorizationCode
from models.refresh_token import RefreshToken, RefreshTokenStatus
from models.db_storage import DBStorage

__all__ = [
    "Base",
    "BaseModel",
    "Client",
    "ClientStatus",
    "User",
    "AuthorizationCode",
    "RefreshToken",
    "RefreshTokenStatus",
    "DBStorage",
]
