#!/usr/bin/env python3
"""
Shared SQLAlchemy base and mixin for the token authority's tables.

- UUID primary key (String(36)) with defaults
- created_at / updated_at timestamps set by the database
- to_dict() that formats timestamps and removes SA internals

Persistence goes through an explicit DBStorage handle; models never reach for
a global session.
"""

from __future__ import annotations

from datetime import datetime
import uuid

from sqlalchemy import Column, String, DateTime
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func

TIME_FMT = "%Y-%m-%dT%H:%M:%S.%f"

# Declarative base for all models
Base = declarative_base()


def _uuid_str() -> str:
    """Return a canonical UUIDv4 string (36 chars, with hyphens)."""
    return str(uuid.uuid4())


class BaseModel:
    """
    Base mixin for all persistent models: id, created_at, updated_at and a
    to_dict() that never exposes fields listed in SENSITIVE_FIELDS.
    """

    SENSITIVE_FIELDS: tuple = ()

    id = Column(String(36), primary_key=True, default=_uuid_str, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    def __init__(self, *args, **kwargs):
        for key, value in kwargs.items():
            if key != "__class__":
                setattr(self, key, value)
        # Ensure an id exists if caller passed none
        if getattr(self, "id", None) is None:
            self.id = _uuid_str()

    def __str__(self) -> str:
        return f"[{self.__class__.__name__}] ({self.id})"

    def to_dict(self) -> dict:
        d = {k: v for k, v in self.__dict__.items() if k != "_sa_instance_state"}
        for key, value in list(d.items()):
            if isinstance(value, datetime):
                d[key] = value.strftime(TIME_FMT)
        for key in self.SENSITIVE_FIELDS:
            d.pop(key, None)
        d["__class__"] = self.__class__.__name__
        return d
