from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import JSON, Column, Index
from sqlmodel import Field, SQLModel

from ..timeutils import utcnow


class UserStatus(str, Enum):
    ACTIVE = "active"
    DISABLED = "disabled"


class User(SQLModel, table=True):
    """An account owning tasks.

    Attributes:
        id: Store-generated identifier
        email: Login key, stored lowercased and unique
        credential_hash: Opaque credential managed by the auth collaborator
        display_name: Optional name shown in the UI
        status: active or disabled
        settings: Optional map with ``timezone`` and ``theme``
        created_at: Creation timestamp
        last_login_at: Last successful login, set by the auth collaborator
    """
    __tablename__ = "users"

    id: Optional[int] = Field(default=None, primary_key=True)
    email: str = Field(max_length=320)
    credential_hash: str
    display_name: Optional[str] = Field(default=None, max_length=200)
    status: UserStatus = Field(default=UserStatus.ACTIVE)
    settings: Optional[dict] = Field(default=None, sa_column=Column(JSON))
    created_at: datetime = Field(default_factory=utcnow)
    last_login_at: Optional[datetime] = None


_users = User.__table__

Index("ux_users_email", _users.c.email, unique=True)
Index("ix_users_created_at_desc", _users.c.created_at.desc())
