from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from ..models import UserStatus


def normalize_email(email: str) -> str:
    return str(email).strip().lower()


class UserSettings(BaseModel):
    model_config = ConfigDict(extra="forbid")

    timezone: Optional[str] = None
    theme: Optional[str] = None


class UserCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    email: EmailStr
    credential_hash: str = Field(..., min_length=1)
    display_name: Optional[str] = Field(None, max_length=200)
    status: UserStatus = UserStatus.ACTIVE
    settings: Optional[UserSettings] = None

    @field_validator("email", mode="before")
    @classmethod
    def lowercase_email(cls, v):
        if isinstance(v, str):
            return normalize_email(v)
        return v
