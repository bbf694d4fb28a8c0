from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from ..models import DEFAULT_PRIORITY
from ..timeutils import to_utc


def normalize_tags(tags: List[str]) -> List[str]:
    """Strip tags and drop duplicates, keeping the first occurrence."""
    seen = set()
    result = []
    for tag in tags:
        tag = tag.strip()
        if not tag:
            raise ValueError("tags must be non-empty strings")
        if tag not in seen:
            seen.add(tag)
            result.append(tag)
    return result


class TaskCreate(BaseModel):
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    user_id: int
    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=2000)
    priority: int = Field(DEFAULT_PRIORITY, ge=1, le=5)
    estimated_minutes: Optional[int] = Field(None, ge=0)
    due_at: Optional[datetime] = None
    completed: bool = False
    parent_id: Optional[int] = None
    tags: List[str] = Field(default_factory=list)

    @field_validator("due_at")
    @classmethod
    def due_to_utc(cls, v):
        return to_utc(v)

    @field_validator("tags")
    @classmethod
    def clean_tags(cls, v):
        return normalize_tags(v)


class TaskUpdate(BaseModel):
    """Partial update. Only fields explicitly set are applied."""
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    title: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=2000)
    priority: Optional[int] = Field(None, ge=1, le=5)
    estimated_minutes: Optional[int] = Field(None, ge=0)
    due_at: Optional[datetime] = None
    completed: Optional[bool] = None
    parent_id: Optional[int] = None
    tags: Optional[List[str]] = None

    @field_validator("title", "priority", "completed", "tags", mode="before")
    @classmethod
    def not_null(cls, v, info):
        if v is None:
            raise ValueError(f"{info.field_name} may not be null")
        return v

    @field_validator("due_at")
    @classmethod
    def due_to_utc(cls, v):
        return to_utc(v)

    @field_validator("tags")
    @classmethod
    def clean_tags(cls, v):
        return normalize_tags(v)


class TaskQuery(BaseModel):
    """Conjunctive filter over a single user's tasks."""
    model_config = ConfigDict(extra="forbid")

    user_id: int
    parent_id: Optional[int] = None
    root_only: bool = False
    completed: Optional[bool] = None
    due_from: Optional[datetime] = None
    due_to: Optional[datetime] = None

    @field_validator("due_from", "due_to")
    @classmethod
    def bounds_to_utc(cls, v):
        return to_utc(v)

    @model_validator(mode="after")
    def check_consistency(self):
        if self.root_only and self.parent_id is not None:
            raise ValueError("root_only and parent_id are mutually exclusive")
        if self.due_from and self.due_to and self.due_from > self.due_to:
            raise ValueError("due_from must not be after due_to")
        return self
