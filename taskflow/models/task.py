from datetime import datetime
from enum import Enum
from typing import List, Optional

from sqlalchemy import JSON, Column, Index
from sqlmodel import Field, SQLModel

from ..timeutils import utcnow

DEFAULT_PRIORITY = 3


class TaskSort(str, Enum):
    """Orderings supported by task queries."""
    CREATED_DESC = "created_desc"
    CREATED_ASC = "created_asc"
    DUE_ASC = "due_asc"
    PRIORITY_DESC_DUE_ASC = "priority_desc_due_asc"


class Task(SQLModel, table=True):
    """A single task, optionally nested under a parent task.

    Attributes:
        id: Store-generated identifier
        user_id: Owning user, immutable after creation
        title: Task title (required)
        description: Optional detailed description
        priority: 1 (lowest) to 5 (highest)
        estimated_minutes: Optional effort estimate
        due_at: Optional due timestamp
        completed: Whether the task is done
        completed_at: When the task was completed, None while open
        parent_id: Parent task, None for root tasks
        tags: Ordered list of labels
        created_at: Timestamp when task was created
        updated_at: Timestamp of the last mutation
    """
    __tablename__ = "tasks"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="users.id")
    title: str = Field(max_length=200)
    description: Optional[str] = Field(default=None, max_length=2000)
    priority: int = DEFAULT_PRIORITY
    estimated_minutes: Optional[int] = None
    due_at: Optional[datetime] = None
    completed: bool = False
    completed_at: Optional[datetime] = None
    parent_id: Optional[int] = Field(default=None, foreign_key="tasks.id")
    tags: List[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def is_root(self) -> bool:
        return self.parent_id is None


_tasks = Task.__table__

Index("ix_tasks_user_created_desc", _tasks.c.user_id, _tasks.c.created_at.desc())
Index("ix_tasks_user_parent_created", _tasks.c.user_id, _tasks.c.parent_id, _tasks.c.created_at)
Index(
    "ix_tasks_user_completed_created",
    _tasks.c.user_id,
    _tasks.c.completed,
    _tasks.c.created_at.desc(),
)
Index("ix_tasks_user_completed_due", _tasks.c.user_id, _tasks.c.completed, _tasks.c.due_at)
Index(
    "ix_tasks_user_completed_priority_due",
    _tasks.c.user_id,
    _tasks.c.completed,
    _tasks.c.priority.desc(),
    _tasks.c.due_at,
)

# Relative field weights for text search over title and description.
TEXT_SEARCH_WEIGHTS = {"title": 5, "description": 1}
