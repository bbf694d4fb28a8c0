"""Input schemas validated by the record store before any write."""
from .task import TaskCreate, TaskQuery, TaskUpdate
from .user import UserCreate, UserSettings

__all__ = ["TaskCreate", "TaskQuery", "TaskUpdate", "UserCreate", "UserSettings"]
