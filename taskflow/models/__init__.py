"""Models package."""
from .task import DEFAULT_PRIORITY, TEXT_SEARCH_WEIGHTS, Task, TaskSort
from .user import User, UserStatus

__all__ = ["Task", "TaskSort", "DEFAULT_PRIORITY", "TEXT_SEARCH_WEIGHTS", "User", "UserStatus"]
