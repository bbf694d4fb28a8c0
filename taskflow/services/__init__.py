"""Services package."""
from .task_service import TaskService

__all__ = ["TaskService"]
