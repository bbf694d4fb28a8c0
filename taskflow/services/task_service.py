"""Task business rules layered over the record store.

Subtasks inherit ``priority``, ``due_at`` and ``tags`` from their parent
unless the caller supplies them, and always belong to the parent's owner.
"""

import logging
from datetime import datetime
from typing import Any, List, Optional, Union

from ..crud import RecordStore, coerce_sort
from ..errors import NotFoundError, ValidationError
from ..models import DEFAULT_PRIORITY, Task, TaskSort

logger = logging.getLogger(__name__)

_UNSET: Any = object()

LIST_SORTS = (TaskSort.CREATED_DESC, TaskSort.DUE_ASC, TaskSort.PRIORITY_DESC_DUE_ASC)


class TaskService:
    """Operations on tasks for application callers."""

    def __init__(self, store: RecordStore):
        self.store = store

    def with_timeout(self, seconds: Optional[float]) -> "TaskService":
        """Return a service whose store calls are bound to a request timeout."""
        return TaskService(self.store.with_timeout(seconds))

    def get_task(self, task_id: int) -> Task:
        task = self.store.find_task_by_id(task_id)
        if task is None:
            raise NotFoundError(f"Task {task_id} not found")
        return task

    def create_task(
        self,
        user_id: int,
        title: str,
        *,
        description: Optional[str] = None,
        priority: int = _UNSET,
        estimated_minutes: Optional[int] = None,
        due_at: Optional[datetime] = _UNSET,
        tags: Optional[List[str]] = _UNSET,
        extra_tags: Optional[List[str]] = None,
        parent_id: Optional[int] = None,
    ) -> Task:
        """Create a task, inheriting from its parent when one is given.

        Args:
            user_id: Owner; replaced by the parent's owner for subtasks
            title: Non-empty title
            description: Optional description
            priority: 1..5; inherited from the parent, else 3
            estimated_minutes: Optional effort estimate
            due_at: Due timestamp; inherited from the parent when omitted.
                Pass None explicitly for a subtask without a due date.
            tags: Tag list; the parent's tags when omitted, none when None
            extra_tags: Tags appended after the supplied or inherited ones
            parent_id: Parent task for a subtask

        Returns:
            The stored Task

        Raises:
            ValidationError: If the title is blank or a field is invalid
            NotFoundError: If the parent or user does not exist
        """
        if not isinstance(title, str) or not title.strip():
            raise ValidationError("title must not be empty")

        fields = {
            "user_id": user_id,
            "title": title,
            "description": description,
            "estimated_minutes": estimated_minutes,
            "parent_id": parent_id,
        }
        inherited = {"priority": DEFAULT_PRIORITY, "due_at": None, "tags": []}

        if parent_id is not None:
            parent = self.get_task(parent_id)
            if user_id != parent.user_id:
                logger.warning(
                    f"Subtask of task {parent.id} requested for user {user_id}; "
                    f"assigning parent owner {parent.user_id}"
                )
            fields["user_id"] = parent.user_id
            inherited = {"priority": parent.priority, "due_at": parent.due_at, "tags": list(parent.tags or [])}

        supplied = {"priority": priority, "due_at": due_at, "tags": tags}
        for name, value in supplied.items():
            fields[name] = inherited[name] if value is _UNSET else value
        if fields["tags"] is None:
            fields["tags"] = []
        if extra_tags:
            fields["tags"] = list(fields["tags"]) + list(extra_tags)

        task_id = self.store.insert_task(fields)
        return self.get_task(task_id)

    def set_completed(self, task_id: int, completed: bool) -> Task:
        """Mark a task done or reopen it; ``completed_at`` follows."""
        if not isinstance(completed, bool):
            raise ValidationError("completed must be a boolean")
        task = self.store.update_task(task_id, {"completed": completed})
        logger.info(f"Task {task_id} marked {'done' if completed else 'open'}")
        return task

    def update_task(self, task_id: int, **changes) -> Task:
        """Edit title, description, priority, estimate, due date, tags or completion."""
        if "parent_id" in changes:
            raise ValidationError("use move_task to change a task's parent")
        return self.store.update_task(task_id, changes)

    def move_task(self, task_id: int, new_parent_id: Optional[int]) -> Task:
        """Re-parent a task; None turns it into a root task.

        Raises:
            ConflictError: If the new parent is the task itself, one of its
                descendants, or belongs to another user
        """
        task = self.store.update_task(task_id, {"parent_id": new_parent_id})
        logger.info(f"Moved task {task_id} under {new_parent_id}")
        return task

    def delete_task(self, task_id: int, cascade: bool = False) -> int:
        return self.store.delete_task(task_id, cascade=cascade)

    def list_tasks(
        self,
        user_id: int,
        *,
        root_only: bool = False,
        completed: Optional[bool] = None,
        sort_key: Union[TaskSort, str] = TaskSort.CREATED_DESC,
        limit: Optional[int] = None,
    ) -> List[Task]:
        """List a user's tasks.

        Args:
            user_id: Owner
            root_only: Only tasks without a parent
            completed: Filter on completion, None for both
            sort_key: ``created_desc``, ``due_asc`` or ``priority_desc_due_asc``;
                tasks without a due date come last in due orderings
            limit: Maximum number of tasks
        """
        sort = coerce_sort(sort_key)
        if sort not in LIST_SORTS:
            raise ValidationError(f"Unsupported sort key {sort.value!r} for listing")
        query = {"user_id": user_id, "root_only": root_only, "completed": completed}
        return self.store.query_tasks(query, sort=sort, limit=limit)

    def list_subtasks(self, parent_id: int) -> List[Task]:
        """Direct children of a task, oldest first; empty if the task is gone."""
        parent = self.store.find_task_by_id(parent_id)
        if parent is None:
            return []
        query = {"user_id": parent.user_id, "parent_id": parent_id}
        return self.store.query_tasks(query, sort=TaskSort.CREATED_ASC)

    def get_subtree(self, task_id: int) -> List[Task]:
        """A task and all of its descendants, depth first."""
        return self.store.find_subtree(task_id)

    def search_tasks(self, user_id: int, query_text: str, limit: Optional[int] = None) -> List[Task]:
        return self.store.search_tasks(user_id, query_text, limit=limit)
