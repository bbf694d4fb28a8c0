"""Record store for users and tasks.

The store owns every invariant that does not depend on task business rules:
unique emails, task ownership and parent references, acyclic parent chains,
the ``completed``/``completed_at`` pairing and monotonic ``updated_at``.
Each public method runs in its own session and transaction.

Failures are reported with the exceptions in ``taskflow.errors``. Connection
level failures are retried a bounded number of times with exponential
backoff; everything else propagates to the caller unchanged.
"""

import logging
import time
from collections import defaultdict
from copy import copy
from datetime import datetime, timedelta
from typing import Any, Callable, Iterable, List, Mapping, Optional, TypeVar, Union

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import case, delete, func, or_
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DBAPIError, DisconnectionError, IntegrityError, OperationalError
from sqlmodel import Session, col, select

from .config import Settings
from .db import create_db_and_tables, get_engine
from .errors import (
    ConflictError,
    NotFoundError,
    StoreTimeoutError,
    StoreUnavailableError,
    ValidationError,
)
from .models import Task, TaskSort, User
from .schemas import TaskCreate, TaskQuery, TaskUpdate, UserCreate
from .schemas.user import normalize_email
from .search import query_terms, rank
from .timeutils import to_utc, utcnow

logger = logging.getLogger(__name__)

T = TypeVar("T")
M = TypeVar("M", bound=BaseModel)

_CONNECTION_MARKERS = (
    "connect",
    "connection",
    "server closed",
    "unable to open database",
    "terminating",
)
_TIMEOUT_MARKERS = (
    "database is locked",
    "database table is locked",
    "statement timeout",
    "timed out",
    "timeout expired",
)
# sqlite3 module default when no request timeout applies.
_SQLITE_DEFAULT_BUSY_MS = 5000


def _describe(error: PydanticValidationError) -> str:
    parts = []
    for err in error.errors():
        location = ".".join(str(p) for p in err["loc"]) or "input"
        parts.append(f"{location}: {err['msg']}")
    return "; ".join(parts)


def _validate(schema: type[M], data: Any) -> M:
    if isinstance(data, schema):
        return data
    if isinstance(data, BaseModel):
        data = data.model_dump(exclude_unset=True)
    try:
        return schema.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError(_describe(e)) from e


def _error_text(error: Exception) -> str:
    return str(getattr(error, "orig", None) or error).lower()


def _is_transient(error: Exception) -> bool:
    """Connection-level failures that are worth retrying."""
    if isinstance(error, DisconnectionError):
        return True
    if isinstance(error, DBAPIError) and error.connection_invalidated:
        return True
    if isinstance(error, OperationalError):
        text = _error_text(error)
        return any(marker in text for marker in _CONNECTION_MARKERS)
    return False


def _is_timeout(error: Exception) -> bool:
    text = _error_text(error)
    return any(marker in text for marker in _TIMEOUT_MARKERS)


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _order_by(sort: TaskSort) -> tuple:
    # Tasks without a due date sort after every dated task.
    due_missing = case((col(Task.due_at).is_(None), 1), else_=0)
    newest_first = (col(Task.created_at).desc(), col(Task.id).desc())
    if sort is TaskSort.CREATED_ASC:
        return (col(Task.created_at).asc(), col(Task.id).asc())
    if sort is TaskSort.DUE_ASC:
        return (due_missing, col(Task.due_at).asc(), *newest_first)
    if sort is TaskSort.PRIORITY_DESC_DUE_ASC:
        return (col(Task.priority).desc(), due_missing, col(Task.due_at).asc(), *newest_first)
    return newest_first


def coerce_sort(sort: Union[TaskSort, str]) -> TaskSort:
    try:
        return TaskSort(sort)
    except ValueError as e:
        allowed = ", ".join(s.value for s in TaskSort)
        raise ValidationError(f"Unknown sort {sort!r}; expected one of {allowed}") from e


class RecordStore:
    """Durable CRUD over the ``users`` and ``tasks`` tables.

    Attributes:
        engine: SQLAlchemy engine the store writes to
        request_timeout: Seconds an operation may take before it is rolled
            back with StoreTimeoutError (None disables the bound)
        max_retries: Retries allowed for connection-level failures
        retry_backoff: Base delay in seconds, doubled on every retry
    """

    def __init__(
        self,
        engine: Engine,
        *,
        request_timeout: Optional[float] = None,
        max_retries: int = 3,
        retry_backoff: float = 0.2,
        clock: Callable[[], datetime] = utcnow,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.engine = engine
        self.request_timeout = request_timeout
        self.max_retries = max_retries
        self.retry_backoff = retry_backoff
        self._clock = clock
        self._sleep = sleep

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs) -> "RecordStore":
        """Build a store and its engine from Settings."""
        return cls(
            get_engine(settings),
            request_timeout=settings.request_timeout,
            max_retries=settings.max_retries,
            retry_backoff=settings.retry_backoff,
            **kwargs,
        )

    def with_timeout(self, seconds: Optional[float]) -> "RecordStore":
        """Return a view of this store bound to a caller's request timeout."""
        if seconds is not None and seconds < 0:
            raise ValidationError("timeout must not be negative")
        bound = copy(self)
        bound.request_timeout = seconds
        return bound

    def create_schema(self) -> None:
        """Create tables and query indexes if they do not exist."""
        create_db_and_tables(self.engine)
        logger.info("Schema and indexes ensured")

    # ---- transaction plumbing ----

    def _open_session(self) -> Session:
        return Session(self.engine, expire_on_commit=False)

    def _deadline(self) -> Optional[float]:
        if self.request_timeout is None:
            return None
        return time.monotonic() + self.request_timeout

    def _limit_waits(self, session: Session, remaining: Optional[float]) -> None:
        """Bound lock waits and statements in this session by the time left."""
        dialect = self.engine.dialect.name
        if dialect == "sqlite":
            wait_ms = _SQLITE_DEFAULT_BUSY_MS if remaining is None else max(1, int(remaining * 1000))
            session.connection().exec_driver_sql(f"PRAGMA busy_timeout = {wait_ms}")
        elif dialect == "postgresql" and remaining is not None:
            session.connection().exec_driver_sql(
                f"SET LOCAL statement_timeout = {max(1, int(remaining * 1000))}"
            )

    def _run_once(self, operation: str, work: Callable[[Session], T], deadline: Optional[float]) -> T:
        remaining = None if deadline is None else deadline - time.monotonic()
        if remaining is not None and remaining <= 0:
            raise StoreTimeoutError(f"{operation} exceeded {self.request_timeout}s")
        with self._open_session() as session:
            self._limit_waits(session, remaining)
            result = work(session)
            if deadline is not None and time.monotonic() >= deadline:
                session.rollback()
                raise StoreTimeoutError(
                    f"{operation} exceeded {self.request_timeout}s and was rolled back"
                )
            session.commit()
            return result

    def _run(self, operation: str, work: Callable[[Session], T]) -> T:
        """Run ``work`` in a transaction, retrying connection failures.

        One deadline covers every attempt and the backoff between them.
        ``work`` may run more than once and must not mutate captured state.
        """
        deadline = self._deadline()
        attempt = 0
        while True:
            try:
                return self._run_once(operation, work, deadline)
            except IntegrityError as e:
                raise ConflictError(f"{operation} violates a uniqueness or reference constraint") from e
            except (DBAPIError, DisconnectionError) as e:
                if _is_transient(e):
                    attempt += 1
                    if attempt > self.max_retries:
                        logger.error(f"{operation} failed after {self.max_retries} retries: {e}")
                        raise StoreUnavailableError(f"{operation} failed: database unavailable") from e
                    delay = self.retry_backoff * 2 ** (attempt - 1)
                    if deadline is not None and time.monotonic() + delay >= deadline:
                        raise StoreTimeoutError(
                            f"{operation} ran out of time retrying a database error"
                        ) from e
                    logger.warning(
                        f"{operation}: transient database error, retry {attempt}/{self.max_retries} "
                        f"in {delay:.2f}s"
                    )
                    self._sleep(delay)
                    continue
                if _is_timeout(e):
                    raise StoreTimeoutError(f"{operation} timed out") from e
                raise

    def _next_timestamp(self, previous: Optional[datetime]) -> datetime:
        now = self._clock()
        if previous is not None and now <= previous:
            now = previous + timedelta(microseconds=1)
        return now

    # ---- users ----

    @staticmethod
    def _user_by_email(session: Session, email: str) -> Optional[User]:
        return session.exec(select(User).where(col(User.email) == email)).first()

    def insert_user(self, user: Union[UserCreate, Mapping[str, Any]]) -> int:
        """Insert a user and return its id.

        Raises:
            ValidationError: If the input is malformed
            ConflictError: If the email is already registered
        """
        data = _validate(UserCreate, user)

        def work(session: Session) -> int:
            if self._user_by_email(session, data.email) is not None:
                raise ConflictError(f"A user with email {data.email} already exists")
            record = User(
                email=data.email,
                credential_hash=data.credential_hash,
                display_name=data.display_name,
                status=data.status,
                settings=data.settings.model_dump(exclude_none=True) if data.settings else None,
                created_at=self._clock(),
            )
            session.add(record)
            session.flush()
            return record.id

        user_id = self._run("insert_user", work)
        logger.info(f"Created user {user_id} ({data.email})")
        return user_id

    def upsert_user(self, user: Union[UserCreate, Mapping[str, Any]]) -> int:
        """Insert a user, or refresh the mutable fields of the existing one.

        Email and ``created_at`` of an existing user are preserved and its
        ``last_login_at`` is cleared.
        """
        data = _validate(UserCreate, user)
        settings = data.settings.model_dump(exclude_none=True) if data.settings else None

        def work(session: Session) -> int:
            record = self._user_by_email(session, data.email)
            if record is None:
                record = User(email=data.email, credential_hash=data.credential_hash, created_at=self._clock())
            record.credential_hash = data.credential_hash
            record.display_name = data.display_name
            record.status = data.status
            record.settings = settings
            record.last_login_at = None
            session.add(record)
            session.flush()
            return record.id

        return self._run("upsert_user", work)

    def find_user_by_email(self, email: str) -> Optional[User]:
        normalized = normalize_email(email or "")
        if not normalized:
            return None
        return self._run("find_user_by_email", lambda session: self._user_by_email(session, normalized))

    def find_user_by_id(self, user_id: int) -> Optional[User]:
        return self._run("find_user_by_id", lambda session: session.get(User, user_id))

    def record_login(self, user_id: int, when: Optional[datetime] = None) -> User:
        """Stamp ``last_login_at``; called by the authentication collaborator."""
        stamp = to_utc(when) or self._clock()

        def work(session: Session) -> User:
            record = session.get(User, user_id)
            if record is None:
                raise NotFoundError(f"User {user_id} not found")
            record.last_login_at = stamp
            session.add(record)
            session.flush()
            return record

        return self._run("record_login", work)

    # ---- tasks ----

    def insert_task(self, task: Union[TaskCreate, Mapping[str, Any]]) -> int:
        """Insert a task and return its id.

        Raises:
            ValidationError: If ``user_id`` or ``title`` is missing or a field
                is out of range
            NotFoundError: If the user or the parent task does not exist
            ConflictError: If the parent belongs to another user
        """
        data = _validate(TaskCreate, task)

        def work(session: Session) -> int:
            if session.get(User, data.user_id) is None:
                raise NotFoundError(f"User {data.user_id} not found")
            if data.parent_id is not None:
                parent = session.get(Task, data.parent_id)
                if parent is None:
                    raise NotFoundError(f"Parent task {data.parent_id} not found")
                if parent.user_id != data.user_id:
                    raise ConflictError(f"Parent task {data.parent_id} belongs to another user")
            now = self._clock()
            record = Task(
                **data.model_dump(),
                completed_at=now if data.completed else None,
                created_at=now,
                updated_at=now,
            )
            session.add(record)
            session.flush()
            return record.id

        task_id = self._run("insert_task", work)
        logger.info(f"Created task {task_id} for user {data.user_id}")
        return task_id

    def find_task_by_id(self, task_id: int) -> Optional[Task]:
        return self._run("find_task_by_id", lambda session: session.get(Task, task_id))

    def count_tasks(self, user_id: Optional[int] = None) -> int:
        stmt = select(func.count()).select_from(Task)
        if user_id is not None:
            stmt = stmt.where(col(Task.user_id) == user_id)
        return int(self._run("count_tasks", lambda session: session.exec(stmt).one()))

    def query_tasks(
        self,
        query: Union[TaskQuery, Mapping[str, Any]],
        sort: Union[TaskSort, str] = TaskSort.CREATED_DESC,
        limit: Optional[int] = None,
    ) -> List[Task]:
        """Return one user's tasks matching every given filter.

        Args:
            query: Filter; ``user_id`` is required
            sort: One of the TaskSort orderings; undated tasks sort last
            limit: Maximum number of tasks, None for all

        Returns:
            Ordered list of tasks
        """
        q = _validate(TaskQuery, query)
        ordering = coerce_sort(sort)
        if limit is not None and limit <= 0:
            raise ValidationError("limit must be a positive integer")

        stmt = select(Task).where(col(Task.user_id) == q.user_id)
        if q.root_only:
            stmt = stmt.where(col(Task.parent_id).is_(None))
        elif q.parent_id is not None:
            stmt = stmt.where(col(Task.parent_id) == q.parent_id)
        if q.completed is not None:
            stmt = stmt.where(col(Task.completed) == q.completed)
        if q.due_from is not None:
            stmt = stmt.where(col(Task.due_at) >= q.due_from)
        if q.due_to is not None:
            stmt = stmt.where(col(Task.due_at) <= q.due_to)
        stmt = stmt.order_by(*_order_by(ordering))
        if limit is not None:
            stmt = stmt.limit(limit)

        tasks = self._run("query_tasks", lambda session: list(session.exec(stmt).all()))
        logger.debug(f"query_tasks user={q.user_id} sort={ordering.value} -> {len(tasks)} tasks")
        return tasks

    def _check_new_parent(self, session: Session, record: Task, parent_id: Optional[int]) -> None:
        if parent_id is None:
            return
        if parent_id == record.id:
            raise ConflictError(f"Task {record.id} cannot be its own parent")
        parent = session.get(Task, parent_id)
        if parent is None:
            raise NotFoundError(f"Parent task {parent_id} not found")
        if parent.user_id != record.user_id:
            raise ConflictError(f"Parent task {parent_id} belongs to another user")
        seen = {parent.id}
        ancestor_id = parent.parent_id
        while ancestor_id is not None and ancestor_id not in seen:
            if ancestor_id == record.id:
                raise ConflictError(f"Moving task {record.id} under {parent_id} would create a cycle")
            seen.add(ancestor_id)
            ancestor = session.get(Task, ancestor_id)
            ancestor_id = ancestor.parent_id if ancestor is not None else None

    def update_task(self, task_id: int, patch: Union[TaskUpdate, Mapping[str, Any]]) -> Task:
        """Apply a partial update and return the updated task.

        ``updated_at`` is always advanced. Changing ``completed`` sets or
        clears ``completed_at`` in the same write.

        Raises:
            NotFoundError: If the task does not exist
            ValidationError: If the patch is malformed or touches ``user_id``
            ConflictError: If a new parent breaks ownership or acyclicity
        """
        if isinstance(patch, Mapping) and "user_id" in patch:
            raise ValidationError("user_id is immutable")
        changes = _validate(TaskUpdate, patch).model_dump(exclude_unset=True)

        def work(session: Session) -> Task:
            values = dict(changes)
            record = session.get(Task, task_id)
            if record is None:
                raise NotFoundError(f"Task {task_id} not found")
            if "parent_id" in values:
                self._check_new_parent(session, record, values["parent_id"])

            now = self._next_timestamp(record.updated_at)
            if "completed" in values:
                done = values.pop("completed")
                if done and not record.completed:
                    record.completed_at = now
                elif not done:
                    record.completed_at = None
                record.completed = done
            for field, value in values.items():
                setattr(record, field, value)
            record.updated_at = now
            session.add(record)
            session.flush()
            return record

        task = self._run("update_task", work)
        logger.info(f"Updated task {task_id}: {', '.join(sorted(changes)) or 'touch'}")
        return task

    @staticmethod
    def _subtree_levels(session: Session, root: Task) -> List[List[Task]]:
        """Breadth-first levels of a subtree, siblings oldest first."""
        levels = [[root]]
        seen = {root.id}
        frontier = [root.id]
        while frontier:
            stmt = (
                select(Task)
                .where(col(Task.parent_id).in_(frontier))
                .order_by(col(Task.created_at).asc(), col(Task.id).asc())
            )
            children = [child for child in session.exec(stmt).all() if child.id not in seen]
            if not children:
                break
            seen.update(child.id for child in children)
            levels.append(children)
            frontier = [child.id for child in children]
        return levels

    @staticmethod
    def _delete_ids(session: Session, ids: Iterable[int]) -> int:
        # A single statement, so parent and child rows go together.
        ids = list(ids)
        if not ids:
            return 0
        tasks = Task.__table__
        result = session.connection().execute(delete(tasks).where(tasks.c.id.in_(ids)))
        return int(result.rowcount or 0)

    def delete_task(self, task_id: int, cascade: bool = False) -> int:
        """Delete a task, and with ``cascade`` its whole subtree.

        Returns:
            Number of tasks removed

        Raises:
            NotFoundError: If the task does not exist
            ConflictError: If it has subtasks and ``cascade`` is False
        """
        def work(session: Session) -> int:
            record = session.get(Task, task_id)
            if record is None:
                raise NotFoundError(f"Task {task_id} not found")
            levels = self._subtree_levels(session, record)
            if len(levels) > 1 and not cascade:
                raise ConflictError(f"Task {task_id} has subtasks; delete them first or cascade")
            return self._delete_ids(session, (task.id for level in levels for task in level))

        removed = self._run("delete_task", work)
        logger.info(f"Deleted task {task_id} (cascade={cascade}, removed={removed})")
        return removed

    def find_subtree(self, task_id: int) -> List[Task]:
        """Return a task followed by its descendants in depth-first pre-order."""
        def work(session: Session) -> List[Task]:
            root = session.get(Task, task_id)
            if root is None:
                raise NotFoundError(f"Task {task_id} not found")
            children = defaultdict(list)
            for level in self._subtree_levels(session, root)[1:]:
                for task in level:
                    children[task.parent_id].append(task)
            ordered = []
            stack = [root]
            while stack:
                task = stack.pop()
                ordered.append(task)
                stack.extend(reversed(children[task.id]))
            return ordered

        return self._run("find_subtree", work)

    def delete_tasks_by_tag(self, user_id: int, tag: str) -> int:
        """Delete a user's tasks carrying ``tag``, along with their subtrees."""
        def work(session: Session) -> int:
            owned = session.exec(select(Task).where(col(Task.user_id) == user_id)).all()
            children = defaultdict(list)
            for task in owned:
                if task.parent_id is not None:
                    children[task.parent_id].append(task.id)
            doomed = set()
            pending = [task.id for task in owned if tag in (task.tags or [])]
            while pending:
                current = pending.pop()
                if current in doomed:
                    continue
                doomed.add(current)
                pending.extend(children[current])
            return self._delete_ids(session, doomed)

        removed = self._run("delete_tasks_by_tag", work)
        if removed:
            logger.info(f"Removed {removed} tasks tagged {tag!r} for user {user_id}")
        return removed

    def search_tasks(self, user_id: int, query_text: str, limit: Optional[int] = None) -> List[Task]:
        """Rank a user's tasks against ``query_text``.

        Title matches weigh 5, description matches 1; ties go to the most
        recently created task.

        Raises:
            ValidationError: If the query has no searchable words
        """
        terms = query_terms(query_text or "")
        if not terms:
            raise ValidationError("Search text must contain at least one word")
        if limit is not None and limit <= 0:
            raise ValidationError("limit must be a positive integer")

        conditions = []
        for term in terms:
            pattern = f"%{_escape_like(term)}%"
            conditions.append(col(Task.title).ilike(pattern, escape="\\"))
            conditions.append(col(Task.description).ilike(pattern, escape="\\"))
        stmt = select(Task).where(col(Task.user_id) == user_id, or_(*conditions))

        candidates = self._run("search_tasks", lambda session: list(session.exec(stmt).all()))
        hits = rank(candidates, terms)
        if limit is not None:
            hits = hits[:limit]
        logger.debug(f"search_tasks user={user_id} terms={terms} -> {len(hits)} hits")
        return [hit.task for hit in hits]
