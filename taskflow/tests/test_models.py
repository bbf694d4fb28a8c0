"""Unit tests for the Task and User models."""

from datetime import datetime, timezone

from taskflow.models import Task, User, UserStatus

UTC = timezone.utc


def test_task_creation_minimal():
    """Test creating a task with minimal required fields."""
    task = Task(user_id=1, title="Test Task")

    assert task.id is None
    assert task.title == "Test Task"
    assert task.description is None
    assert task.completed is False
    assert task.completed_at is None
    assert task.priority == 3
    assert task.tags == []
    assert task.due_at is None
    assert task.parent_id is None
    assert task.is_root
    assert isinstance(task.created_at, datetime)
    assert isinstance(task.updated_at, datetime)


def test_task_creation_full():
    """Test creating a task with all fields."""
    now = datetime(2025, 3, 1, 12, 0, tzinfo=UTC)
    task = Task(
        id=2,
        user_id=1,
        title="Test Task",
        description="Test description",
        priority=5,
        estimated_minutes=45,
        due_at=now,
        completed=True,
        completed_at=now,
        parent_id=1,
        tags=["work", "urgent"],
        created_at=now,
        updated_at=now,
    )

    assert task.priority == 5
    assert task.estimated_minutes == 45
    assert task.tags == ["work", "urgent"]
    assert task.parent_id == 1
    assert not task.is_root


def test_task_serialization():
    """Test task serialization to dict."""
    task = Task(id=1, user_id=1, title="Test Task", description="Test")
    task_dict = task.model_dump()

    assert task_dict["id"] == 1
    assert task_dict["title"] == "Test Task"
    assert task_dict["completed"] is False
    assert task_dict["parent_id"] is None
    assert "created_at" in task_dict
    assert "updated_at" in task_dict


def test_user_defaults():
    """Test that default values are set correctly."""
    user = User(email="a@example.com", credential_hash="h")

    assert user.status == UserStatus.ACTIVE
    assert user.display_name is None
    assert user.settings is None
    assert user.last_login_at is None
    assert isinstance(user.created_at, datetime)


def test_declared_indexes():
    """Test that query indexes are declared on the tables."""
    task_indexes = {ix.name for ix in Task.__table__.indexes}
    user_indexes = {ix.name: ix for ix in User.__table__.indexes}

    assert "ix_tasks_user_parent_created" in task_indexes
    assert "ix_tasks_user_completed_priority_due" in task_indexes
    assert user_indexes["ux_users_email"].unique
