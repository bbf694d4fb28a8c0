"""Tests for TaskService: inheritance, completion, listing, subtrees and search."""

from datetime import datetime, timezone

import pytest

from taskflow.errors import ConflictError, NotFoundError, StoreTimeoutError, ValidationError

UTC = timezone.utc


@pytest.fixture
def roadmap(service, user_id):
    return service.create_task(
        user_id,
        "Plan roadmap",
        priority=4,
        due_at=datetime(2025, 3, 31, tzinfo=UTC),
        tags=["work", "planning"],
    )


def test_create_root_task_defaults(service, user_id):
    """Test that a root task gets default priority, no due date and no tags."""
    task = service.create_task(user_id, "Read a book")

    assert task.id is not None
    assert task.user_id == user_id
    assert task.priority == 3
    assert task.due_at is None
    assert task.tags == []
    assert task.completed is False
    assert task.completed_at is None
    assert task.created_at == task.updated_at


def test_subtask_inherits_priority_due_and_tags(service, user_id, roadmap):
    """Test the Plan roadmap / Draft OKRs scenario."""
    subtask = service.create_task(user_id, "Draft OKRs", parent_id=roadmap.id)

    assert subtask.parent_id == roadmap.id
    assert subtask.priority == 4
    assert subtask.due_at == datetime(2025, 3, 31, tzinfo=UTC)
    assert subtask.tags == ["work", "planning"]


def test_subtask_explicit_fields_win(service, user_id, roadmap):
    """Test that explicitly supplied fields are not overwritten by the parent."""
    subtask = service.create_task(
        user_id,
        "Finalize deck",
        parent_id=roadmap.id,
        priority=5,
        due_at=None,
        tags=["slides"],
    )

    assert subtask.priority == 5
    assert subtask.due_at is None
    assert subtask.tags == ["slides"]


def test_subtask_extra_tags_are_appended(service, user_id, roadmap):
    """Test that marker tags are appended to the inherited ones."""
    subtask = service.create_task(
        user_id, "Collect input", parent_id=roadmap.id, extra_tags=["urgent", "work"]
    )
    assert subtask.tags == ["work", "planning", "urgent"]


def test_explicit_none_tags_mean_no_tags(service, user_id, roadmap):
    """Test that tags=None clears inherited tags instead of failing."""
    plain = service.create_task(user_id, "Plain", parent_id=roadmap.id, tags=None)
    marked = service.create_task(user_id, "Marked", tags=None, extra_tags=["urgent"])

    assert plain.tags == []
    assert plain.priority == roadmap.priority
    assert marked.tags == ["urgent"]


def test_subtask_owner_is_forced_to_parent_owner(service, user_id, other_user_id, roadmap):
    """Test that a subtask always belongs to its parent's owner."""
    subtask = service.create_task(other_user_id, "Sneaky subtask", parent_id=roadmap.id)
    assert subtask.user_id == user_id


def test_create_task_errors(service, user_id):
    """Test title validation and missing parents."""
    with pytest.raises(ValidationError):
        service.create_task(user_id, "")
    with pytest.raises(ValidationError):
        service.create_task(user_id, "   ")
    with pytest.raises(NotFoundError):
        service.create_task(user_id, "Orphan", parent_id=12345)
    with pytest.raises(ValidationError):
        service.create_task(user_id, "Bad priority", priority=0)


def test_set_completed_round_trip(service, user_id):
    """Test open -> done -> open restores completed_at and advances updated_at."""
    task = service.create_task(user_id, "Toggle me")

    done = service.set_completed(task.id, True)
    assert done.completed is True
    assert done.completed_at is not None
    assert done.updated_at > task.updated_at

    reopened = service.set_completed(task.id, False)
    assert reopened.completed is False
    assert reopened.completed_at is None
    assert reopened.updated_at > done.updated_at

    with pytest.raises(NotFoundError):
        service.set_completed(999, True)


def test_update_task_edits_fields(service, user_id):
    """Test editing several fields at once."""
    task = service.create_task(user_id, "Draft")
    updated = service.update_task(
        task.id, title="Final", description="Ready", tags=["done"], estimated_minutes=30
    )

    assert updated.title == "Final"
    assert updated.description == "Ready"
    assert updated.tags == ["done"]
    assert updated.estimated_minutes == 30

    with pytest.raises(ValidationError):
        service.update_task(task.id, parent_id=None)
    with pytest.raises(ValidationError):
        service.update_task(task.id, title="")


def test_move_task(service, user_id, other_user_id, roadmap):
    """Test re-parenting, including cycle and ownership checks."""
    child = service.create_task(user_id, "Child", parent_id=roadmap.id)
    grandchild = service.create_task(user_id, "Grandchild", parent_id=child.id)
    foreign = service.create_task(other_user_id, "Foreign")

    with pytest.raises(ConflictError):
        service.move_task(roadmap.id, grandchild.id)
    with pytest.raises(ConflictError):
        service.move_task(child.id, foreign.id)

    assert service.move_task(grandchild.id, None).parent_id is None
    assert [t.id for t in service.list_subtasks(child.id)] == []


def test_delete_parent_requires_cascade(service, user_id, roadmap):
    """Test the delete policy and that former children have no subtasks."""
    child = service.create_task(user_id, "Child", parent_id=roadmap.id)
    grandchild = service.create_task(user_id, "Grandchild", parent_id=child.id)

    with pytest.raises(ConflictError):
        service.delete_task(roadmap.id, cascade=False)

    assert service.delete_task(roadmap.id, cascade=True) == 3
    for former in (roadmap.id, child.id, grandchild.id):
        assert service.list_subtasks(former) == []
        with pytest.raises(NotFoundError):
            service.get_task(former)


def test_list_subtasks_oldest_first(service, user_id, roadmap):
    """Test that direct children come back in creation order."""
    first = service.create_task(user_id, "First", parent_id=roadmap.id)
    second = service.create_task(user_id, "Second", parent_id=roadmap.id)
    service.create_task(user_id, "Nested", parent_id=first.id)

    assert [t.id for t in service.list_subtasks(roadmap.id)] == [first.id, second.id]


def test_get_subtree(service, user_id, roadmap):
    """Test that the subtree starts at the task and includes all descendants."""
    child = service.create_task(user_id, "Child", parent_id=roadmap.id)
    grandchild = service.create_task(user_id, "Grandchild", parent_id=child.id)

    assert [t.id for t in service.get_subtree(roadmap.id)] == [roadmap.id, child.id, grandchild.id]


def test_list_tasks_due_ascending_puts_undated_last(service, user_id):
    """Test rootOnly + open + dueAsc over 2025-02-01, no due date and 2025-03-31."""
    feb = service.create_task(user_id, "February", due_at=datetime(2025, 2, 1, tzinfo=UTC))
    undated = service.create_task(user_id, "Whenever")
    march = service.create_task(user_id, "March", due_at=datetime(2025, 3, 31, tzinfo=UTC))
    service.create_task(user_id, "Subtask", parent_id=feb.id)
    done = service.create_task(user_id, "Done", due_at=datetime(2025, 1, 1, tzinfo=UTC))
    service.set_completed(done.id, True)

    tasks = service.list_tasks(user_id, root_only=True, completed=False, sort_key="due_asc")

    assert [t.id for t in tasks] == [feb.id, march.id, undated.id]


def test_list_tasks_priority_then_due(service, user_id):
    """Test priority descending with due date as the tie breaker."""
    low = service.create_task(user_id, "Low", priority=1, due_at=datetime(2025, 1, 1, tzinfo=UTC))
    high_late = service.create_task(user_id, "High late", priority=5, due_at=datetime(2025, 6, 1, tzinfo=UTC))
    high_soon = service.create_task(user_id, "High soon", priority=5, due_at=datetime(2025, 2, 1, tzinfo=UTC))

    tasks = service.list_tasks(user_id, sort_key="priority_desc_due_asc")
    assert [t.id for t in tasks] == [high_soon.id, high_late.id, low.id]


def test_list_tasks_default_newest_first(service, user_id, other_user_id):
    """Test the default ordering and that only the user's tasks are listed."""
    older = service.create_task(user_id, "Older")
    newer = service.create_task(user_id, "Newer")
    service.create_task(other_user_id, "Not mine")

    assert [t.id for t in service.list_tasks(user_id)] == [newer.id, older.id]
    assert [t.id for t in service.list_tasks(user_id, limit=1)] == [newer.id]


def test_list_tasks_rejects_unknown_sort(service, user_id):
    """Test that only the listing orderings are accepted."""
    with pytest.raises(ValidationError):
        service.list_tasks(user_id, sort_key="title")
    with pytest.raises(ValidationError):
        service.list_tasks(user_id, sort_key="created_asc")


def test_search_ranks_title_above_description(service, user_id):
    """Test that a title match outranks a description-only match."""
    in_description = service.create_task(
        user_id, "Quarterly planning", description="Review the roadmap, roadmap and roadmap"
    )
    in_title = service.create_task(user_id, "Roadmap review")
    service.create_task(user_id, "Unrelated", description="Nothing here")

    results = service.search_tasks(user_id, "roadmap")
    assert [t.id for t in results] == [in_title.id, in_description.id]


def test_search_ties_prefer_recent_tasks(service, user_id):
    """Test that equal scores are broken by most recent creation."""
    older = service.create_task(user_id, "Roadmap draft")
    newer = service.create_task(user_id, "Roadmap final")

    assert [t.id for t in service.search_tasks(user_id, "roadmap")] == [newer.id, older.id]
    assert [t.id for t in service.search_tasks(user_id, "roadmap", limit=1)] == [newer.id]


def test_search_is_scoped_to_user(service, user_id, other_user_id):
    """Test that other users' tasks never show up in results."""
    service.create_task(other_user_id, "Roadmap for Bob")
    assert service.search_tasks(user_id, "roadmap") == []
    with pytest.raises(ValidationError):
        service.search_tasks(user_id, "")


def test_with_timeout_rolls_back_creation(service, store, user_id):
    """Test that a request timeout aborts the write."""
    with pytest.raises(StoreTimeoutError):
        service.with_timeout(0).create_task(user_id, "Too slow")
    assert store.count_tasks(user_id) == 0