"""Seed demo data for TaskFlow.

Creates the schema and query indexes, upserts a demo user and inserts a
planning task with subtasks plus a couple of root tasks. Every task created
here carries the ``sample_seed`` tag, and all tagged tasks of the demo user
are removed before inserting again, so repeated runs converge to the same
state.

Usage:
    DATABASE_URL=sqlite:///taskflow.db DATABASE_NAME=taskflow taskflow-seed
    taskflow-seed --settings-file ./taskflow.env --verbose
"""

import argparse
import logging
import sys
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional

from .config import load_settings
from .crud import RecordStore
from .errors import TaskflowError
from .schemas import UserCreate
from .services import TaskService

logger = logging.getLogger(__name__)

SEED_TAG = "sample_seed"
DEMO_EMAIL = "demo.user@example.com"
# bcrypt("Password123!"), stored as an opaque credential.
DEMO_CREDENTIAL_HASH = "$2b$12$KIXQxB7Di1urN6byN1NsxOz3Rp3XIanFkFJxuxMxDPZWS9Vyhi3ya"


@dataclass
class SeedResult:
    user_id: int
    removed: int
    parent_id: int
    subtask_ids: List[int] = field(default_factory=list)
    root_ids: List[int] = field(default_factory=list)

    @property
    def created(self) -> int:
        return 1 + len(self.subtask_ids) + len(self.root_ids)


def seed_sample_data(store: RecordStore) -> SeedResult:
    """Insert the demo user and sample tasks, replacing earlier sample tasks."""
    service = TaskService(store)

    user_id = store.upsert_user(
        UserCreate(
            email=DEMO_EMAIL,
            credential_hash=DEMO_CREDENTIAL_HASH,
            display_name="Demo User",
            settings={"timezone": "UTC", "theme": "dark"},
        )
    )
    logger.info(f"Demo user ready: id={user_id} email={DEMO_EMAIL}")

    removed = store.delete_tasks_by_tag(user_id, SEED_TAG)
    if removed:
        logger.info(f"Removed {removed} existing sample tasks (tag={SEED_TAG})")

    parent = service.create_task(
        user_id,
        "Plan quarterly roadmap",
        description="Outline Q2 initiatives and milestones.",
        priority=4,
        estimated_minutes=180,
        due_at=datetime(2025, 3, 31, 23, 59, 59, tzinfo=timezone.utc),
        tags=["work", "planning", SEED_TAG],
    )

    # Subtasks inherit priority and tags from the roadmap task.
    subtasks = [
        service.create_task(
            user_id,
            "Draft OKRs",
            description="Create first pass of OKRs.",
            estimated_minutes=60,
            due_at=datetime(2025, 3, 15, 12, 0, tzinfo=timezone.utc),
            parent_id=parent.id,
        ),
        service.create_task(
            user_id,
            "Collect input from team",
            description="Get feedback from stakeholders.",
            estimated_minutes=45,
            due_at=datetime(2025, 3, 20, 17, 0, tzinfo=timezone.utc),
            parent_id=parent.id,
        ),
        service.create_task(
            user_id,
            "Finalize roadmap presentation",
            description="Finalize deck and review timeline.",
            priority=5,
            estimated_minutes=90,
            due_at=datetime(2025, 3, 28, 21, 0, tzinfo=timezone.utc),
            extra_tags=["urgent"],
            parent_id=parent.id,
        ),
    ]

    roots = [
        service.create_task(
            user_id,
            "Grocery shopping",
            description="Buy ingredients for the week.",
            priority=2,
            estimated_minutes=90,
            due_at=datetime(2025, 2, 1, 17, 0, tzinfo=timezone.utc),
            tags=["personal", "errands", SEED_TAG],
        ),
        service.create_task(
            user_id,
            "Read a book",
            description="Finish current novel.",
            priority=1,
            estimated_minutes=120,
            tags=["personal", SEED_TAG],
        ),
    ]

    result = SeedResult(
        user_id=user_id,
        removed=removed,
        parent_id=parent.id,
        subtask_ids=[task.id for task in subtasks],
        root_ids=[task.id for task in roots],
    )
    logger.info(f"Seeded {result.created} sample tasks for user {user_id}")
    return result


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Seed TaskFlow demo data.")
    parser.add_argument("--settings-file", help="fallback settings file (default: taskflow.env)")
    parser.add_argument("-v", "--verbose", action="store_true", help="enable debug logging")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        settings = load_settings(settings_file=args.settings_file)
        store = RecordStore.from_settings(settings)
        store.create_schema()
        result = seed_sample_data(store)
    except TaskflowError as e:
        logger.error(f"Seeding failed: {e}")
        return 1

    print("Seeding complete.")
    print(f"Demo user: {DEMO_EMAIL} (id {result.user_id})")
    print(f"Tasks created: {result.created}, previous sample tasks removed: {result.removed}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
