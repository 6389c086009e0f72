"""Storage collaborator interface and an in-memory implementation.

Tasks, habits, subscriptions and completion records are owned by the
surrounding application. The calendar engine only reads them through
``CalendarStore``; subscription CRUD is the one write path it drives.
"""

from __future__ import annotations

import contextlib
import json
import logging
import tempfile
import uuid
from collections import defaultdict
from pathlib import Path
from typing import Any, Optional, Protocol

from ..calendar.models import ExternalCalendarSubscription, Habit, Task
from ..core.timezone_utils import now_utc

logger = logging.getLogger(__name__)

ALL_SPACES = "all"


def _space_matches(item_space: Optional[str], space: Optional[str]) -> bool:
    return space in (None, "", ALL_SPACES) or item_space == space


class CalendarStore(Protocol):
    """Read access to calendar source data plus subscription CRUD."""

    async def list_tasks(self, user_id: str, space: Optional[str] = None) -> list[Task]: ...

    async def list_habits(self, user_id: str, space: Optional[str] = None) -> list[Habit]: ...

    async def list_subscriptions(
        self, user_id: str, space: Optional[str] = None, enabled_only: bool = False
    ) -> list[ExternalCalendarSubscription]: ...

    async def get_subscription(
        self, user_id: str, subscription_id: str
    ) -> Optional[ExternalCalendarSubscription]: ...

    async def create_subscription(
        self, subscription: ExternalCalendarSubscription
    ) -> ExternalCalendarSubscription: ...

    async def update_subscription(
        self, user_id: str, subscription_id: str, changes: dict[str, Any]
    ) -> Optional[ExternalCalendarSubscription]: ...

    async def delete_subscription(self, user_id: str, subscription_id: str) -> bool: ...

    async def task_completions(
        self, user_id: str, start_date: str, end_date: str
    ) -> dict[str, set[str]]: ...

    async def habit_completions(
        self, user_id: str, start_date: str, end_date: str
    ) -> dict[str, set[str]]: ...


class InMemoryCalendarStore:
    """Dictionary-backed ``CalendarStore``, optionally seeded from and saved to JSON.

    The JSON document holds ``tasks``, ``habits``, ``subscriptions`` (camelCase
    model fields) and ``taskCompletions`` / ``habitCompletions`` lists of
    ``{"id": ..., "date": "YYYY-MM-DD"}`` records.
    """

    def __init__(self, path: Optional[Path] = None) -> None:
        self._path = path
        self.tasks: dict[str, Task] = {}
        self.habits: dict[str, Habit] = {}
        self.subscriptions: dict[str, ExternalCalendarSubscription] = {}
        self._task_completions: dict[tuple[str, str], set[str]] = defaultdict(set)
        self._habit_completions: dict[tuple[str, str], set[str]] = defaultdict(set)

    @classmethod
    def from_json_file(cls, path: Path) -> InMemoryCalendarStore:
        """Create a store seeded from ``path``; a missing file yields an empty store."""
        store = cls(path)
        if not path.exists():
            logger.info("Data file %s not found; starting with an empty store", path)
            return store

        with path.open("r", encoding="utf-8") as fh:
            data = json.load(fh)
        if not isinstance(data, dict):
            raise ValueError(f"data file {path} must contain a JSON object")

        for raw in data.get("tasks", []):
            store.add_task(Task.model_validate(raw))
        for raw in data.get("habits", []):
            store.add_habit(Habit.model_validate(raw))
        for raw in data.get("subscriptions", []):
            subscription = ExternalCalendarSubscription.model_validate(raw)
            store.subscriptions[subscription.id] = subscription
        for record in data.get("taskCompletions", []):
            task = store.tasks.get(record["id"])
            if task is not None:
                store.mark_task_completed(task.owner_id, task.id, record["date"])
        for record in data.get("habitCompletions", []):
            habit = store.habits.get(record["id"])
            if habit is not None:
                store.mark_habit_completed(habit.owner_id, habit.id, record["date"])

        logger.debug(
            "Loaded %d tasks, %d habits, %d subscriptions from %s",
            len(store.tasks),
            len(store.habits),
            len(store.subscriptions),
            path,
        )
        return store

    def add_task(self, task: Task) -> None:
        self.tasks[task.id] = task

    def add_habit(self, habit: Habit) -> None:
        self.habits[habit.id] = habit

    def mark_task_completed(self, user_id: str, task_id: str, instance_date: str) -> None:
        self._task_completions[(user_id, task_id)].add(instance_date)

    def mark_habit_completed(self, user_id: str, habit_id: str, instance_date: str) -> None:
        self._habit_completions[(user_id, habit_id)].add(instance_date)

    async def list_tasks(self, user_id: str, space: Optional[str] = None) -> list[Task]:
        return [
            task
            for task in self.tasks.values()
            if task.owner_id == user_id and _space_matches(task.space, space)
        ]

    async def list_habits(self, user_id: str, space: Optional[str] = None) -> list[Habit]:
        return [
            habit
            for habit in self.habits.values()
            if habit.owner_id == user_id and _space_matches(habit.space, space)
        ]

    async def list_subscriptions(
        self, user_id: str, space: Optional[str] = None, enabled_only: bool = False
    ) -> list[ExternalCalendarSubscription]:
        return [
            sub
            for sub in self.subscriptions.values()
            if sub.owner_id == user_id
            and _space_matches(sub.space, space)
            and (sub.enabled or not enabled_only)
        ]

    async def get_subscription(
        self, user_id: str, subscription_id: str
    ) -> Optional[ExternalCalendarSubscription]:
        sub = self.subscriptions.get(subscription_id)
        if sub is None or sub.owner_id != user_id:
            return None
        return sub

    async def create_subscription(
        self, subscription: ExternalCalendarSubscription
    ) -> ExternalCalendarSubscription:
        now = now_utc()
        created = subscription.model_copy(
            update={
                "id": subscription.id or str(uuid.uuid4()),
                "created_at": subscription.created_at or now,
                "updated_at": now,
            }
        )
        self.subscriptions[created.id] = created
        self._persist()
        logger.info("Created subscription %s for user %s", created.id, created.owner_id)
        return created

    async def update_subscription(
        self, user_id: str, subscription_id: str, changes: dict[str, Any]
    ) -> Optional[ExternalCalendarSubscription]:
        current = await self.get_subscription(user_id, subscription_id)
        if current is None:
            return None
        merged = current.model_dump()
        merged.update(changes)
        merged["updated_at"] = now_utc()
        updated = ExternalCalendarSubscription.model_validate(merged)
        self.subscriptions[subscription_id] = updated
        self._persist()
        return updated

    async def delete_subscription(self, user_id: str, subscription_id: str) -> bool:
        if await self.get_subscription(user_id, subscription_id) is None:
            return False
        del self.subscriptions[subscription_id]
        self._persist()
        logger.info("Deleted subscription %s for user %s", subscription_id, user_id)
        return True

    async def task_completions(
        self, user_id: str, start_date: str, end_date: str
    ) -> dict[str, set[str]]:
        return self._completions_between(self._task_completions, user_id, start_date, end_date)

    async def habit_completions(
        self, user_id: str, start_date: str, end_date: str
    ) -> dict[str, set[str]]:
        return self._completions_between(self._habit_completions, user_id, start_date, end_date)

    @staticmethod
    def _completions_between(
        records: dict[tuple[str, str], set[str]], user_id: str, start_date: str, end_date: str
    ) -> dict[str, set[str]]:
        # ISO dates compare correctly as strings
        result: dict[str, set[str]] = {}
        for (owner, entity_id), dates in records.items():
            if owner != user_id:
                continue
            selected = {d for d in dates if start_date <= d <= end_date}
            if selected:
                result[entity_id] = selected
        return result

    def _persist(self) -> None:
        """Write subscriptions back to the data file atomically, if one is configured."""
        if self._path is None:
            return

        data: dict[str, Any] = {}
        if self._path.exists():
            with self._path.open("r", encoding="utf-8") as fh:
                data = json.load(fh)
        data["subscriptions"] = [
            sub.model_dump(mode="json", by_alias=True) for sub in self.subscriptions.values()
        ]

        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = None
        try:
            with tempfile.NamedTemporaryFile(
                "w", dir=self._path.parent, delete=False, encoding="utf-8"
            ) as tf:
                tmp_path = Path(tf.name)
                json.dump(data, tf, ensure_ascii=False, indent=2)
            tmp_path.replace(self._path)
        except OSError as exc:
            logger.warning("Failed to persist subscriptions to %s: %s", self._path, exc)
            if tmp_path is not None:
                with contextlib.suppress(OSError):
                    tmp_path.unlink()
            raise
