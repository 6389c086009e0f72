"""Unit tests for flowcal.domain.store and flowcal.core.dependencies."""

import json
from pathlib import Path
from typing import Any

from flowcal.core.config_manager import AppSettings
from flowcal.core.dependencies import DependencyContainer
from flowcal.domain.store import InMemoryCalendarStore

SEED = {
    "tasks": [
        {
            "id": "t1",
            "title": "Water plants",
            "ownerId": "u1",
            "space": "personal",
            "dueDate": "2025-01-06T00:00:00Z",
            "recurrencePattern": "daily",
        }
    ],
    "habits": [{"id": "h1", "name": "Stretch", "ownerId": "u1", "frequency": "daily"}],
    "subscriptions": [
        {
            "id": "s1",
            "icalUrl": "https://calendar.example.com/team.ics",
            "name": "Team",
            "ownerId": "u1",
            "space": "work",
        }
    ],
    "taskCompletions": [{"id": "t1", "date": "2025-01-07"}, {"id": "ghost", "date": "2025-01-07"}],
    "habitCompletions": [{"id": "h1", "date": "2025-01-08"}],
}


def write_seed(path: Path) -> Path:
    path.write_text(json.dumps(SEED), encoding="utf-8")
    return path


class TestInMemoryCalendarStore:
    """Seeding, filtering and persistence."""

    async def test_from_json_file_when_seeded_then_records_loaded(self, tmp_path: Path) -> None:
        store = InMemoryCalendarStore.from_json_file(write_seed(tmp_path / "data.json"))

        tasks = await store.list_tasks("u1")
        assert [t.recurrence_pattern for t in tasks] == ["daily"]
        assert await store.task_completions("u1", "2025-01-01", "2025-01-31") == {
            "t1": {"2025-01-07"}
        }
        assert await store.habit_completions("u1", "2025-01-01", "2025-01-31") == {
            "h1": {"2025-01-08"}
        }

    async def test_from_json_file_when_missing_then_empty(self, tmp_path: Path) -> None:
        store = InMemoryCalendarStore.from_json_file(tmp_path / "none.json")

        assert await store.list_tasks("u1") == []

    async def test_list_subscriptions_when_filtered_then_space_and_enabled(
        self, make_subscription: Any
    ) -> None:
        store = InMemoryCalendarStore()
        store.subscriptions["a"] = make_subscription(id="a", space="work")
        store.subscriptions["b"] = make_subscription(id="b", space="personal")
        store.subscriptions["c"] = make_subscription(id="c", space="work", enabled=False)

        work = await store.list_subscriptions("u1", "work")
        enabled = await store.list_subscriptions("u1", "all", enabled_only=True)

        assert [s.id for s in work] == ["a", "c"]
        assert [s.id for s in enabled] == ["a", "b"]

    async def test_task_completions_when_outside_range_then_excluded(self) -> None:
        store = InMemoryCalendarStore()
        store.mark_task_completed("u1", "t1", "2024-12-31")
        store.mark_task_completed("u1", "t1", "2025-01-02")
        store.mark_task_completed("u2", "t1", "2025-01-02")

        assert await store.task_completions("u1", "2025-01-01", "2025-01-31") == {
            "t1": {"2025-01-02"}
        }

    async def test_subscription_crud_when_file_backed_then_persisted(
        self, tmp_path: Path, make_subscription: Any
    ) -> None:
        """Subscription writes are saved while other seeded data is preserved."""
        path = write_seed(tmp_path / "data.json")
        store = InMemoryCalendarStore.from_json_file(path)

        created = await store.create_subscription(make_subscription(id="s2", name="Holidays"))
        await store.update_subscription("u1", "s1", {"enabled": False})
        await store.delete_subscription("u1", "s2")

        saved = json.loads(path.read_text(encoding="utf-8"))
        assert created.created_at is not None
        assert [s["id"] for s in saved["subscriptions"]] == ["s1"]
        assert saved["subscriptions"][0]["enabled"] is False
        assert saved["subscriptions"][0]["icalUrl"] == "https://calendar.example.com/team.ics"
        assert saved["tasks"] == SEED["tasks"]

    async def test_update_subscription_when_other_owner_then_none(
        self, make_subscription: Any
    ) -> None:
        store = InMemoryCalendarStore()
        store.subscriptions["s1"] = make_subscription(id="s1")

        assert await store.update_subscription("u2", "s1", {"name": "Mine now"}) is None
        assert await store.delete_subscription("u2", "s1") is False
        assert store.subscriptions["s1"].name == "Team"


def test_build_dependencies_when_data_file_then_store_seeded(tmp_path: Path) -> None:
    settings = AppSettings(data_file=write_seed(tmp_path / "data.json"), fetch_concurrency=2)

    deps = DependencyContainer.build_dependencies(settings)

    assert isinstance(deps.store, InMemoryCalendarStore)
    assert "t1" in deps.store.tasks
    assert deps.ingestion.cache is deps.feed_cache
    assert deps.ingestion.concurrency == 2
    assert deps.aggregator.store is deps.store
    assert deps.feed_generator.store is deps.store
