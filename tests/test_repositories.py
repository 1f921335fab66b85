from datetime import date, datetime, timedelta, timezone

import pytest

from serverless_todo.db import SQLiteRepository
from serverless_todo.errors import CursorDecodeError, NotFoundError, StoreError
from serverless_todo.models import UpdatableField
from serverless_todo.repositories import InMemoryRepository, get_repository
from serverless_todo.settings import Settings

BASE = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)


def make_entity(n, **overrides):
    entity = {
        "id": f"todo-{n:03d}",
        "title": f"Task {n}",
        "completed": False,
        "aged": False,
        "due_date": None,
        "created_at": BASE + timedelta(seconds=n),
        "updated_at": BASE + timedelta(seconds=n),
    }
    entity.update(overrides)
    return entity


@pytest.fixture(params=["memory", "sqlite"])
def repo(request, tmp_path):
    if request.param == "memory":
        yield InMemoryRepository()
    else:
        repository = SQLiteRepository(str(tmp_path / "todos.db"))
        yield repository
        repository.close()


def walk(repo, limit):
    seen, key = [], None
    while True:
        page = repo.list(limit, key)
        assert len(page.items) <= limit
        seen.extend(item["id"] for item in page.items)
        if page.last_key is None:
            return seen
        key = page.last_key


class TestRepositoryContract:
    def test_put_and_get(self, repo):
        entity = make_entity(1, due_date=date(2030, 5, 6))
        repo.put(entity)
        assert repo.get(entity["id"]) == entity
        assert repo.get("missing") is None

    def test_update_fields_applies_only_changes(self, repo):
        repo.put(make_entity(1))
        stamp = BASE + timedelta(hours=1)
        updated = repo.update_fields(
            "todo-001", {UpdatableField.COMPLETED: True, UpdatableField.DUE_DATE: date(2031, 1, 2)}, stamp
        )
        assert updated["completed"] is True
        assert updated["due_date"] == date(2031, 1, 2)
        assert updated["title"] == "Task 1"
        assert updated["aged"] is False
        assert updated["created_at"] == BASE + timedelta(seconds=1)
        assert updated["updated_at"] == stamp
        assert repo.get("todo-001") == updated

    def test_update_stamp_always_moves_forward(self, repo):
        repo.put(make_entity(1))
        created = BASE + timedelta(seconds=1)
        first = repo.update_fields("todo-001", {UpdatableField.COMPLETED: True}, created)
        second = repo.update_fields("todo-001", {UpdatableField.TITLE: "again"}, created - timedelta(hours=1))
        assert first["updated_at"] == created + timedelta(milliseconds=1)
        assert second["updated_at"] == created + timedelta(milliseconds=2)
        assert repo.get("todo-001")["updated_at"] == second["updated_at"]

    def test_update_fields_clears_due_date(self, repo):
        repo.put(make_entity(1, due_date=date(2030, 1, 1)))
        updated = repo.update_fields("todo-001", {UpdatableField.DUE_DATE: None}, BASE)
        assert updated["due_date"] is None

    def test_update_missing_does_not_create(self, repo):
        with pytest.raises(NotFoundError):
            repo.update_fields("ghost", {UpdatableField.AGED: True}, BASE)
        assert repo.get("ghost") is None

    def test_delete(self, repo):
        repo.put(make_entity(1))
        repo.delete("todo-001")
        assert repo.get("todo-001") is None
        with pytest.raises(NotFoundError):
            repo.delete("todo-001")

    @pytest.mark.parametrize("limit", [1, 2, 3, 7, 8])
    def test_pagination_visits_each_item_once(self, repo, limit):
        for n in range(7):
            repo.put(make_entity(n))
        seen = walk(repo, limit)
        assert sorted(seen) == [f"todo-{n:03d}" for n in range(7)]
        assert len(seen) == len(set(seen))

    def test_empty_listing(self, repo):
        page = repo.list(10)
        assert page.items == []
        assert page.last_key is None

    def test_cursor_survives_delete(self, repo):
        for n in range(4):
            repo.put(make_entity(n))
        first = repo.list(2)
        for item in first.items:
            repo.delete(item["id"])
        rest = repo.list(2, first.last_key)
        assert len(rest.items) == 2
        assert rest.last_key is None

    @pytest.mark.parametrize("key", [{"bogus": 1}, {"id": 5}, {"seq": "1", "extra": True}])
    def test_foreign_start_key_rejected(self, repo, key):
        with pytest.raises(CursorDecodeError):
            repo.list(5, key)


class TestInMemoryRepository:
    def test_lists_in_insertion_order(self):
        repo = InMemoryRepository()
        for n in (3, 1, 2):
            repo.put(make_entity(n))
        assert [i["id"] for i in repo.list(10).items] == ["todo-003", "todo-001", "todo-002"]

    def test_returned_items_are_copies(self):
        repo = InMemoryRepository()
        repo.put(make_entity(1))
        repo.get("todo-001")["title"] = "mutated"
        assert repo.get("todo-001")["title"] == "Task 1"


class TestSQLiteRepository:
    def test_newest_first(self, tmp_path):
        repo = SQLiteRepository(str(tmp_path / "todos.db"))
        for n in (1, 3, 2):
            repo.put(make_entity(n))
        assert [i["id"] for i in repo.list(10).items] == ["todo-003", "todo-002", "todo-001"]
        repo.close()

    def test_same_created_at_tie_broken_by_id(self, tmp_path):
        repo = SQLiteRepository(str(tmp_path / "todos.db"))
        for n in range(4):
            repo.put(make_entity(n, created_at=BASE))
        assert walk(repo, 1) == ["todo-003", "todo-002", "todo-001", "todo-000"]
        repo.close()

    def test_data_survives_reopen(self, tmp_path):
        path = str(tmp_path / "nested" / "todos.db")
        repo = SQLiteRepository(path)
        repo.put(make_entity(1))
        repo.close()

        reopened = SQLiteRepository(path)
        assert reopened.get("todo-001")["title"] == "Task 1"
        reopened.close()

    def test_missing_read_back_is_a_store_error(self, tmp_path, monkeypatch):
        repo = SQLiteRepository(str(tmp_path / "todos.db"))
        repo.put(make_entity(1))
        monkeypatch.setattr(repo, "_select", lambda conn, todo_id: None)
        with pytest.raises(StoreError):
            repo.update_fields("todo-001", {UpdatableField.AGED: True}, BASE)
        repo.close()


class TestGetRepository:
    def test_memory_default(self):
        assert isinstance(get_repository(Settings()), InMemoryRepository)

    def test_sqlite(self, tmp_path):
        repo = get_repository(Settings(persistence_backend="sqlite", sqlite_db_path=str(tmp_path / "x.db")))
        assert isinstance(repo, SQLiteRepository)
        repo.close()
