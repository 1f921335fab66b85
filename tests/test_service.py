from datetime import date, timedelta

import pytest

from serverless_todo.db import SQLiteRepository
from serverless_todo.errors import AgingCallbackError, NotFoundError, SchedulingError, StoreError, ValidationError
from serverless_todo.repositories import InMemoryRepository
from serverless_todo.scheduler import InMemoryScheduler, Scheduler, aging_task_id
from serverless_todo.service import TodoService, clamp_limit


class FailingScheduler(Scheduler):
    def __init__(self):
        self.calls = 0

    def schedule_once(self, task_id, fire_at, payload):
        self.calls += 1
        raise SchedulingError("scheduler unavailable")


@pytest.mark.parametrize(
    "raw,expected",
    [
        (None, 20),
        ("", 20),
        ("abc", 20),
        ("2.5", 20),
        (True, 20),
        ("7", 7),
        (" 7 ", 7),
        (7, 7),
        ("0", 1),
        (-5, 1),
        ("150", 100),
        (100, 100),
    ],
)
def test_clamp_limit(raw, expected):
    assert clamp_limit(raw) == expected


class TestCreate:
    def test_defaults(self, service, clock):
        todo = service.create({"title": "  spaced  "})
        assert todo["title"] == "  spaced  "
        assert todo["completed"] is False
        assert todo["aged"] is False
        assert todo["due_date"] is None
        assert todo["created_at"] == todo["updated_at"]
        assert todo["created_at"].tzinfo is not None

    def test_ids_are_unique(self, service):
        ids = {service.create({"title": f"t{i}"})["id"] for i in range(10)}
        assert len(ids) == 10

    def test_due_date_parsed(self, service):
        todo = service.create({"title": "x", "dueDate": "2030-02-03"})
        assert todo["due_date"] == date(2030, 2, 3)

    def test_snake_case_due_date_accepted(self, service):
        todo = service.create({"title": "x", "due_date": "2030-02-03"})
        assert todo["due_date"] == date(2030, 2, 3)

    def test_client_cannot_set_server_fields(self, service):
        todo = service.create({"title": "x", "id": "mine", "completed": True, "aged": True})
        assert todo["id"] != "mine"
        assert todo["completed"] is False
        assert todo["aged"] is False

    @pytest.mark.parametrize("payload", [None, {}, {"title": ""}, {"title": " \t"}, {"title": 1}, {"title": None}])
    def test_title_required(self, service, repository, payload):
        with pytest.raises(ValidationError) as excinfo:
            service.create(payload)
        assert excinfo.value.message == "title is required"
        assert repository.list(10).items == []

    def test_body_must_be_object(self, service):
        with pytest.raises(ValidationError) as excinfo:
            service.create(["title"])
        assert excinfo.value.message == "request body must be a JSON object"

    def test_schedules_aging_after_delay(self, service, scheduler):
        todo = service.create({"title": "x"})
        [task] = scheduler.pending
        assert task.task_id == aging_task_id(todo["id"])
        assert task.fire_at == todo["created_at"] + timedelta(seconds=60)
        assert task.payload == {"taskId": todo["id"]}

    def test_scheduling_failure_keeps_todo(self, repository, clock):
        scheduler = FailingScheduler()
        service = TodoService(repository, scheduler, clock=clock)
        todo = service.create({"title": "still here"})
        assert scheduler.calls == 1
        assert repository.get(todo["id"]) == todo

    def test_custom_prefix_and_delay(self, repository, clock):
        scheduler = InMemoryScheduler()
        service = TodoService(
            repository, scheduler, aging_delay=timedelta(minutes=5), task_prefix="age-", clock=clock
        )
        todo = service.create({"title": "x"})
        [task] = scheduler.pending
        assert task.task_id == "age-" + todo["id"]
        assert task.fire_at - todo["created_at"] == timedelta(minutes=5)


class TestGetAndDelete:
    def test_get_missing(self, service):
        with pytest.raises(NotFoundError):
            service.get("nope")

    def test_delete_then_get(self, service):
        todo = service.create({"title": "x"})
        service.delete(todo["id"])
        with pytest.raises(NotFoundError):
            service.get(todo["id"])
        with pytest.raises(NotFoundError):
            service.delete(todo["id"])


class TestUpdate:
    def test_only_targeted_fields_change(self, service):
        todo = service.create({"title": "original", "dueDate": "2030-01-01"})
        updated = service.update(todo["id"], {"completed": True})
        assert updated["completed"] is True
        assert updated["title"] == "original"
        assert updated["due_date"] == date(2030, 1, 1)
        assert updated["aged"] is False
        assert updated["created_at"] == todo["created_at"]
        assert updated["updated_at"] > todo["updated_at"]

    @pytest.mark.parametrize("backend", ["memory", "sqlite"])
    def test_immediate_update_with_real_clock_advances_updated_at(self, backend, tmp_path):
        if backend == "sqlite":
            repository = SQLiteRepository(str(tmp_path / "todos.db"))
        else:
            repository = InMemoryRepository()
        service = TodoService(repository, InMemoryScheduler())

        for _ in range(50):
            todo = service.create({"title": "fast"})
            updated = service.update(todo["id"], {"completed": True})
            assert updated["updated_at"] > updated["created_at"]
            assert service.mark_aged(todo["id"])["updated_at"] > updated["updated_at"]
        repository.close()

    def test_title_and_due_date(self, service):
        todo = service.create({"title": "a", "dueDate": "2030-01-01"})
        updated = service.update(todo["id"], {"title": "b", "dueDate": None})
        assert updated["title"] == "b"
        assert updated["due_date"] is None
        assert updated["completed"] is False

    @pytest.mark.parametrize("payload", [None, {}, {"aged": True}, {"createdAt": "2020-01-01T00:00:00Z"}])
    def test_no_updatable_fields(self, service, payload):
        todo = service.create({"title": "a"})
        with pytest.raises(ValidationError) as excinfo:
            service.update(todo["id"], payload)
        assert excinfo.value.message == "no updatable fields"

    @pytest.mark.parametrize(
        "payload,message",
        [
            ({"title": ""}, "title must be a non-empty string"),
            ({"title": None}, "title must be a non-empty string"),
            ({"completed": "yes"}, "completed must be a boolean"),
            ({"completed": None}, "completed must be a boolean"),
            ({"dueDate": "soon"}, "dueDate must be an ISO 8601 date or null"),
        ],
    )
    def test_invalid_values(self, service, payload, message):
        todo = service.create({"title": "a"})
        with pytest.raises(ValidationError) as excinfo:
            service.update(todo["id"], payload)
        assert excinfo.value.message == message

    def test_missing_todo(self, service):
        with pytest.raises(NotFoundError):
            service.update("missing", {"completed": True})


class TestList:
    def test_pages_cover_every_item_once(self, service):
        ids = [service.create({"title": f"t{i}"})["id"] for i in range(7)]
        seen, cursor = [], None
        while True:
            page = service.list(3, cursor)
            seen.extend(item["id"] for item in page.items)
            if page.next_cursor is None:
                break
            cursor = page.next_cursor
        assert sorted(seen) == sorted(ids)
        assert len(seen) == len(set(seen))

    def test_empty_store(self, service):
        page = service.list()
        assert page.items == []
        assert page.next_cursor is None

    def test_exact_page_has_no_cursor(self, service):
        for i in range(3):
            service.create({"title": f"t{i}"})
        assert service.list(3).next_cursor is None


class TestMarkAged:
    def test_sets_aged_only(self, service):
        todo = service.create({"title": "a"})
        aged = service.mark_aged(todo["id"])
        assert aged["aged"] is True
        assert aged["title"] == "a"
        assert aged["completed"] is False

    def test_is_idempotent(self, service):
        todo = service.create({"title": "a"})
        service.mark_aged(todo["id"])
        assert service.mark_aged(todo["id"])["aged"] is True

    def test_missing_todo(self, service):
        with pytest.raises(AgingCallbackError):
            service.mark_aged("gone")

    def test_store_failure(self, service, repository, monkeypatch):
        todo = service.create({"title": "a"})

        def broken(*args, **kwargs):
            raise StoreError("throttled")

        monkeypatch.setattr(repository, "update_fields", broken)
        with pytest.raises(AgingCallbackError):
            service.mark_aged(todo["id"])
