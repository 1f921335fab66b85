from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from serverless_todo.container import build_container
from serverless_todo.main import create_app
from serverless_todo.repositories import InMemoryRepository
from serverless_todo.scheduler import InMemoryScheduler
from serverless_todo.settings import Settings


class FakeClock:
    """UTC clock that advances one second every time it is read."""

    def __init__(self, start=datetime(2025, 1, 1, 9, 0, tzinfo=timezone.utc), step=timedelta(seconds=1)):
        self.now = start
        self.step = step

    def __call__(self):
        current = self.now
        self.now = current + self.step
        return current


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings():
    return Settings()


@pytest.fixture
def repository():
    return InMemoryRepository()


@pytest.fixture
def scheduler():
    return InMemoryScheduler(max_attempts=3)


@pytest.fixture
def container(settings, repository, scheduler, clock):
    return build_container(settings, repository=repository, scheduler=scheduler, clock=clock)


@pytest.fixture
def service(container):
    return container.service


@pytest.fixture
def router(container):
    return container.router


@pytest.fixture
def worker(container):
    return container.worker


@pytest.fixture
def client(container):
    return TestClient(create_app(container))
