from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from .repositories import Repository, get_repository
from .router import Router
from .scheduler import Scheduler, get_scheduler
from .service import TodoService
from .settings import Settings
from .utils import utc_now
from .worker import AgingWorker


# PUBLIC_INTERFACE
@dataclass
class Container:
    """
    Explicitly wired application components.

    Built once per process and shared by every request handled in it; the
    repository and scheduler clients are never created lazily behind a
    module-level global.
    """

    settings: Settings
    repository: Repository
    scheduler: Scheduler
    service: TodoService
    router: Router
    worker: AgingWorker

    def close(self) -> None:
        self.repository.close()


# PUBLIC_INTERFACE
def build_container(
    settings: Settings,
    *,
    repository: Optional[Repository] = None,
    scheduler: Optional[Scheduler] = None,
    clock: Callable[[], datetime] = utc_now,
) -> Container:
    """
    Build the components for `settings`. Tests pass their own repository,
    scheduler and clock.
    """
    repository = repository if repository is not None else get_repository(settings)
    scheduler = scheduler if scheduler is not None else get_scheduler(settings)
    service = TodoService(
        repository,
        scheduler,
        aging_delay=timedelta(seconds=settings.aging_delay_seconds),
        task_prefix=settings.schedule_name_prefix,
        clock=clock,
    )
    return Container(
        settings=settings,
        repository=repository,
        scheduler=scheduler,
        service=service,
        router=Router(service, require_auth=settings.require_auth),
        worker=AgingWorker(service, report_batch_failures=settings.report_batch_failures),
    )
