from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from .attendance.mysql_checkin_repository import MySQLCheckInTableRepository
from .attendance.repository import CheckInTableRepository
from .core import constants
from .courses.mysql_course_repository import MySQLCheckpointRepository, MySQLCourseRepository
from .courses.repository import CheckpointRepository, CourseRepository
from .database.connection import DBConfig, DatabaseConnection
from .dispatch.dispatcher import WorkDispatcher
from .dispatch.executors.attendance_table import AttendanceTableExecutor
from .dispatch.executors.create_schedule import CreateScheduleExecutor
from .dispatch.executors.delete_schedule import DeleteScheduleExecutor
from .dispatch.factory import ExecutorFactory
from .dispatch.links import LinkBuilder
from .dispatch.runner import JobRunner
from .gateway.client import CalendarGateway
from .gateway.http_gateway import HttpCalendarGateway
from .jobs.queue import AsyncJobQueue
from .jobs.retry import RetryPolicy
from .roster.mysql_roster_repository import MySQLRosterRepository
from .roster.repository import RosterRepository
from .sync.aggregator import StatusAggregator
from .sync.orchestrator import SyncOrchestrator
from .tasks.memory_store import InMemoryTaskTreeStore
from .tasks.mysql_task_store import MySQLTaskTreeStore
from .tasks.repository import TaskTreeStore


@dataclass(frozen=True)
class Container:
    courses_repo: CourseRepository
    checkpoints_repo: CheckpointRepository
    roster_repo: RosterRepository
    checkin_repo: CheckInTableRepository
    task_store: TaskTreeStore
    gateway: CalendarGateway

    queue: AsyncJobQueue
    executors: ExecutorFactory
    dispatcher: WorkDispatcher
    aggregator: StatusAggregator
    runner: JobRunner
    orchestrator: SyncOrchestrator


def wire(
    *,
    courses_repo: CourseRepository,
    checkpoints_repo: CheckpointRepository,
    roster_repo: RosterRepository,
    checkin_repo: CheckInTableRepository,
    task_store: TaskTreeStore,
    gateway: CalendarGateway,
    checkin_base_url: str,
    timezone_offset: str = constants.DEFAULT_TIMEZONE_OFFSET,
    reminder_minutes: int = constants.DEFAULT_REMINDER_MINUTES,
    workers: int = constants.DEFAULT_QUEUE_WORKERS,
    retry_policy: RetryPolicy | None = None,
) -> Container:
    """Explicit constructor injection of every engine component."""

    links = LinkBuilder(checkin_base_url)
    executors = ExecutorFactory(
        [
            CreateScheduleExecutor(gateway, links, timezone_offset=timezone_offset, reminder_minutes=reminder_minutes),
            DeleteScheduleExecutor(gateway),
            AttendanceTableExecutor(checkin_repo, links),
        ]
    )
    queue = AsyncJobQueue(workers=workers, retry_policy=retry_policy)
    dispatcher = WorkDispatcher(queue, executors)
    aggregator = StatusAggregator(task_store, courses_repo, dispatcher)
    runner = JobRunner(task_store, executors, aggregator)
    orchestrator = SyncOrchestrator(task_store, courses_repo, roster_repo, aggregator, checkpoints_repo)

    return Container(
        courses_repo=courses_repo,
        checkpoints_repo=checkpoints_repo,
        roster_repo=roster_repo,
        checkin_repo=checkin_repo,
        task_store=task_store,
        gateway=gateway,
        queue=queue,
        executors=executors,
        dispatcher=dispatcher,
        aggregator=aggregator,
        runner=runner,
        orchestrator=orchestrator,
    )


def build_container(*, db_config: dict, settings: Any) -> Container:
    conn = DatabaseConnection.get_instance(DBConfig.from_dict(db_config))

    if str(getattr(settings, "TASK_STORE", "mysql")).lower() == "memory":
        task_store: TaskTreeStore = InMemoryTaskTreeStore()
    else:
        task_store = MySQLTaskTreeStore(conn)

    gateway = HttpCalendarGateway(
        base_url=getattr(settings, "CALENDAR_API_BASE_URL"),
        token=getattr(settings, "CALENDAR_API_TOKEN", ""),
        timeout=float(getattr(settings, "CALENDAR_API_TIMEOUT", constants.DEFAULT_HTTP_TIMEOUT_SECONDS)),
    )

    return wire(
        courses_repo=MySQLCourseRepository(conn),
        checkpoints_repo=MySQLCheckpointRepository(conn),
        roster_repo=MySQLRosterRepository(conn),
        checkin_repo=MySQLCheckInTableRepository(conn),
        task_store=task_store,
        gateway=gateway,
        checkin_base_url=getattr(settings, "CHECKIN_BASE_URL"),
        timezone_offset=getattr(settings, "TIMEZONE_OFFSET", constants.DEFAULT_TIMEZONE_OFFSET),
        reminder_minutes=int(getattr(settings, "REMINDER_MINUTES", constants.DEFAULT_REMINDER_MINUTES)),
        workers=int(getattr(settings, "QUEUE_WORKERS", constants.DEFAULT_QUEUE_WORKERS)),
        retry_policy=RetryPolicy(
            max_attempts=int(getattr(settings, "QUEUE_MAX_ATTEMPTS", constants.DEFAULT_MAX_ATTEMPTS)),
            base_delay=float(getattr(settings, "QUEUE_BACKOFF_SECONDS", constants.DEFAULT_BACKOFF_SECONDS)),
        ),
    )
