"""Project orchestration: coordinates task queueing, agents and workstreams."""

from __future__ import annotations

import contextlib
import logging
import queue
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Iterable, Optional, Protocol

from tanuki.events import Event, EventType, Task, TaskStatus
from tanuki.interfaces import AgentManager, TaskManager, TaskQueue, TaskStats
from tanuki.workstream import WorkstreamScheduler, WorkstreamStatus

logger = logging.getLogger(__name__)

_EVENT_BUFFER = 100
_WAIT_SLICE = 0.05
_UNFINISHED = frozenset(
    {TaskStatus.PENDING, TaskStatus.ASSIGNED, TaskStatus.IN_PROGRESS, TaskStatus.BLOCKED}
)


class OrchestratorError(RuntimeError):
    """Raised when the orchestrator cannot start, stop or keep running."""


class OrchestratorStatus(str, Enum):
    """Lifecycle state of the orchestrator."""

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"


@dataclass
class OrchestratorConfig:
    """Settings controlling the orchestration loop."""

    poll_interval: timedelta = timedelta(seconds=10)
    max_agents_per_workstream: int = 1
    workstream_concurrency: dict[str, int] = field(default_factory=dict)
    auto_spawn_agents: bool = True
    stop_when_complete: bool = False

    def get_workstream_concurrency(self, workstream: str) -> int:
        """Concurrency for ``workstream``, falling back to the per-workstream maximum."""
        concurrency = (self.workstream_concurrency or {}).get(workstream, 0)
        if concurrency > 0:
            return concurrency
        if self.max_agents_per_workstream > 0:
            return self.max_agents_per_workstream
        return 1


def default_orchestrator_config() -> OrchestratorConfig:
    """The default configuration."""
    return OrchestratorConfig()


class _Balancer(Protocol):
    def track_assignment(self, agent_name: str) -> None: ...

    def track_completion(self, agent_name: str) -> None: ...


class _Resolver(Protocol):
    def is_blocked(self, task_id: str) -> bool: ...

    def detect_cycle(self) -> Optional[list[str]]: ...


class _Runner(Protocol):
    def run_task(self, task_id: str, agent_name: str) -> None: ...


@dataclass
class Status:
    """Snapshot of the orchestrator and the work it manages."""

    status: OrchestratorStatus
    started_at: Optional[datetime]
    uptime: timedelta
    task_stats: TaskStats
    queue_size: int
    agent_count: int
    idle_agents: int


@dataclass
class WorkstreamProgress:
    """Progress of one workstream."""

    workstream: str
    total: int = 0
    complete: int = 0


@dataclass
class Progress:
    """Detailed progress over all tasks."""

    total: int = 0
    complete: int = 0
    in_progress: int = 0
    pending: int = 0
    percentage: float = 0.0
    by_status: dict[TaskStatus, int] = field(default_factory=dict)
    by_workstream: dict[str, WorkstreamProgress] = field(default_factory=dict)


def count_idle_agents(agents: Optional[Iterable[Any]]) -> int:
    """Number of agents whose status is idle."""
    return sum(1 for agent in agents or () if agent.status == "idle")


class Orchestrator:
    """Runs the project lifecycle, feeding queued tasks to idle agents."""

    def __init__(
        self,
        task_mgr: TaskManager,
        agent_mgr: AgentManager,
        task_queue: TaskQueue,
        config: Optional[OrchestratorConfig] = None,
        *,
        balancer: Optional[_Balancer] = None,
        resolver: Optional[_Resolver] = None,
        validator: Any = None,
        runner: Optional[_Runner] = None,
    ) -> None:
        self._task_mgr = task_mgr
        self._agent_mgr = agent_mgr
        self._queue = task_queue
        self.config = config if config is not None else default_orchestrator_config()
        self.balancer = balancer
        self.resolver = resolver
        self.validator = validator
        self.runner = runner

        self._scheduler = WorkstreamScheduler(task_mgr)
        for workstream, concurrency in self.config.workstream_concurrency.items():
            self._scheduler.set_workstream_concurrency(workstream, concurrency)

        self._lock = threading.RLock()
        self._status = OrchestratorStatus.STOPPED
        self._started: Optional[datetime] = None
        self._events: queue.Queue[Event] = queue.Queue(maxsize=_EVENT_BUFFER)

    @property
    def workstream_scheduler(self) -> WorkstreamScheduler:
        return self._scheduler

    @property
    def events(self) -> queue.Queue[Event]:
        """Queue of task events the loop consumes."""
        return self._events

    @property
    def status(self) -> OrchestratorStatus:
        with self._lock:
            return self._status

    def set_workstream_concurrency(self, workstream: str, concurrency: int) -> None:
        self.config.workstream_concurrency[workstream] = concurrency
        self._scheduler.set_workstream_concurrency(workstream, concurrency)

    def start(self, cancel: Optional[threading.Event] = None) -> None:
        """Initialize and run the orchestration loop until done or cancelled.

        Raises OrchestratorError if already started, if initialization fails,
        or when ``cancel`` is set.
        """
        with self._lock:
            if self._status != OrchestratorStatus.STOPPED:
                raise OrchestratorError(f"orchestrator already {self._status.value}")
            self._status = OrchestratorStatus.STARTING
            self._started = datetime.now()

        logger.info("Starting project orchestrator...")
        try:
            self._initialize()
        except Exception as exc:
            self._set_status(OrchestratorStatus.STOPPED)
            raise OrchestratorError(f"initialize: {exc}") from exc

        self._set_status(OrchestratorStatus.RUNNING)
        logger.info("Project orchestrator running")
        self._run_loop(cancel)

    def stop(self) -> None:
        """Stop the orchestrator and the agents assigned to workstreams."""
        with self._lock:
            if self._status != OrchestratorStatus.RUNNING:
                raise OrchestratorError("orchestrator not running")
            self._status = OrchestratorStatus.STOPPING

        logger.info("Stopping project orchestrator...")
        for agent in self._list_agents():
            if agent.workstream:
                with contextlib.suppress(Exception):
                    self._agent_mgr.stop(agent.name)

        self._set_status(OrchestratorStatus.STOPPED)
        logger.info("Project orchestrator stopped")

    def get_status(self) -> Status:
        with self._lock:
            agents = self._list_agents()
            uptime = datetime.now() - self._started if self._started else timedelta(0)
            return Status(
                status=self._status,
                started_at=self._started,
                uptime=uptime,
                task_stats=self._task_mgr.stats(),
                queue_size=self._queue.size(),
                agent_count=len(agents),
                idle_agents=count_idle_agents(agents),
            )

    def get_progress(self) -> Progress:
        tasks = self._scan()
        progress = Progress(total=len(tasks))

        for task in tasks:
            progress.by_status[task.status] = progress.by_status.get(task.status, 0) + 1
            ws = task.get_workstream()
            wp = progress.by_workstream.setdefault(ws, WorkstreamProgress(workstream=ws))
            wp.total += 1
            if task.status == TaskStatus.COMPLETE:
                wp.complete += 1

        counts = progress.by_status
        progress.complete = counts.get(TaskStatus.COMPLETE, 0)
        progress.in_progress = counts.get(TaskStatus.IN_PROGRESS, 0) + counts.get(TaskStatus.ASSIGNED, 0)
        progress.pending = counts.get(TaskStatus.PENDING, 0) + counts.get(TaskStatus.BLOCKED, 0)
        if progress.total > 0:
            progress.percentage = progress.complete / progress.total * 100
        return progress

    def is_complete(self) -> bool:
        """True when no task is pending, assigned, in progress or blocked."""
        return not any(task.status in _UNFINISHED for task in self._scan())

    def handle_event(self, event: Event) -> None:
        """React to a task lifecycle event."""
        logger.info("Event: %s for task %s", _event_name(event.type), event.task_id)
        if event.type == EventType.TASK_COMPLETED:
            self._on_task_complete(event)
        elif event.type == EventType.TASK_FAILED:
            self._on_task_failed(event)
        elif event.type == EventType.TASK_BLOCKED:
            self._on_task_blocked(event)

    def _set_status(self, status: OrchestratorStatus) -> None:
        with self._lock:
            self._status = status

    def _scan(self) -> list[Task]:
        try:
            return list(self._task_mgr.scan())
        except Exception:
            return []

    def _list_agents(self) -> list[Any]:
        try:
            return list(self._agent_mgr.list())
        except Exception:
            return []

    def _blocked(self, task_id: str) -> bool:
        return self.resolver is not None and self.resolver.is_blocked(task_id)

    def _enqueue(self, task: Task) -> None:
        with contextlib.suppress(Exception):
            self._queue.enqueue(task)

    def _initialize(self) -> None:
        try:
            tasks = list(self._task_mgr.scan())
        except Exception as exc:
            raise OrchestratorError(f"scan tasks: {exc}") from exc
        if not tasks:
            raise OrchestratorError("no tasks found")
        logger.info("Found %d tasks", len(tasks))

        if self.resolver is not None:
            cycle = self.resolver.detect_cycle()
            if cycle:
                raise OrchestratorError(f"dependency cycle detected: {cycle}")

        try:
            self._scheduler.initialize()
        except Exception as exc:
            raise OrchestratorError(f"initialize workstream scheduler: {exc}") from exc

        ws_stats = self._scheduler.stats()
        logger.info(
            "Workstreams initialized: %d total, %d pending",
            ws_stats.total,
            ws_stats.by_status.get(WorkstreamStatus.PENDING, 0),
        )

        for task in tasks:
            if task.status == TaskStatus.PENDING and not self._blocked(task.id):
                self._enqueue(task)
        logger.info("Queue initialized with %d pending tasks", self._queue.size())

        if self.config.auto_spawn_agents:
            self._spawn_agents_for_workstreams(tasks)

    def _spawn_agents_for_workstreams(self, tasks: Iterable[Task]) -> None:
        workstreams = sorted(
            {
                task.get_workstream()
                for task in tasks
                if task.status in (TaskStatus.PENDING, TaskStatus.BLOCKED)
            }
        )
        for workstream in workstreams:
            concurrency = self.config.get_workstream_concurrency(workstream)
            for index in range(concurrency):
                name = f"{workstream}-agent"
                if concurrency > 1:
                    name = f"{workstream}-agent-{index + 1}"
                try:
                    existing = self._agent_mgr.get(name)
                except Exception:
                    existing = None
                if existing is not None:
                    logger.info("Agent %s already exists", name)
                    continue
                logger.info(
                    "Spawning agent %s for workstream %s (concurrency: %d)",
                    name,
                    workstream,
                    concurrency,
                )

    def _run_loop(self, cancel: Optional[threading.Event]) -> None:
        interval = max(self.config.poll_interval.total_seconds(), 0.0)
        next_tick = time.monotonic() + interval
        while True:
            if cancel is not None and cancel.is_set():
                raise OrchestratorError("orchestration cancelled")

            remaining = next_tick - time.monotonic()
            if remaining <= 0:
                next_tick = time.monotonic() + interval
                self._tick()
            else:
                try:
                    event = self._events.get(timeout=min(remaining, _WAIT_SLICE))
                except queue.Empty:
                    continue
                self.handle_event(event)

            if self.config.stop_when_complete and self.is_complete():
                logger.info("All tasks complete")
                return

    def _tick(self) -> None:
        for task in self._scan():
            if task.status == TaskStatus.PENDING and not self._queue.contains(task.id):
                if not self._blocked(task.id):
                    self._enqueue(task)
                    logger.info("Task %s unblocked, added to queue", task.id)
        self._assign_pending_tasks()

    def _assign_pending_tasks(self) -> None:
        for agent in self._list_agents():
            if agent.status != "idle" or not agent.workstream:
                continue
            try:
                task = self._queue.dequeue(agent.workstream)
            except Exception:
                continue
            if self._blocked(task.id):
                self._enqueue(task)
                continue
            self._assign_task(task, agent.name)

    def _assign_task(self, task: Task, agent_name: str) -> None:
        logger.info("Assigning %s to %s", task.id, agent_name)
        with contextlib.suppress(Exception):
            self._task_mgr.assign(task.id, agent_name)
        if self.balancer is not None:
            self.balancer.track_assignment(agent_name)
        if self.runner is not None:
            threading.Thread(
                target=self._run_task, args=(self.runner, task.id, agent_name), daemon=True
            ).start()

    def _run_task(self, runner: _Runner, task_id: str, agent_name: str) -> None:
        try:
            runner.run_task(task_id, agent_name)
        except Exception as exc:
            logger.info("Task %s failed: %s", task_id, exc)
            event = Event(type=EventType.TASK_FAILED, task_id=task_id, agent_name=agent_name, message=str(exc))
        else:
            event = Event(type=EventType.TASK_COMPLETED, task_id=task_id, agent_name=agent_name)
        self._events.put(event)

    def _on_task_complete(self, event: Event) -> None:
        if self.balancer is not None:
            self.balancer.track_completion(event.agent_name)
        with contextlib.suppress(Exception):
            self._task_mgr.unassign(event.task_id)

        try:
            self._scheduler.complete_task(event.task_id)
        except Exception as exc:
            logger.warning("Warning: failed to update workstream for task %s: %s", event.task_id, exc)

        for task in self._scan():
            if task.status == TaskStatus.BLOCKED and not self._blocked(task.id):
                with contextlib.suppress(Exception):
                    self._task_mgr.update_status(task.id, TaskStatus.PENDING)
                self._enqueue(task)
                logger.info("Task %s unblocked by completion of %s", task.id, event.task_id)

        self._assign_pending_tasks()

    def _on_task_failed(self, event: Event) -> None:
        if self.balancer is not None:
            self.balancer.track_completion(event.agent_name)
        logger.info("Task %s failed: %s", event.task_id, event.message)
        try:
            self._scheduler.fail_task(event.task_id)
        except Exception as exc:
            logger.warning(
                "Warning: failed to update workstream for failed task %s: %s", event.task_id, exc
            )
        self._assign_pending_tasks()

    def _on_task_blocked(self, event: Event) -> None:
        logger.info("Task %s became blocked", event.task_id)
        with contextlib.suppress(Exception):
            self._task_mgr.update_status(event.task_id, TaskStatus.BLOCKED)


def _event_name(event_type: Any) -> str:
    return event_type.value if isinstance(event_type, EventType) else str(event_type)