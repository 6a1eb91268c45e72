"""Workstream scheduling with per-workstream concurrency limits."""

from __future__ import annotations

import threading
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

from tanuki.events import Task, TaskStatus
from tanuki.interfaces import TaskManager


class WorkstreamNotFoundError(LookupError):
    """Raised when a workstream, or a task within one, cannot be found."""


class WorkstreamStatus(str, Enum):
    """Lifecycle state of a workstream."""

    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class WorkstreamState:
    """Progress of one workstream through its ordered tasks."""

    workstream: str
    agent_name: str = ""
    status: WorkstreamStatus = WorkstreamStatus.PENDING
    current_task: Optional[str] = None
    tasks: list[str] = field(default_factory=list)
    completed_tasks: set[str] = field(default_factory=set)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    def is_complete(self) -> bool:
        """True once every task has completed."""
        return all(task_id in self.completed_tasks for task_id in self.tasks)

    def next_task(self) -> Optional[str]:
        """The first task not yet completed, or None."""
        return next((t for t in self.tasks if t not in self.completed_tasks), None)

    def progress(self) -> float:
        """Completion percentage."""
        if not self.tasks:
            return 100.0
        return len(self.completed_tasks) / len(self.tasks) * 100


@dataclass
class WorkstreamStateStats:
    """Statistics for one workstream."""

    workstream: str
    task_count: int = 0
    completed_count: int = 0
    status: WorkstreamStatus = WorkstreamStatus.PENDING


@dataclass
class WorkstreamStats:
    """Statistics over all workstreams."""

    total: int = 0
    by_workstream: dict[str, WorkstreamStateStats] = field(default_factory=dict)
    by_status: dict[WorkstreamStatus, int] = field(default_factory=dict)


class WorkstreamScheduler:
    """Schedules workstreams and tracks their task progress."""

    def __init__(self, task_mgr: TaskManager) -> None:
        self._task_mgr = task_mgr
        self._lock = threading.RLock()
        self._concurrency: dict[str, int] = {}
        self._active: dict[str, WorkstreamState] = {}
        self._pending: list[str] = []
        self._states: dict[str, WorkstreamState] = {}

    def set_workstream_concurrency(self, workstream: str, concurrency: int) -> None:
        """Set the limit; values below one become one."""
        with self._lock:
            self._concurrency[workstream] = max(concurrency, 1)

    def get_workstream_concurrency(self, workstream: str) -> int:
        with self._lock:
            return self._concurrency.get(workstream, 1)

    def initialize(self) -> None:
        """Scan tasks and build the initial state of every workstream."""
        with self._lock:
            grouped: dict[str, list[Task]] = {}
            for task in self._task_mgr.scan():
                grouped.setdefault(task.get_workstream(), []).append(task)

            for name, ws_tasks in grouped.items():
                state = WorkstreamState(
                    workstream=name,
                    tasks=[t.id for t in ws_tasks],
                    completed_tasks={t.id for t in ws_tasks if t.status == TaskStatus.COMPLETE},
                )
                if state.is_complete():
                    state.status = WorkstreamStatus.COMPLETED
                else:
                    self._pending.append(name)
                self._states[name] = state

    def get_next_workstream(self) -> Optional[WorkstreamState]:
        """Take the first pending workstream that is not already active."""
        with self._lock:
            for index, name in enumerate(self._pending):
                if name in self._active:
                    continue
                del self._pending[index]
                return self._states.get(name)
            return None

    def activate_workstream(self, workstream: str, agent_name: str) -> None:
        """Mark a workstream active and give it to ``agent_name``."""
        with self._lock:
            state = self._states.get(workstream)
            if state is None:
                raise WorkstreamNotFoundError(f"workstream {workstream!r} not found")
            state.status = WorkstreamStatus.ACTIVE
            state.agent_name = agent_name
            state.started_at = datetime.now()
            state.current_task = state.next_task()
            self._active[workstream] = state

    def _state_for_task(self, task_id: str) -> WorkstreamState:
        for state in self._states.values():
            if task_id in state.tasks:
                return state
        raise WorkstreamNotFoundError(f"task {task_id!r} not found in any workstream")

    def complete_task(self, task_id: str) -> None:
        """Record a task as complete, finishing its workstream when it was the last."""
        with self._lock:
            state = self._state_for_task(task_id)
            state.completed_tasks.add(task_id)
            state.current_task = state.next_task()
            if state.is_complete():
                state.status = WorkstreamStatus.COMPLETED
                state.completed_at = datetime.now()
                self._active.pop(state.workstream, None)

    def fail_task(self, task_id: str) -> None:
        """Record a task as failed, which fails its whole workstream."""
        with self._lock:
            state = self._state_for_task(task_id)
            state.status = WorkstreamStatus.FAILED
            state.completed_at = datetime.now()
            self._active.pop(state.workstream, None)

    def get_active_workstreams(self) -> list[WorkstreamState]:
        with self._lock:
            return list(self._active.values())

    def get_pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    def get_workstream_state(self, workstream: str) -> Optional[WorkstreamState]:
        with self._lock:
            return self._states.get(workstream)

    def get_all_workstream_states(self) -> list[WorkstreamState]:
        with self._lock:
            return list(self._states.values())

    def stats(self) -> WorkstreamStats:
        with self._lock:
            by_status: Counter[WorkstreamStatus] = Counter()
            result = WorkstreamStats()
            for state in self._states.values():
                result.total += 1
                by_status[state.status] += 1
                result.by_workstream[state.workstream] = WorkstreamStateStats(
                    workstream=state.workstream,
                    task_count=len(state.tasks),
                    completed_count=len(state.completed_tasks),
                    status=state.status,
                )
            result.by_status = dict(by_status)
            return result