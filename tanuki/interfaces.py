"""Contracts that project orchestration code relies on."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional, Protocol, runtime_checkable

from tanuki.events import Task, TaskStatus


@dataclass
class TaskStats:
    """Counts of tasks overall and by status, workstream and priority."""

    total: int = 0
    by_status: dict[TaskStatus, int] = field(default_factory=dict)
    by_workstream: dict[str, int] = field(default_factory=dict)
    by_priority: dict[str, int] = field(default_factory=dict)

    @classmethod
    def from_tasks(cls, tasks: Iterable[Task]) -> TaskStats:
        """Build statistics for ``tasks``."""
        by_status: Counter[TaskStatus] = Counter()
        by_workstream: Counter[str] = Counter()
        by_priority: Counter[str] = Counter()
        total = 0
        for task in tasks:
            total += 1
            by_status[task.status] += 1
            by_workstream[task.get_workstream()] += 1
            by_priority[task.priority] += 1
        return cls(
            total=total,
            by_status=dict(by_status),
            by_workstream=dict(by_workstream),
            by_priority=dict(by_priority),
        )


@runtime_checkable
class TaskManager(Protocol):
    """Loads tasks and changes their status and assignment."""

    def scan(self) -> list[Task]:
        """Load every task file."""
        ...

    def get(self, task_id: str) -> Task:
        """Return a task by ID; raise if it does not exist."""
        ...

    def get_by_workstream(self, workstream: str) -> list[Task]:
        ...

    def get_by_status(self, status: TaskStatus) -> list[Task]:
        ...

    def get_pending(self) -> list[Task]:
        """Pending tasks, highest priority first."""
        ...

    def update_status(self, task_id: str, status: TaskStatus) -> None:
        """Change a task's status and persist it."""
        ...

    def assign(self, task_id: str, agent_name: str) -> None:
        ...

    def unassign(self, task_id: str) -> None:
        ...

    def is_blocked(self, task_id: str) -> bool:
        """True while any of the task's dependencies is incomplete."""
        ...

    def stats(self) -> TaskStats:
        ...


@runtime_checkable
class TaskQueue(Protocol):
    """Priority queue of tasks keyed by workstream."""

    def enqueue(self, task: Task) -> None:
        ...

    def dequeue(self, workstream: str) -> Task:
        """Remove and return the highest-priority task; raise if there is none."""
        ...

    def peek(self, workstream: str) -> Task:
        """Return the highest-priority task without removing it; raise if there is none."""
        ...

    def size(self) -> int:
        ...

    def size_by_workstream(self, workstream: str) -> int:
        ...

    def contains(self, task_id: str) -> bool:
        ...

    def clear(self) -> None:
        ...


@runtime_checkable
class AgentManager(Protocol):
    """The agent operations project orchestration needs."""

    def spawn(self, name: str, **options: Any) -> Any:
        """Create a new agent."""
        ...

    def get(self, name: str) -> Optional[Any]:
        """Return an agent by name; raise if it does not exist."""
        ...

    def list(self) -> list[Any]:
        ...

    def start(self, name: str) -> None:
        ...

    def stop(self, name: str) -> None:
        ...

    def remove(self, name: str, **options: Any) -> None:
        """Delete an agent and all its resources."""
        ...

    def run(self, name: str, prompt: str, **options: Any) -> None:
        """Execute a prompt in the agent's container."""
        ...