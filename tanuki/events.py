"""Task records, statuses and lifecycle events."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional


class TaskStatus(str, Enum):
    """Status of a task."""

    PENDING = "pending"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    REVIEW = "review"
    COMPLETE = "complete"
    FAILED = "failed"
    BLOCKED = "blocked"


class EventType(str, Enum):
    """Kinds of task lifecycle event."""

    TASK_CREATED = "task.created"
    TASK_ASSIGNED = "task.assigned"
    TASK_STARTED = "task.started"
    TASK_COMPLETED = "task.completed"
    TASK_FAILED = "task.failed"
    TASK_BLOCKED = "task.blocked"
    TASK_UNBLOCKED = "task.unblocked"
    STATUS_CHANGED = "task.status_changed"


DEFAULT_WORKSTREAM = "main"


@dataclass
class Task:
    """A unit of work handed to an agent."""

    id: str
    title: str = ""
    workstream: str = ""
    status: TaskStatus = TaskStatus.PENDING
    priority: str = "medium"
    project: str = ""
    depends_on: list[str] = field(default_factory=list)
    assigned_to: str = ""
    file_path: str = ""
    validation_log: str = ""
    completed_at: Optional[datetime] = None

    def get_workstream(self) -> str:
        """The task's workstream, falling back to the default one."""
        return self.workstream or DEFAULT_WORKSTREAM


@dataclass
class Event:
    """A task lifecycle event."""

    type: EventType
    task_id: str
    task_title: str = ""
    agent_name: str = ""
    message: str = ""
    timestamp: datetime = field(default_factory=datetime.now)


_STATUS_EVENTS = {
    TaskStatus.ASSIGNED: EventType.TASK_ASSIGNED,
    TaskStatus.IN_PROGRESS: EventType.TASK_STARTED,
    TaskStatus.COMPLETE: EventType.TASK_COMPLETED,
    TaskStatus.FAILED: EventType.TASK_FAILED,
    TaskStatus.BLOCKED: EventType.TASK_BLOCKED,
    TaskStatus.PENDING: EventType.TASK_UNBLOCKED,
}


def status_to_event_type(status: TaskStatus) -> EventType:
    """Event type announcing a change to ``status``."""
    return _STATUS_EVENTS.get(status, EventType.STATUS_CHANGED)