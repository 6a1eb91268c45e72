"""Persistent agent state stored as a JSON file.

State lives in ``.tanuki/state/agents.json`` and records every agent, its
container, branch, status and metadata, so it survives restarts of the CLI.
"""

from __future__ import annotations

import copy
import json
import os
import re
import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional, Protocol, Union


class AgentStatus(str, Enum):
    """Lifecycle state of an agent."""

    CREATING = "creating"
    IDLE = "idle"
    WORKING = "working"
    STOPPED = "stopped"
    ERROR = "error"


class AgentNotFoundError(LookupError):
    """Raised when an agent name is not present in the state."""

    def __init__(self, name: str) -> None:
        super().__init__(f"agent {name!r} not found")
        self.name = name


_ZERO_TIME = "0001-01-01T00:00:00Z"
_FRACTION = re.compile(r"\.(\d+)")


def _now() -> datetime:
    return datetime.now().astimezone()


def _format_time(value: Optional[datetime]) -> str:
    if value is None:
        return _ZERO_TIME
    if value.tzinfo is None:
        value = value.astimezone()
    text = value.isoformat()
    return text[:-6] + "Z" if text.endswith("+00:00") else text


def _parse_time(text: Optional[str]) -> Optional[datetime]:
    if not text or text.startswith("0001-01-01"):
        return None
    if text[-1] in "Zz":
        text = text[:-1] + "+00:00"
    text = _FRACTION.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), text, count=1)
    return datetime.fromisoformat(text)


def _parse_status(value: str) -> Union[AgentStatus, str]:
    try:
        return AgentStatus(value)
    except ValueError:
        return value


@dataclass
class TaskInfo:
    """Details of the last task an agent executed."""

    prompt: str = ""
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    session_id: str = ""
    workstream: str = ""
    turns_used: int = 0
    iterations_used: int = 0

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "prompt": self.prompt,
            "started_at": _format_time(self.started_at),
        }
        if self.completed_at is not None:
            data["completed_at"] = _format_time(self.completed_at)
        data["session_id"] = self.session_id
        if self.workstream:
            data["workstream"] = self.workstream
        if self.turns_used:
            data["turns_used"] = self.turns_used
        if self.iterations_used:
            data["iterations_used"] = self.iterations_used
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TaskInfo:
        return cls(
            prompt=data.get("prompt", ""),
            started_at=_parse_time(data.get("started_at")),
            completed_at=_parse_time(data.get("completed_at")),
            session_id=data.get("session_id", ""),
            workstream=data.get("workstream", ""),
            turns_used=data.get("turns_used", 0),
            iterations_used=data.get("iterations_used", 0),
        )


@dataclass
class Agent:
    """State of a single agent."""

    name: str
    container_id: str = ""
    container_name: str = ""
    branch: str = ""
    worktree_path: str = ""
    status: Union[AgentStatus, str] = AgentStatus.CREATING
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    last_task: Optional[TaskInfo] = None
    workstream: str = ""
    allowed_tools: list[str] = field(default_factory=list)
    disallowed_tools: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        status = self.status.value if isinstance(self.status, AgentStatus) else self.status
        data: dict[str, Any] = {
            "name": self.name,
            "container_id": self.container_id,
            "container_name": self.container_name,
            "branch": self.branch,
            "worktree_path": self.worktree_path,
            "status": status,
            "created_at": _format_time(self.created_at),
            "updated_at": _format_time(self.updated_at),
        }
        if self.last_task is not None:
            data["last_task"] = self.last_task.to_dict()
        if self.workstream:
            data["workstream"] = self.workstream
        if self.allowed_tools:
            data["allowed_tools"] = list(self.allowed_tools)
        if self.disallowed_tools:
            data["disallowed_tools"] = list(self.disallowed_tools)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Agent:
        last_task = data.get("last_task")
        return cls(
            name=data.get("name", ""),
            container_id=data.get("container_id", ""),
            container_name=data.get("container_name", ""),
            branch=data.get("branch", ""),
            worktree_path=data.get("worktree_path", ""),
            status=_parse_status(data.get("status", "")),
            created_at=_parse_time(data.get("created_at")),
            updated_at=_parse_time(data.get("updated_at")),
            last_task=TaskInfo.from_dict(last_task) if last_task else None,
            workstream=data.get("workstream", ""),
            allowed_tools=list(data.get("allowed_tools") or []),
            disallowed_tools=list(data.get("disallowed_tools") or []),
        )


@dataclass
class State:
    """Complete agent state for a project."""

    version: str = "1"
    project: str = ""
    agents: dict[str, Agent] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "project": self.project,
            "agents": {name: self.agents[name].to_dict() for name in sorted(self.agents)},
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> State:
        agents = data.get("agents") or {}
        return cls(
            version=data.get("version", ""),
            project=data.get("project", ""),
            agents={name: Agent.from_dict(value) for name, value in agents.items()},
        )


@dataclass
class WorkstreamSession:
    """Context budget tracking for a workstream."""

    workstream: str
    agent_name: str = ""
    total_turns: int = 0
    max_turns: int = 0
    started_at: Optional[datetime] = None
    tasks_completed: list[str] = field(default_factory=list)
    current_task: str = ""

    def needs_context_reset(self) -> bool:
        """True once the session has used up its turn budget."""
        if self.max_turns <= 0:
            return False
        return self.total_turns >= self.max_turns

    def add_turns(self, turns: int) -> None:
        self.total_turns += turns

    def complete_task(self, task_id: str) -> None:
        self.tasks_completed.append(task_id)
        self.current_task = ""


class ContainerChecker(Protocol):
    """Reports whether a container exists and is running."""

    def container_status(self, container_id: str) -> tuple[bool, bool]:
        """Return ``(exists, running)``; raise if the status cannot be determined."""
        ...


def _parent(path: str) -> str:
    return os.path.dirname(path) or "."


class FileStateManager:
    """Agent state manager backed by a JSON file."""

    def __init__(self, path: str | os.PathLike[str], checker: Optional[ContainerChecker] = None) -> None:
        self._path = os.fspath(path)
        self._checker = checker
        self._lock = threading.RLock()
        try:
            self._state = self._load_from_disk()
        except FileNotFoundError:
            project = _parent(_parent(_parent(self._path)))
            self._state = State(version="1", project=project, agents={})

    @property
    def path(self) -> str:
        return self._path

    def load(self) -> State:
        """Return a copy of the current state."""
        with self._lock:
            return State(
                version=self._state.version,
                project=self._state.project,
                agents={name: copy.copy(agent) for name, agent in self._state.agents.items()},
            )

    def save(self, state: State) -> None:
        """Write ``state`` to disk atomically and make it current."""
        with self._lock:
            self._write(state)
            self._state = state

    def get_agent(self, name: str) -> Agent:
        with self._lock:
            try:
                return copy.copy(self._state.agents[name])
            except KeyError:
                raise AgentNotFoundError(name) from None

    def set_agent(self, agent: Agent) -> None:
        """Create or update an agent, stamping its timestamps, and persist."""
        with self._lock:
            agent.updated_at = _now()
            if agent.name not in self._state.agents:
                agent.created_at = agent.updated_at
            self._state.agents[agent.name] = copy.copy(agent)
            self._write(self._state)

    def remove_agent(self, name: str) -> None:
        with self._lock:
            if name not in self._state.agents:
                raise AgentNotFoundError(name)
            del self._state.agents[name]
            self._write(self._state)

    def list_agents(self) -> list[Agent]:
        with self._lock:
            return [copy.copy(agent) for agent in self._state.agents.values()]

    def reconcile(self) -> None:
        """Bring agent statuses in line with the actual container states."""
        if self._checker is None:
            return
        with self._lock:
            changed = False
            for agent in self._state.agents.values():
                if not agent.container_id:
                    continue
                try:
                    exists, running = self._checker.container_status(agent.container_id)
                except Exception:
                    continue

                old_status = agent.status
                if not exists:
                    agent.status = AgentStatus.ERROR
                    changed = True
                elif not running and agent.status in (AgentStatus.WORKING, AgentStatus.IDLE):
                    agent.status = AgentStatus.STOPPED
                    changed = True
                elif running and agent.status == AgentStatus.STOPPED:
                    agent.status = AgentStatus.IDLE
                    changed = True

                if old_status != agent.status:
                    agent.updated_at = _now()

            if changed:
                self._write(self._state)

    def _load_from_disk(self) -> State:
        with open(self._path, encoding="utf-8") as handle:
            raw = handle.read()
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ValueError(f"failed to unmarshal state: {exc}") from exc
        if not isinstance(data, dict):
            raise ValueError("failed to unmarshal state: expected a JSON object")
        return State.from_dict(data)

    def _write(self, state: State) -> None:
        os.makedirs(_parent(self._path), mode=0o750, exist_ok=True)
        tmp_path = self._path + ".tmp"
        payload = json.dumps(state.to_dict(), indent=2)
        fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(payload)
        try:
            os.replace(tmp_path, self._path)
        except OSError:
            try:
                os.remove(tmp_path)
            except OSError:
                pass
            raise


def default_state_path() -> str:
    """Default location of the state file, relative to the project root."""
    return os.path.join(".tanuki", "state", "agents.json")


def new_manager() -> FileStateManager:
    """State manager at the default path with no container checker."""
    return FileStateManager(default_state_path(), None)