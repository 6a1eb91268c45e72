"""Project folders that group tasks under the tasks directory."""

from __future__ import annotations

import os
import threading
from collections import Counter
from dataclasses import dataclass, field
from typing import Optional

from tanuki.events import Task, TaskStatus
from tanuki.interfaces import TaskManager

README_NAME = "README.md"

_README_TEMPLATE = """# Project: {name}

{description}

## Architecture

Describe key components and their relationships here.

## Conventions

- Code style guidelines
- Testing requirements
- Documentation standards

## Context Files

Files agents should understand:
- README.md
- CLAUDE.md (if exists)
"""


class ProjectNotFoundError(LookupError):
    """Raised when a project name is unknown."""

    def __init__(self, name: str) -> None:
        super().__init__(f"project {name!r} not found")
        self.name = name


class ProjectExistsError(FileExistsError):
    """Raised when creating a project whose folder already exists."""

    def __init__(self, name: str) -> None:
        super().__init__(f"project {name!r} already exists")
        self.name = name


@dataclass
class Stats:
    """Counts of a project's tasks overall and by status, workstream and priority."""

    total: int = 0
    by_status: dict[TaskStatus, int] = field(default_factory=dict)
    by_workstream: dict[str, int] = field(default_factory=dict)
    by_priority: dict[str, int] = field(default_factory=dict)


@dataclass
class Project:
    """A folder of tasks identified by a README.md inside the tasks directory."""

    name: str
    path: str
    description: str = ""
    tasks: list[Task] = field(default_factory=list)

    def get_workstreams(self) -> list[str]:
        """Unique workstreams of the project's tasks, sorted."""
        return sorted({task.get_workstream() for task in self.tasks})

    def get_stats(self) -> Stats:
        by_status: Counter[TaskStatus] = Counter(task.status for task in self.tasks)
        by_workstream: Counter[str] = Counter(task.get_workstream() for task in self.tasks)
        by_priority: Counter[str] = Counter(task.priority for task in self.tasks)
        return Stats(
            total=len(self.tasks),
            by_status=dict(by_status),
            by_workstream=dict(by_workstream),
            by_priority=dict(by_priority),
        )


def _parse_readme_description(content: str) -> str:
    """First non-header paragraph of a README, joined into one line."""
    parts: list[str] = []
    in_desc = False
    for raw in content.split("\n"):
        line = raw.strip()
        if not in_desc and not line:
            continue
        if line.startswith("#"):
            if in_desc:
                break
            continue
        in_desc = True
        if not line:
            break
        parts.append(line)
    return " ".join(parts)


def _read_description(path: str) -> str:
    try:
        with open(path, encoding="utf-8") as handle:
            return _parse_readme_description(handle.read())
    except OSError:
        return ""


class ProjectManager:
    """Discovers projects by grouping scanned tasks by their project folder."""

    def __init__(self, tasks_dir: str | os.PathLike[str], task_mgr: TaskManager) -> None:
        self._tasks_dir = os.fspath(tasks_dir)
        self._task_mgr = task_mgr
        self._lock = threading.RLock()
        self._projects: dict[str, Project] = {}
        self._root_tasks: list[Task] = []

    @property
    def tasks_dir(self) -> str:
        return self._tasks_dir

    def scan(self) -> None:
        """Rescan tasks and rebuild the projects and the root task list."""
        with self._lock:
            self._projects = {}
            self._root_tasks = []
            grouped: dict[str, list[Task]] = {}
            for task in self._task_mgr.scan():
                if task.project:
                    grouped.setdefault(task.project, []).append(task)
                else:
                    self._root_tasks.append(task)

            for name, tasks in grouped.items():
                path = os.path.join(self._tasks_dir, name)
                self._projects[name] = Project(
                    name=name,
                    path=path,
                    description=_read_description(os.path.join(path, README_NAME)),
                    tasks=tasks,
                )

    def list(self) -> list[Project]:
        """All discovered projects, sorted by name."""
        with self._lock:
            return sorted(self._projects.values(), key=lambda project: project.name)

    def get(self, name: str) -> Project:
        with self._lock:
            try:
                return self._projects[name]
            except KeyError:
                raise ProjectNotFoundError(name) from None

    def get_root_tasks(self) -> list[Task]:
        """Tasks that belong to no project folder."""
        with self._lock:
            return list(self._root_tasks)

    def has_projects(self) -> bool:
        with self._lock:
            return bool(self._projects)

    def create_project(self, name: str, description: str) -> Project:
        """Create a project folder holding a README.md and register it."""
        path = os.path.join(self._tasks_dir, name)
        if os.path.exists(path):
            raise ProjectExistsError(name)
        os.makedirs(path, mode=0o750, exist_ok=True)

        readme_path = os.path.join(path, README_NAME)
        fd = os.open(readme_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(_README_TEMPLATE.format(name=name, description=description))

        project = Project(name=name, path=path, description=description, tasks=[])
        with self._lock:
            self._projects[name] = project
        return project

    def project_exists(self, name: str) -> bool:
        """True if the project folder holds a README.md."""
        return os.path.exists(os.path.join(self._tasks_dir, name, README_NAME))

    def _project(self, name: str) -> Optional[Project]:
        with self._lock:
            return self._projects.get(name)


def _clean(name: str) -> str:
    return name.replace(" ", "-").lower()


def agent_name(project: str, workstream: str) -> str:
    """Standard agent name ``{project}-{workstream}``, lower case with hyphens."""
    return f"{_clean(project)}-{_clean(workstream)}"


def worktree_branch(project: str, workstream: str) -> str:
    """Standard branch name ``tanuki/{project}-{workstream}``."""
    return f"tanuki/{agent_name(project, workstream)}"