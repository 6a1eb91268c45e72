"""Log files for task execution and validation output."""

from __future__ import annotations

import os
from datetime import datetime, timedelta
from typing import IO

LOGS_DIR = "logs"


class LogWriter:
    """Creates and manages log files under ``.tanuki/logs``."""

    def __init__(self, project_root: str | os.PathLike[str]) -> None:
        self.project_root = os.fspath(project_root)
        self.log_dir = os.path.join(self.project_root, ".tanuki", LOGS_DIR)
        os.makedirs(self.log_dir, mode=0o750, exist_ok=True)

    def _create(self, filename: str) -> tuple[IO[str], str]:
        full_path = os.path.join(self.log_dir, filename)
        fd = os.open(full_path, os.O_CREAT | os.O_WRONLY | os.O_APPEND, 0o600)
        handle = os.fdopen(fd, "a", encoding="utf-8")
        return handle, os.path.join(".tanuki", LOGS_DIR, filename)

    @staticmethod
    def _timestamp() -> str:
        return datetime.now().strftime("%Y%m%d-%H%M%S")

    def create_task_log_file(self, task_id: str) -> tuple[IO[str], str]:
        """Open a new task log; return the handle and its path relative to the project root."""
        return self._create(f"task-{task_id}-{self._timestamp()}.log")

    def create_validation_log_file(self, task_id: str) -> tuple[IO[str], str]:
        """Open a new validation log; return the handle and its path relative to the project root."""
        return self._create(f"task-{task_id}-{self._timestamp()}-validate.log")

    def get_log_path(self, relative_path: str) -> str:
        """Full path of a log given its path relative to the project root."""
        if os.path.isabs(relative_path):
            return relative_path
        return os.path.join(self.project_root, relative_path)

    def clean_old_logs(self, max_age: timedelta) -> None:
        """Remove log files last modified longer than ``max_age`` ago."""
        cutoff = (datetime.now() - max_age).timestamp()
        with os.scandir(self.log_dir) as entries:
            for entry in entries:
                if entry.is_dir():
                    continue
                try:
                    mtime = entry.stat().st_mtime
                except OSError:
                    continue
                if mtime < cutoff:
                    try:
                        os.remove(entry.path)
                    except OSError as exc:
                        print(f"Warning: failed to remove old log {entry.name}: {exc}")