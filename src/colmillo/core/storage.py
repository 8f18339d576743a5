"""CSV persistence gateway with atomic operations and file locking."""

import csv
import logging
import os
import shutil
import sys
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Iterator, Optional

from colmillo.core.errors import PersistenceFailureError
from colmillo.core.gateway import PersistenceGateway, Snapshot
from colmillo.core.models import Project, Session, Task

logger = logging.getLogger(__name__)

PROJECT_FIELDS = ["id", "name", "client", "deadline", "budget_hours", "status", "created_at"]
TASK_FIELDS = [
    "id",
    "name",
    "project_id",
    "user",
    "accumulated_time",
    "status",
    "is_running",
    "created_at",
    "completed_at",
]
SESSION_FIELDS = ["id", "task_id", "start", "end", "duration"]


def _lock_file(file_obj: Any, exclusive: bool = True) -> None:
    """Lock a file in a cross-platform way.

    Args:
        file_obj: File object to lock
        exclusive: If True, acquire exclusive lock; if False, acquire shared lock
    """
    if sys.platform == "win32":
        import msvcrt  # type: ignore[import-not-found]

        mode = msvcrt.LK_LOCK if exclusive else msvcrt.LK_RLCK
        msvcrt.locking(file_obj.fileno(), mode, 1)
    else:
        import fcntl  # type: ignore[import-not-found]

        mode = fcntl.LOCK_EX if exclusive else fcntl.LOCK_SH
        fcntl.flock(file_obj.fileno(), mode)


def _unlock_file(file_obj: Any) -> None:
    """Unlock a file in a cross-platform way.

    Args:
        file_obj: File object to unlock
    """
    if sys.platform == "win32":
        import msvcrt  # type: ignore[import-not-found]

        msvcrt.locking(file_obj.fileno(), msvcrt.LK_UNLCK, 1)
    else:
        import fcntl  # type: ignore[import-not-found]

        fcntl.flock(file_obj.fileno(), fcntl.LOCK_UN)


class CSVGateway(PersistenceGateway):
    """Stores projects, tasks and sessions as CSV files in a data directory.

    Every read-modify-write holds an exclusive lock on a sidecar lock file in
    the data directory, and loads hold a shared one, so several processes can
    share a directory.
    """

    def __init__(self, data_dir: Optional[Path] = None):
        """Initialize the gateway and create missing files.

        Args:
            data_dir: Custom data directory. Defaults to ~/.colmillo/data
        """
        if data_dir is None:
            data_dir = Path.home() / ".colmillo" / "data"

        self.data_dir = Path(data_dir)
        self.projects_file = self.data_dir / "projects.csv"
        self.tasks_file = self.data_dir / "tasks.csv"
        self.sessions_file = self.data_dir / "sessions.csv"
        self.lock_path = self.data_dir / ".lock"
        self.backup_dir = self.data_dir.parent / "backups"

        try:
            self.data_dir.mkdir(parents=True, exist_ok=True)
            self.backup_dir.mkdir(parents=True, exist_ok=True)
            with self._locked(exclusive=True):
                self._initialize_files()
        except OSError as e:
            raise PersistenceFailureError(f"Cannot initialize data directory {self.data_dir}: {e}")

    @contextmanager
    def _locked(self, exclusive: bool) -> Iterator[None]:
        """Hold the data directory lock for the duration of the block."""
        with open(self.lock_path, "a+", encoding="utf-8") as lock:
            _lock_file(lock, exclusive=exclusive)
            try:
                yield
            finally:
                _unlock_file(lock)

    def _initialize_files(self) -> None:
        """Create CSV files with headers if they don't exist."""
        for file_path, fieldnames in (
            (self.projects_file, PROJECT_FIELDS),
            (self.tasks_file, TASK_FIELDS),
            (self.sessions_file, SESSION_FIELDS),
        ):
            if not file_path.exists():
                self._write_csv_atomic(file_path, fieldnames, [])

    def _write_csv_atomic(
        self, file_path: Path, fieldnames: list[str], rows: list[dict[str, Any]]
    ) -> None:
        """Write CSV file atomically using temporary file and rename.

        Callers hold the exclusive directory lock.

        Args:
            file_path: Target file path
            fieldnames: CSV field names
            rows: List of row dictionaries
        """
        temp_file = file_path.with_suffix(".tmp")

        try:
            with open(temp_file, "w", newline="", encoding="utf-8") as f:
                writer = csv.DictWriter(f, fieldnames=fieldnames)
                writer.writeheader()
                writer.writerows(rows)

                f.flush()
                os.fsync(f.fileno())

            temp_file.replace(file_path)

        except Exception as e:
            if temp_file.exists():
                temp_file.unlink()
            raise e

    def _read_csv(self, file_path: Path) -> list[dict[str, Any]]:
        """Read CSV file. Callers hold the directory lock.

        Args:
            file_path: CSV file to read

        Returns:
            List of row dictionaries
        """
        if not file_path.exists():
            return []

        with open(file_path, newline="", encoding="utf-8") as f:
            return list(csv.DictReader(f))

    def _upsert(self, file_path: Path, fieldnames: list[str], row: dict[str, Any]) -> None:
        """Replace the row with the same id, or append it."""

        def change(rows: list[dict[str, Any]]) -> list[dict[str, Any]]:
            for i, existing in enumerate(rows):
                if existing["id"] == row["id"]:
                    rows[i] = row
                    return rows
            rows.append(row)
            return rows

        self._rewrite(file_path, fieldnames, change)

    def _remove(
        self, file_path: Path, fieldnames: list[str], predicate: Callable[[dict[str, Any]], bool]
    ) -> None:
        """Drop every row matching predicate."""
        self._rewrite(file_path, fieldnames, lambda rows: [r for r in rows if not predicate(r)])

    def _rewrite(
        self,
        file_path: Path,
        fieldnames: list[str],
        change: Callable[[list[dict[str, Any]]], list[dict[str, Any]]],
    ) -> None:
        try:
            with self._locked(exclusive=True):
                rows = change(self._read_csv(file_path))
                self._write_csv_atomic(file_path, fieldnames, rows)
        except (OSError, csv.Error) as e:
            logger.error(f"Failed to write {file_path.name}: {e}")
            raise PersistenceFailureError(f"Failed to write {file_path.name}: {e}")

    def backup(self, label: Optional[str] = None) -> Path:
        """Create backup of all data files.

        Args:
            label: Optional label for backup. Defaults to timestamp

        Returns:
            Path to backup directory
        """
        if label is None:
            label = datetime.now().strftime("%Y%m%d_%H%M%S")

        backup_path = self.backup_dir / label
        try:
            backup_path.mkdir(parents=True, exist_ok=True)
            with self._locked(exclusive=False):
                for file in [self.projects_file, self.tasks_file, self.sessions_file]:
                    if file.exists():
                        shutil.copy2(file, backup_path / file.name)
        except OSError as e:
            raise PersistenceFailureError(f"Backup failed: {e}")

        logger.info(f"Data backed up to {backup_path}")
        return backup_path

    # Projects

    def save_project(self, project: Project) -> None:
        self._upsert(self.projects_file, PROJECT_FIELDS, project.to_dict())

    def update_project(self, project: Project) -> None:
        self._upsert(self.projects_file, PROJECT_FIELDS, project.to_dict())

    def delete_project(self, project_id: str) -> None:
        self._remove(self.projects_file, PROJECT_FIELDS, lambda r: r["id"] == project_id)

    # Tasks

    def save_task(self, task: Task) -> None:
        self._upsert(self.tasks_file, TASK_FIELDS, task.to_dict())

    def update_task(self, task: Task) -> None:
        self._upsert(self.tasks_file, TASK_FIELDS, task.to_dict())

    def delete_task(self, task_id: str) -> None:
        self._remove(self.sessions_file, SESSION_FIELDS, lambda r: r["task_id"] == task_id)
        self._remove(self.tasks_file, TASK_FIELDS, lambda r: r["id"] == task_id)

    # Sessions

    def save_session(self, session: Session) -> None:
        self._upsert(self.sessions_file, SESSION_FIELDS, session.to_dict())

    def update_session(self, session: Session) -> None:
        self._upsert(self.sessions_file, SESSION_FIELDS, session.to_dict())

    def delete_session(self, session_id: str) -> None:
        self._remove(self.sessions_file, SESSION_FIELDS, lambda r: r["id"] == session_id)

    def load_all(self) -> Snapshot:
        """Load every stored entity, sessions in file order."""
        try:
            with self._locked(exclusive=False):
                project_rows = self._read_csv(self.projects_file)
                task_rows = self._read_csv(self.tasks_file)
                session_rows = self._read_csv(self.sessions_file)

            return Snapshot(
                projects=[Project.from_dict(r) for r in project_rows],
                tasks=[Task.from_dict(r) for r in task_rows],
                sessions=[Session.from_dict(r) for r in session_rows],
            )
        except (OSError, csv.Error, KeyError, ValueError) as e:
            logger.error(f"Failed to load data from {self.data_dir}: {e}")
            raise PersistenceFailureError(f"Failed to load data: {e}")
