"""Persistence gateway interface and the in-memory strategy."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from colmillo.core.errors import PersistenceFailureError
from colmillo.core.models import Project, Session, Task


@dataclass
class Snapshot:
    """Flat collections as stored by a gateway."""

    projects: list[Project] = field(default_factory=list)
    tasks: list[Task] = field(default_factory=list)
    sessions: list[Session] = field(default_factory=list)


class PersistenceGateway(ABC):
    """Durable storage for projects, tasks and sessions.

    Implementations raise PersistenceFailureError on any read or write error.
    Tasks are stored without their sessions; sessions carry their task_id.
    """

    @abstractmethod
    def save_project(self, project: Project) -> None:
        """Store a new project."""
        pass

    @abstractmethod
    def update_project(self, project: Project) -> None:
        """Overwrite a stored project."""
        pass

    @abstractmethod
    def delete_project(self, project_id: str) -> None:
        """Remove a stored project."""
        pass

    @abstractmethod
    def save_task(self, task: Task) -> None:
        """Store a new task."""
        pass

    @abstractmethod
    def update_task(self, task: Task) -> None:
        """Overwrite a stored task."""
        pass

    @abstractmethod
    def delete_task(self, task_id: str) -> None:
        """Remove a stored task together with its sessions."""
        pass

    @abstractmethod
    def save_session(self, session: Session) -> None:
        """Store a new session."""
        pass

    @abstractmethod
    def update_session(self, session: Session) -> None:
        """Overwrite a stored session."""
        pass

    @abstractmethod
    def delete_session(self, session_id: str) -> None:
        """Remove a stored session."""
        pass

    @abstractmethod
    def load_all(self) -> Snapshot:
        """Load every stored entity.

        Returns:
            Snapshot with sessions in storage order
        """
        pass


class MemoryGateway(PersistenceGateway):
    """Gateway that keeps serialized rows in process memory."""

    def __init__(self) -> None:
        """Initialize empty row stores."""
        self.projects: dict[str, dict] = {}
        self.tasks: dict[str, dict] = {}
        self.sessions: dict[str, dict] = {}

    def save_project(self, project: Project) -> None:
        self.projects[project.id] = project.to_dict()

    def update_project(self, project: Project) -> None:
        self._require(self.projects, project.id, "project")
        self.projects[project.id] = project.to_dict()

    def delete_project(self, project_id: str) -> None:
        self.projects.pop(project_id, None)

    def save_task(self, task: Task) -> None:
        self.tasks[task.id] = task.to_dict()

    def update_task(self, task: Task) -> None:
        self._require(self.tasks, task.id, "task")
        self.tasks[task.id] = task.to_dict()

    def delete_task(self, task_id: str) -> None:
        self.tasks.pop(task_id, None)
        self.sessions = {k: v for k, v in self.sessions.items() if v["task_id"] != task_id}

    def save_session(self, session: Session) -> None:
        self.sessions[session.id] = session.to_dict()

    def update_session(self, session: Session) -> None:
        self._require(self.sessions, session.id, "session")
        self.sessions[session.id] = session.to_dict()

    def delete_session(self, session_id: str) -> None:
        self.sessions.pop(session_id, None)

    def load_all(self) -> Snapshot:
        try:
            return Snapshot(
                projects=[Project.from_dict(row) for row in self.projects.values()],
                tasks=[Task.from_dict(row) for row in self.tasks.values()],
                sessions=[Session.from_dict(row) for row in self.sessions.values()],
            )
        except (KeyError, ValueError) as e:
            raise PersistenceFailureError(f"Failed to load stored rows: {e}")

    @staticmethod
    def _require(rows: dict[str, dict], key: str, kind: str) -> None:
        if key not in rows:
            raise PersistenceFailureError(f"Cannot update unknown {kind}: {key}")
