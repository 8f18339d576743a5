"""Core data models for projects, tasks and work sessions."""

import math
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from uuid import uuid4


class User(str, Enum):
    """The two users sharing the workspace."""

    A = "A"
    B = "B"


class ProjectStatus(str, Enum):
    """Lifecycle status of a project."""

    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"


class TaskStatus(str, Enum):
    """Lifecycle status of a task (independent of its timer)."""

    ACTIVE = "active"
    COMPLETED = "completed"


def new_id() -> str:
    """Generate a fresh unique identifier."""
    return str(uuid4())


def session_duration(start: datetime, end: datetime) -> int:
    """Duration between two instants in whole seconds, rounding half up."""
    return int(math.floor((end - start).total_seconds() + 0.5))


def _parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("true", "1", "yes")


def _parse_datetime(value: Any) -> Optional[datetime]:
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


@dataclass
class Session:
    """One contiguous interval during which a task's timer was running.

    Attributes:
        task_id: Owning task
        start: When the interval started
        end: When the interval ended (None while open)
        duration: Closed duration in seconds (0 while open)
        id: Row identifier used by persistence
    """

    task_id: str
    start: datetime
    end: Optional[datetime] = None
    duration: int = 0
    id: str = field(default_factory=new_id)

    @property
    def is_open(self) -> bool:
        """Check if this session is still in progress."""
        return self.end is None

    def close(self, end: datetime) -> int:
        """Set the end instant and derive the duration.

        Args:
            end: Closing instant, strictly after start

        Returns:
            Closed duration in seconds
        """
        self.end = end
        self.duration = session_duration(self.start, end)
        return self.duration

    def to_dict(self) -> dict[str, Any]:
        """Convert to a flat row for persistence."""
        return {
            "id": self.id,
            "task_id": self.task_id,
            "start": self.start.isoformat(),
            "end": self.end.isoformat() if self.end else "",
            "duration": self.duration,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Session":
        """Create Session from a flat persistence row."""
        return cls(
            id=data["id"],
            task_id=data["task_id"],
            start=datetime.fromisoformat(data["start"]),
            end=_parse_datetime(data.get("end")),
            duration=int(data["duration"]) if data.get("duration") else 0,
        )


@dataclass
class Project:
    """Project grouping tasks, with an optional budget and deadline.

    Attributes:
        name: Display name
        id: Project identifier (UUID string or user-supplied slug)
        client: Client name (optional)
        deadline: Due date (optional)
        budget_hours: Allocated hours (optional, positive)
        status: Lifecycle status
        created_at: Creation timestamp
    """

    name: str
    id: str = field(default_factory=new_id)
    client: Optional[str] = None
    deadline: Optional[date] = None
    budget_hours: Optional[Decimal] = None
    status: ProjectStatus = ProjectStatus.ACTIVE
    created_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for CSV/JSON serialization."""
        return {
            "id": self.id,
            "name": self.name,
            "client": self.client or "",
            "deadline": self.deadline.isoformat() if self.deadline else "",
            "budget_hours": str(self.budget_hours) if self.budget_hours else "",
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Project":
        """Create Project from dictionary (CSV/JSON deserialization)."""
        return cls(
            id=data["id"],
            name=data["name"],
            client=data["client"] if data.get("client") else None,
            deadline=date.fromisoformat(data["deadline"]) if data.get("deadline") else None,
            budget_hours=Decimal(data["budget_hours"]) if data.get("budget_hours") else None,
            status=ProjectStatus(data.get("status") or ProjectStatus.ACTIVE.value),
            created_at=datetime.fromisoformat(data["created_at"]),
        )


@dataclass
class Task:
    """Trackable unit of work owned by one user and one project.

    Attributes:
        name: Task description
        project_id: Owning project
        user: Owning user
        id: Unique identifier
        accumulated_time: Closed time in seconds (excludes the open session)
        status: Lifecycle status
        is_running: Whether the timer is currently running
        created_at: Creation timestamp
        completed_at: When the task was stopped (None unless completed)
        sessions: Work sessions in chronological order
    """

    name: str
    project_id: str
    user: User
    id: str = field(default_factory=new_id)
    accumulated_time: int = 0
    status: TaskStatus = TaskStatus.ACTIVE
    is_running: bool = False
    created_at: datetime = field(default_factory=datetime.now)
    completed_at: Optional[datetime] = None
    sessions: list[Session] = field(default_factory=list)

    @property
    def open_session(self) -> Optional[Session]:
        """Return the in-progress session, if any (always the last one)."""
        if self.sessions and self.sessions[-1].is_open:
            return self.sessions[-1]
        return None

    @property
    def is_completed(self) -> bool:
        """Check if the task has been stopped."""
        return self.status is TaskStatus.COMPLETED

    def closed_time(self) -> int:
        """Sum of durations over closed sessions."""
        return sum(s.duration for s in self.sessions if not s.is_open)

    def elapsed_seconds(self, now: datetime) -> int:
        """Live elapsed time for display: closed time plus the open interval.

        Args:
            now: Reference instant

        Returns:
            Seconds, never less than accumulated_time
        """
        current = self.open_session
        if not self.is_running or current is None:
            return self.accumulated_time
        return self.accumulated_time + max(0, session_duration(current.start, now))

    def to_dict(self) -> dict[str, Any]:
        """Convert to a flat row (sessions are stored separately)."""
        return {
            "id": self.id,
            "name": self.name,
            "project_id": self.project_id,
            "user": self.user.value,
            "accumulated_time": self.accumulated_time,
            "status": self.status.value,
            "is_running": self.is_running,
            "created_at": self.created_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else "",
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any], sessions: Optional[list[Session]] = None) -> "Task":
        """Create Task from a flat row, optionally attaching its sessions."""
        return cls(
            id=data["id"],
            name=data["name"],
            project_id=data["project_id"],
            user=User(data["user"]),
            accumulated_time=int(data["accumulated_time"]) if data.get("accumulated_time") else 0,
            status=TaskStatus(data.get("status") or TaskStatus.ACTIVE.value),
            is_running=_parse_bool(data.get("is_running", False)),
            created_at=datetime.fromisoformat(data["created_at"]),
            completed_at=_parse_datetime(data.get("completed_at")),
            sessions=list(sessions or []),
        )
