"""Core functionality for time tracking."""

from colmillo.core.errors import (
    InvalidRangeError,
    LedgerError,
    NotFoundError,
    PersistenceFailureError,
    ValidationFailedError,
)
from colmillo.core.gateway import MemoryGateway, PersistenceGateway, Snapshot
from colmillo.core.ledger import TimeLedger
from colmillo.core.models import Project, ProjectStatus, Session, Task, TaskStatus, User
from colmillo.core.storage import CSVGateway

__all__ = [
    "CSVGateway",
    "InvalidRangeError",
    "LedgerError",
    "MemoryGateway",
    "NotFoundError",
    "PersistenceFailureError",
    "PersistenceGateway",
    "Project",
    "ProjectStatus",
    "Session",
    "Snapshot",
    "Task",
    "TaskStatus",
    "TimeLedger",
    "User",
    "ValidationFailedError",
]
