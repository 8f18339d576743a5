"""Timer and session ledger: the only write path for projects, tasks and sessions."""

import copy
import logging
import threading
import time
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Optional, Union

from colmillo.core.errors import (
    InvalidRangeError,
    NotFoundError,
    PersistenceFailureError,
    ValidationFailedError,
)
from colmillo.core.gateway import MemoryGateway, PersistenceGateway
from colmillo.core.models import (
    Project,
    ProjectStatus,
    Session,
    Task,
    TaskStatus,
    User,
    new_id,
)

logger = logging.getLogger(__name__)

# Pending gateway writes: (method name, positional args)
Write = tuple[str, tuple[Any, ...]]

PROJECT_CHANGES = ("name", "client", "deadline", "budget_hours", "status")
TASK_CHANGES = ("name", "project_id", "user")


class TimeLedger:
    """Keeps tasks, their sessions and their accumulated time consistent.

    Every mutation validates first, builds the new state on copies, writes it
    through the gateway and only then commits it. A failed gateway write
    leaves the in-memory state untouched and raises PersistenceFailureError.
    """

    def __init__(
        self,
        gateway: Optional[PersistenceGateway] = None,
        clock: Optional[Callable[[], datetime]] = None,
        retry_attempts: int = 3,
        retry_delay: float = 0.1,
    ):
        """Initialize an empty ledger.

        Args:
            gateway: Persistence gateway. Uses an in-memory gateway if None.
            clock: Source of the current instant. Defaults to datetime.now
            retry_attempts: Gateway attempts per write before giving up
            retry_delay: Seconds to wait between attempts
        """
        self.gateway = gateway or MemoryGateway()
        self._clock = clock or datetime.now
        self.retry_attempts = max(1, retry_attempts)
        self.retry_delay = retry_delay
        self._projects: dict[str, Project] = {}
        self._tasks: dict[str, Task] = {}
        self._lock = threading.RLock()

    @classmethod
    def from_gateway(cls, gateway: PersistenceGateway, **kwargs: Any) -> "TimeLedger":
        """Create a ledger and load its state from the gateway."""
        ledger = cls(gateway, **kwargs)
        ledger.reload()
        return ledger

    # Read side

    @property
    def projects(self) -> list[Project]:
        """Copies of all projects, in creation order."""
        with self._lock:
            return copy.deepcopy(list(self._projects.values()))

    @property
    def tasks(self) -> list[Task]:
        """Copies of all tasks, in creation order."""
        with self._lock:
            return copy.deepcopy(list(self._tasks.values()))

    def get_project(self, project_id: str) -> Project:
        with self._lock:
            return copy.deepcopy(self._require_project(project_id))

    def get_task(self, task_id: str) -> Task:
        with self._lock:
            return copy.deepcopy(self._require_task(task_id))

    def tasks_for_project(self, project_id: str) -> list[Task]:
        with self._lock:
            return copy.deepcopy([t for t in self._tasks.values() if t.project_id == project_id])

    def running_task(self, user: Union[User, str]) -> Optional[Task]:
        """Return the task currently running for a user, if any."""
        with self._lock:
            found = self._running_task(self._coerce_user(user))
            return copy.deepcopy(found) if found else None

    def elapsed_seconds(self, task_id: str, now: Optional[datetime] = None) -> int:
        """Live elapsed time of a task for display. Never mutates state."""
        with self._lock:
            task = self._require_task(task_id)
            return task.elapsed_seconds(now or self._clock())

    def reload(self) -> None:
        """Rebuild in-memory state from the gateway's flat collections."""
        snapshot = self._call_gateway("load_all")

        tasks: dict[str, Task] = {}
        for task in snapshot.tasks:
            task.sessions = []
            tasks[task.id] = task

        for session in snapshot.sessions:
            owner = tasks.get(session.task_id)
            if owner is None:
                logger.warning(f"Dropping session {session.id} of unknown task {session.task_id}")
                continue
            owner.sessions.append(session)

        repairs: list[Write] = []
        for task in tasks.values():
            repairs += self._repair(task)
        repairs += self._repair_running(tasks)

        with self._lock:
            self._projects = {p.id: p for p in snapshot.projects}
            self._tasks = tasks
            logger.info(f"Loaded {len(self._projects)} projects and {len(self._tasks)} tasks")

            if repairs:
                logger.warning(f"Storing {len(repairs)} repair(s) made while loading")
                for name, args in repairs:
                    self._call_gateway(name, *args)

    # Projects

    def add_project(
        self,
        name: str,
        client: Optional[str] = None,
        deadline: Union[date, str, None] = None,
        budget_hours: Union[Decimal, float, str, None] = None,
        status: Union[ProjectStatus, str] = ProjectStatus.ACTIVE,
        project_id: Optional[str] = None,
    ) -> Project:
        """Create a project.

        Raises:
            ValidationFailedError: If the name is empty, the budget is not
                positive, the status is unknown or the id is taken
        """
        with self._lock:
            if project_id is not None and project_id in self._projects:
                raise ValidationFailedError(f"Project id already exists: {project_id}")

            project = Project(
                id=project_id or new_id(),
                name=self._require_name(name, "Project"),
                client=client or None,
                deadline=self._coerce_deadline(deadline),
                budget_hours=self._coerce_budget(budget_hours),
                status=self._coerce_enum(ProjectStatus, status, "project status"),
                created_at=self._clock(),
            )

            self._persist([("save_project", (project,))])
            self._projects[project.id] = project
            logger.info(f"Project added: {project.name} ({project.id})")
            return copy.deepcopy(project)

    def update_project(self, project_id: str, **changes: Any) -> Project:
        """Merge the given fields into a project.

        Raises:
            NotFoundError: If the project does not exist
            ValidationFailedError: If a field is unknown or invalid
        """
        with self._lock:
            project = copy.deepcopy(self._require_project(project_id))
            self._reject_unknown(changes, PROJECT_CHANGES)

            if "name" in changes:
                project.name = self._require_name(changes["name"], "Project")
            if "client" in changes:
                project.client = changes["client"] or None
            if "deadline" in changes:
                project.deadline = self._coerce_deadline(changes["deadline"])
            if "budget_hours" in changes:
                project.budget_hours = self._coerce_budget(changes["budget_hours"])
            if "status" in changes:
                project.status = self._coerce_enum(ProjectStatus, changes["status"], "project status")

            self._persist([("update_project", (project,))])
            self._projects[project.id] = project
            logger.info(f"Project updated: {project.id} ({', '.join(changes)})")
            return copy.deepcopy(project)

    def delete_project(self, project_id: str) -> list[str]:
        """Delete a project and every task that belongs to it.

        Returns:
            Ids of the deleted tasks
        """
        with self._lock:
            self._require_project(project_id)
            task_ids = [t.id for t in self._tasks.values() if t.project_id == project_id]

            writes: list[Write] = [("delete_task", (task_id,)) for task_id in task_ids]
            writes.append(("delete_project", (project_id,)))
            self._persist(writes)

            for task_id in task_ids:
                del self._tasks[task_id]
            del self._projects[project_id]
            logger.info(f"Project deleted: {project_id} (cascaded {len(task_ids)} tasks)")
            return task_ids

    # Tasks

    def add_task(
        self,
        name: str,
        project_id: str,
        user: Union[User, str],
        task_id: Optional[str] = None,
    ) -> Task:
        """Create a paused task with no sessions.

        Raises:
            ValidationFailedError: If the name is empty, the user is unknown
                or the id is taken
            NotFoundError: If the project does not exist
        """
        with self._lock:
            task_name = self._require_name(name, "Task")
            self._require_project(project_id)
            if task_id is not None and task_id in self._tasks:
                raise ValidationFailedError(f"Task id already exists: {task_id}")

            task = Task(
                id=task_id or new_id(),
                name=task_name,
                project_id=project_id,
                user=self._coerce_user(user),
                created_at=self._clock(),
            )

            self._persist([("save_task", (task,))])
            self._tasks[task.id] = task
            logger.info(f"Task added: {task.name} ({task.id}) for user {task.user.value}")
            return copy.deepcopy(task)

    def update_task(self, task_id: str, **changes: Any) -> Task:
        """Merge descriptive fields (name, project_id, user) into a task.

        Timer fields only change through the timer and session operations.

        Raises:
            NotFoundError: If the task or the new project does not exist
            ValidationFailedError: If a field is unknown or invalid, or a
                running task would move to another user
        """
        with self._lock:
            task = copy.deepcopy(self._require_task(task_id))
            self._reject_unknown(changes, TASK_CHANGES)

            if "name" in changes:
                task.name = self._require_name(changes["name"], "Task")
            if "project_id" in changes:
                self._require_project(changes["project_id"])
                task.project_id = changes["project_id"]
            if "user" in changes:
                user = self._coerce_user(changes["user"])
                if user is not task.user and task.is_running:
                    raise ValidationFailedError("Pause the task before moving it to another user")
                task.user = user

            self._persist([("update_task", (task,))])
            self._tasks[task.id] = task
            logger.info(f"Task updated: {task.id} ({', '.join(changes)})")
            return copy.deepcopy(task)

    def delete_task(self, task_id: str) -> None:
        """Permanently delete a task and its sessions."""
        with self._lock:
            self._require_task(task_id)
            self._persist([("delete_task", (task_id,))])
            del self._tasks[task_id]
            logger.info(f"Task deleted: {task_id}")

    def recover_task(self, task_id: str) -> Task:
        """Move a completed task back to active."""
        with self._lock:
            task = copy.deepcopy(self._require_task(task_id))
            task.status = TaskStatus.ACTIVE
            task.completed_at = None

            self._persist([("update_task", (task,))])
            self._tasks[task.id] = task
            logger.info(f"Task recovered: {task.id}")
            return copy.deepcopy(task)

    # Timer

    def start_timer(self, task_id: str) -> Task:
        """Start a task's timer, pausing the user's other running task first.

        Raises:
            NotFoundError: If the task does not exist
            ValidationFailedError: If the task is completed
        """
        with self._lock:
            target = self._require_task(task_id)
            if target.is_completed:
                raise ValidationFailedError(f"Task is completed, recover it first: {task_id}")
            if target.open_session is not None:
                logger.debug(f"Timer already running: {task_id}")
                return copy.deepcopy(target)

            now = self._clock()
            writes: list[Write] = []

            paused = None
            current = self._running_task(target.user)
            if current is not None and current.id != target.id:
                paused = copy.deepcopy(current)
                writes += self._pause(paused, now)
                writes.append(("update_task", (paused,)))

            started = copy.deepcopy(target)
            session = Session(task_id=started.id, start=now)
            started.sessions.append(session)
            started.is_running = True
            writes += [("save_session", (session,)), ("update_task", (started,))]

            self._persist(writes)
            if paused is not None:
                self._tasks[paused.id] = paused
                logger.info(f"Timer paused: {paused.id} (switched to {started.id})")
            self._tasks[started.id] = started
            logger.info(f"Timer started: {started.id}")
            return copy.deepcopy(started)

    def pause_timer(self, task_id: str) -> Task:
        """Close the open session of a task. No-op if it is not running."""
        with self._lock:
            task = self._require_task(task_id)
            if task.open_session is None:
                logger.debug(f"Timer not running: {task_id}")
                return copy.deepcopy(task)

            paused = copy.deepcopy(task)
            writes = self._pause(paused, self._clock())
            writes.append(("update_task", (paused,)))

            self._persist(writes)
            self._tasks[paused.id] = paused
            logger.info(f"Timer paused: {paused.id}")
            return copy.deepcopy(paused)

    def stop_task(self, task_id: str) -> Task:
        """Pause a task if running and mark it completed."""
        with self._lock:
            stopped = copy.deepcopy(self._require_task(task_id))
            now = self._clock()

            writes = self._pause(stopped, now)
            stopped.status = TaskStatus.COMPLETED
            stopped.completed_at = now
            writes.append(("update_task", (stopped,)))

            self._persist(writes)
            self._tasks[stopped.id] = stopped
            logger.info(f"Task completed: {stopped.id}")
            return copy.deepcopy(stopped)

    # Sessions

    def update_task_session(
        self,
        task_id: str,
        index: int,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> Task:
        """Overwrite the start and/or end of a session.

        Editing the open session requires an end, which closes it and pauses
        the task.

        Raises:
            NotFoundError: If the task or session index does not exist
            ValidationFailedError: If the open session is edited without an end
            InvalidRangeError: If the resulting end is not after the start
        """
        with self._lock:
            task = copy.deepcopy(self._require_task(task_id))
            session = self._require_session(task, index)
            if start is None and end is None:
                return copy.deepcopy(task)
            if session.is_open and end is None:
                raise ValidationFailedError("The running session can only be edited by closing it")

            new_start = start if start is not None else session.start
            new_end = end if end is not None else session.end
            if new_end is not None and new_end <= new_start:
                raise InvalidRangeError(f"Session end must be after start: {new_start} >= {new_end}")

            was_open = session.is_open
            session.start = new_start
            if new_end is not None:
                session.close(new_end)
            if was_open:
                task.is_running = False
            task.accumulated_time = task.closed_time()

            self._persist([("update_session", (session,)), ("update_task", (task,))])
            self._tasks[task.id] = task
            logger.info(f"Session {index} of task {task.id} updated")
            return copy.deepcopy(task)

    def add_manual_session(self, task_id: str, start: datetime, end: datetime) -> Task:
        """Append a closed session.

        Raises:
            NotFoundError: If the task does not exist
            InvalidRangeError: If end is not after start
        """
        with self._lock:
            task = copy.deepcopy(self._require_task(task_id))
            if end <= start:
                raise InvalidRangeError(f"Session end must be after start: {start} >= {end}")

            session = Session(task_id=task.id, start=start)
            session.close(end)
            if task.open_session is not None:
                task.sessions.insert(len(task.sessions) - 1, session)
            else:
                task.sessions.append(session)
            task.accumulated_time = task.closed_time()

            self._persist([("save_session", (session,)), ("update_task", (task,))])
            self._tasks[task.id] = task
            logger.info(f"Manual session added to task {task.id} ({session.duration}s)")
            return copy.deepcopy(task)

    def delete_task_session(self, task_id: str, index: int) -> Task:
        """Remove a session. Removing the open session pauses the task.

        Raises:
            NotFoundError: If the task or session index does not exist
        """
        with self._lock:
            task = copy.deepcopy(self._require_task(task_id))
            session = self._require_session(task, index)

            del task.sessions[index]
            if session.is_open:
                task.is_running = False
            task.accumulated_time = task.closed_time()

            self._persist([("delete_session", (session.id,)), ("update_task", (task,))])
            self._tasks[task.id] = task
            logger.info(f"Session {index} of task {task.id} deleted")
            return copy.deepcopy(task)

    # Internals

    def _pause(self, task: Task, now: datetime) -> list[Write]:
        """Apply the pause transition to a task copy.

        Returns:
            Session writes needed to persist the transition
        """
        session = task.open_session
        task.is_running = False
        if session is None:
            return []

        if now <= session.start:
            # Zero-length interval: nothing to record.
            task.sessions.pop()
            return [("delete_session", (session.id,))]

        task.accumulated_time += session.close(now)
        return [("update_session", (session,))]

    def _running_task(self, user: User) -> Optional[Task]:
        for task in self._tasks.values():
            if task.user is user and task.is_running:
                return task
        return None

    def _persist(self, writes: list[Write]) -> None:
        """Apply writes in order.

        If a write fails after earlier ones went through, memory is reloaded
        from storage so both sides agree before the error is raised.
        """
        for done, (name, args) in enumerate(writes):
            try:
                self._call_gateway(name, *args)
            except PersistenceFailureError:
                if done:
                    self._resync(f"{done} of {len(writes)} writes stored before {name} failed")
                raise

    def _resync(self, reason: str) -> None:
        logger.warning(f"Reloading from storage: {reason}")
        try:
            self.reload()
        except PersistenceFailureError as e:
            logger.error(f"Reload after partial write failed: {e}")

    def _call_gateway(self, name: str, *args: Any) -> Any:
        """Call a gateway method with the bounded retry policy."""
        method = getattr(self.gateway, name)
        for attempt in range(1, self.retry_attempts + 1):
            try:
                return method(*args)
            except PersistenceFailureError as e:
                if attempt == self.retry_attempts:
                    logger.error(f"Gateway {name} failed after {attempt} attempts: {e}")
                    raise
                logger.warning(f"Gateway {name} failed (attempt {attempt}): {e}")
                time.sleep(self.retry_delay)

    def _repair(self, task: Task) -> list[Write]:
        """Re-derive timer fields of a loaded task from its sessions.

        Returns:
            Writes that bring storage in line with the repaired task
        """
        writes: list[Write] = []

        open_sessions = [s for s in task.sessions if s.is_open]
        if len(open_sessions) > 1:
            keep = max(open_sessions, key=lambda s: s.start)
            for extra in open_sessions:
                if extra is not keep:
                    logger.warning(f"Task {task.id}: dropping extra open session {extra.id}")
                    writes.append(("delete_session", (extra.id,)))
            task.sessions = [s for s in task.sessions if not s.is_open or s is keep]

        # A manual session saved while the task was running is stored after
        # the open one.
        task.sessions.sort(key=lambda s: s.is_open)

        changed = bool(writes)
        closed = task.closed_time()
        if task.accumulated_time != closed:
            logger.warning(
                f"Task {task.id}: stored accumulated time {task.accumulated_time}s "
                f"differs from sessions ({closed}s)"
            )
            task.accumulated_time = closed
            changed = True

        running = task.open_session is not None
        if task.is_running != running:
            logger.warning(f"Task {task.id}: stored running flag {task.is_running} corrected")
            task.is_running = running
            changed = True

        if changed:
            writes.append(("update_task", (task,)))
        return writes

    def _repair_running(self, tasks: dict[str, Task]) -> list[Write]:
        """Pause all but the most recently started running task of each user."""
        writes: list[Write] = []
        for user in User:
            running = sorted(
                (t for t in tasks.values() if t.user is user and t.open_session is not None),
                key=lambda t: t.open_session.start,  # type: ignore[union-attr]
            )
            if len(running) < 2:
                continue

            switched_at = running[-1].open_session.start  # type: ignore[union-attr]
            for stale in running[:-1]:
                logger.warning(f"User {user.value}: pausing extra running task {stale.id}")
                writes += self._pause(stale, switched_at)
                writes.append(("update_task", (stale,)))
        return writes

    def _require_project(self, project_id: str) -> Project:
        project = self._projects.get(project_id)
        if project is None:
            raise NotFoundError(f"Project not found: {project_id}")
        return project

    def _require_task(self, task_id: str) -> Task:
        task = self._tasks.get(task_id)
        if task is None:
            raise NotFoundError(f"Task not found: {task_id}")
        return task

    @staticmethod
    def _require_session(task: Task, index: int) -> Session:
        if not 0 <= index < len(task.sessions):
            raise NotFoundError(f"Session {index} not found on task {task.id}")
        return task.sessions[index]

    @staticmethod
    def _require_name(name: Optional[str], kind: str) -> str:
        if not name or not name.strip():
            raise ValidationFailedError(f"{kind} name is required")
        return name.strip()

    @staticmethod
    def _reject_unknown(changes: dict[str, Any], allowed: tuple[str, ...]) -> None:
        unknown = sorted(set(changes) - set(allowed))
        if unknown:
            raise ValidationFailedError(f"Cannot update field(s): {', '.join(unknown)}")

    @staticmethod
    def _coerce_budget(value: Union[Decimal, float, str, None]) -> Optional[Decimal]:
        if value is None or value == "":
            return None
        try:
            budget = Decimal(str(value))
        except InvalidOperation:
            raise ValidationFailedError(f"Invalid budget: {value}")
        if not budget.is_finite() or budget <= 0:
            raise ValidationFailedError(f"Budget must be a positive number of hours: {value}")
        return budget

    @staticmethod
    def _coerce_deadline(value: Union[date, str, None]) -> Optional[date]:
        if value is None or value == "":
            return None
        if isinstance(value, datetime):
            return value.date()
        if isinstance(value, date):
            return value
        try:
            return date.fromisoformat(value)
        except ValueError:
            raise ValidationFailedError(f"Invalid deadline (use YYYY-MM-DD): {value}")

    @staticmethod
    def _coerce_enum(enum_cls: Any, value: Any, label: str) -> Any:
        try:
            return enum_cls(value)
        except ValueError:
            raise ValidationFailedError(f"Invalid {label}: {value}")

    def _coerce_user(self, user: Union[User, str]) -> User:
        return self._coerce_enum(User, user, "user")  # type: ignore[no-any-return]

