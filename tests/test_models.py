"""Tests for core data models."""

from datetime import date, datetime, timedelta
from decimal import Decimal

import pytest

from colmillo.core.models import (
    Project,
    ProjectStatus,
    Session,
    Task,
    TaskStatus,
    User,
    session_duration,
)


class TestSessionDuration:
    """Test duration rounding."""

    def test_whole_seconds(self) -> None:
        start = datetime(2026, 10, 19, 9, 0, 0)
        assert session_duration(start, start + timedelta(seconds=90)) == 90

    def test_rounds_half_up(self) -> None:
        start = datetime(2026, 10, 19, 9, 0, 0)
        assert session_duration(start, start + timedelta(milliseconds=2500)) == 3
        assert session_duration(start, start + timedelta(milliseconds=1500)) == 2
        assert session_duration(start, start + timedelta(milliseconds=1499)) == 1


class TestSession:
    """Test Session model."""

    def test_new_session_is_open(self) -> None:
        session = Session(task_id="t1", start=datetime(2026, 10, 19, 9, 0, 0))

        assert session.is_open is True
        assert session.end is None
        assert session.duration == 0
        assert session.id

    def test_close_sets_duration(self) -> None:
        session = Session(task_id="t1", start=datetime(2026, 10, 19, 9, 0, 0))

        duration = session.close(datetime(2026, 10, 19, 9, 30, 0))

        assert duration == 1800
        assert session.duration == 1800
        assert session.is_open is False

    def test_to_dict_and_back(self) -> None:
        session = Session(
            task_id="t1",
            start=datetime(2026, 10, 19, 9, 0, 0),
            end=datetime(2026, 10, 19, 10, 0, 0),
            duration=3600,
        )

        data = session.to_dict()
        assert data["task_id"] == "t1"
        assert data["end"] == "2026-10-19T10:00:00"

        restored = Session.from_dict(data)
        assert restored == session

    def test_open_session_serializes_empty_end(self) -> None:
        session = Session(task_id="t1", start=datetime(2026, 10, 19, 9, 0, 0))

        data = session.to_dict()
        assert data["end"] == ""
        assert Session.from_dict(data).end is None


class TestProject:
    """Test Project model."""

    def test_project_defaults(self) -> None:
        project = Project(name="Website")

        assert project.status is ProjectStatus.ACTIVE
        assert project.client is None
        assert project.deadline is None
        assert project.budget_hours is None
        assert project.id

    def test_project_from_csv_row(self) -> None:
        row = {
            "id": "web",
            "name": "Website",
            "client": "Acme",
            "deadline": "2026-12-01",
            "budget_hours": "40.5",
            "status": "paused",
            "created_at": "2026-10-01T08:00:00",
        }

        project = Project.from_dict(row)

        assert project.client == "Acme"
        assert project.deadline == date(2026, 12, 1)
        assert project.budget_hours == Decimal("40.5")
        assert project.status is ProjectStatus.PAUSED
        assert project.to_dict() == row

    def test_empty_optional_fields(self) -> None:
        row = Project(name="Internal", id="int").to_dict()

        assert row["client"] == ""
        assert row["deadline"] == ""
        assert row["budget_hours"] == ""

        restored = Project.from_dict(row)
        assert restored.client is None
        assert restored.budget_hours is None


class TestTask:
    """Test Task model."""

    def test_task_defaults(self) -> None:
        task = Task(name="Landing page", project_id="web", user=User.A)

        assert task.accumulated_time == 0
        assert task.status is TaskStatus.ACTIVE
        assert task.is_running is False
        assert task.sessions == []
        assert task.open_session is None
        assert task.completed_at is None

    def test_open_session_only_when_last_is_open(self) -> None:
        start = datetime(2026, 10, 19, 9, 0, 0)
        task = Task(name="Landing page", project_id="web", user=User.A)
        task.sessions.append(Session(task_id=task.id, start=start, end=start + timedelta(hours=1), duration=3600))

        assert task.open_session is None

        task.sessions.append(Session(task_id=task.id, start=start + timedelta(hours=2)))
        assert task.open_session is task.sessions[-1]

    def test_closed_time_ignores_open_session(self) -> None:
        start = datetime(2026, 10, 19, 9, 0, 0)
        task = Task(name="Landing page", project_id="web", user=User.B)
        task.sessions = [
            Session(task_id=task.id, start=start, end=start + timedelta(minutes=10), duration=600),
            Session(task_id=task.id, start=start + timedelta(hours=1)),
        ]

        assert task.closed_time() == 600

    def test_elapsed_seconds_includes_running_session(self) -> None:
        start = datetime(2026, 10, 19, 9, 0, 0)
        task = Task(name="Landing page", project_id="web", user=User.A, accumulated_time=600)
        task.sessions = [Session(task_id=task.id, start=start)]
        task.is_running = True

        assert task.elapsed_seconds(start + timedelta(seconds=45)) == 645
        # Clock behind the session start never reduces the total
        assert task.elapsed_seconds(start - timedelta(seconds=45)) == 600

    def test_elapsed_seconds_when_paused(self) -> None:
        task = Task(name="Landing page", project_id="web", user=User.A, accumulated_time=120)

        assert task.elapsed_seconds(datetime(2026, 10, 19, 9, 0, 0)) == 120

    def test_to_dict_excludes_sessions(self) -> None:
        task = Task(name="Landing page", project_id="web", user=User.B)

        data = task.to_dict()

        assert "sessions" not in data
        assert data["user"] == "B"
        assert data["is_running"] is False

    def test_from_csv_row_parses_booleans(self) -> None:
        row = {
            "id": "t1",
            "name": "Landing page",
            "project_id": "web",
            "user": "A",
            "accumulated_time": "90",
            "status": "completed",
            "is_running": "False",
            "created_at": "2026-10-19T09:00:00",
            "completed_at": "2026-10-19T10:00:00",
        }

        task = Task.from_dict(row)

        assert task.is_running is False
        assert task.accumulated_time == 90
        assert task.status is TaskStatus.COMPLETED
        assert task.completed_at == datetime(2026, 10, 19, 10, 0, 0)
        assert Task.from_dict({**row, "is_running": "True"}).is_running is True

    def test_invalid_user_rejected(self) -> None:
        with pytest.raises(ValueError):
            User("C")
