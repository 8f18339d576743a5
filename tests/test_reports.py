"""Tests for aggregations and report rendering."""

from datetime import date, datetime, timedelta
from decimal import Decimal
from io import StringIO

from rich.console import Console  # type: ignore[import-not-found]

from colmillo.analysis.reports import (
    ReportGenerator,
    format_duration,
    sessions_on,
    summarize_project,
    task_span,
    timeline_range,
)
from colmillo.core.models import Project, ProjectStatus, Session, Task, TaskStatus, User

NOW = datetime(2026, 10, 19, 12, 0, 0)


def make_task(name: str, project_id: str = "web", user: User = User.A, **kwargs) -> Task:
    kwargs.setdefault("created_at", datetime(2026, 10, 19, 8, 0, 0))
    return Task(name=name, project_id=project_id, user=user, **kwargs)


def closed(task: Task, start: datetime, minutes: int) -> Session:
    session = Session(task_id=task.id, start=start)
    session.close(start + timedelta(minutes=minutes))
    task.sessions.append(session)
    task.accumulated_time = task.closed_time()
    return session


def running(task: Task, start: datetime) -> Session:
    session = Session(task_id=task.id, start=start)
    task.sessions.append(session)
    task.is_running = True
    return session


class TestFormatDuration:
    """Test duration formatting."""

    def test_formats(self) -> None:
        assert format_duration(3903) == "1h 05m 03s"
        assert format_duration(303) == "5m 03s"
        assert format_duration(7) == "7s"
        assert format_duration(None) == "ongoing"

    def test_without_seconds(self) -> None:
        assert format_duration(3903, show_seconds=False) == "1h 05m"
        assert format_duration(303, show_seconds=False) == "5m"
        assert format_duration(7, show_seconds=False) == "0m"


class TestProjectSummary:
    """Test project aggregation."""

    def test_summary_counts_and_live_time(self) -> None:
        project = Project(name="Website", id="web", budget_hours=Decimal("2"))
        done = make_task("Done", status=TaskStatus.COMPLETED)
        closed(done, datetime(2026, 10, 19, 9, 0, 0), 60)
        live = make_task("Live", user=User.B)
        running(live, datetime(2026, 10, 19, 11, 30, 0))
        elsewhere = make_task("Elsewhere", project_id="other")
        closed(elsewhere, datetime(2026, 10, 19, 9, 0, 0), 600)

        summary = summarize_project(project, [done, live, elsewhere], NOW)

        assert summary.task_count == 2
        assert summary.active_task_count == 1
        assert summary.running_task_count == 1
        assert summary.tracked_seconds == 3600
        assert summary.live_seconds == 3600 + 1800
        assert summary.tracked_hours == 1.5
        assert summary.budget_percent == 75.0
        assert summary.over_budget is False

    def test_over_budget(self) -> None:
        project = Project(name="Website", id="web", budget_hours=Decimal("0.5"))
        task = make_task("Long")
        closed(task, datetime(2026, 10, 19, 9, 0, 0), 45)

        summary = summarize_project(project, [task], NOW)

        assert summary.over_budget is True
        assert summary.budget_percent == 150.0

    def test_no_budget(self) -> None:
        summary = summarize_project(Project(name="Internal", id="int"), [], NOW)

        assert summary.budget_percent is None
        assert summary.over_budget is False
        assert summary.tracked_hours == 0

    def test_overdue_unless_completed(self) -> None:
        project = Project(name="Website", id="web", deadline=date(2026, 10, 18))

        assert summarize_project(project, [], NOW).overdue is True

        project.status = ProjectStatus.COMPLETED
        assert summarize_project(project, [], NOW).overdue is False

        project.status = ProjectStatus.ACTIVE
        project.deadline = NOW.date()
        assert summarize_project(project, [], NOW).overdue is False


class TestTimeline:
    """Test timeline spans and ranges."""

    def test_span_of_unstarted_task_runs_to_now(self) -> None:
        task = make_task("Fresh")

        assert task_span(task, NOW) == (task.created_at, NOW)

    def test_span_of_paused_task_ends_at_last_session(self) -> None:
        task = make_task("Paused")
        closed(task, datetime(2026, 10, 19, 7, 0, 0), 30)

        assert task_span(task, NOW) == (datetime(2026, 10, 19, 7, 0, 0), datetime(2026, 10, 19, 7, 30, 0))

    def test_span_of_completed_task_ends_at_completion(self) -> None:
        task = make_task("Done", completed_at=datetime(2026, 10, 19, 10, 0, 0))
        closed(task, datetime(2026, 10, 19, 9, 0, 0), 30)

        assert task_span(task, NOW)[1] == datetime(2026, 10, 19, 10, 0, 0)

    def test_short_range_is_hourly(self) -> None:
        project = Project(name="Website", id="web", created_at=datetime(2026, 10, 19, 8, 0, 0))

        result = timeline_range([project], [make_task("Fresh")], NOW)

        assert result.hourly is True
        assert result.start == datetime(2026, 10, 19, 6, 0, 0)
        assert result.end == datetime(2026, 10, 19, 14, 0, 0)
        assert result.steps == 8

    def test_long_range_is_daily(self) -> None:
        project = Project(name="Website", id="web", created_at=datetime(2026, 10, 1, 15, 0, 0))

        result = timeline_range([project], [], NOW)

        assert result.hourly is False
        assert result.start == datetime(2026, 9, 30)
        assert result.end == datetime(2026, 10, 21)
        assert result.steps == 21

    def test_sessions_on_day_sorted(self) -> None:
        first = make_task("First")
        second = make_task("Second", user=User.B)
        late = closed(first, datetime(2026, 10, 19, 15, 0, 0), 10)
        early = closed(second, datetime(2026, 10, 19, 9, 0, 0), 10)
        closed(first, datetime(2026, 10, 18, 9, 0, 0), 10)

        found = sessions_on([first, second], date(2026, 10, 19))

        assert [s for _, s in found] == [early, late]
        assert found[0][0] is second


class TestReportGenerator:
    """Test rendered reports."""

    def _generator(self) -> tuple[ReportGenerator, StringIO]:
        output = StringIO()
        console = Console(file=output, width=200, no_color=True)
        return ReportGenerator(console, user_names={"A": "Nacho", "B": "Leo"}), output

    def test_projects_report(self) -> None:
        generator, output = self._generator()
        project = Project(name="Website", id="web", client="Acme", budget_hours=Decimal("2"))
        task = make_task("Draft")
        closed(task, datetime(2026, 10, 19, 9, 0, 0), 65)

        generator.projects_report([project], [task], NOW)

        text = output.getvalue()
        assert "Website" in text
        assert "Acme" in text
        assert "1h 05m 00s" in text
        assert "54%" in text

    def test_projects_report_empty(self) -> None:
        generator, output = self._generator()

        generator.projects_report([], [], NOW)

        assert "No projects found" in output.getvalue()

    def test_timeline_report(self) -> None:
        generator, output = self._generator()
        task = make_task("Draft", user=User.B)
        closed(task, datetime(2026, 10, 19, 9, 0, 0), 30)
        running(task, datetime(2026, 10, 19, 11, 0, 0))

        generator.timeline_report([task], NOW.date(), NOW)

        text = output.getvalue()
        assert "Leo" in text
        assert "ongoing" in text
        assert "Total Time:" in text
        assert "1h 30m 00s" in text

    def test_timeline_report_empty_day(self) -> None:
        generator, output = self._generator()

        generator.timeline_report([], date(2026, 10, 19), NOW)

        assert "No sessions found for 2026-10-19" in output.getvalue()

    def test_gantt_report(self) -> None:
        generator, output = self._generator()
        project = Project(name="Website", id="web", created_at=datetime(2026, 10, 19, 8, 0, 0))
        done = make_task("Done", completed_at=datetime(2026, 10, 19, 10, 0, 0), status=TaskStatus.COMPLETED)
        closed(done, datetime(2026, 10, 19, 9, 0, 0), 60)
        live = make_task("Live", user=User.B)
        running(live, datetime(2026, 10, 19, 11, 0, 0))

        generator.gantt_report([project], [done, live], NOW)

        text = output.getvalue()
        assert "(8 hours)" in text
        assert "Website" in text
        assert "✓ Done" in text
        assert "▶ Live" in text
        assert "Leo" in text

    def test_span_bar_positions(self) -> None:
        generator, _ = self._generator()
        scale = timeline_range([], [], NOW)
        start = scale.start + (scale.end - scale.start) / 2

        bar = generator._span_bar(start, scale.end, scale, width=10, style="blue")

        assert bar.plain == "·····█████"

    def test_gantt_report_empty(self) -> None:
        generator, output = self._generator()

        generator.gantt_report([], [], NOW)

        assert "No projects found" in output.getvalue()
