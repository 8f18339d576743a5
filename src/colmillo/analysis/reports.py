"""Aggregations and report rendering over ledger snapshots."""

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Optional

from rich.console import Console  # type: ignore[import-not-found]
from rich.table import Table  # type: ignore[import-not-found]
from rich.text import Text  # type: ignore[import-not-found]

from colmillo.core.models import Project, ProjectStatus, Session, Task


@dataclass
class ProjectSummary:
    """Time tracked against one project.

    Attributes:
        project: The project
        tracked_seconds: Closed time over all of its tasks
        live_seconds: Tracked time plus any running sessions
        task_count: Number of tasks
        active_task_count: Tasks not yet completed
        running_task_count: Tasks with a running timer
        overdue: Deadline passed while the project is not completed
    """

    project: Project
    tracked_seconds: int
    live_seconds: int
    task_count: int
    active_task_count: int
    running_task_count: int
    overdue: bool

    @property
    def tracked_hours(self) -> float:
        return self.live_seconds / 3600

    @property
    def budget_percent(self) -> Optional[float]:
        """Share of the budget used, uncapped. None without a budget."""
        if not self.project.budget_hours:
            return None
        return (self.tracked_hours / float(self.project.budget_hours)) * 100

    @property
    def over_budget(self) -> bool:
        if not self.project.budget_hours:
            return False
        return self.tracked_hours > float(self.project.budget_hours)


@dataclass
class TimelineRange:
    """Visible range of the timeline and its scale."""

    start: datetime
    end: datetime
    hourly: bool

    @property
    def steps(self) -> int:
        """Number of hour (or day) columns in the range."""
        unit = timedelta(hours=1) if self.hourly else timedelta(days=1)
        return max(1, int((self.end - self.start) / unit))


def summarize_project(project: Project, tasks: list[Task], now: datetime) -> ProjectSummary:
    """Aggregate the tasks of one project.

    Args:
        project: Project to summarize
        tasks: Any tasks; those of other projects are ignored
        now: Reference instant for running sessions and the deadline
    """
    own = [t for t in tasks if t.project_id == project.id]
    overdue = (
        project.deadline is not None
        and project.deadline < now.date()
        and project.status is not ProjectStatus.COMPLETED
    )
    return ProjectSummary(
        project=project,
        tracked_seconds=sum(t.accumulated_time for t in own),
        live_seconds=sum(t.elapsed_seconds(now) for t in own),
        task_count=len(own),
        active_task_count=sum(1 for t in own if not t.is_completed),
        running_task_count=sum(1 for t in own if t.is_running),
        overdue=overdue,
    )


def summarize_projects(
    projects: list[Project], tasks: list[Task], now: datetime
) -> list[ProjectSummary]:
    return [summarize_project(p, tasks, now) for p in projects]


def task_span(task: Task, now: datetime) -> tuple[datetime, datetime]:
    """Start and end of a task's bar on the timeline."""
    start = min([task.created_at] + [s.start for s in task.sessions])

    if task.completed_at:
        end = task.completed_at
    elif task.is_running or not task.sessions:
        end = now
    else:
        end = task.sessions[-1].end or now

    return start, max(start, end)


def timeline_range(projects: list[Project], tasks: list[Task], now: datetime) -> TimelineRange:
    """Range covering every project and task.

    Ranges shorter than three days use an hourly scale padded by two hours;
    longer ones use a daily scale from the day before the first instant to
    two days after the last.
    """
    earliest = min([now] + [p.created_at for p in projects] + [task_span(t, now)[0] for t in tasks])
    latest = max([now] + [task_span(t, now)[1] for t in tasks])

    if (latest - earliest).days < 3:
        padding = timedelta(hours=2)
        return TimelineRange(start=earliest - padding, end=latest + padding, hourly=True)

    first_day = datetime.combine(earliest.date() - timedelta(days=1), datetime.min.time())
    last_day = datetime.combine(latest.date() + timedelta(days=2), datetime.min.time())
    return TimelineRange(start=first_day, end=last_day, hourly=False)


def sessions_on(tasks: list[Task], day: date) -> list[tuple[Task, Session]]:
    """Sessions starting on a given date, in chronological order."""
    found = [(t, s) for t in tasks for s in t.sessions if s.start.date() == day]
    found.sort(key=lambda pair: pair[1].start)
    return found


def format_duration(seconds: Optional[int], show_seconds: bool = True) -> str:
    """Format duration in seconds to human-readable string."""
    if seconds is None:
        return "ongoing"

    hours = seconds // 3600
    minutes = (seconds % 3600) // 60
    secs = seconds % 60

    if hours > 0:
        return f"{hours}h {minutes:02d}m {secs:02d}s" if show_seconds else f"{hours}h {minutes:02d}m"
    elif minutes > 0:
        return f"{minutes}m {secs:02d}s" if show_seconds else f"{minutes}m"
    else:
        return f"{secs}s" if show_seconds else "0m"


class ReportGenerator:
    """Render project and timeline reports."""

    def __init__(
        self,
        console: Optional[Console] = None,
        user_names: Optional[dict[str, str]] = None,
        show_seconds: bool = True,
    ):
        """Initialize report generator.

        Args:
            console: Rich console for output. Creates default if None.
            user_names: Display names keyed by user tag
            show_seconds: Include seconds in durations
        """
        self.console = console or Console()
        self.user_names = user_names or {}
        self.show_seconds = show_seconds

    def projects_report(self, projects: list[Project], tasks: list[Task], now: datetime) -> None:
        """Display time tracked against each project's budget."""
        if not projects:
            self.console.print("[yellow]No projects found[/yellow]")
            return

        table = Table(title="Projects")
        table.add_column("Project", style="cyan")
        table.add_column("Client", style="blue")
        table.add_column("Status")
        table.add_column("Tasks", justify="right")
        table.add_column("Tracked", style="magenta", justify="right")
        table.add_column("Budget", justify="right")
        table.add_column("Used", style="blue")
        table.add_column("Deadline")

        for summary in summarize_projects(projects, tasks, now):
            project = summary.project
            percent = summary.budget_percent

            if percent is None:
                budget, used = "-", Text("-")
            else:
                budget = f"{project.budget_hours}h"
                used = self._create_bar(min(percent, 100), over=summary.over_budget)
                used.append(f" {percent:.0f}%")

            deadline = project.deadline.isoformat() if project.deadline else "-"
            if summary.overdue:
                deadline = f"[red]{deadline}[/red]"

            running = " ▶" if summary.running_task_count else ""
            table.add_row(
                f"{project.name}{running}",
                project.client or "-",
                project.status.value,
                f"{summary.active_task_count}/{summary.task_count}",
                format_duration(summary.live_seconds, self.show_seconds),
                budget,
                used,
                deadline,
            )

        self.console.print(table)

    def timeline_report(self, tasks: list[Task], day: date, now: datetime) -> None:
        """Display every session of a given date."""
        day_sessions = sessions_on(tasks, day)
        if not day_sessions:
            self.console.print(f"[yellow]No sessions found for {day}[/yellow]")
            return

        self.console.print(f"\n[bold cyan]Timeline for {day}[/bold cyan]\n")

        timeline_table = Table()
        timeline_table.add_column("Time", style="cyan", width=20)
        timeline_table.add_column("Duration", style="magenta", width=12)
        timeline_table.add_column("Task", style="bold")
        timeline_table.add_column("User", style="green")

        total = 0
        for task, session in day_sessions:
            start_time = session.start.strftime("%H:%M:%S")
            end_time = session.end.strftime("%H:%M:%S") if session.end else "ongoing"
            if session.is_open:
                seconds = max(0, int((now - session.start).total_seconds()))
                task_display = f"▶ {task.name}"
            else:
                seconds = session.duration
                task_display = task.name
            total += seconds

            timeline_table.add_row(
                f"{start_time} → {end_time}",
                format_duration(seconds, self.show_seconds),
                task_display,
                self.user_names.get(task.user.value, task.user.value),
            )

        self.console.print(timeline_table)
        self.console.print(
            f"\n[dim]Total Time:[/dim] [bold]{format_duration(total, self.show_seconds)}[/bold]"
        )

    def gantt_report(
        self, projects: list[Project], tasks: list[Task], now: datetime, width: int = 40
    ) -> None:
        """Display project and task bars over a shared hour or day scale."""
        if not projects:
            self.console.print("[yellow]No projects found[/yellow]")
            return

        scale = timeline_range(projects, tasks, now)
        unit = "hours" if scale.hourly else "days"
        label = "%Y-%m-%d %H:%M" if scale.hourly else "%Y-%m-%d"
        self.console.print(
            f"\n[bold cyan]Gantt[/bold cyan] {scale.start.strftime(label)} → "
            f"{scale.end.strftime(label)} ({scale.steps} {unit})\n"
        )

        table = Table()
        table.add_column("Project / Task", style="bold")
        table.add_column("User", style="green")
        table.add_column("Span", no_wrap=True)
        table.add_column("Time", style="magenta", justify="right")

        for project in projects:
            own = [t for t in tasks if t.project_id == project.id]
            spans = [task_span(t, now) for t in own]
            start = min([project.created_at] + [s for s, _ in spans])
            end = max([start] + [e for _, e in spans])
            live = sum(t.elapsed_seconds(now) for t in own)

            table.add_row(
                f"[cyan]{project.name}[/cyan]",
                "",
                self._span_bar(start, end, scale, width, style="cyan"),
                format_duration(live, self.show_seconds),
            )
            for task, (task_start, task_end) in zip(own, spans):
                marker = "▶" if task.is_running else ("✓" if task.is_completed else "■")
                table.add_row(
                    f"  {marker} {task.name}",
                    self.user_names.get(task.user.value, task.user.value),
                    self._span_bar(task_start, task_end, scale, width, style="green" if task.is_running else "blue"),
                    format_duration(task.elapsed_seconds(now), self.show_seconds),
                )

        self.console.print(table)

    def _span_bar(
        self, start: datetime, end: datetime, scale: TimelineRange, width: int, style: str
    ) -> Text:
        """Place a span on a fixed-width bar covering the whole range."""
        total = (scale.end - scale.start).total_seconds()
        first = int((start - scale.start).total_seconds() / total * width)
        last = int((end - scale.start).total_seconds() / total * width)
        first = min(max(first, 0), width - 1)
        last = min(max(last, first + 1), width)

        bar = Text()
        bar.append("·" * first, style="dim")
        bar.append("█" * (last - first), style=style)
        bar.append("·" * (width - last), style="dim")
        return bar

    def _create_bar(self, percentage: float, width: int = 20, over: bool = False) -> Text:
        """Create a visual bar for percentage display."""
        filled = int((percentage / 100) * width)
        empty = width - filled

        bar = Text()
        bar.append("█" * filled, style="red" if over else "blue")
        bar.append("░" * empty, style="dim")

        return bar
