"""Main CLI application."""

import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from colmillo import __version__
from colmillo.analysis.reports import ReportGenerator, format_duration
from colmillo.cli.config_commands import config
from colmillo.core.config import ConfigManager
from colmillo.core.errors import LedgerError, NotFoundError, ValidationFailedError
from colmillo.core.gateway import MemoryGateway, PersistenceGateway
from colmillo.core.ledger import TimeLedger
from colmillo.core.models import ProjectStatus, Task, User
from colmillo.core.storage import CSVGateway

console = Console()
error_console = Console(stderr=True)

_log_handler: Optional[logging.Handler] = None

USER_CHOICE = click.Choice([u.value for u in User], case_sensitive=False)


def setup_logging(level: str) -> None:
    """Attach a stderr handler to the root logger at the given level."""
    global _log_handler
    log_level = getattr(logging, level.upper(), logging.WARNING)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    if _log_handler is None:
        _log_handler = logging.StreamHandler()
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        _log_handler.setFormatter(formatter)
        root_logger.addHandler(_log_handler)
    _log_handler.setLevel(log_level)


def get_data_dir(ctx: click.Context) -> Path:
    """Data directory from --data-dir, else from the config."""
    data_dir = ctx.obj.get("data_dir")
    return Path(data_dir) if data_dir else ctx.obj["config"].data_dir


def get_ledger(ctx: click.Context) -> TimeLedger:
    """Build a ledger from the configured persistence backend."""
    config_mgr: ConfigManager = ctx.obj["config"]

    gateway: PersistenceGateway
    if config_mgr.get("persistence.backend") == "memory":
        gateway = MemoryGateway()
    else:
        gateway = CSVGateway(get_data_dir(ctx))

    return TimeLedger.from_gateway(
        gateway,
        retry_attempts=config_mgr.get("persistence.retry_attempts", 3),
        retry_delay=config_mgr.get("persistence.retry_delay", 0.1),
    )


def get_reporter(ctx: click.Context) -> ReportGenerator:
    config_mgr: ConfigManager = ctx.obj["config"]
    return ReportGenerator(
        console,
        user_names={u.value: config_mgr.user_name(u.value) for u in User},
        show_seconds=config_mgr.get("display.show_seconds", True),
    )


def fail(message: object) -> None:
    """Print an error and exit with status 1."""
    error_console.print(f"[red]Error:[/red] {message}")
    sys.exit(1)


def resolve_id(ref: str, ids: list[str], kind: str) -> str:
    """Resolve a full id or a unique id prefix."""
    if ref in ids:
        return ref
    matches = [i for i in ids if i.startswith(ref)]
    if not matches:
        raise NotFoundError(f"{kind} not found: {ref}")
    if len(matches) > 1:
        raise ValidationFailedError(f"Ambiguous {kind.lower()} id '{ref}' matches {len(matches)}")
    return matches[0]


def resolve_task(ledger: TimeLedger, ref: str) -> str:
    return resolve_id(ref, [t.id for t in ledger.tasks], "Task")


def resolve_project(ledger: TimeLedger, ref: str) -> str:
    return resolve_id(ref, [p.id for p in ledger.projects], "Project")


def parse_time(time_str: str) -> datetime:
    """Parse 'YYYY-MM-DD HH:MM[:SS]' or 'HH:MM[:SS]' (today)."""
    for fmt in ("%Y-%m-%d %H:%M:%S", "%Y-%m-%d %H:%M"):
        try:
            return datetime.strptime(time_str, fmt)
        except ValueError:
            pass

    for fmt in ("%H:%M:%S", "%H:%M"):
        try:
            time_part = datetime.strptime(time_str, fmt).time()
            return datetime.combine(datetime.now().date(), time_part)
        except ValueError:
            pass

    raise ValidationFailedError(
        f"Invalid time format: {time_str}. Use 'HH:MM' or 'YYYY-MM-DD HH:MM'"
    )


def format_datetime(dt: Optional[datetime]) -> str:
    """Format datetime for display."""
    return dt.strftime("%Y-%m-%d %H:%M:%S") if dt else "-"


def apply_to_task(
    ctx: click.Context, task_ref: str, action: Callable[[TimeLedger, str], Task]
) -> Task:
    ledger = get_ledger(ctx)
    return action(ledger, resolve_task(ledger, task_ref))


@click.group()
@click.version_option(version=__version__)
@click.option("--data-dir", help="Custom data directory", type=click.Path())
@click.option("--config", "config_path", help="Custom config file", type=click.Path())
@click.option("--no-color", is_flag=True, help="Disable colored output")
@click.pass_context
def cli(
    ctx: click.Context, data_dir: Optional[str], config_path: Optional[str], no_color: bool
) -> None:
    """Colmillo - time tracking for two.

    Track time on project tasks, one running timer per user, and review
    tracked hours against project budgets.
    """
    ctx.ensure_object(dict)
    ctx.obj["data_dir"] = data_dir
    ctx.obj["config_path"] = Path(config_path) if config_path else None

    try:
        ctx.obj["config"] = ConfigManager(ctx.obj["config_path"])
    except ValueError as e:
        error_console.print(f"[yellow]Warning:[/yellow] {e}")
        ctx.obj["config"] = ConfigManager(ctx.obj["config_path"])

    setup_logging(ctx.obj["config"].get("advanced.log_level", "WARNING"))

    if no_color:
        console.no_color = True


cli.add_command(config)


# Projects


@cli.group()
def project() -> None:
    """Manage projects."""
    pass


@project.command("add")
@click.argument("name")
@click.option("--client", help="Client name")
@click.option("--deadline", help="Deadline (YYYY-MM-DD)")
@click.option("--budget", type=float, help="Budget in hours")
@click.option("--id", "project_id", help="Custom project identifier")
@click.pass_context
def project_add(
    ctx: click.Context,
    name: str,
    client: Optional[str],
    deadline: Optional[str],
    budget: Optional[float],
    project_id: Optional[str],
) -> None:
    """Create a project.

    Example:
        colmillo project add "Website" --client Acme --budget 40 --deadline 2026-12-01
    """
    try:
        ledger = get_ledger(ctx)
        created = ledger.add_project(
            name, client=client, deadline=deadline, budget_hours=budget, project_id=project_id
        )
    except LedgerError as e:
        fail(e)

    console.print(f"[green]✓[/green] Created project: {created.name}")
    console.print(f"  ID: {created.id}")


@project.command("list")
@click.pass_context
def project_list(ctx: click.Context) -> None:
    """List projects."""
    try:
        ledger = get_ledger(ctx)
    except LedgerError as e:
        fail(e)

    projects = ledger.projects
    if not projects:
        console.print("[yellow]No projects found[/yellow]")
        return

    table = Table(title="Projects")
    table.add_column("ID", style="dim")
    table.add_column("Name", style="cyan")
    table.add_column("Client", style="blue")
    table.add_column("Status")
    table.add_column("Tasks", justify="right")

    for p in projects:
        table.add_row(
            p.id[:8], p.name, p.client or "-", p.status.value, str(len(ledger.tasks_for_project(p.id)))
        )

    console.print(table)


@project.command("edit")
@click.argument("project_ref")
@click.option("--name", help="New name")
@click.option("--client", help="New client (empty string clears it)")
@click.option("--deadline", help="New deadline (YYYY-MM-DD, empty string clears it)")
@click.option("--budget", help="New budget in hours (empty string clears it)")
@click.option("--status", type=click.Choice([s.value for s in ProjectStatus]), help="New status")
@click.pass_context
def project_edit(
    ctx: click.Context,
    project_ref: str,
    name: Optional[str],
    client: Optional[str],
    deadline: Optional[str],
    budget: Optional[str],
    status: Optional[str],
) -> None:
    """Edit a project's fields.

    Example:
        colmillo project edit 3f2a --status paused --budget 60
    """
    options = {
        "name": name,
        "client": client,
        "deadline": deadline,
        "budget_hours": budget,
        "status": status,
    }
    changes = {k: v for k, v in options.items() if v is not None}
    if not changes:
        fail("Nothing to change")

    try:
        ledger = get_ledger(ctx)
        updated = ledger.update_project(resolve_project(ledger, project_ref), **changes)
    except LedgerError as e:
        fail(e)

    console.print(f"[green]✓[/green] Updated project: {updated.name}")


@project.command("delete")
@click.argument("project_ref")
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation")
@click.pass_context
def project_delete(ctx: click.Context, project_ref: str, yes: bool) -> None:
    """Delete a project and all of its tasks."""
    try:
        ledger = get_ledger(ctx)
        project_id = resolve_project(ledger, project_ref)
        target = ledger.get_project(project_id)

        if not yes:
            count = len(ledger.tasks_for_project(project_id))
            if not click.confirm(f"Delete '{target.name}' and its {count} task(s)?"):
                console.print("Cancelled")
                return

        deleted = ledger.delete_project(project_id)
    except LedgerError as e:
        fail(e)

    console.print(f"[green]✓[/green] Deleted project: {target.name} ({len(deleted)} tasks)")


# Tasks


@cli.group()
def task() -> None:
    """Manage tasks."""
    pass


@task.command("add")
@click.argument("name")
@click.option("-p", "--project", "project_ref", required=True, help="Project id or prefix")
@click.option("-u", "--user", type=USER_CHOICE, help="Owning user (defaults to general.default_user)")
@click.option("--start", "start_now", is_flag=True, help="Start the timer right away")
@click.pass_context
def task_add(
    ctx: click.Context, name: str, project_ref: str, user: Optional[str], start_now: bool
) -> None:
    """Create a task.

    Example:
        colmillo task add "Landing page" -p website -u A --start
    """
    owner = (user or ctx.obj["config"].get("general.default_user", "A")).upper()
    try:
        ledger = get_ledger(ctx)
        created = ledger.add_task(name, resolve_project(ledger, project_ref), owner)
        if start_now:
            created = ledger.start_timer(created.id)
    except LedgerError as e:
        fail(e)

    console.print(f"[green]✓[/green] Created task: {created.name}")
    console.print(f"  ID: {created.id}")
    if created.is_running:
        console.print(f"  Started: {format_datetime(created.sessions[-1].start)}")


@task.command("list")
@click.option("-u", "--user", type=USER_CHOICE, help="Only tasks of this user")
@click.option("-p", "--project", "project_ref", help="Only tasks of this project")
@click.option("--completed", is_flag=True, help="Show completed tasks instead of active ones")
@click.pass_context
def task_list(
    ctx: click.Context, user: Optional[str], project_ref: Optional[str], completed: bool
) -> None:
    """List tasks, running ones first."""
    try:
        ledger = get_ledger(ctx)
        project_id = resolve_project(ledger, project_ref) if project_ref else None
    except LedgerError as e:
        fail(e)

    config_mgr: ConfigManager = ctx.obj["config"]
    show_seconds = config_mgr.get("display.show_seconds", True)
    names = {p.id: p.name for p in ledger.projects}
    now = datetime.now()

    tasks = [
        t
        for t in ledger.tasks
        if t.is_completed == completed
        and (user is None or t.user.value == user.upper())
        and (project_id is None or t.project_id == project_id)
    ]
    if not tasks:
        console.print("[yellow]No tasks found[/yellow]")
        return

    tasks.sort(key=lambda t: (not t.is_running, t.created_at))

    table = Table(title="Completed Tasks" if completed else "Active Tasks")
    table.add_column("ID", style="dim")
    table.add_column("Task", style="bold")
    table.add_column("Project", style="cyan")
    table.add_column("User", style="green")
    table.add_column("Time", style="magenta", justify="right")
    table.add_column("Sessions", justify="right")

    for t in tasks:
        table.add_row(
            t.id[:8],
            f"{'▶' if t.is_running else '■'} {t.name}",
            names.get(t.project_id, "-"),
            config_mgr.user_name(t.user.value),
            format_duration(t.elapsed_seconds(now), show_seconds),
            str(len(t.sessions)),
        )

    console.print(table)


@task.command("edit")
@click.argument("task_ref")
@click.option("--name", help="New name")
@click.option("-p", "--project", "project_ref", help="Move to another project")
@click.option("-u", "--user", type=USER_CHOICE, help="Move to another user")
@click.pass_context
def task_edit(
    ctx: click.Context,
    task_ref: str,
    name: Optional[str],
    project_ref: Optional[str],
    user: Optional[str],
) -> None:
    """Edit a task's name, project or user."""
    try:
        ledger = get_ledger(ctx)
        changes: dict[str, str] = {}
        if name is not None:
            changes["name"] = name
        if project_ref is not None:
            changes["project_id"] = resolve_project(ledger, project_ref)
        if user is not None:
            changes["user"] = user.upper()
        if not changes:
            fail("Nothing to change")

        updated = ledger.update_task(resolve_task(ledger, task_ref), **changes)
    except LedgerError as e:
        fail(e)

    console.print(f"[green]✓[/green] Updated task: {updated.name}")


@task.command("delete")
@click.argument("task_ref")
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation")
@click.pass_context
def task_delete(ctx: click.Context, task_ref: str, yes: bool) -> None:
    """Permanently delete a task and its sessions."""
    try:
        ledger = get_ledger(ctx)
        target = ledger.get_task(resolve_task(ledger, task_ref))
        if not yes and not click.confirm(f"Permanently delete '{target.name}'?"):
            console.print("Cancelled")
            return
        ledger.delete_task(target.id)
    except LedgerError as e:
        fail(e)

    console.print(f"[green]✓[/green] Deleted task: {target.name}")


@task.command("recover")
@click.argument("task_ref")
@click.pass_context
def task_recover(ctx: click.Context, task_ref: str) -> None:
    """Move a completed task back to the active list."""
    try:
        recovered = apply_to_task(ctx, task_ref, lambda ledger, tid: ledger.recover_task(tid))
    except LedgerError as e:
        fail(e)

    console.print(f"[green]✓[/green] Recovered task: {recovered.name}")


# Timer


@cli.command()
@click.argument("task_ref")
@click.pass_context
def start(ctx: click.Context, task_ref: str) -> None:
    """Start a task's timer, pausing the user's running task.

    Example:
        colmillo start 9c1e
    """
    try:
        ledger = get_ledger(ctx)
        task_id = resolve_task(ledger, task_ref)
        target = ledger.get_task(task_id)
        previous = ledger.running_task(target.user)
        started = ledger.start_timer(task_id)
    except LedgerError as e:
        fail(e)

    if previous is not None and previous.id != started.id:
        console.print(f"[yellow]■[/yellow] Paused: {previous.name}")
    console.print(f"[green]✓[/green] Started tracking: {started.name}")
    console.print(f"  Started: {format_datetime(started.sessions[-1].start)}")


@cli.command()
@click.argument("task_ref")
@click.pass_context
def pause(ctx: click.Context, task_ref: str) -> None:
    """Pause a task's timer."""
    try:
        ledger = get_ledger(ctx)
        task_id = resolve_task(ledger, task_ref)
        was_running = ledger.get_task(task_id).is_running
        paused = ledger.pause_timer(task_id)
    except LedgerError as e:
        fail(e)

    if not was_running:
        console.print(f"[yellow]Task is not running:[/yellow] {paused.name}")
        return
    show_seconds = ctx.obj["config"].get("display.show_seconds", True)
    console.print(f"[green]✓[/green] Paused: {paused.name}")
    console.print(f"  Total: {format_duration(paused.accumulated_time, show_seconds)}")


@cli.command()
@click.argument("task_ref")
@click.pass_context
def stop(ctx: click.Context, task_ref: str) -> None:
    """Stop a task and mark it completed."""
    try:
        stopped = apply_to_task(ctx, task_ref, lambda ledger, tid: ledger.stop_task(tid))
    except LedgerError as e:
        fail(e)

    show_seconds = ctx.obj["config"].get("display.show_seconds", True)
    console.print(f"[green]✓[/green] Completed: {stopped.name}")
    console.print(f"  Total: {format_duration(stopped.accumulated_time, show_seconds)}")


@cli.command()
@click.option("-u", "--user", type=USER_CHOICE, help="Only this user")
@click.pass_context
def status(ctx: click.Context, user: Optional[str]) -> None:
    """Show the running timer of each user."""
    try:
        ledger = get_ledger(ctx)
    except LedgerError as e:
        fail(e)

    config_mgr: ConfigManager = ctx.obj["config"]
    show_seconds = config_mgr.get("display.show_seconds", True)
    users = [User(user.upper())] if user else list(User)
    now = datetime.now()

    for u in users:
        running = ledger.running_task(u)
        name = config_mgr.user_name(u.value)
        if running is None:
            console.print(f"[yellow]{name}: no task running[/yellow]")
            continue

        project_name = ledger.get_project(running.project_id).name
        content = f"""[bold]{running.name}[/bold]

[dim]Project:[/dim] {project_name}
[dim]Started:[/dim] {format_datetime(running.sessions[-1].start)}
[dim]Elapsed:[/dim] {format_duration(running.elapsed_seconds(now), show_seconds)}"""
        console.print(Panel(content, title=name, border_style="green"))


# Sessions


@cli.group()
def session() -> None:
    """Inspect and edit a task's sessions (numbered from 1)."""
    pass


@session.command("list")
@click.argument("task_ref")
@click.pass_context
def session_list(ctx: click.Context, task_ref: str) -> None:
    """List the sessions of a task."""
    try:
        ledger = get_ledger(ctx)
        target = ledger.get_task(resolve_task(ledger, task_ref))
    except LedgerError as e:
        fail(e)

    if not target.sessions:
        console.print(f"[yellow]No sessions for {target.name}[/yellow]")
        return

    show_seconds = ctx.obj["config"].get("display.show_seconds", True)
    table = Table(title=f"Sessions: {target.name}")
    table.add_column("#", justify="right")
    table.add_column("Start", style="cyan")
    table.add_column("End", style="cyan")
    table.add_column("Duration", style="magenta", justify="right")

    for number, s in enumerate(target.sessions, start=1):
        table.add_row(
            str(number),
            format_datetime(s.start),
            format_datetime(s.end) if s.end else "running",
            format_duration(None if s.is_open else s.duration, show_seconds),
        )

    console.print(table)
    console.print(f"Total: {format_duration(target.accumulated_time, show_seconds)}")


@session.command("add")
@click.argument("task_ref")
@click.option("--start", required=True, help="Start time (YYYY-MM-DD HH:MM or HH:MM for today)")
@click.option("--end", required=True, help="End time (YYYY-MM-DD HH:MM or HH:MM for today)")
@click.pass_context
def session_add(ctx: click.Context, task_ref: str, start: str, end: str) -> None:
    """Add a manual session to a task.

    Example:
        colmillo session add 9c1e --start "09:00" --end "10:30"
    """
    try:
        start_time, end_time = parse_time(start), parse_time(end)
        updated = apply_to_task(
            ctx, task_ref, lambda ledger, tid: ledger.add_manual_session(tid, start_time, end_time)
        )
    except LedgerError as e:
        fail(e)

    show_seconds = ctx.obj["config"].get("display.show_seconds", True)
    console.print(f"[green]✓[/green] Added session to {updated.name}")
    console.print(f"  Time: {format_datetime(start_time)} → {format_datetime(end_time)}")
    console.print(f"  Total: {format_duration(updated.accumulated_time, show_seconds)}")


@session.command("edit")
@click.argument("task_ref")
@click.argument("number", type=int)
@click.option("--start", help="New start time")
@click.option("--end", help="New end time (closes a running session)")
@click.pass_context
def session_edit(
    ctx: click.Context, task_ref: str, number: int, start: Optional[str], end: Optional[str]
) -> None:
    """Change the start and/or end of a session."""
    if start is None and end is None:
        fail("Nothing to change")

    try:
        start_time = parse_time(start) if start else None
        end_time = parse_time(end) if end else None
        updated = apply_to_task(
            ctx,
            task_ref,
            lambda ledger, tid: ledger.update_task_session(tid, number - 1, start_time, end_time),
        )
    except LedgerError as e:
        fail(e)

    show_seconds = ctx.obj["config"].get("display.show_seconds", True)
    console.print(f"[green]✓[/green] Updated session {number} of {updated.name}")
    console.print(f"  Total: {format_duration(updated.accumulated_time, show_seconds)}")


@session.command("delete")
@click.argument("task_ref")
@click.argument("number", type=int)
@click.pass_context
def session_delete(ctx: click.Context, task_ref: str, number: int) -> None:
    """Delete a session from a task."""
    try:
        updated = apply_to_task(
            ctx, task_ref, lambda ledger, tid: ledger.delete_task_session(tid, number - 1)
        )
    except LedgerError as e:
        fail(e)

    show_seconds = ctx.obj["config"].get("display.show_seconds", True)
    console.print(f"[green]✓[/green] Deleted session {number} of {updated.name}")
    console.print(f"  Total: {format_duration(updated.accumulated_time, show_seconds)}")


# Reports


@cli.command()
@click.argument("type", type=click.Choice(["projects", "timeline", "gantt"]), default="projects")
@click.option("-d", "--date", help="Day for the timeline (YYYY-MM-DD, defaults to today)")
@click.option("-u", "--user", type=USER_CHOICE, help="Only tasks of this user")
@click.pass_context
def report(ctx: click.Context, type: str, date: Optional[str], user: Optional[str]) -> None:
    """Generate reports.

    Types:
        projects - Tracked time against budgets and deadlines
        timeline - Sessions of a single day
        gantt    - Project and task spans on an hour or day scale

    Examples:
        colmillo report projects
        colmillo report timeline -d 2026-10-19 -u B
        colmillo report gantt
    """
    try:
        ledger = get_ledger(ctx)
    except LedgerError as e:
        fail(e)

    now = datetime.now()
    tasks = [t for t in ledger.tasks if user is None or t.user.value == user.upper()]
    reporter = get_reporter(ctx)

    if type == "projects":
        reporter.projects_report(ledger.projects, tasks, now)
        return
    if type == "gantt":
        reporter.gantt_report(ledger.projects, tasks, now)
        return

    try:
        day = datetime.strptime(date, "%Y-%m-%d").date() if date else now.date()
    except ValueError:
        fail("Invalid date format. Use YYYY-MM-DD")
    reporter.timeline_report(tasks, day, now)


# Maintenance


@cli.command()
@click.option("--label", help="Backup name (defaults to a timestamp)")
@click.pass_context
def backup(ctx: click.Context, label: Optional[str]) -> None:
    """Copy the CSV data files to a backup directory.

    Example:
        colmillo backup --label before-cleanup
    """
    if ctx.obj["config"].get("persistence.backend") == "memory":
        fail("Backups need the csv persistence backend")

    try:
        backup_path = CSVGateway(get_data_dir(ctx)).backup(label)
    except LedgerError as e:
        fail(e)

    console.print(f"[green]✓[/green] Backed up data to {backup_path}")


if __name__ == "__main__":
    cli(obj={})
