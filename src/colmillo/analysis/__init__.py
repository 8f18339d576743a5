"""Reporting over ledger snapshots."""

from colmillo.analysis.reports import (
    ProjectSummary,
    ReportGenerator,
    TimelineRange,
    sessions_on,
    summarize_project,
    summarize_projects,
    task_span,
    timeline_range,
)

__all__ = [
    "ProjectSummary",
    "ReportGenerator",
    "TimelineRange",
    "sessions_on",
    "summarize_project",
    "summarize_projects",
    "task_span",
    "timeline_range",
]
