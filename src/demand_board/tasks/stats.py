# src/demand_board/tasks/stats.py

"""Read-only views over the in-memory task list (board columns and dashboard panels)."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from ..core.identity import IdentityDirectory, ProjectCatalog
from ..core.models import Priority, Task, TaskStatus

# Pending-task thresholds for the team workload panel.
WORKLOAD_MEDIUM_ABOVE = 2
WORKLOAD_HIGH_ABOVE = 5


def board_partitions(tasks: Iterable[Task]) -> dict[Priority, list[Task]]:
    """One column per priority, preserving the incoming (newest-first) order."""
    columns: dict[Priority, list[Task]] = {p: [] for p in Priority}
    for t in tasks:
        columns[t.priority].append(t)
    return columns


def filter_tasks(
    tasks: Iterable[Task],
    *,
    assignee: str | None = None,
    status: TaskStatus | None = None,
    project: str | None = None,
    priority: Priority | None = None,
) -> list[Task]:
    out: list[Task] = []
    for t in tasks:
        if assignee is not None and assignee not in t.assignees:
            continue
        if status is not None and t.status is not status:
            continue
        if project is not None and t.project != project:
            continue
        if priority is not None and t.priority is not priority:
            continue
        out.append(t)
    return out


@dataclass(slots=True, frozen=True)
class EmployeeSummary:
    name: str
    pending: int
    completed: int
    pending_by_priority: dict[Priority, int]
    oldest_pending: Task | None


def employee_summary(tasks: Iterable[Task], name: str) -> EmployeeSummary:
    mine = [t for t in tasks if name in t.assignees]
    pending = [t for t in mine if t.status is not TaskStatus.DONE]
    by_priority = {p: sum(1 for t in pending if t.priority is p) for p in Priority}
    oldest = min(pending, key=lambda t: t.created_at) if pending else None
    return EmployeeSummary(
        name=name,
        pending=len(pending),
        completed=len(mine) - len(pending),
        pending_by_priority=by_priority,
        oldest_pending=oldest,
    )


@dataclass(slots=True, frozen=True)
class Workload:
    name: str
    pending: int
    level: str  # "low" | "medium" | "high"


def _load_level(pending: int) -> str:
    if pending > WORKLOAD_HIGH_ABOVE:
        return "high"
    if pending > WORKLOAD_MEDIUM_ABOVE:
        return "medium"
    return "low"


def team_workload(tasks: Iterable[Task], directory: IdentityDirectory) -> list[Workload]:
    tasks = list(tasks)
    out: list[Workload] = []
    for emp in directory.employees():
        pending = sum(1 for t in tasks if emp.name in t.assignees and t.status is not TaskStatus.DONE)
        out.append(Workload(name=emp.name, pending=pending, level=_load_level(pending)))
    return out


def project_counts(tasks: Iterable[Task], catalog: ProjectCatalog) -> dict[str, int]:
    """Pending tasks per known project (known projects with zero included)."""
    tasks = list(tasks)
    return {
        name: sum(1 for t in tasks if t.project == name and t.status is not TaskStatus.DONE)
        for name in catalog.names
    }
