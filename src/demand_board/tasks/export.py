# src/demand_board/tasks/export.py

from __future__ import annotations

import csv
import io
import logging
import os
from collections.abc import Iterable
from pathlib import Path

from ..core.identity import IdentityDirectory
from ..core.models import Task

logger = logging.getLogger(__name__)

HEADER = [
    "ID",
    "Título",
    "Projeto",
    "Categoria",
    "Prioridade",
    "Responsáveis",
    "E-mails",
    "Status",
    "Progresso (%)",
    "Criado em",
    "Justificativa",
]


def task_to_row(task: Task, directory: IdentityDirectory) -> list[str]:
    # Names missing from the directory simply have no e-mail in the export.
    emails = [e for e in (directory.email_for(n) for n in task.assignees) if e]
    return [
        task.id,
        task.title,
        task.project,
        task.category.value,
        task.priority.value,
        ", ".join(task.assignees),
        ", ".join(emails),
        task.status.value,
        str(task.progress),
        task.created_at.astimezone().strftime("%Y-%m-%d"),
        task.justification,
    ]


def tasks_to_csv(tasks: Iterable[Task], directory: IdentityDirectory) -> str:
    """
    Render the snapshot as CSV text.

    Every field is quoted and embedded quotes are doubled, so titles such as
    'Fix "prod" bug' come out as "Fix ""prod"" bug".
    """
    buf = io.StringIO()
    writer = csv.writer(buf, quoting=csv.QUOTE_ALL, lineterminator="\r\n")
    writer.writerow(HEADER)
    for t in tasks:
        writer.writerow(task_to_row(t, directory))
    return buf.getvalue()


def export_csv_bytes(tasks: Iterable[Task], directory: IdentityDirectory) -> bytes:
    """UTF-8 with a byte-order mark so spreadsheet tools detect the encoding."""
    return tasks_to_csv(tasks, directory).encode("utf-8-sig")


def write_csv(path: str | Path, tasks: Iterable[Task], directory: IdentityDirectory) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    data = export_csv_bytes(tasks, directory)
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_bytes(data)
    os.replace(tmp, path)
    logger.info("Exported CSV to %s (%d bytes)", path, len(data))
    return path
