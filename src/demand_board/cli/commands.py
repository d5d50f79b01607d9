# src/demand_board/cli/commands.py

from __future__ import annotations

import contextlib
import inspect
import logging
import shlex
from collections.abc import Awaitable, Callable
from datetime import datetime
from pathlib import Path
from typing import cast

from ..auth.session import LoginStep
from ..core.models import Category, Priority, Task, TaskDraft, TaskStatus
from ..core.state import AppState
from ..errors import AuthError, BoardError, ValidationError
from ..llm.classifier import to_drafts
from ..notifications.inbox import NotificationInbox
from ..tasks import stats
from ..tasks.export import write_csv
from ..tasks.repository import TaskRepository

CommandEmitter = Callable[[str], None]
CommandHandler2 = Callable[[AppState, list[str]], Awaitable[str]]
CommandHandler3 = Callable[[AppState, list[str], CommandEmitter | None], Awaitable[str]]
CommandHandler = CommandHandler2 | CommandHandler3

logger = logging.getLogger(__name__)


class CommandRegistry:
    """Simple slash-command registry used by connectors (/help, /tasks, ...)."""

    def __init__(self) -> None:
        self._handlers: dict[str, CommandHandler] = {}
        self._help: dict[str, str] = {}

    def register(
        self,
        name: str,
        handler: CommandHandler,
        help_text: str,
        aliases: list[str] | None = None,
    ) -> None:
        aliases = aliases or []
        key = name.lower()
        self._handlers[key] = handler
        self._help[key] = help_text
        for alias in aliases:
            self._handlers[alias.lower()] = handler

    async def handle(
        self,
        state: AppState,
        line: str,
        emit: CommandEmitter | None = None,
    ) -> str | None:
        """
        Handle a string like "/command args".
        Returns a reply string or None if not a command.

        Arguments are split shell-style, so quoted titles keep their spaces.
        Board errors (validation, permission, auth) become the reply text.
        """
        if not line.startswith("/"):
            return None

        try:
            parts = shlex.split(line[1:])
        except ValueError:
            parts = line[1:].split()
        if not parts:
            return "Comando vazio. Use /help para ver os comandos."

        name = parts[0].lower()
        args = parts[1:]

        handler = self._handlers.get(name)
        if not handler:
            return f"Comando desconhecido: /{name}. Use /help para ver os comandos."

        try:
            nparams = len(inspect.signature(handler).parameters)
        except (TypeError, ValueError):
            nparams = 3

        try:
            if nparams >= 3:
                h3 = cast(CommandHandler3, handler)
                return await h3(state, args, emit)
            h2 = cast(CommandHandler2, handler)
            return await h2(state, args)
        except BoardError as e:
            logger.info("/%s rejected: %s", name, e.to_dict())
            return e.message

    def build_help(self) -> str:
        lines = ["Comandos disponíveis:"]
        for name, help_text in self._help.items():
            lines.append(f"  /{name} - {help_text}")
        return "\n".join(lines)


registry = CommandRegistry()


# ---- helpers ----


def _require_repo(state: AppState) -> TaskRepository:
    if state.repository is None:
        raise AuthError("Faça login primeiro (/login <email> <senha>).")
    return state.repository


def _require_inbox(state: AppState) -> NotificationInbox:
    if state.inbox is None:
        raise AuthError("Faça login primeiro (/login <email> <senha>).")
    return state.inbox


def _require_task(repo: TaskRepository, key: str) -> Task:
    task = repo.find(key)
    if task is None:
        raise ValidationError(f"Tarefa não encontrada: {key}", field="task_id")
    return task


def _split_options(args: list[str]) -> tuple[list[str], dict[str, str]]:
    """Separate positional words from key=value options."""
    positional: list[str] = []
    options: dict[str, str] = {}
    for a in args:
        key, sep, value = a.partition("=")
        if sep and key and key.isidentifier():
            options[key.lower()] = value
        else:
            positional.append(a)
    return positional, options


def _parse_priority(raw: str) -> Priority:
    value = (raw or "").strip().upper().replace("É", "E")
    try:
        return Priority(value)
    except ValueError:
        raise ValidationError(f"Prioridade inválida: {raw} (use ALTA, MEDIA ou BAIXA)", field="priority") from None


def _parse_category(raw: str) -> Category:
    wanted = (raw or "").strip().lower()
    for c in Category:
        if c.value.lower() == wanted:
            return c
    raise ValidationError(f"Categoria inválida: {raw}", field="category")


def _fmt_date(value: datetime) -> str:
    return value.astimezone().strftime("%d/%m/%Y")


def _fmt_task(t: Task) -> str:
    mark = "x" if t.is_done else " "
    project = f" | {t.project}" if t.project else ""
    comments = f" | {len(t.comments)} coment." if t.comments else ""
    return (
        f"[{mark}] {t.id[:8]} {t.category.value:<8} {t.title}{project}"
        f" | {', '.join(t.assignees)} | {t.progress}%{comments}"
    )


# ---- session ----


async def cmd_help(state: AppState, args: list[str]) -> str:
    return registry.build_help()


async def cmd_login(state: AppState, args: list[str]) -> str:
    """
    /login <email>          -> tells whether a password exists
    /login <email> <senha>  -> authenticate and load the board
    """
    if not args:
        return "Uso: /login <email> <senha>"
    email = args[0]
    if len(args) == 1:
        step = await state.sessions.identify(email)
        if step is LoginStep.CREATE_PASSWORD:
            return "Primeiro acesso: crie sua senha com /register <email> <senha> <confirmação>."
        return "Informe a senha: /login <email> <senha>"

    session = await state.sessions.login(email, args[1])
    await state.start_session(session)
    return f"Bem-vindo, {session.name} ({session.role.value})."


async def cmd_register(state: AppState, args: list[str]) -> str:
    if len(args) < 3:
        return "Uso: /register <email> <senha> <confirmação>"
    session = await state.sessions.register(args[0], args[1], args[2])
    await state.start_session(session)
    return f"Senha criada. Bem-vindo, {session.name}."


async def cmd_logout(state: AppState, args: list[str]) -> str:
    if state.session is None:
        return "Nenhuma sessão ativa."
    name = state.session.name
    await state.end_session()
    return f"Até logo, {name}."


async def cmd_whoami(state: AppState, args: list[str]) -> str:
    s = state.session
    if s is None:
        return "Nenhuma sessão ativa."
    unread = state.inbox.unread_count if state.inbox is not None else 0
    return f"{s.name} <{s.email}> ({s.role.value}) | notificações não lidas: {unread}"


# ---- tasks ----


async def cmd_tasks(state: AppState, args: list[str]) -> str:
    """
    /tasks                  -> all tasks, one column per priority
    /tasks mine             -> tasks assigned to me
    /tasks pending | done   -> by status
    /tasks project=<name>   -> by project
    """
    repo = _require_repo(state)
    positional, options = _split_options(args)

    assignee: str | None = options.get("assignee")
    status: TaskStatus | None = None
    for word in positional:
        w = word.lower()
        if w in ("mine", "minhas") and state.session is not None:
            assignee = state.session.name
        elif w in ("pending", "pendentes"):
            status = TaskStatus.PENDING
        elif w in ("done", "concluidas", "concluídas"):
            status = TaskStatus.DONE

    tasks = stats.filter_tasks(repo.tasks, assignee=assignee, status=status, project=options.get("project"))
    if not tasks:
        return "Nenhuma tarefa."

    lines: list[str] = []
    for priority, column in stats.board_partitions(tasks).items():
        lines.append(f"== {priority.value} ({len(column)}) ==")
        lines.extend(f"  {_fmt_task(t)}" for t in column)
    return "\n".join(lines)


async def cmd_new(state: AppState, args: list[str]) -> str:
    """
    /new "<título>" assignees=Narley,Toni [priority=ALTA] [category=Dev] [project="..."] [why="..."]
    """
    repo = _require_repo(state)
    positional, options = _split_options(args)
    title = " ".join(positional).strip()
    if not title:
        return 'Uso: /new "<título>" assignees=Nome1,Nome2 [priority=ALTA] [category=Dev] [project="..."]'

    raw_assignees = options.get("assignees") or options.get("to") or ""
    draft = TaskDraft(
        title=title,
        assignees=[a.strip() for a in raw_assignees.split(",") if a.strip()],
        category=_parse_category(options["category"]) if "category" in options else Category.DEV,
        priority=_parse_priority(options["priority"]) if "priority" in options else Priority.MEDIA,
        project=options.get("project", ""),
        justification=options.get("why", ""),
    )
    task = await repo.create(draft)
    if task is None:
        return "Não foi possível criar a tarefa."
    return f"Criada: {_fmt_task(task)}"


async def _set_status(state: AppState, args: list[str], status: TaskStatus) -> str:
    repo = _require_repo(state)
    if not args:
        return "Informe o id da tarefa."
    task = _require_task(repo, args[0])
    ok = await repo.set_status(task.id, status)
    return _fmt_task(task) if ok else "Status não alterado."


async def cmd_done(state: AppState, args: list[str]) -> str:
    return await _set_status(state, args, TaskStatus.DONE)


async def cmd_reopen(state: AppState, args: list[str]) -> str:
    return await _set_status(state, args, TaskStatus.PENDING)


async def cmd_priority(state: AppState, args: list[str]) -> str:
    repo = _require_repo(state)
    if len(args) < 2:
        return "Uso: /priority <id> <ALTA|MEDIA|BAIXA>"
    task = _require_task(repo, args[0])
    ok = await repo.set_priority(task.id, _parse_priority(args[1]))
    return _fmt_task(task) if ok else "Prioridade não alterada."


async def cmd_progress(state: AppState, args: list[str]) -> str:
    repo = _require_repo(state)
    if len(args) < 2:
        return "Uso: /progress <id> <0-100>"
    task = _require_task(repo, args[0])
    try:
        value = int(args[1].rstrip("%"))
    except ValueError:
        raise ValidationError(f"Progresso inválido: {args[1]}", field="progress") from None
    ok = await repo.set_progress(task.id, value)
    return _fmt_task(task) if ok else "Progresso não alterado."


async def cmd_comment(state: AppState, args: list[str]) -> str:
    """
    /comment <id>         -> show the thread
    /comment <id> <texto> -> add a comment
    """
    repo = _require_repo(state)
    if not args:
        return "Uso: /comment <id> <texto>"
    task = _require_task(repo, args[0])
    text = " ".join(args[1:]).strip()
    if not text:
        if not task.comments:
            return f"{task.title}: sem comentários."
        lines = [f"{task.title}:"]
        for c in task.comments:
            lines.append(f"  {_fmt_date(c.created_at)} {c.author}: {c.text}")
        return "\n".join(lines)

    comment = await repo.add_comment(task.id, text)
    if comment is None:
        return "Comentário não enviado."
    return f"Comentário adicionado em: {task.title}"


async def cmd_delete(state: AppState, args: list[str]) -> str:
    repo = _require_repo(state)
    if not args:
        return "Uso: /delete <id>"
    task = _require_task(repo, args[0])
    ok = await repo.delete(task.id)
    return f"Removida: {task.title}" if ok else "Tarefa não removida."


async def cmd_reload(state: AppState, args: list[str]) -> str:
    repo = _require_repo(state)
    ok = await repo.load()
    if state.inbox is not None:
        await state.inbox.load()
    return f"{len(repo.tasks)} tarefas carregadas." if ok else "Falha ao recarregar."


# ---- notifications ----


async def cmd_notif(state: AppState, args: list[str]) -> str:
    inbox = _require_inbox(state)
    items = inbox.items
    if not items:
        return "Nenhuma notificação."
    lines = [f"Notificações ({inbox.unread_count} não lidas):"]
    for n in items:
        mark = "*" if not n.read else " "
        lines.append(f" {mark} {n.id[:8]} {_fmt_date(n.created_at)} {n.title}: {n.message}")
    return "\n".join(lines)


async def cmd_read(state: AppState, args: list[str]) -> str:
    """
    /read <id>  -> mark one notification as read
    /read all   -> mark every unread notification as read
    """
    inbox = _require_inbox(state)
    if not args:
        return "Uso: /read <id> | /read all"
    if args[0].lower() in ("all", "todas"):
        count = await inbox.mark_all_read()
        return f"{count} notificação(ões) marcada(s) como lida(s)."

    key = args[0]
    matches = [n for n in inbox.items if n.id == key or n.id.startswith(key)]
    if len(matches) != 1:
        raise ValidationError(f"Notificação não encontrada: {key}", field="notification_id")
    ok = await inbox.mark_read(matches[0].id)
    return "Marcada como lida." if ok else "Não foi possível marcar como lida."


async def cmd_clear_notif(state: AppState, args: list[str]) -> str:
    inbox = _require_inbox(state)
    ok = await inbox.delete_all()
    return "Notificações removidas." if ok else "Não foi possível remover as notificações."


# ---- projects / stats / export ----


async def cmd_projects(state: AppState, args: list[str]) -> str:
    names = state.catalog.names
    if not names:
        return "Nenhum projeto."
    counts: dict[str, int] = {}
    if state.repository is not None:
        counts = stats.project_counts(state.repository.tasks, state.catalog)
    return "Projetos:\n" + "\n".join(f"  {n} ({counts.get(n, 0)} pendentes)" for n in names)


async def cmd_project_add(state: AppState, args: list[str]) -> str:
    name = " ".join(args).strip()
    if not name:
        return "Uso: /project-add <nome>"
    if not state.catalog.add(name):
        return f"Projeto já existe: {name}"
    logger.info("Project added: %s", name)
    return f"Projeto adicionado: {name}"


async def cmd_stats(state: AppState, args: list[str]) -> str:
    """
    Employees see their own summary. The BOSS sees team workload, or one
    employee's summary with /stats <nome>.
    """
    repo = _require_repo(state)
    session = state.session
    tasks = repo.tasks

    name: str | None = " ".join(args).strip() or None
    if session is not None and not session.is_boss:
        name = session.name

    if name is not None:
        s = stats.employee_summary(tasks, name)
        by_p = ", ".join(f"{p.value}: {n}" for p, n in s.pending_by_priority.items())
        oldest = f"{s.oldest_pending.title} ({_fmt_date(s.oldest_pending.created_at)})" if s.oldest_pending else "-"
        return (
            f"{s.name}:\n"
            f"  Pendentes: {s.pending} ({by_p})\n"
            f"  Concluídas: {s.completed}\n"
            f"  Mais antiga pendente: {oldest}"
        )

    lines = ["Carga da equipe:"]
    for w in stats.team_workload(tasks, state.directory):
        lines.append(f"  {w.name}: {w.pending} pendentes ({w.level})")
    lines.append("Projetos:")
    for project, count in stats.project_counts(tasks, state.catalog).items():
        lines.append(f"  {project}: {count}")
    return "\n".join(lines)


async def cmd_export(state: AppState, args: list[str]) -> str:
    repo = _require_repo(state)
    if args:
        path = Path(args[0]).expanduser()
    else:
        stamp = datetime.now().strftime("%Y-%m-%d")
        path = Path(getattr(state.settings, "data_dir", ".")) / f"demandas_{stamp}.csv"
    out = write_csv(path, repo.tasks, state.directory)
    return f"{len(repo.tasks)} tarefas exportadas para {out}"


# ---- AI classifier ----


async def cmd_classify(
    state: AppState,
    args: list[str],
    emit: CommandEmitter | None = None,
) -> str:
    """
    /classify <demanda 1>; <demanda 2>; ...    -> prioritize a free-text list
    /classify apply assignees=A,B [project=..] -> create tasks from the last result
    """
    if not args:
        return "Uso: /classify <demanda 1>; <demanda 2>; ... | /classify apply assignees=Nome"

    if args[0].lower() == "apply":
        return await _classify_apply(state, args[1:])

    # Console input is one line; ";" separates demands.
    text = "\n".join(p.strip() for p in " ".join(args).split(";") if p.strip())

    if emit:
        with contextlib.suppress(Exception):
            emit("[IA] Analisando demandas...")

    result = await state.classifier.classify(text)
    state.last_classification = result

    if not result.tasks and not result.blockers:
        return "Nenhuma demanda identificada."

    lines: list[str] = []
    for priority in Priority:
        items = result.by_priority(priority)
        if not items:
            continue
        lines.append(f"== {priority.value} ==")
        for d in items:
            lines.append(f"  {d.id}. [{d.category.value}] {d.task}")
            if d.justification:
                lines.append(f"     {d.justification}")
    if result.blockers:
        lines.append("Precisam de mais informação:")
        lines.extend(f"  - {b}" for b in result.blockers)
    lines.append("Use /classify apply assignees=Nome1,Nome2 [project=...] para criar as tarefas.")
    return "\n".join(lines)


async def _classify_apply(state: AppState, args: list[str]) -> str:
    repo = _require_repo(state)
    result = state.last_classification
    if result is None or not result.tasks:
        return "Nada para aplicar. Rode /classify primeiro."

    _, options = _split_options(args)
    assignees = [a.strip() for a in (options.get("assignees") or "").split(",") if a.strip()]
    if not assignees:
        raise ValidationError("Informe assignees=Nome1,Nome2", field="assignees")

    created = 0
    for draft in to_drafts(result, project=options.get("project", ""), assignees=assignees):
        if await repo.create(draft) is not None:
            created += 1
    state.last_classification = None
    return f"{created} de {len(result.tasks)} tarefa(s) criada(s)."


registry.register("help", cmd_help, help_text="Mostra os comandos.", aliases=["h", "?"])
registry.register("login", cmd_login, help_text="Entrar: /login <email> <senha>.")
registry.register("register", cmd_register, help_text="Primeiro acesso: /register <email> <senha> <confirmação>.")
registry.register("logout", cmd_logout, help_text="Sair da sessão.")
registry.register("whoami", cmd_whoami, help_text="Mostra o usuário atual.")
registry.register("tasks", cmd_tasks, help_text="Quadro: /tasks [mine|pending|done] [project=...].", aliases=["t"])
registry.register("new", cmd_new, help_text='Nova demanda: /new "<título>" assignees=A,B [priority=] [category=] [project=].')
registry.register("done", cmd_done, help_text="Concluir: /done <id>.")
registry.register("reopen", cmd_reopen, help_text="Reabrir: /reopen <id>.")
registry.register("priority", cmd_priority, help_text="Prioridade: /priority <id> <ALTA|MEDIA|BAIXA>.")
registry.register("progress", cmd_progress, help_text="Progresso: /progress <id> <0-100>.")
registry.register("comment", cmd_comment, help_text="Comentários: /comment <id> [texto].")
registry.register("delete", cmd_delete, help_text="Remover tarefa (gestor): /delete <id>.")
registry.register("notif", cmd_notif, help_text="Lista notificações.")
registry.register("read", cmd_read, help_text="Marcar como lida: /read <id> | /read all.")
registry.register("clear-notif", cmd_clear_notif, help_text="Apaga todas as notificações.")
registry.register("projects", cmd_projects, help_text="Lista projetos conhecidos.")
registry.register("project-add", cmd_project_add, help_text="Adiciona projeto: /project-add <nome>.")
registry.register("stats", cmd_stats, help_text="Painel: /stats [nome].")
registry.register("export", cmd_export, help_text="Exporta CSV: /export [arquivo].")
registry.register("classify", cmd_classify, help_text="IA: /classify <d1>; <d2> | /classify apply assignees=A.")
registry.register("reload", cmd_reload, help_text="Recarrega tarefas e notificações.")
