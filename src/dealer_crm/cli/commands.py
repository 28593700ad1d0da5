# src/dealer_crm/cli/commands.py

from __future__ import annotations

import inspect
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime
from pathlib import Path
from typing import Any, cast

from ..core.errors import CRMError, friendly_error_message
from ..core.state import AppState
from ..customers.customer_import import export_customers, import_customers_from_file
from ..customers.customer_models import ArchiveStatus, Customer
from ..pipeline.milestones import (
    CHECKLISTS,
    MILESTONES,
    Stage,
    get_milestone,
    overall_progress,
    stage_urgency,
)
from ..todos.todo_models import Priority, Todo, TodoFilter

CommandEmitter = Callable[[str], None]
CommandResult = str | Awaitable[str]
CommandHandler2 = Callable[[AppState, list[str]], CommandResult]
CommandHandler3 = Callable[[AppState, list[str], CommandEmitter | None], CommandResult]
CommandHandler = CommandHandler2 | CommandHandler3

logger = logging.getLogger(__name__)


class CommandRegistry:
    """Simple slash-command registry used by connectors (/help, /open, /gen, ...)."""

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
        """
        if not line.startswith("/"):
            return None

        parts = line[1:].split()
        if not parts:
            return "Empty command. Use /help to list available commands."

        name = parts[0].lower()
        args = parts[1:]

        handler = self._handlers.get(name)
        if not handler:
            return f"Unknown command: /{name}. Use /help to list available commands."

        try:
            nparams = len(inspect.signature(handler).parameters)
        except (TypeError, ValueError):
            nparams = 3

        try:
            if nparams >= 3:
                result = cast(CommandHandler3, handler)(state, args, emit)
            else:
                result = cast(CommandHandler2, handler)(state, args)
            if inspect.isawaitable(result):
                result = await result
        except CRMError as e:
            logger.info("/%s failed: %s", name, e)
            return f"Error: {friendly_error_message(e)}"

        return cast(str, result)

    def build_help(self) -> str:
        lines = ["Available commands:"]
        for name, help_text in self._help.items():
            lines.append(f"  /{name} - {help_text}")
        return "\n".join(lines)


registry = CommandRegistry()


def _ts_local(ts: float) -> str:
    return datetime.fromtimestamp(ts).astimezone().strftime("%Y-%m-%d %H:%M")


def _parse_id(raw: str) -> int | None:
    try:
        return int(raw.lstrip("#"))
    except ValueError:
        return None


def _stage_arg(state: AppState, args: list[str]) -> Stage:
    return Stage.parse(args[0]) if args else state.editor.current_stage


def _format_customer(c: Customer) -> str:
    stage = get_milestone(c.current_milestone).short_name
    extra = f" [{c.archive_status}]" if c.archive_status else ""
    return f"#{c.id} {c.name} ({stage}, {overall_progress(c.checklist)}%){extra}"


def _format_todo(t: Todo) -> str:
    mark = "x" if t.completed else " "
    parts = [f"[{mark}] #{t.id} {t.text}"]
    if t.priority != Priority.MEDIUM:
        parts.append(f"!{t.priority}")
    if t.due_date:
        parts.append(f"due {t.due_date.isoformat()}")
    if t.customer_name:
        parts.append(f"@{t.customer_name}")
    return " ".join(parts)


def cmd_help(state: AppState, args: list[str]) -> str:
    return registry.build_help()


def cmd_customers(state: AppState, args: list[str]) -> str:
    """
    /customers           -> active customers
    /customers archived  -> archived customers
    """
    svc = state.customers
    archived = bool(args) and args[0].lower().startswith("arch")
    rows = svc.archived_customers() if archived else svc.active_customers()
    if svc.error:
        return f"Customers unavailable: {svc.error}"
    if not rows:
        return "No archived customers." if archived else "No customers yet. Use /add <name>."
    return "\n".join(_format_customer(c) for c in rows)


async def cmd_add(state: AppState, args: list[str]) -> str:
    if not args:
        return "Usage: /add <name> [phone]"
    phone = args[-1] if len(args) > 1 and args[-1].lstrip("+").isdigit() else None
    name_parts = args[:-1] if phone else args
    customer = await state.customers.create_customer(" ".join(name_parts), phone=phone)
    return f"Added {_format_customer(customer)}"


def cmd_open(state: AppState, args: list[str]) -> str:
    if not args or _parse_id(args[0]) is None:
        return "Usage: /open <customer id>"
    customer = state.customers.select_customer(_parse_id(args[0]))
    if customer is None:
        return f"No customer #{args[0].lstrip('#')}."

    dropped = state.editor.has_changes
    state.editor.load_customer(customer)
    note = " (unsaved checklist edits discarded)" if dropped else ""
    return f"Opened {_format_customer(customer)}{note}"


def cmd_checklist(state: AppState, args: list[str]) -> str:
    """
    /checklist          -> items of the current stage (from the edit buffer)
    /checklist <stage>  -> items of another stage
    """
    editor = state.editor
    if editor.customer is None:
        return "Open a customer first: /open <id>"
    editor.refresh()
    stage = _stage_arg(state, args)
    milestone = get_milestone(stage)
    due = editor.stage_dates.get(stage)

    head = f"{milestone.name} {editor.stage_progress(stage)}%"
    if due is not None:
        head += f" due {due.isoformat()} ({stage_urgency(due)})"
    if stage == editor.current_stage:
        head += " <- current"
    if editor.has_changes:
        head += " *unsaved*"

    lines = [f"{editor.customer.name}: {head}"]
    for item in CHECKLISTS[stage]:
        mark = "x" if editor.checklist.is_checked(stage, item.id) else " "
        lines.append(f"  [{mark}] {item.id} - {item.label}")
    return "\n".join(lines)


def cmd_toggle(state: AppState, args: list[str]) -> str:
    """
    /toggle <stage> <item>         -> flip
    /toggle <stage> <item> on|off  -> set
    """
    editor = state.editor
    if editor.customer is None:
        return "Open a customer first: /open <id>"
    if len(args) < 2:
        return "Usage: /toggle <stage> <item id> [on|off]"
    stage = Stage.parse(args[0])
    item_id = args[1]
    if len(args) > 2:
        checked = args[2].lower() in ("on", "1", "true", "yes", "x")
    else:
        checked = not editor.checklist.is_checked(stage, item_id)
    editor.toggle_item(stage, item_id, checked)
    return f"{item_id} -> {'done' if checked else 'open'} ({editor.stage_progress(stage)}%). /save to persist."


def cmd_stage(state: AppState, args: list[str]) -> str:
    editor = state.editor
    if editor.customer is None:
        return "Open a customer first: /open <id>"
    if not args:
        names = ", ".join(m.id.value for m in MILESTONES)
        return f"Current stage: {editor.current_stage}. Usage: /stage <{names}>"
    editor.set_current_stage(args[0])
    return f"Current stage -> {get_milestone(editor.current_stage).name}. /save to persist."


def cmd_date(state: AppState, args: list[str]) -> str:
    editor = state.editor
    if editor.customer is None:
        return "Open a customer first: /open <id>"
    if len(args) < 2:
        return "Usage: /date <stage> <YYYY-MM-DD|none>"
    raw = None if args[1].lower() in ("none", "-", "clear") else args[1]
    editor.set_stage_date(args[0], raw)
    value = editor.stage_dates.get(Stage.parse(args[0]))
    if raw is not None and value is None:
        return f"Not a date: {args[1]!r} (stage date cleared)."
    return f"{get_milestone(args[0]).name} date -> {value.isoformat() if value else 'none'}. /save to persist."


async def cmd_save(state: AppState, args: list[str]) -> str:
    editor = state.editor
    if editor.customer is None:
        return "Open a customer first: /open <id>"
    try:
        saved = await editor.save()
    except Exception:
        return f"Save failed: {editor.error}. Edits kept; try /save again."
    return "Saved." if saved else "Nothing to save."


def cmd_cancel(state: AppState, args: list[str]) -> str:
    editor = state.editor
    if editor.customer is None:
        return "Open a customer first: /open <id>"
    editor.cancel()
    return "Edits discarded."


async def cmd_gen(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    editor = state.editor
    if editor.customer is None:
        return "Open a customer first: /open <id>"
    stage = _stage_arg(state, args)
    if emit:
        emit(f"Generating tasks for {get_milestone(stage).name}...")
    result = await editor.create_todos_from_checklist(stage)
    return result.message


def cmd_todos(state: AppState, args: list[str]) -> str:
    """
    /todos                -> active filter (default: all)
    /todos <filter>       -> switch filter: all | today | overdue | completed | high_priority
    /todos customer       -> tasks of the opened customer
    """
    svc = state.todos
    if args and args[0].lower() == "customer":
        customer = state.customers.selected_customer
        if customer is None:
            return "Open a customer first: /open <id>"
        rows = svc.customer_todos(customer.id)
        title = f"Tasks for {customer.name}"
    else:
        if args:
            try:
                svc.set_active_filter(args[0].lower())
            except ValueError:
                return f"Unknown filter. Use one of: {', '.join(f.value for f in TodoFilter)}"
        rows = svc.filtered_todos()
        title = f"Tasks ({svc.active_filter})"

    if svc.error:
        return f"Tasks unavailable: {svc.error}"
    if not rows:
        return f"{title}: none."
    return "\n".join([f"{title}:", *(f"  {_format_todo(t)}" for t in rows)])


async def cmd_todo(state: AppState, args: list[str]) -> str:
    """
    /todo <text>            -> new task (linked to the opened customer, if any)
    /todo !high <text>      -> with priority
    """
    if not args:
        return "Usage: /todo [!low|!high|!urgent] <text>"
    priority = Priority.MEDIUM
    if args[0].startswith("!"):
        try:
            priority = Priority(args[0][1:].lower())
        except ValueError:
            return f"Unknown priority: {args[0][1:]}"
        args = args[1:]

    customer = state.customers.selected_customer
    todo = await state.todos.create_todo(
        " ".join(args),
        priority=priority,
        customer_id=customer.id if customer else None,
        customer_name=customer.name if customer else None,
    )
    return f"Added {_format_todo(todo)}"


async def cmd_done(state: AppState, args: list[str]) -> str:
    todo_id = _parse_id(args[0]) if args else None
    if todo_id is None:
        return "Usage: /done <task id>"
    todo = await state.todos.toggle_todo(todo_id)
    if todo is None:
        return f"No task #{todo_id}."
    return _format_todo(todo)


async def cmd_archive(state: AppState, args: list[str]) -> str:
    customer_id = _parse_id(args[0]) if args else None
    if customer_id is None or len(args) < 2:
        return "Usage: /archive <customer id> lost|completed"
    try:
        status = ArchiveStatus(args[1].lower())
    except ValueError:
        return "Archive status must be 'lost' or 'completed'."
    customer = await state.customers.archive_customer(customer_id, status)
    return f"Archived {_format_customer(customer)} at {_ts_local(customer.archived_at or 0.0)}"


async def cmd_unarchive(state: AppState, args: list[str]) -> str:
    customer_id = _parse_id(args[0]) if args else None
    if customer_id is None:
        return "Usage: /unarchive <customer id>"
    customer = await state.customers.unarchive_customer(customer_id)
    return f"Restored {_format_customer(customer)}"


async def cmd_import(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    if not args:
        return "Usage: /import <legacy export .json>"
    settings: Any = state.settings

    def progress(done: int, total: int) -> None:
        if emit:
            emit(f"Imported {done}/{total}...")

    report = await import_customers_from_file(
        state.customers,
        args[0],
        concurrency=settings.batch_concurrency,
        delay_seconds=settings.batch_delay_seconds,
        max_attempts=settings.retry_max_attempts,
        backoff_seconds=settings.retry_backoff_seconds,
        on_progress=progress,
    )
    lines = [f"Import finished: {report.summary()}"]
    lines.extend(f"  {err}" for err in report.errors[:10])
    return "\n".join(lines)


def cmd_export(state: AppState, args: list[str]) -> str:
    if args:
        path = Path(args[0])
    else:
        stamp = datetime.now().strftime("%Y%m%d-%H%M%S")
        path = Path(state.settings.export_dir) / f"customers-{stamp}.json"
    out = export_customers(state.customers.customers, path)
    return f"Exported {len(state.customers.customers)} customer(s) to {out}"


registry.register("help", cmd_help, help_text="Show available commands.", aliases=["h", "?"])
registry.register("customers", cmd_customers, help_text="List customers: /customers [archived].", aliases=["ls"])
registry.register("add", cmd_add, help_text="Add a customer: /add <name> [phone].")
registry.register("open", cmd_open, help_text="Open a customer for checklist editing: /open <id>.")
registry.register("checklist", cmd_checklist, help_text="Show checklist: /checklist [stage].", aliases=["cl"])
registry.register("toggle", cmd_toggle, help_text="Toggle an item: /toggle <stage> <item> [on|off].")
registry.register("stage", cmd_stage, help_text="Set the current stage: /stage <stage>.")
registry.register("date", cmd_date, help_text="Set a stage target date: /date <stage> <YYYY-MM-DD|none>.")
registry.register("save", cmd_save, help_text="Persist checklist edits.")
registry.register("cancel", cmd_cancel, help_text="Discard checklist edits.")
registry.register("gen", cmd_gen, help_text="Create tasks for unchecked items: /gen [stage].")
registry.register(
    "todos", cmd_todos, help_text="List tasks: /todos [all|today|overdue|completed|high_priority|customer]."
)
registry.register("todo", cmd_todo, help_text="Add a task: /todo [!priority] <text>.")
registry.register("done", cmd_done, help_text="Toggle a task done/open: /done <id>.")
registry.register("archive", cmd_archive, help_text="Archive a customer: /archive <id> lost|completed.")
registry.register("unarchive", cmd_unarchive, help_text="Restore an archived customer: /unarchive <id>.")
registry.register("import", cmd_import, help_text="Import customers from a legacy export: /import <file>.")
registry.register("export", cmd_export, help_text="Write a JSON backup: /export [file].")
