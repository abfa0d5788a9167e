# src/routine_audit/cli/commands.py

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Sequence
from typing import Any

from ..core.clock import parse_day
from ..core.errors import AuditError, ValidationError
from ..core.models import Assignment, Frequency
from ..core.state import AppState

CommandHandler = Callable[[AppState, list[str]], Awaitable[str]]

logger = logging.getLogger(__name__)

SHORT_ID = 8
CONFIRM_FLAGS = {"-y", "--yes"}


class CommandRegistry:
    """Simple slash-command registry used by the console (/help, /tasks, ...)."""

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

    async def handle(self, state: AppState, line: str) -> str | None:
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
            return await handler(state, args)
        except AuditError as e:
            return f"Error: {e}"

    def build_help(self) -> str:
        lines = ["Available commands:"]
        for name, help_text in self._help.items():
            lines.append(f"  /{name} - {help_text}")
        return "\n".join(lines)


registry = CommandRegistry()


# ---- helpers ----


def _short(item_id: str) -> str:
    return item_id if item_id.startswith("temp-") else item_id[:SHORT_ID]


def resolve_id(raw: str, items: Sequence[Any], label: str) -> str:
    """Accept a full id or any unique prefix of one."""
    matches = [item.id for item in items if item.id == raw or item.id.startswith(raw)]
    if raw and raw in matches:
        return raw
    if len(matches) == 1:
        return matches[0]
    if not matches:
        raise ValidationError(f"No {label} matches {raw!r}.")
    raise ValidationError(f"{label.capitalize()} id {raw!r} is ambiguous.")


def _confirmed(args: list[str]) -> tuple[list[str], bool]:
    rest = [a for a in args if a not in CONFIRM_FLAGS]
    return rest, len(rest) != len(args)


def _needs_confirm(what: str) -> str:
    return f"{what} needs confirmation: repeat the command with -y."


def _format_assignment(a: Assignment) -> str:
    title = a.task.title if a.task else "(deleted task)"
    who = f" @{a.user.name}" if a.user else ""
    line = f"[{_short(a.id)}] {title}{who} - {a.status.value}"
    if a.due_date:
        line += f" (due {a.due_date})"
    if a.employee_notes:
        line += f"\n      notes: {a.employee_notes}"
    if a.admin_notes and a.status.value == "deficient":
        line += f"\n      deficiency: {a.admin_notes}"
    if a.task and a.task.subtasks:
        for sub in a.task.subtasks:
            line += f"\n      - {sub.title}"
    return line


async def _start_boards(state: AppState) -> None:
    user = state.session.require_user()
    if user.is_admin:
        state.admin_board.start()
        await state.admin_board.refresh()
    else:
        state.employee_board.start()
        await state.employee_board.refresh()


# ---- session ----


async def cmd_help(state: AppState, args: list[str]) -> str:
    return registry.build_help()


async def cmd_login(state: AppState, args: list[str]) -> str:
    if len(args) != 2:
        return "Usage: /login <email> <password>"
    user = await state.session.login(args[0], args[1])
    state.monitor.touch()
    await _start_boards(state)
    return f"Welcome, {user.name} ({user.user_type.value})."


async def cmd_logout(state: AppState, args: list[str]) -> str:
    state.session.logout("logout")
    return "Signed out."


async def cmd_whoami(state: AppState, args: list[str]) -> str:
    user = state.session.user
    if user is None:
        return "Not signed in."
    role = f", role: {user.role.name}" if user.role else ""
    return f"{user.name} <{user.email}> ({user.user_type.value}{role})"


# ---- employee ----


async def cmd_tasks(state: AppState, args: list[str]) -> str:
    board = state.employee_board
    items = await board.refresh()
    if not items:
        return "No tasks for today."
    return "\n".join(_format_assignment(a) for a in items)


async def cmd_note(state: AppState, args: list[str]) -> str:
    if len(args) < 2:
        return "Usage: /note <id> <text>"
    board = state.employee_board
    aid = resolve_id(args[0], board.assignments, "task")
    board.set_note(aid, " ".join(args[1:]))
    return "Note saved (sent with done/reject)."


async def cmd_done(state: AppState, args: list[str]) -> str:
    if len(args) != 1:
        return "Usage: /done <id>"
    board = state.employee_board
    aid = resolve_id(args[0], board.assignments, "task")
    await board.mark_done(aid)
    return "Task sent for review."


async def cmd_reject(state: AppState, args: list[str]) -> str:
    rest, yes = _confirmed(args)
    if len(rest) != 1:
        return "Usage: /reject <id> -y  (write the reason with /note first)"
    board = state.employee_board
    aid = resolve_id(rest[0], board.assignments, "task")
    result = await board.reject(aid, confirm=lambda _msg: yes)
    if result is None:
        return _needs_confirm("Rejecting a task")
    return "Task rejected."


# ---- admin: audit ----


async def cmd_audit(state: AppState, args: list[str]) -> str:
    """/audit [YYYY-MM-DD|-] [employee]"""
    board = state.admin_board
    await board.refresh()
    on_date = parse_day(args[0]) if args and args[0] != "-" else None
    user_id = resolve_id(args[1], board.users, "employee") if len(args) > 1 else None
    items = board.audit(on_date=on_date, user_id=user_id)
    if not items:
        return "No records match."
    return "\n".join(_format_assignment(a) for a in items)


async def cmd_deficient(state: AppState, args: list[str]) -> str:
    if len(args) < 2:
        return "Usage: /deficient <id> <note>"
    board = state.admin_board
    aid = resolve_id(args[0], board.assignments, "record")
    await board.flag_deficiency(aid, " ".join(args[1:]))
    return "Deficiency recorded; the task is reopened for the employee."


async def cmd_delete(state: AppState, args: list[str]) -> str:
    rest, yes = _confirmed(args)
    if len(rest) != 1:
        return "Usage: /delete <id> -y"
    board = state.admin_board
    aid = resolve_id(rest[0], board.assignments, "record")
    if not await board.delete_assignment(aid, confirm=lambda _msg: yes):
        return _needs_confirm("Deleting a record")
    return "Record deleted."


# ---- admin: reports ----


async def cmd_report(state: AppState, args: list[str]) -> str:
    board = state.admin_board
    await board.refresh()
    s = board.summary()
    lines = [f"Assignments: {s.total}  done: {s.done}  deficient: {s.deficient}", "Employees:"]
    for p in board.performance():
        role = f" [{p.role_name}]" if p.role_name else ""
        lines.append(
            f"  {p.name}{role}: {p.completion_rate}% "
            f"(total {p.total}, done {p.completed}, deficient {p.deficient}, "
            f"pending {p.pending}, rejected {p.rejected})"
        )
    return "\n".join(lines)


async def cmd_deficiencies(state: AppState, args: list[str]) -> str:
    board = state.admin_board
    await board.refresh()
    records = board.deficiency_register()
    if not records:
        return "No deficiencies."
    return "\n".join(f"{_format_assignment(r.assignment)}\n      reason: {r.reason}" for r in records)


# ---- admin: staff ----


async def cmd_roles(state: AppState, args: list[str]) -> str:
    board = state.admin_board
    await board.refresh()
    if not board.roles:
        return "No roles yet."
    return "\n".join(f"[{_short(r.id)}] {r.name}" for r in board.roles)


async def cmd_addrole(state: AppState, args: list[str]) -> str:
    role = await state.admin_board.create_role(" ".join(args))
    return f"Role created [{_short(role.id)}] {role.name}."


async def cmd_users(state: AppState, args: list[str]) -> str:
    board = state.admin_board
    await board.refresh()
    if not board.users:
        return "No users yet."
    lines = []
    for u in board.users:
        flags = " (disabled)" if u.disabled else ""
        role = f" [{u.role.name}]" if u.role else ""
        lines.append(f"[{_short(u.id)}] {u.name} <{u.email}> {u.user_type.value}{role}{flags}")
    return "\n".join(lines)


async def cmd_adduser(state: AppState, args: list[str]) -> str:
    if len(args) < 5:
        return "Usage: /adduser <email> <password> <admin|user> <role-id|-> <name>"
    email, password, kind, role_raw = args[:4]
    board = state.admin_board
    role_id = None if role_raw == "-" else resolve_id(role_raw, board.roles, "role")
    user = await board.create_user(
        name=" ".join(args[4:]), email=email, password=password, user_type=kind, role_id=role_id
    )
    return f"Account created [{_short(user.id)}] {user.email}."


async def cmd_toggle(state: AppState, args: list[str]) -> str:
    if len(args) != 1:
        return "Usage: /toggle <user>"
    board = state.admin_board
    user = await board.toggle_disabled(resolve_id(args[0], board.users, "user"))
    return f"{user.email} is now {'disabled' if user.disabled else 'active'}."


# ---- admin: task definitions / assigning ----


async def cmd_catalog(state: AppState, args: list[str]) -> str:
    board = state.admin_board
    await board.refresh()
    if not board.tasks:
        return "No task definitions yet."
    lines = []
    for t in board.tasks:
        lines.append(f"[{_short(t.id)}] {t.title} ({len(t.subtasks)} subtask(s))")
        for sub in t.subtasks:
            lines.append(f"      [{_short(sub.id)}] {sub.title}")
    return "\n".join(lines)


async def cmd_newtask(state: AppState, args: list[str]) -> str:
    """/newtask <title> [| description]"""
    title, _, description = " ".join(args).partition("|")
    task = await state.admin_board.create_task(title, description)
    return f"Task created [{_short(task.id)}] {task.title}."


async def cmd_subtask(state: AppState, args: list[str]) -> str:
    if len(args) < 2:
        return "Usage: /subtask <task> <title> [| description]"
    board = state.admin_board
    task_id = resolve_id(args[0], board.tasks, "task")
    title, _, description = " ".join(args[1:]).partition("|")
    sub = await board.add_subtask(task_id, title, description)
    return f"Subtask added [{_short(sub.id)}] {sub.title}."


async def cmd_assign(state: AppState, args: list[str]) -> str:
    """/assign <employee> <task[,task...]> [--routine[=daily|weekly|monthly]] [--due=YYYY-MM-DD]"""
    positional = [a for a in args if not a.startswith("--")]
    options = [a for a in args if a.startswith("--")]
    if len(positional) != 2:
        return "Usage: /assign <employee> <task[,task...]> [--routine[=weekly]] [--due=YYYY-MM-DD]"

    board = state.admin_board
    user_id = resolve_id(positional[0], board.users, "employee")
    task_ids = [resolve_id(t, board.tasks, "task") for t in positional[1].split(",") if t]

    routine = False
    frequency = Frequency.DAILY
    due = None
    for opt in options:
        key, _, value = opt.partition("=")
        if key == "--routine":
            routine = True
            if value:
                try:
                    frequency = Frequency(value)
                except ValueError as e:
                    raise ValidationError(f"Unknown frequency {value!r}.") from e
        elif key == "--due":
            due = parse_day(value)
        else:
            return f"Unknown option {key}."

    n = await board.assign(task_ids, user_id, routine=routine, due_date=due, frequency=frequency)
    if routine:
        return f"{n} {frequency.value} routine(s) created."
    return f"{n} task(s) assigned."


registry.register("help", cmd_help, "List available commands", aliases=["?"])
registry.register("login", cmd_login, "Sign in: /login <email> <password>")
registry.register("logout", cmd_logout, "Sign out")
registry.register("whoami", cmd_whoami, "Show the signed-in account")
registry.register("tasks", cmd_tasks, "Employee: today's tasks")
registry.register("note", cmd_note, "Employee: write a note / rejection reason")
registry.register("done", cmd_done, "Employee: mark a task done")
registry.register("reject", cmd_reject, "Employee: reject a task (-y to confirm)")
registry.register("audit", cmd_audit, "Admin: /audit [YYYY-MM-DD|-] [employee]")
registry.register("deficient", cmd_deficient, "Admin: flag a completed task deficient")
registry.register("delete", cmd_delete, "Admin: delete a record (-y to confirm)")
registry.register("report", cmd_report, "Admin: performance report")
registry.register("deficiencies", cmd_deficiencies, "Admin: deficiency register")
registry.register("roles", cmd_roles, "Admin: list roles")
registry.register("addrole", cmd_addrole, "Admin: create a role")
registry.register("users", cmd_users, "Admin: list accounts")
registry.register("adduser", cmd_adduser, "Admin: create an account")
registry.register("toggle", cmd_toggle, "Admin: enable/disable an account")
registry.register("catalog", cmd_catalog, "Admin: list task definitions")
registry.register("newtask", cmd_newtask, "Admin: /newtask <title> [| description]")
registry.register("subtask", cmd_subtask, "Admin: add a subtask")
registry.register("assign", cmd_assign, "Admin: assign tasks one-off or as routines")
