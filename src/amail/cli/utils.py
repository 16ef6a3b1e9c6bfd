"""Shared CLI utilities and helpers."""

import json
import sys
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from functools import wraps
from pathlib import Path
from typing import Iterator

import click
import humanize
from click import echo

from ..config import AmailConfig, load_config
from ..errors import (
    ConfigError,
    IdentityError,
    MessageNotFoundError,
    RecipientError,
    StoreError,
)
from ..identity import must_resolve
from ..storage import InboxMessage, MailStore, open_project, short_id


def err(*args, **kwargs):
    """Print to stderr."""
    print(*args, file=sys.stderr, **kwargs)


# =============================================================================
# Output mode
# =============================================================================


@dataclass(frozen=True)
class OutputMode:
    """How command results are printed: JSON envelope or human-readable text.

    Decided once per invocation in `main` and handed to commands through the
    click context.
    """
    json: bool = False

    @classmethod
    def detect(cls, force_json: bool = False, force_text: bool = False) -> "OutputMode":
        """--json beats --text; otherwise JSON when stdout is not a terminal."""
        if force_json:
            return cls(json=True)
        if force_text:
            return cls(json=False)
        return cls(json=not sys.stdout.isatty())

    def print_json(self, data) -> None:
        """Print data in the {"success": true, "data": ...} envelope."""
        echo(json.dumps({"success": True, "data": data}, indent=2, ensure_ascii=False))

    def print_json_error(self, message: str, code: str = "") -> None:
        error = {"message": message}
        if code:
            error["code"] = code
        echo(json.dumps({"success": False, "error": error}, indent=2, ensure_ascii=False))


pass_output = click.make_pass_decorator(OutputMode, ensure=True)


def fail(out: OutputMode | None, message: str, code: str = "") -> None:
    """Report an error in the current output mode and exit 1."""
    if out and out.json:
        out.print_json_error(message, code)
    else:
        err(f"Error: {message}")
    sys.exit(1)


def handle_errors(f):
    """Decorator that turns amail errors into a reported failure (exit 1)."""
    @wraps(f)
    def wrapper(*args, **kwargs):
        try:
            return f(*args, **kwargs)
        except FileNotFoundError as e:
            fail(_current_output(), str(e), "not_initialized")
        except (StoreError, ConfigError, IdentityError, RecipientError, MessageNotFoundError) as e:
            fail(_current_output(), str(e), e.code)
    return wrapper


def _current_output() -> OutputMode | None:
    ctx = click.get_current_context(silent=True)
    return ctx.find_object(OutputMode) if ctx else None


# =============================================================================
# Project / identity session
# =============================================================================


@dataclass
class Session:
    """An open project store plus the config and identity of this invocation."""
    store: MailStore
    root: Path
    config: AmailConfig
    me: str


@contextmanager
def open_session() -> Iterator[Session]:
    """Open the project store, load config and resolve identity."""
    with open_project() as (store, root):
        config = load_config(root)
        identity = must_resolve(config)
        yield Session(store, root, config, identity.identity)


def find_or_fail(session: Session, prefix: str) -> InboxMessage:
    """Resolve an ID prefix in the caller's inbox, raising if nothing matches."""
    msg = session.store.find_in_inbox(prefix, session.me)
    if msg is None:
        raise MessageNotFoundError(prefix)
    return msg


# =============================================================================
# Formatting
# =============================================================================


def truncate(s: str, max_len: int) -> str:
    """Truncate to max_len characters, ending in "..." when cut."""
    if len(s) <= max_len:
        return s
    if max_len <= 3:
        return s[:max_len]
    return s[:max_len - 3] + "..."


def time_ago(dt: datetime) -> str:
    return humanize.naturaltime(datetime.now(timezone.utc) - dt)


def local_time(dt: datetime) -> datetime:
    """Stored (UTC) timestamp in the local timezone, for display."""
    return dt.astimezone()


def format_priority(priority: str) -> str:
    if priority == "urgent":
        return "🚨 urgent"
    if priority == "high":
        return "! high"
    return priority


def message_json(msg: InboxMessage, body: bool = False) -> dict:
    """JSON-ready dict for a message."""
    data = {
        "id": msg.id,
        "short_id": short_id(msg.id),
        "from": msg.from_id,
        "to": msg.to_ids,
        "subject": msg.subject,
        "priority": msg.priority,
        "type": msg.msg_type,
        "created_at": msg.created_at.isoformat(timespec="seconds"),
    }
    if msg.status is not None:
        data["status"] = msg.status
    if msg.thread_id:
        data["thread_id"] = msg.thread_id
    if msg.reply_to_id:
        data["reply_to_id"] = msg.reply_to_id
    if body:
        data["body"] = msg.body
    return data


# =============================================================================
# Click helpers
# =============================================================================


def validate_choice(choices: tuple[str, ...], label: str):
    """Option callback accepting only `choices`, with a readable error."""
    def callback(ctx, param, value):
        if value not in choices:
            raise click.BadParameter(
                f"invalid {label}: {value} (must be {', '.join(choices[:-1])}, or {choices[-1]})"
            )
        return value
    return callback


class AliasGroup(click.Group):
    """Click Group that supports command aliases."""

    def __init__(self, *args, aliases: dict[str, str] | None = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.aliases = aliases or {}
        self._cmd_aliases: dict[str, list[str]] = {}
        for alias, cmd in self.aliases.items():
            self._cmd_aliases.setdefault(cmd, []).append(alias)

    def get_command(self, ctx, cmd_name):
        return super().get_command(ctx, self.aliases.get(cmd_name, cmd_name))

    def resolve_command(self, ctx, args):
        _, cmd_name, args = super().resolve_command(ctx, args)
        return _, self.aliases.get(cmd_name, cmd_name), args

    def format_commands(self, ctx, formatter):
        """List commands with their aliases, e.g. "send (s)"."""
        rows = []
        for name in self.list_commands(ctx):
            cmd = self.get_command(ctx, name)
            if cmd is None or cmd.hidden:
                continue
            aliases = self._cmd_aliases.get(name, [])
            label = f"{name} ({', '.join(sorted(aliases))})" if aliases else name
            rows.append((label, cmd.get_short_help_str(limit=formatter.width)))
        if rows:
            with formatter.section("Commands"):
                formatter.write_dl(rows)
