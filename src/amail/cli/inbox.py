"""Reading commands: inbox, read, thread, count, check."""

import logging

import click
from click import argument, echo, option
from rich.console import Console
from rich.table import Table

from ..config import load_config
from ..errors import ConfigError, MessageNotFoundError, StoreError
from ..identity import resolve
from ..storage import InboxMessage, open_project, short_id
from ..watch import Watcher

from .utils import (
    OutputMode,
    err,
    find_or_fail,
    format_priority,
    handle_errors,
    local_time,
    message_json,
    open_session,
    pass_output,
    time_ago,
    truncate,
)

logger = logging.getLogger(__name__)


def display_message(msg: InboxMessage) -> None:
    """Print a message with its headers."""
    rule = "-" * 60
    echo(rule)
    echo(f"ID:       {msg.id}")
    echo(f"From:     {msg.from_id}")
    echo(f"To:       {', '.join(msg.to_ids)}")
    echo(f"Subject:  {msg.subject}")
    echo(f"Priority: {msg.priority}")
    echo(f"Type:     {msg.msg_type}")
    echo(f"Time:     {local_time(msg.created_at):%Y-%m-%d %H:%M:%S} ({time_ago(msg.created_at)})")
    if msg.thread_id:
        echo(f"Thread:   {msg.thread_id}")
    echo(rule)
    echo()
    echo(msg.body)
    echo()


@click.command()
@option('-a', '--all', 'show_all', is_flag=True, help="Show all messages (including read and archived)")
@option('-f', '--from', 'from_id', help="Filter by sender")
@pass_output
@handle_errors
def inbox(out: OutputMode, show_all: bool, from_id: str | None):
    """List messages in your inbox.

    Shows unread messages unless -a is given.

    \b
    Examples:
      amail inbox
      amail inbox -a         # Include read and archived
      amail inbox --from dev # Filter by sender
    """
    with open_session() as session:
        messages = session.store.get_inbox(session.me, include_read=show_all, from_id=from_id)

    if out.json:
        out.print_json({
            "messages": [message_json(m) for m in messages],
            "count": len(messages),
        })
        return

    if not messages:
        echo("No messages." if show_all else "No unread messages.")
        return

    table = Table(box=None, header_style="bold")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("FROM")
    table.add_column("SUBJECT")
    table.add_column("TO")
    table.add_column("PRIORITY")
    table.add_column("TIME", style="dim")
    for m in messages:
        marker = "*" if m.status == "unread" else ""
        table.add_row(
            f"{marker}{short_id(m.id)}",
            m.from_id,
            truncate(m.subject or "(no subject)", 30),
            truncate(",".join(m.to_ids), 20),
            format_priority(m.priority),
            time_ago(m.created_at),
        )
    Console().print(table)


def report_notification_errors(msg: InboxMessage, errors: list[Exception]) -> None:
    for e in errors:
        err(f"Notification error ({short_id(msg.id)}): {e}")


@click.command()
@option('-l', '--latest', is_flag=True, help="Read the most recent unread message")
@argument('message_id', required=False)
@pass_output
@handle_errors
def read(out: OutputMode, latest: bool, message_id: str | None):
    """Read a message and mark it as read.

    \b
    Examples:
      amail read abc123
      amail read --latest
    """
    with open_session() as session:
        store = session.store
        if latest:
            msg = store.get_latest_unread(session.me)
            if msg is None:
                if out.json:
                    out.print_json({"message": None})
                else:
                    echo("No unread messages.")
                return
        elif message_id:
            msg = find_or_fail(session, message_id)
        else:
            raise click.UsageError("message ID required (or use --latest)")

        if msg.status == "unread":
            store.mark_read(msg.id, session.me)
            msg.status = "read"

    if out.json:
        out.print_json({"message": message_json(msg, body=True)})
    else:
        display_message(msg)


@click.command(no_args_is_help=True)
@argument('message_id')
@pass_output
@handle_errors
def thread(out: OutputMode, message_id: str):
    """Show every message in a thread, oldest first.

    Any message ID (or unique prefix) in the thread works.

    \b
    Examples:
      amail thread abc123
    """
    with open_project() as (store, _):
        msg = store.find_unique_by_prefix(message_id)
        if msg is None:
            raise MessageNotFoundError(message_id)
        messages = store.get_thread(msg.thread_root())

    if out.json:
        out.print_json({
            "thread_id": msg.thread_root(),
            "messages": [message_json(m, body=True) for m in messages],
            "count": len(messages),
        })
        return

    if not messages:
        echo("No messages in thread.")
        return

    subject = messages[0].subject or "(no subject)"
    console = Console()
    console.print(f"[bold]Thread:[/] {subject} ({len(messages)} messages)", highlight=False)
    console.print()

    table = Table(box=None, header_style="bold")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("FROM")
    table.add_column("TO")
    table.add_column("TIME", style="dim")
    for m in messages:
        table.add_row(short_id(m.id), m.from_id, truncate(",".join(m.to_ids), 25), f"{local_time(m.created_at):%H:%M:%S}")
    console.print(table)

    echo()
    echo("Messages:")
    echo()
    for i, m in enumerate(messages):
        if i:
            echo("-" * 40)
        echo(f"[{short_id(m.id)}] {m.from_id} → {','.join(m.to_ids)} ({local_time(m.created_at):%H:%M})")
        echo()
        echo(m.body)
        echo()


@click.command()
@pass_output
def count(out: OutputMode):
    """Print the number of unread messages.

    Prints 0 outside a project or without an identity, so it is safe in
    status bars.

    \b
    Examples:
      amail count
      # tmux status bar: #(amail count)
    """
    n = 0
    try:
        with open_project() as (store, root):
            res = resolve(load_config(root))
            if res:
                n = store.count_unread(res.identity)
    except (FileNotFoundError, ConfigError, StoreError) as e:
        logger.debug("count unavailable: %s", e)

    if out.json:
        out.print_json({"count": n})
    else:
        echo(n)


@click.command()
@option('-n', '--notify', is_flag=True, help="Run notification commands for not-yet-notified messages")
@pass_output
@handle_errors
def check(out: OutputMode, notify: bool):
    """One-shot check for unread messages, optionally notifying.

    With --notify, runs the configured commands for each unread message
    that has not been notified yet (the same bookkeeping as `amail watch`).

    \b
    Examples:
      amail check
      amail check --notify   # e.g. from cron
    """
    notified: list[InboxMessage] = []
    with open_session() as session:
        store = session.store
        messages = store.get_inbox(session.me)
        if notify:
            watcher = Watcher(store, session.config, session.me, on_notify=report_notification_errors)
            notified = list(reversed(watcher.poll_once()))

    if out.json:
        data = {
            "messages": [message_json(m) for m in messages],
            "count": len(messages),
        }
        if notify:
            data["notified"] = [m.id for m in notified]
        out.print_json(data)
        return

    if not messages:
        echo("No unread messages.")
        return

    echo(f"{len(messages)} unread message(s)")
    echo()
    if notify:
        for msg in notified:
            echo(f"Notified: [{short_id(msg.id)}] {msg.from_id} - {msg.subject}")
        if not notified:
            echo("Nothing new to notify.")
    else:
        for msg in messages:
            echo(f"  [{short_id(msg.id)}] {msg.from_id}: {msg.subject} ({time_ago(msg.created_at)})")
        echo()
        echo("Use --notify to trigger notifications")
