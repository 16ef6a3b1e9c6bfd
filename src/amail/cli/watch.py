"""Watch command: poll the inbox and run notification commands."""

import json

import click
from click import echo, option

from ..storage import InboxMessage, short_id
from ..watch import Watcher, effective_interval

from .utils import OutputMode, err, handle_errors, local_time, open_session, pass_output


@click.command()
@option('-i', '--interval', type=int, help="Polling interval in seconds (default: from config, else 2)")
@pass_output
@handle_errors
def watch(out: OutputMode, interval: int | None):
    """Watch your inbox and run notification commands for new messages.

    Runs until interrupted (Ctrl+C or SIGTERM). Messages already notified,
    by this or an earlier watcher or `amail check --notify`, are skipped.

    \b
    Examples:
      amail watch
      amail watch --interval 5
    """
    with open_session() as session:
        interval = effective_interval(interval, session.config)

        def on_notify(msg: InboxMessage, errors: list[Exception]):
            if out.json:
                # One object per line, so the stream can be consumed incrementally
                echo(json.dumps({
                    "id": msg.id,
                    "from": msg.from_id,
                    "subject": msg.subject,
                    "priority": msg.priority,
                    "errors": [str(e) for e in errors],
                }, ensure_ascii=False))
            else:
                echo(f"[{local_time(msg.created_at):%H:%M:%S}] New message from {msg.from_id}: {msg.subject}")
                for e in errors:
                    err(f"Notification error ({short_id(msg.id)}): {e}")

        watcher = Watcher(session.store, session.config, session.me, interval, on_notify=on_notify)
        watcher.install_signal_handlers()

        if not out.json:
            echo(f"Watching inbox for {session.me} (interval: {interval}s)")
            echo("Press Ctrl+C to stop")
            echo()

        watcher.run(on_error=lambda e: err(f"Error checking inbox: {e}"))

    if not out.json:
        echo()
        echo("Stopping watch...")
