"""Per-recipient state commands: mark-read, archive, delete."""

import click
from click import argument, echo, option

from ..storage import short_id

from .utils import OutputMode, find_or_fail, handle_errors, open_session, pass_output


@click.command('mark-read')
@option('-a', '--all', 'mark_all', is_flag=True, help="Mark every unread message as read")
@argument('message_id', required=False)
@pass_output
@handle_errors
def mark_read(out: OutputMode, mark_all: bool, message_id: str | None):
    """Mark messages as read without displaying them.

    \b
    Examples:
      amail mark-read abc123
      amail mark-read --all
    """
    with open_session() as session:
        store = session.store
        if mark_all:
            n = store.mark_all_read(session.me)
            if out.json:
                out.print_json({"count": n})
            else:
                echo(f"✓ Marked {n} messages as read")
            return

        if not message_id:
            raise click.UsageError("message ID required (or use --all)")
        msg = find_or_fail(session, message_id)
        store.mark_read(msg.id, session.me)

    if out.json:
        out.print_json({"id": msg.id, "status": "read"})
    else:
        echo(f"✓ Marked {short_id(msg.id)} as read")


@click.command(no_args_is_help=True)
@argument('message_id')
@pass_output
@handle_errors
def archive(out: OutputMode, message_id: str):
    """Archive a message (hidden from the inbox unless -a).

    \b
    Examples:
      amail archive abc123
    """
    with open_session() as session:
        msg = find_or_fail(session, message_id)
        session.store.archive(msg.id, session.me)

    if out.json:
        out.print_json({"id": msg.id, "status": "archived"})
    else:
        echo(f"✓ Archived {short_id(msg.id)}")


@click.command(no_args_is_help=True)
@argument('message_id')
@pass_output
@handle_errors
def delete(out: OutputMode, message_id: str):
    """Delete a message from your inbox.

    Other recipients keep their copy.

    \b
    Examples:
      amail delete abc123
    """
    with open_session() as session:
        msg = find_or_fail(session, message_id)
        session.store.delete(msg.id, session.me)

    if out.json:
        out.print_json({"id": msg.id, "deleted": True})
    else:
        echo(f"✓ Deleted {short_id(msg.id)}")
