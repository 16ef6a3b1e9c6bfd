"""CLI package for amail - a per-project mailbox for agent roles.

This package organizes CLI commands into modules:
- project.py: init, list, use, whoami, version
- send.py: send, reply
- inbox.py: inbox, read, thread, count, check
- manage.py: mark-read, archive, delete
- watch.py: watch
- status.py: stats
- utils.py: Shared utilities and helpers
"""

import logging

import click
from click import option
from dotenv import load_dotenv

from .utils import AliasGroup, OutputMode

from .inbox import check, count, inbox, read, thread
from .manage import archive, delete, mark_read
from .project import init, list_roles, use, version, whoami
from .send import reply, send
from .status import stats
from .watch import watch


# Main group with aliases
@click.group(cls=AliasGroup, aliases={
    'i': 'inbox',
    'ls': 'list',
    'r': 'reply',
    's': 'send',
    't': 'thread',
    'w': 'watch',
})
@option('--json', 'force_json', is_flag=True, help="Output JSON (default when stdout is not a terminal)")
@option('--text', 'force_text', is_flag=True, help="Output human-readable text")
@option('-v', '--verbose', is_flag=True, help="Debug logging on stderr")
@click.pass_context
def main(ctx, force_json: bool, force_text: bool, verbose: bool):
    """Per-project mailbox for agent roles."""
    load_dotenv()
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s %(name)s %(levelname)s: %(message)s",
        )
    ctx.obj = OutputMode.detect(force_json=force_json, force_text=force_text)


main.add_command(archive)
main.add_command(check)
main.add_command(count)
main.add_command(delete)
main.add_command(inbox)
main.add_command(init)
main.add_command(list_roles)
main.add_command(mark_read)
main.add_command(read)
main.add_command(reply)
main.add_command(send)
main.add_command(stats)
main.add_command(thread)
main.add_command(use)
main.add_command(version)
main.add_command(watch)
main.add_command(whoami)


# Export for convenience
__all__ = [
    'main',
    'archive',
    'check',
    'count',
    'delete',
    'inbox',
    'init',
    'list_roles',
    'mark_read',
    'read',
    'reply',
    'send',
    'stats',
    'thread',
    'use',
    'version',
    'watch',
    'whoami',
]
