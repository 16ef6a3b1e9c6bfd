"""Send and reply commands."""

import click
from click import argument, echo, option

from ..addressing import reply_recipients, reply_subject, resolve_recipients
from ..errors import MessageNotFoundError
from ..storage import MESSAGE_TYPES, PRIORITIES, Message, generate_id, short_id

from .utils import OutputMode, handle_errors, open_session, pass_output, validate_choice

priority_option = option(
    '-p', '--priority', default="normal",
    callback=validate_choice(PRIORITIES, "priority"),
    help="Priority: low, normal, high, urgent",
)


def type_option(default: str):
    return option(
        '-t', '--type', 'msg_type', default=default,
        callback=validate_choice(MESSAGE_TYPES, "type"),
        help="Type: message, request, response, notification",
    )


@click.command(no_args_is_help=True)
@priority_option
@type_option("message")
@argument('to')
@argument('subject')
@argument('body')
@pass_output
@handle_errors
def send(out: OutputMode, priority: str, msg_type: str, to: str, subject: str, body: str):
    """Send a message.

    \b
    TO is a comma-separated list of roles and groups:
      dev             single role
      dev,qa,pm       several roles
      @all @agents @others, or custom groups from config

    \b
    Examples:
      amail send dev "API ready" "GET /users endpoint at routes/users.ts:45"
      amail send dev,qa "Ready for review" "Feature complete"
      amail send @all "Announcement" "Deploy at 3pm"
      amail send dev -p urgent "Bug found" "Production issue"
      amail send pm -t request "Need details" "Please clarify requirements"
    """
    with open_session() as session:
        recipients = resolve_recipients(to, session.me, session.config)
        msg = Message(
            id=generate_id(),
            from_id=session.me,
            subject=subject,
            body=body,
            priority=priority,
            msg_type=msg_type,
        )
        session.store.send_message(msg, recipients)

    if out.json:
        out.print_json({"id": msg.id, "short_id": short_id(msg.id), "to": recipients})
    else:
        echo(f"✓ Sent {msg.id} to: {', '.join(recipients)}")


@click.command(no_args_is_help=True)
@option('-a', '--all', 'reply_all', is_flag=True, help="Reply to sender + all recipients")
@priority_option
@type_option("response")
@argument('message_id')
@argument('body')
@pass_output
@handle_errors
def reply(out: OutputMode, reply_all: bool, priority: str, msg_type: str, message_id: str, body: str):
    """Reply to a message.

    By default replies only to the sender. With --all, replies to the sender
    and every original recipient, minus yourself.

    \b
    Examples:
      amail reply abc123 "Got it, working on it"
      amail reply abc123 --all "Acknowledged by all"
      amail reply abc123 -p high "Urgent response"
    """
    with open_session() as session:
        store = session.store
        original = store.find_in_inbox(message_id, session.me)
        if original is None:
            # Not in our inbox; maybe one we sent. Exact ID only.
            original = store.get_message(message_id)
        if original is None:
            raise MessageNotFoundError(message_id)

        recipients = reply_recipients(original, original.to_ids, session.me, reply_all)
        thread_id = original.thread_root()
        msg = Message(
            id=generate_id(),
            from_id=session.me,
            subject=reply_subject(original.subject),
            body=body,
            priority=priority,
            msg_type=msg_type,
            thread_id=thread_id,
            reply_to_id=original.id,
        )
        store.send_message(msg, recipients)

    if out.json:
        out.print_json({
            "id": msg.id,
            "short_id": short_id(msg.id),
            "to": recipients,
            "thread_id": thread_id,
            "reply_to_id": original.id,
        })
    else:
        echo(f"✓ Sent {short_id(msg.id)} to: {', '.join(recipients)} (thread: {short_id(thread_id)})")
