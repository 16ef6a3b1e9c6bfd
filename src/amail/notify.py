"""Shell-command notifications for new messages.

Command templates use `{from}`-style placeholders. Placeholders are replaced
by quoted shell variable references and the values travel in the child's
environment, so message text is never spliced into the command string.
"""

import logging
import os
import subprocess
from dataclasses import dataclass
from datetime import datetime

from .storage import InboxMessage

logger = logging.getLogger(__name__)

BODY_PREVIEW_LEN = 100

TEMPLATE_VARS = {
    "{id}": '"$AMAIL_ID"',
    "{from}": '"$AMAIL_FROM"',
    "{to}": '"$AMAIL_TO"',
    "{subject}": '"$AMAIL_SUBJECT"',
    "{body}": '"$AMAIL_BODY"',
    "{priority}": '"$AMAIL_PRIORITY"',
    "{type}": '"$AMAIL_TYPE"',
    "{timestamp}": '"$AMAIL_TIMESTAMP"',
}


@dataclass
class Notification:
    """Flat snapshot of a message for notification commands."""
    id: str
    from_id: str
    to: str  # comma-joined recipients
    subject: str
    body: str
    priority: str
    msg_type: str
    timestamp: datetime

    @classmethod
    def from_inbox(cls, msg: InboxMessage) -> "Notification":
        return cls(
            id=msg.id,
            from_id=msg.from_id,
            to=",".join(msg.to_ids),
            subject=msg.subject,
            body=msg.body,
            priority=msg.priority,
            msg_type=msg.msg_type,
            timestamp=msg.created_at,
        )

    def env(self) -> dict[str, str]:
        """Environment variables referenced by substituted templates."""
        return {
            "AMAIL_ID": self.id,
            "AMAIL_FROM": self.from_id,
            "AMAIL_TO": self.to,
            "AMAIL_SUBJECT": self.subject,
            "AMAIL_BODY": truncate_for_notification(self.body, BODY_PREVIEW_LEN),
            "AMAIL_PRIORITY": self.priority,
            "AMAIL_TYPE": self.msg_type,
            "AMAIL_TIMESTAMP": self.timestamp.astimezone().strftime("%H:%M:%S"),
        }


def substitute_template_vars(template: str) -> str:
    """Replace {var} placeholders with quoted shell variable references."""
    result = template
    for key, value in TEMPLATE_VARS.items():
        result = result.replace(key, value)
    return result


def truncate_for_notification(s: str, max_len: int) -> str:
    """Flatten to one line and truncate to max_len characters."""
    s = s.replace("\n", " ").replace("\r", "")
    if len(s) <= max_len:
        return s
    if max_len <= 3:
        return s[:max_len]
    return s[:max_len - 3] + "..."


def execute(command: str, notification: Notification) -> None:
    """Run one notification command via `sh -c`, discarding its output.

    Raises CalledProcessError on non-zero exit, OSError if sh cannot start.
    """
    env = {**os.environ, **notification.env()}
    subprocess.run(
        ["sh", "-c", substitute_template_vars(command)],
        env=env,
        stdout=subprocess.DEVNULL,
        stderr=subprocess.DEVNULL,
        check=True,
    )


def execute_all(commands: list[str], notification: Notification) -> list[Exception]:
    """Run every command; returns the failures instead of raising."""
    errors: list[Exception] = []
    for command in commands:
        try:
            execute(command, notification)
        except (OSError, subprocess.SubprocessError) as e:
            logger.warning("Notification command failed (%s): %s", command, e)
            errors.append(e)
    return errors
