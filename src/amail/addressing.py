"""Recipient resolution for send and reply.

Turns user input ("dev,qa", "@others") into role lists. The store only ever
sees the resolved roles.
"""

from .config import AmailConfig
from .errors import RecipientError
from .storage import Message


def parse_recipients(value: str) -> list[str]:
    """Split a comma-separated recipient list, dropping blanks."""
    return [part.strip() for part in value.split(",") if part.strip()]


def dedupe(items: list[str]) -> list[str]:
    """Remove duplicates, keeping first occurrences in order."""
    return list(dict.fromkeys(items))


def filter_out(items: list[str], value: str) -> list[str]:
    return [item for item in items if item != value]


def resolve_recipients(to_arg: str, from_id: str, config: AmailConfig) -> list[str]:
    """Resolve roles and @groups to a deduplicated role list, minus the sender.

    Raises RecipientError for unknown roles or groups, or when nothing but
    the sender remains.
    """
    resolved: list[str] = []
    for part in parse_recipients(to_arg):
        if part.startswith("@"):
            members = config.resolve_group(part, from_id)
            if members is None:
                raise RecipientError(f"unknown group: {part}")
            resolved.extend(members)
        elif config.is_valid_role(part):
            resolved.append(part)
        else:
            roles = ", ".join(config.all_roles())
            raise RecipientError(f"unknown recipient: {part} (valid roles: {roles})")

    recipients = dedupe(resolved)
    if not recipients:
        raise RecipientError("no recipients resolved")
    recipients = filter_out(recipients, from_id)
    if not recipients:
        raise RecipientError("cannot send to self only")
    return recipients


def reply_recipients(original: Message, to_ids: list[str], from_id: str, reply_all: bool) -> list[str]:
    """Recipients of a reply to `original` (delivered to `to_ids`) sent by `from_id`.

    Default is the original sender only; reply_all adds every original
    recipient. The replier is always excluded.
    """
    if not reply_all:
        if original.from_id == from_id:
            raise RecipientError("cannot reply to your own message without --all")
        return [original.from_id]
    recipients = dedupe(filter_out([original.from_id, *to_ids], from_id))
    if not recipients:
        raise RecipientError("no recipients for reply")
    return recipients


def reply_subject(subject: str) -> str:
    """Prefix "RE: " unless the subject already starts with "re:"."""
    if subject.lower().startswith("re:"):
        return subject
    return f"RE: {subject}"
