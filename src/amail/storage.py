"""Mailbox storage using SQLite.

One database file per project, shared by every `amail` process that runs in
it: short-lived CLI invocations and a long-lived watcher. Concurrency is left
entirely to SQLite:

- WAL journaling, so readers and the writer do not block each other;
- a 5s busy timeout, so a writer that collides with another writer waits for
  the lock instead of failing immediately;
- a passive WAL checkpoint on disconnect, so many short-lived processes do not
  grow the log without bound.

Messages are immutable once sent. Per-recipient state (read, archived,
notified) lives in the `recipients` table, and deleting a message from an
inbox removes only that recipient's row.
"""

import logging
import secrets
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator

from .config import AMAIL_DIR, get_amail_root
from .errors import AmbiguousPrefixError, StoreError

logger = logging.getLogger(__name__)

MAIL_DB = "mail.db"
BUSY_TIMEOUT_MS = 5000
SHORT_ID_LEN = 8

PRIORITIES = ("low", "normal", "high", "urgent")
MESSAGE_TYPES = ("message", "request", "response", "notification")

# SQLite's default bound-parameter limit is 999 on older builds
_IN_CHUNK = 500

SCHEMA = """
    CREATE TABLE IF NOT EXISTS messages (
        id TEXT PRIMARY KEY,
        from_id TEXT NOT NULL,
        subject TEXT,
        body TEXT NOT NULL,
        priority TEXT DEFAULT 'normal',
        msg_type TEXT DEFAULT 'message',
        thread_id TEXT,
        reply_to_id TEXT,
        created_at TEXT DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY (thread_id) REFERENCES messages(id),
        FOREIGN KEY (reply_to_id) REFERENCES messages(id)
    );

    CREATE TABLE IF NOT EXISTS recipients (
        message_id TEXT NOT NULL,
        to_id TEXT NOT NULL,
        status TEXT DEFAULT 'unread',
        read_at TEXT,
        notified_at TEXT,
        PRIMARY KEY (message_id, to_id),
        FOREIGN KEY (message_id) REFERENCES messages(id) ON DELETE CASCADE
    );

    CREATE INDEX IF NOT EXISTS idx_inbox ON recipients(to_id, status);
    CREATE INDEX IF NOT EXISTS idx_thread ON messages(thread_id);
    CREATE INDEX IF NOT EXISTS idx_messages_created ON messages(created_at DESC);
"""

_MESSAGE_COLUMNS = """
    m.id, m.from_id, m.subject, m.body, m.priority, m.msg_type,
    m.thread_id, m.reply_to_id, m.created_at"""

_INBOX_COLUMNS = _MESSAGE_COLUMNS + ", r.status, r.read_at, r.notified_at"


def get_db_path(root: Path | None = None) -> Path:
    """Get path to the project's mail database."""
    root = root or get_amail_root()
    return root / AMAIL_DIR / MAIL_DB


def generate_id() -> str:
    """Random 16-hex-char message ID."""
    return secrets.token_hex(8)


def short_id(message_id: str) -> str:
    """Display form of a message ID (first 8 chars)."""
    return message_id[:SHORT_ID_LEN]


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _format_ts(dt: datetime) -> str:
    # UTC, fixed width: text order == chronological order. Naive values are local time.
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _parse_ts(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        dt = datetime.fromisoformat(value)
    except ValueError:
        return None
    return dt if dt.tzinfo else dt.astimezone(timezone.utc)


@dataclass
class Message:
    """A message as sent. Never modified after creation."""
    id: str
    from_id: str
    subject: str
    body: str
    priority: str = "normal"
    msg_type: str = "message"
    thread_id: str | None = None  # thread root; None means this may be a root
    reply_to_id: str | None = None  # immediate parent
    created_at: datetime = field(default_factory=_now)

    def thread_root(self) -> str:
        """ID of the thread this message belongs to (its own ID if it is a root)."""
        return self.thread_id or self.id


@dataclass
class InboxMessage(Message):
    """A message joined with its recipient list and one recipient's status."""
    to_ids: list[str] = field(default_factory=list)
    status: str | None = None  # None when not read through a recipient
    read_at: datetime | None = None
    notified_at: datetime | None = None


class MailStore:
    """SQLite store for messages and per-recipient state."""

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self._conn: sqlite3.Connection | None = None

    def connect(self) -> None:
        """Open the database and configure foreign keys, WAL and busy timeout."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        try:
            # Autocommit; send_message manages its own transaction
            self._conn = sqlite3.connect(
                self.path,
                timeout=BUSY_TIMEOUT_MS / 1000,
                isolation_level=None,
            )
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA foreign_keys = ON")
            self._conn.execute(f"PRAGMA busy_timeout = {BUSY_TIMEOUT_MS}")
            self._conn.execute("PRAGMA journal_mode = WAL")
        except sqlite3.Error as e:
            if self._conn:
                self._conn.close()
                self._conn = None
            raise StoreError(f"failed to open database {self.path}: {e}") from e

    def init_schema(self) -> None:
        """Create tables and indexes if absent. Safe to call on every start."""
        try:
            self.conn.executescript(SCHEMA)
        except sqlite3.Error as e:
            raise StoreError(f"failed to initialize schema: {e}") from e

    def disconnect(self) -> None:
        """Checkpoint the WAL (best effort) and close the connection."""
        if not self._conn:
            return
        try:
            # PASSIVE never waits on readers or writers
            self._conn.execute("PRAGMA wal_checkpoint(PASSIVE)")
        except sqlite3.Error as e:
            logger.debug("WAL checkpoint skipped for %s: %s", self.path, e)
        self._conn.close()
        self._conn = None

    @property
    def conn(self) -> sqlite3.Connection:
        if not self._conn:
            raise RuntimeError("Not connected")
        return self._conn

    def __enter__(self):
        self.connect()
        try:
            self.init_schema()
        except StoreError:
            self.disconnect()
            raise
        return self

    def __exit__(self, *args):
        self.disconnect()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _execute(self, action: str, sql: str, params: tuple | list = ()) -> sqlite3.Cursor:
        """Run a statement, wrapping driver errors as StoreError."""
        try:
            return self.conn.execute(sql, params)
        except sqlite3.Error as e:
            raise StoreError(f"failed to {action}: {e}") from e

    def _fetch_messages(self, action: str, sql: str, params: tuple | list = ()) -> list[InboxMessage]:
        """Run a message query and attach full recipient lists in one batch."""
        try:
            rows = self.conn.execute(sql, params).fetchall()
        except sqlite3.Error as e:
            raise StoreError(f"failed to {action}: {e}") from e
        messages = [self._row_to_message(row) for row in rows]
        self._attach_recipients(messages)
        return messages

    def _fetch_one(self, action: str, sql: str, params: tuple | list = ()) -> InboxMessage | None:
        messages = self._fetch_messages(action, sql, params)
        return messages[0] if messages else None

    def _attach_recipients(self, messages: list[InboxMessage]) -> None:
        if not messages:
            return
        recipients = self._recipients_for([m.id for m in messages])
        for msg in messages:
            msg.to_ids = recipients.get(msg.id, [])

    def _recipients_for(self, message_ids: list[str]) -> dict[str, list[str]]:
        """Map message ID -> recipient roles, in delivery order."""
        result: dict[str, list[str]] = {}
        for i in range(0, len(message_ids), _IN_CHUNK):
            chunk = message_ids[i:i + _IN_CHUNK]
            placeholders = ",".join("?" * len(chunk))
            cur = self._execute(
                "query recipients",
                f"""SELECT message_id, to_id FROM recipients
                    WHERE message_id IN ({placeholders})
                    ORDER BY rowid""",
                chunk,
            )
            for row in cur:
                result.setdefault(row["message_id"], []).append(row["to_id"])
        return result

    def _row_to_message(self, row: sqlite3.Row) -> InboxMessage:
        """Convert a database row to InboxMessage."""
        keys = row.keys()
        return InboxMessage(
            id=row["id"],
            from_id=row["from_id"],
            subject=row["subject"] or "",
            body=row["body"],
            priority=row["priority"] or "normal",
            msg_type=row["msg_type"] or "message",
            thread_id=row["thread_id"],
            reply_to_id=row["reply_to_id"],
            created_at=_parse_ts(row["created_at"]) or datetime.min.replace(tzinfo=timezone.utc),
            status=row["status"] if "status" in keys else None,
            read_at=_parse_ts(row["read_at"]) if "read_at" in keys else None,
            notified_at=_parse_ts(row["notified_at"]) if "notified_at" in keys else None,
        )

    # ------------------------------------------------------------------
    # Send
    # ------------------------------------------------------------------

    def send_message(self, msg: Message, recipients: list[str]) -> None:
        """Insert a message and one unread recipient row per destination.

        All-or-nothing: if any insert fails the whole transaction is rolled
        back, and the message is not left behind without its recipients.
        Recipients are not deduplicated here.
        """
        if not recipients:
            raise ValueError("recipients must not be empty")
        conn = self.conn
        try:
            # IMMEDIATE takes the write lock up front, under the busy timeout
            conn.execute("BEGIN IMMEDIATE")
        except sqlite3.Error as e:
            raise StoreError(f"failed to begin transaction: {e}") from e

        step = "insert message"
        try:
            conn.execute(
                """INSERT INTO messages
                   (id, from_id, subject, body, priority, msg_type, thread_id, reply_to_id, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (msg.id, msg.from_id, msg.subject, msg.body, msg.priority, msg.msg_type,
                 msg.thread_id, msg.reply_to_id, _format_ts(msg.created_at)),
            )
            for to_id in recipients:
                step = f"insert recipient {to_id}"
                conn.execute(
                    "INSERT INTO recipients (message_id, to_id, status) VALUES (?, ?, 'unread')",
                    (msg.id, to_id),
                )
            step = "commit transaction"
            conn.execute("COMMIT")
        except sqlite3.Error as e:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise StoreError(f"failed to {step}: {e}") from e
        except BaseException:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_inbox(
        self,
        to_id: str,
        include_read: bool = False,
        from_id: str | None = None,
    ) -> list[InboxMessage]:
        """Messages delivered to `to_id`, newest first.

        Only unread messages unless include_read; archived messages appear
        only with include_read. `from_id` restricts to one sender.
        """
        query = f"""SELECT {_INBOX_COLUMNS}
                    FROM messages m
                    JOIN recipients r ON m.id = r.message_id
                    WHERE r.to_id = ?"""
        params: list = [to_id]
        if not include_read:
            query += " AND r.status = 'unread'"
        if from_id:
            query += " AND m.from_id = ?"
            params.append(from_id)
        query += " ORDER BY m.created_at DESC, m.rowid DESC"
        return self._fetch_messages("query inbox", query, params)

    def get_message(self, message_id: str) -> InboxMessage | None:
        """Get a message by exact ID, without recipient status."""
        return self._fetch_one(
            "get message",
            f"SELECT {_MESSAGE_COLUMNS} FROM messages m WHERE m.id = ?",
            (message_id,),
        )

    def get_message_for_recipient(self, message_id: str, to_id: str) -> InboxMessage | None:
        """Get a message by exact ID with `to_id`'s status, if delivered to them."""
        return self._fetch_one(
            "get message",
            f"""SELECT {_INBOX_COLUMNS}
                FROM messages m
                JOIN recipients r ON m.id = r.message_id
                WHERE m.id = ? AND r.to_id = ?""",
            (message_id, to_id),
        )

    def find_message_by_prefix(self, prefix: str) -> InboxMessage | None:
        """First message (database-wide) whose ID starts with `prefix`.

        An exact ID match wins; otherwise the pick among several matches is
        arbitrary. Use find_in_inbox when the choice must be unambiguous.
        """
        return self._fetch_one(
            "find message",
            f"""SELECT {_MESSAGE_COLUMNS} FROM messages m
                WHERE substr(m.id, 1, length(?)) = ?
                ORDER BY m.id = ? DESC
                LIMIT 1""",
            (prefix, prefix, prefix),
        )

    def find_unique_by_prefix(self, prefix: str) -> InboxMessage | None:
        """Resolve an ID prefix database-wide.

        An exact ID match wins. Otherwise returns None when nothing matches
        and raises AmbiguousPrefixError when more than one message does.
        """
        exact = self.get_message(prefix)
        if exact:
            return exact
        matches = self._fetch_messages(
            "find message",
            f"""SELECT {_MESSAGE_COLUMNS} FROM messages m
                WHERE substr(m.id, 1, length(?)) = ?""",
            (prefix, prefix),
        )
        if len(matches) > 1:
            raise AmbiguousPrefixError(prefix, len(matches))
        return matches[0] if matches else None

    def find_in_inbox(self, prefix: str, to_id: str) -> InboxMessage | None:
        """Resolve an ID prefix within `to_id`'s inbox (any status).

        Returns None when nothing matches; raises AmbiguousPrefixError when
        more than one message matches.
        """
        matches = self._fetch_messages(
            "find message",
            f"""SELECT {_INBOX_COLUMNS}
                FROM messages m
                JOIN recipients r ON m.id = r.message_id
                WHERE r.to_id = ? AND substr(m.id, 1, length(?)) = ?
                ORDER BY m.created_at DESC, m.rowid DESC""",
            (to_id, prefix, prefix),
        )
        if len(matches) > 1:
            raise AmbiguousPrefixError(prefix, len(matches))
        return matches[0] if matches else None

    def get_unnotified(self, to_id: str) -> list[InboxMessage]:
        """Unread messages for `to_id` that no notification has been sent for."""
        return self._fetch_messages(
            "query unnotified",
            f"""SELECT {_INBOX_COLUMNS}
                FROM messages m
                JOIN recipients r ON m.id = r.message_id
                WHERE r.to_id = ? AND r.status = 'unread' AND r.notified_at IS NULL
                ORDER BY m.created_at DESC, m.rowid DESC""",
            (to_id,),
        )

    def get_latest_unread(self, to_id: str) -> InboxMessage | None:
        """Most recent unread message for `to_id`."""
        return self._fetch_one(
            "query latest unread",
            f"""SELECT {_INBOX_COLUMNS}
                FROM messages m
                JOIN recipients r ON m.id = r.message_id
                WHERE r.to_id = ? AND r.status = 'unread'
                ORDER BY m.created_at DESC, m.rowid DESC
                LIMIT 1""",
            (to_id,),
        )

    def get_thread(self, root_id: str) -> list[InboxMessage]:
        """Root message and all its descendants, oldest first.

        Reply depth is flattened; recipients' archive/delete state does not
        hide messages here.
        """
        return self._fetch_messages(
            "query thread",
            f"""SELECT {_MESSAGE_COLUMNS} FROM messages m
                WHERE m.id = ? OR m.thread_id = ?
                ORDER BY m.created_at ASC, m.rowid ASC""",
            (root_id, root_id),
        )

    def count_unread(self, to_id: str) -> int:
        """Count unread messages for `to_id`."""
        cur = self._execute(
            "count unread",
            "SELECT COUNT(*) FROM recipients WHERE to_id = ? AND status = 'unread'",
            (to_id,),
        )
        return cur.fetchone()[0]

    def count_all(self, to_id: str) -> int:
        """Count messages in `to_id`'s inbox regardless of status."""
        cur = self._execute(
            "count messages",
            "SELECT COUNT(*) FROM recipients WHERE to_id = ?",
            (to_id,),
        )
        return cur.fetchone()[0]

    # ------------------------------------------------------------------
    # Per-recipient state
    # ------------------------------------------------------------------

    def mark_read(self, message_id: str, to_id: str) -> bool:
        """Mark a message read for `to_id`. Idempotent. Returns True if the row exists."""
        cur = self._execute(
            "mark as read",
            """UPDATE recipients SET status = 'read', read_at = ?
               WHERE message_id = ? AND to_id = ?""",
            (_format_ts(_now()), message_id, to_id),
        )
        return cur.rowcount > 0

    def mark_all_read(self, to_id: str) -> int:
        """Mark every unread message read for `to_id`. Returns the number changed."""
        cur = self._execute(
            "mark all as read",
            """UPDATE recipients SET status = 'read', read_at = ?
               WHERE to_id = ? AND status = 'unread'""",
            (_format_ts(_now()), to_id),
        )
        return cur.rowcount

    def archive(self, message_id: str, to_id: str) -> bool:
        """Archive a message for `to_id`. Returns True if the row exists."""
        cur = self._execute(
            "archive",
            """UPDATE recipients SET status = 'archived'
               WHERE message_id = ? AND to_id = ?""",
            (message_id, to_id),
        )
        return cur.rowcount > 0

    def delete(self, message_id: str, to_id: str) -> bool:
        """Remove a message from `to_id`'s inbox only. Returns True if it was there."""
        cur = self._execute(
            "delete",
            "DELETE FROM recipients WHERE message_id = ? AND to_id = ?",
            (message_id, to_id),
        )
        return cur.rowcount > 0

    def mark_notified(self, message_id: str, to_id: str) -> bool:
        """Record that a notification was dispatched for this message and recipient."""
        cur = self._execute(
            "mark as notified",
            """UPDATE recipients SET notified_at = ?
               WHERE message_id = ? AND to_id = ?""",
            (_format_ts(_now()), message_id, to_id),
        )
        return cur.rowcount > 0


@contextmanager
def open_project(root: Path | None = None) -> Iterator[tuple[MailStore, Path]]:
    """Open the current project's store (schema initialised). Yields (store, root)."""
    root = root or get_amail_root()
    with MailStore(get_db_path(root)) as store:
        yield store, root
