"""Tests for the SQLite mail store."""

from datetime import datetime, timedelta, timezone

import pytest

from amail.errors import AmbiguousPrefixError, StoreError
from amail.storage import MailStore, Message, generate_id, short_id


@pytest.fixture
def store(tmp_path):
    with MailStore(tmp_path / ".amail" / "mail.db") as s:
        yield s


def msg(id, from_id="pm", subject="Hello", body="Body", **kwargs) -> Message:
    return Message(id=id, from_id=from_id, subject=subject, body=body, **kwargs)


class TestIds:
    def test_generate_id(self):
        ids = {generate_id() for _ in range(100)}
        assert len(ids) == 100
        for i in ids:
            assert len(i) == 16
            int(i, 16)

    def test_short_id(self):
        assert short_id("0123456789abcdef") == "01234567"
        assert short_id("abc") == "abc"


class TestConnection:
    def test_pragmas(self, store):
        assert store.conn.execute("PRAGMA journal_mode").fetchone()[0] == "wal"
        assert store.conn.execute("PRAGMA busy_timeout").fetchone()[0] == 5000
        assert store.conn.execute("PRAGMA foreign_keys").fetchone()[0] == 1

    def test_not_connected(self, tmp_path):
        s = MailStore(tmp_path / "mail.db")
        with pytest.raises(RuntimeError, match="Not connected"):
            s.get_inbox("dev")

    def test_disconnect_twice(self, tmp_path):
        s = MailStore(tmp_path / "mail.db")
        s.connect()
        s.init_schema()
        s.disconnect()
        s.disconnect()

    def test_init_schema_idempotent(self, store):
        store.init_schema()
        store.init_schema()

    def test_reopen_keeps_messages(self, tmp_path):
        path = tmp_path / "mail.db"
        with MailStore(path) as s:
            s.send_message(msg("m1"), ["dev"])
        with MailStore(path) as s:
            assert [m.id for m in s.get_inbox("dev")] == ["m1"]


class TestSend:
    def test_send_and_inbox(self, store):
        store.send_message(msg("m1", subject="API ready"), ["dev", "qa"])

        inbox = store.get_inbox("dev")
        assert len(inbox) == 1
        m = inbox[0]
        assert m.id == "m1"
        assert m.from_id == "pm"
        assert m.subject == "API ready"
        assert m.to_ids == ["dev", "qa"]
        assert m.status == "unread"
        assert m.read_at is None
        assert m.notified_at is None

        assert len(store.get_inbox("qa")) == 1
        assert store.get_inbox("pm") == []

    def test_empty_recipients(self, store):
        with pytest.raises(ValueError):
            store.send_message(msg("m1"), [])
        assert store.get_message("m1") is None

    def test_duplicate_recipient_rolls_back(self, store):
        with pytest.raises(StoreError, match="insert recipient dev"):
            store.send_message(msg("m1"), ["dev", "qa", "dev"])
        assert store.get_message("m1") is None
        assert store.count_all("dev") == 0
        assert store.count_all("qa") == 0
        assert not store.conn.in_transaction

    def test_duplicate_id_rolls_back(self, store):
        store.send_message(msg("m1"), ["dev"])
        with pytest.raises(StoreError):
            store.send_message(msg("m1", subject="Other"), ["qa"])
        assert store.get_message("m1").subject == "Hello"
        assert store.count_all("qa") == 0

    def test_unknown_thread_is_integrity_error(self, store):
        with pytest.raises(StoreError):
            store.send_message(msg("m2", thread_id="nope"), ["dev"])
        assert store.get_message("m2") is None

    def test_recipient_order_preserved(self, store):
        store.send_message(msg("m1"), ["qa", "dev", "pm"])
        assert store.get_message("m1").to_ids == ["qa", "dev", "pm"]


class TestInbox:
    def test_newest_first(self, store):
        now = datetime.now()
        store.send_message(msg("old", created_at=now - timedelta(minutes=5)), ["dev"])
        store.send_message(msg("new", created_at=now), ["dev"])
        assert [m.id for m in store.get_inbox("dev")] == ["new", "old"]

    def test_same_timestamp_uses_insertion_order(self, store):
        now = datetime.now()
        store.send_message(msg("a", created_at=now), ["dev"])
        store.send_message(msg("b", created_at=now), ["dev"])
        assert [m.id for m in store.get_inbox("dev")] == ["b", "a"]

    def test_order_across_dst_fall_back(self, store):
        # 01:30 EDT happens before 01:10 EST on the night clocks go back
        store.send_message(msg("a", created_at=datetime(2024, 11, 3, 1, 30, tzinfo=timezone(timedelta(hours=-4)))), ["dev"])
        store.send_message(msg("b", created_at=datetime(2024, 11, 3, 1, 10, tzinfo=timezone(timedelta(hours=-5)))), ["dev"])
        assert [m.id for m in store.get_inbox("dev")] == ["b", "a"]

    def test_timestamps_come_back_in_utc(self, store):
        sent = datetime(2024, 6, 1, 12, 0, tzinfo=timezone(timedelta(hours=2)))
        store.send_message(msg("m1", created_at=sent), ["dev"])
        got = store.get_message("m1").created_at
        assert got.utcoffset() == timedelta(0)
        assert got == sent

    def test_include_read(self, store):
        store.send_message(msg("m1"), ["dev"])
        store.send_message(msg("m2"), ["dev"])
        store.send_message(msg("m3"), ["dev"])
        store.mark_read("m1", "dev")
        store.archive("m2", "dev")

        assert [m.id for m in store.get_inbox("dev")] == ["m3"]
        statuses = {m.id: m.status for m in store.get_inbox("dev", include_read=True)}
        assert statuses == {"m1": "read", "m2": "archived", "m3": "unread"}

    def test_from_filter(self, store):
        store.send_message(msg("m1", from_id="pm"), ["dev"])
        store.send_message(msg("m2", from_id="qa"), ["dev"])
        assert [m.id for m in store.get_inbox("dev", from_id="qa")] == ["m2"]

    def test_many_messages_attach_recipients(self, store):
        for i in range(600):
            store.send_message(msg(f"m{i:04d}"), ["dev", "qa"])
        inbox = store.get_inbox("dev")
        assert len(inbox) == 600
        assert all(m.to_ids == ["dev", "qa"] for m in inbox)


class TestLookup:
    def test_get_message(self, store):
        store.send_message(msg("m1"), ["dev"])
        m = store.get_message("m1")
        assert m.id == "m1"
        assert m.status is None
        assert m.to_ids == ["dev"]
        assert store.get_message("missing") is None

    def test_get_message_for_recipient(self, store):
        store.send_message(msg("m1"), ["dev"])
        assert store.get_message_for_recipient("m1", "dev").status == "unread"
        assert store.get_message_for_recipient("m1", "qa") is None

    def test_find_message_by_prefix(self, store):
        store.send_message(msg("abc123"), ["dev"])
        store.send_message(msg("abc"), ["qa"])
        assert store.find_message_by_prefix("abc").id == "abc"
        assert store.find_message_by_prefix("abc1").id == "abc123"
        assert store.find_message_by_prefix("zzz") is None

    def test_find_unique_by_prefix(self, store):
        store.send_message(msg("abcdef0000000001"), ["dev"])
        store.send_message(msg("abcdef0000000002"), ["qa"])
        store.send_message(msg("123456"), ["pm"])
        assert store.find_unique_by_prefix("123").id == "123456"
        assert store.find_unique_by_prefix("abcdef0000000002").id == "abcdef0000000002"
        assert store.find_unique_by_prefix("zzz") is None
        with pytest.raises(AmbiguousPrefixError) as exc:
            store.find_unique_by_prefix("abcdef")
        assert exc.value.count == 2

    def test_find_in_inbox_unique(self, store):
        store.send_message(msg("abcdef0000000001"), ["dev"])
        store.send_message(msg("123456"), ["dev"])
        assert store.find_in_inbox("abc", "dev").id == "abcdef0000000001"
        assert store.find_in_inbox("abc", "qa") is None

    def test_find_in_inbox_ambiguous(self, store):
        store.send_message(msg("abcdef0000000001"), ["dev"])
        store.send_message(msg("abcdef0000000002"), ["dev"])
        with pytest.raises(AmbiguousPrefixError) as exc:
            store.find_in_inbox("abcdef", "dev")
        assert exc.value.count == 2
        assert exc.value.prefix == "abcdef"
        assert "ambiguous ID prefix: abcdef matches 2 messages" in str(exc.value)
        assert store.find_in_inbox("abcdef0000000002", "dev").id == "abcdef0000000002"

    def test_find_in_inbox_scoped(self, store):
        store.send_message(msg("abcdef0000000001"), ["dev"])
        store.send_message(msg("abcdef0000000002"), ["qa"])
        assert store.find_in_inbox("abcdef", "dev").id == "abcdef0000000001"

    def test_find_in_inbox_includes_read(self, store):
        store.send_message(msg("m1"), ["dev"])
        store.archive("m1", "dev")
        assert store.find_in_inbox("m1", "dev").status == "archived"

    def test_prefix_is_literal(self, store):
        store.send_message(msg("a_c"), ["dev"])
        store.send_message(msg("abc"), ["dev"])
        assert store.find_in_inbox("a_", "dev").id == "a_c"
        assert store.find_in_inbox("a%", "dev") is None


class TestRecipientState:
    def test_mark_read_idempotent(self, store):
        store.send_message(msg("m1"), ["dev"])
        assert store.mark_read("m1", "dev")
        first = store.get_message_for_recipient("m1", "dev")
        assert first.status == "read"
        assert first.read_at is not None
        assert store.mark_read("m1", "dev")
        assert store.get_message_for_recipient("m1", "dev").status == "read"
        assert store.count_unread("dev") == 0

    def test_mark_read_missing(self, store):
        assert not store.mark_read("missing", "dev")

    def test_mark_read_per_recipient(self, store):
        store.send_message(msg("m1"), ["dev", "qa"])
        store.mark_read("m1", "dev")
        assert store.count_unread("dev") == 0
        assert store.count_unread("qa") == 1

    def test_mark_all_read(self, store):
        for i in range(3):
            store.send_message(msg(f"m{i}"), ["dev"])
        store.send_message(msg("other"), ["qa"])
        store.mark_read("m0", "dev")
        assert store.mark_all_read("dev") == 2
        assert store.mark_all_read("dev") == 0
        assert store.count_unread("dev") == 0
        assert store.count_unread("qa") == 1

    def test_archive(self, store):
        store.send_message(msg("m1"), ["dev"])
        assert store.archive("m1", "dev")
        assert store.get_inbox("dev") == []
        assert store.count_unread("dev") == 0
        assert store.count_all("dev") == 1
        assert not store.archive("m1", "qa")

    def test_delete_isolated_per_recipient(self, store):
        store.send_message(msg("m1"), ["dev", "qa"])
        assert store.delete("m1", "dev")
        assert store.get_inbox("dev", include_read=True) == []
        assert store.get_message_for_recipient("m1", "dev") is None
        assert [m.id for m in store.get_inbox("qa")] == ["m1"]
        assert store.get_message("m1") is not None
        assert not store.delete("m1", "dev")

    def test_counts_match_inbox(self, store):
        for i in range(5):
            store.send_message(msg(f"m{i}"), ["dev"])
        store.mark_read("m1", "dev")
        store.archive("m2", "dev")
        store.delete("m3", "dev")
        assert store.count_unread("dev") == len(store.get_inbox("dev")) == 2
        assert store.count_all("dev") == len(store.get_inbox("dev", include_read=True)) == 4
        assert store.count_unread("nobody") == 0

    def test_latest_unread(self, store):
        now = datetime.now()
        store.send_message(msg("old", created_at=now - timedelta(seconds=10)), ["dev"])
        store.send_message(msg("new", created_at=now), ["dev"])
        assert store.get_latest_unread("dev").id == "new"
        store.mark_read("new", "dev")
        assert store.get_latest_unread("dev").id == "old"
        store.mark_read("old", "dev")
        assert store.get_latest_unread("dev") is None

    def test_unnotified(self, store):
        store.send_message(msg("m1"), ["dev"])
        store.send_message(msg("m2"), ["dev"])
        store.send_message(msg("m3"), ["dev"])
        store.mark_read("m3", "dev")
        assert {m.id for m in store.get_unnotified("dev")} == {"m1", "m2"}

        assert store.mark_notified("m1", "dev")
        remaining = store.get_unnotified("dev")
        assert [m.id for m in remaining] == ["m2"]
        assert store.get_message_for_recipient("m1", "dev").notified_at is not None
        assert store.get_message_for_recipient("m1", "dev").status == "unread"
        assert not store.mark_notified("missing", "dev")


class TestThread:
    def test_thread_order(self, store):
        now = datetime.now()
        store.send_message(msg("root", created_at=now), ["dev"])
        store.send_message(
            msg("r1", from_id="dev", created_at=now + timedelta(seconds=1),
                thread_id="root", reply_to_id="root"),
            ["pm"],
        )
        store.send_message(
            msg("r2", created_at=now + timedelta(seconds=2),
                thread_id="root", reply_to_id="r1"),
            ["dev"],
        )
        store.send_message(msg("unrelated", created_at=now + timedelta(seconds=3)), ["dev"])

        thread = store.get_thread("root")
        assert [m.id for m in thread] == ["root", "r1", "r2"]
        assert thread[2].reply_to_id == "r1"
        assert thread[2].thread_root() == "root"
        assert thread[0].thread_root() == "root"

    def test_thread_ignores_recipient_state(self, store):
        store.send_message(msg("root"), ["dev"])
        store.send_message(msg("r1", thread_id="root", reply_to_id="root"), ["dev"])
        store.archive("root", "dev")
        store.delete("r1", "dev")
        assert [m.id for m in store.get_thread("root")] == ["root", "r1"]

    def test_missing_thread(self, store):
        assert store.get_thread("nope") == []
