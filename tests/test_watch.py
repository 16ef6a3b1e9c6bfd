"""Tests for the polling watcher."""

import signal
import threading
import time

import pytest

from amail.config import AmailConfig
from amail.storage import MailStore, Message
from amail.watch import Watcher, effective_interval


@pytest.fixture
def store(tmp_path):
    with MailStore(tmp_path / "mail.db") as s:
        yield s


def send(store, id, priority="normal", to=("dev",)):
    store.send_message(Message(id=id, from_id="pm", subject=f"subj {id}", body="b", priority=priority), list(to))


def logging_config(tmp_path, **extra) -> AmailConfig:
    log = tmp_path / "notify.log"
    notify = {"default": [f"echo {{id}} >> {log}"], **extra}
    return AmailConfig(roles=["pm", "dev"], notify=notify)


def read_log(tmp_path) -> list[str]:
    log = tmp_path / "notify.log"
    return log.read_text().split() if log.exists() else []


class TestPollOnce:
    def test_notifies_and_marks(self, store, tmp_path):
        send(store, "m1")
        send(store, "m2")
        handled = []
        watcher = Watcher(store, logging_config(tmp_path), "dev",
                          on_notify=lambda m, errors: handled.append((m.id, errors)))

        assert {m.id for m in watcher.poll_once()} == {"m1", "m2"}
        assert handled == [("m1", []), ("m2", [])]
        assert read_log(tmp_path) == ["m1", "m2"]
        assert store.get_unnotified("dev") == []
        # Still unread; notifying does not read
        assert store.count_unread("dev") == 2

    def test_second_poll_is_quiet(self, store, tmp_path):
        send(store, "m1")
        watcher = Watcher(store, logging_config(tmp_path), "dev")
        watcher.poll_once()
        assert watcher.poll_once() == []
        send(store, "m2")
        assert [m.id for m in watcher.poll_once()] == ["m2"]
        assert read_log(tmp_path) == ["m1", "m2"]

    def test_restart_does_not_renotify(self, store, tmp_path):
        send(store, "m1")
        Watcher(store, logging_config(tmp_path), "dev").poll_once()
        assert Watcher(store, logging_config(tmp_path), "dev").poll_once() == []
        assert read_log(tmp_path) == ["m1"]

    def test_failed_command_still_marks(self, store, tmp_path):
        send(store, "m1")
        handled = []
        config = AmailConfig(roles=["pm", "dev"], notify={"default": ["exit 1"]})
        watcher = Watcher(store, config, "dev", on_notify=lambda m, errors: handled.append(errors))
        assert [m.id for m in watcher.poll_once()] == ["m1"]
        assert len(handled[0]) == 1
        assert store.get_unnotified("dev") == []

    def test_read_messages_skipped(self, store, tmp_path):
        send(store, "m1")
        store.mark_read("m1", "dev")
        assert Watcher(store, logging_config(tmp_path), "dev").poll_once() == []
        assert read_log(tmp_path) == []

    def test_priority_commands(self, store, tmp_path):
        urgent_log = tmp_path / "urgent.log"
        config = logging_config(tmp_path, urgent=[f"echo {{priority}} >> {urgent_log}"])
        send(store, "m1", priority="urgent")
        send(store, "m2")
        Watcher(store, config, "dev").poll_once()
        assert urgent_log.read_text().split() == ["urgent"]
        assert read_log(tmp_path) == ["m2"]

    def test_only_own_inbox(self, store, tmp_path):
        send(store, "m1", to=("pm",))
        assert Watcher(store, logging_config(tmp_path), "dev").poll_once() == []
        assert len(store.get_unnotified("pm")) == 1


class TestRun:
    def test_stop_ends_loop(self, store, tmp_path):
        send(store, "m1")
        seen = threading.Event()
        watcher = Watcher(store, logging_config(tmp_path), "dev", interval=60,
                          on_notify=lambda m, errors: seen.set())
        watcher.stop()
        watcher.run()
        assert watcher.stopped
        assert not seen.is_set()

    def test_run_polls_then_stops(self, store, tmp_path):
        send(store, "m1")
        watcher = Watcher(store, logging_config(tmp_path), "dev", interval=60)
        watcher.on_notify = lambda m, errors: watcher.stop()
        watcher.run()
        assert read_log(tmp_path) == ["m1"]

    def test_signal_interrupts_sleep(self, store, tmp_path):
        send(store, "m1")
        watcher = Watcher(store, logging_config(tmp_path), "dev", interval=60)
        watcher.on_notify = lambda m, errors: watcher._handle_signal(signal.SIGTERM, None)
        start = time.monotonic()
        watcher.run()
        assert time.monotonic() - start < 5
        assert watcher.stopped
        assert read_log(tmp_path) == ["m1"]

    def test_store_errors_reported(self, tmp_path):
        s = MailStore(tmp_path / "mail.db")
        s.connect()
        s.init_schema()
        s.conn.execute("DROP TABLE recipients")
        reported = []
        watcher = Watcher(s, AmailConfig(), "dev", interval=60)

        def on_error(e):
            reported.append(e)
            watcher.stop()

        watcher.run(on_error=on_error)
        s.disconnect()
        assert len(reported) == 1
        assert "query unnotified" in str(reported[0])


@pytest.mark.parametrize("flag, configured, expected", [
    (None, 2, 2),
    (5, 2, 5),
    (None, 7, 7),
    (0, 7, 7),
    (None, 0, 2),
    (-3, -1, 2),
])
def test_effective_interval(flag, configured, expected):
    assert effective_interval(flag, AmailConfig(watch_interval=configured)) == expected
