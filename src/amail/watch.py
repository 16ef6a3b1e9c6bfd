"""Polling watcher that runs notification commands for new messages.

"New" is derived from the recipients' `notified_at` column, not from
in-process state, so restarting the watcher neither re-notifies nor skips
messages.
"""

import logging
import signal
import threading
import time
from typing import Callable

from .config import DEFAULT_INTERVAL, AmailConfig
from .errors import StoreError
from .notify import Notification, execute_all
from .storage import InboxMessage, MailStore

logger = logging.getLogger(__name__)

# Longest a stop request from a signal handler waits to be noticed
STOP_CHECK_INTERVAL = 0.25


def effective_interval(flag: int | None, config: AmailConfig) -> int:
    """Polling interval: --interval flag, then config, falling back to the default."""
    interval = flag if flag and flag > 0 else config.watch_interval
    if interval < 1:
        interval = DEFAULT_INTERVAL
    return interval


class Watcher:
    """Poll one inbox for unnotified messages and dispatch notifications."""

    def __init__(
        self,
        store: MailStore,
        config: AmailConfig,
        to_id: str,
        interval: int = DEFAULT_INTERVAL,
        on_notify: Callable[[InboxMessage, list[Exception]], None] | None = None,
    ):
        self.store = store
        self.config = config
        self.to_id = to_id
        self.interval = interval
        self.on_notify = on_notify
        self._stop = threading.Event()
        self._signalled = False

    def poll_once(self) -> list[InboxMessage]:
        """Notify for every unread, unnotified message. Returns those handled.

        Messages are marked notified whether or not their commands succeed.
        """
        messages = self.store.get_unnotified(self.to_id)
        # Oldest first, so notifications arrive in send order
        for msg in reversed(messages):
            commands = self.config.notify_commands(msg.priority)
            errors = execute_all(commands, Notification.from_inbox(msg)) if commands else []
            self.store.mark_notified(msg.id, self.to_id)
            if self.on_notify:
                self.on_notify(msg, errors)
        return messages

    def stop(self) -> None:
        self._stop.set()

    @property
    def stopped(self) -> bool:
        return self._signalled or self._stop.is_set()

    def _handle_signal(self, signum, frame) -> None:
        # Plain assignment only: the interrupted thread may hold the Event's lock
        self._signalled = True

    def install_signal_handlers(self) -> None:
        """Stop between ticks on SIGINT/SIGTERM. Main thread only."""
        signal.signal(signal.SIGINT, self._handle_signal)
        signal.signal(signal.SIGTERM, self._handle_signal)

    def run(self, on_error: Callable[[Exception], None] | None = None) -> None:
        """Poll now, then every `interval` seconds until stop() is called.

        A failed poll is reported through on_error (or logged) and the loop
        carries on with the next tick.
        """
        while not self.stopped:
            try:
                self.poll_once()
            except StoreError as e:
                if on_error:
                    on_error(e)
                else:
                    logger.error("Error checking inbox: %s", e)
            self._sleep()
        if self._signalled:
            logger.debug("Stopped by signal")

    def _sleep(self) -> None:
        """Wait out one interval, returning early once stopped."""
        deadline = time.monotonic() + self.interval
        while not self.stopped:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return
            self._stop.wait(min(remaining, STOP_CHECK_INTERVAL))
