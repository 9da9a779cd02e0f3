"""
Background submission loop.

Waits for listens, sends the whole queue as one batch and, on failure,
keeps the batch and retries after an exponential backoff:
1, 2, 4 ... minutes, capped at 120. A success clears what was sent and
resets the backoff.
"""

from __future__ import annotations
import enum
import logging
import threading
import time
from typing import Callable

from listen_queue import ListenQueue
from listenbrainz_client import (
    ConfigurationError, ListenBrainzClient, ProtocolError,
    SubmissionCancelled, TransportError,
)

log = logging.getLogger("worker")

FIRST_INTERVAL = 1     # minutes
MAX_INTERVAL = 120     # minutes


class WorkerState(enum.Enum):
    IDLE = "idle"
    WAITING = "waiting"
    SENDING = "sending"
    STOPPED = "stopped"


class Backoff:
    def __init__(self, first: int = FIRST_INTERVAL, cap: int = MAX_INTERVAL, unit: float = 60.0):
        self.first = first
        self.cap = cap
        self.unit = unit
        self.interval: int | None = None  # minutes; None until the first failure

    def failed(self, now: float) -> float:
        """Record a failed attempt and return when the next one is due."""
        if self.interval is None:
            self.interval = self.first
        else:
            self.interval = min(self.cap, self.interval * 2)
        return now + self.interval * self.unit

    def reset(self) -> None:
        self.interval = None


class SubmissionWorker:
    def __init__(self, queue: ListenQueue, client: ListenBrainzClient,
                 token: Callable[[], str | None], *,
                 startup_delay: float = 60.0,
                 backoff: Backoff | None = None,
                 monotonic: Callable[[], float] = time.monotonic,
                 sleeper: Callable[[float], bool] | None = None,
                 on_config_error: Callable[[ConfigurationError], None] | None = None):
        self.queue = queue
        self.client = client
        self.token = token
        self.startup_delay = startup_delay
        self.backoff = backoff or Backoff()
        self.monotonic = monotonic
        self.on_config_error = on_config_error
        self._stop = threading.Event()
        # returns True when interrupted by stop()
        self.sleeper = sleeper or self._stop.wait
        self._thread: threading.Thread | None = None

        self.state = WorkerState.IDLE
        self.next_attempt: float | None = None
        self.error: ConfigurationError | None = None

    # -------- lifecycle --------
    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self.run, name="listenbrainz-submit", daemon=True)
        self._thread.start()

    def stop(self, timeout: float | None = 10.0) -> None:
        self._stop.set()
        self.queue.wake()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=timeout)
            if self._thread.is_alive():
                log.warning("Submission thread did not stop within %ss", timeout)

    def cancelled(self) -> bool:
        return self._stop.is_set()

    def is_alive(self) -> bool:
        return bool(self._thread and self._thread.is_alive())

    # -------- loop --------
    def run(self) -> None:
        log.debug("Submission loop started")
        try:
            if self.startup_delay > 0 and self.sleeper(self.startup_delay):
                return
            while not self.cancelled():
                if not self.run_once():
                    break
        finally:
            self.state = WorkerState.STOPPED
            log.debug("Submission loop stopped")

    def _wait_until(self, due: float) -> bool:
        remaining = due - self.monotonic()
        if remaining > 0 and self.sleeper(remaining):
            return False
        return not self.cancelled()

    def run_once(self) -> bool:
        """One cycle: wait for the due time and for listens, then send. False means stop looping."""
        if self.next_attempt is not None:
            self.state = WorkerState.WAITING
            if not self._wait_until(self.next_attempt):
                return False

        self.state = WorkerState.IDLE if self.next_attempt is None else WorkerState.WAITING
        if not self.queue.wait_until_non_empty(self.cancelled):
            return False

        batch = self.queue.snapshot()
        self.state = WorkerState.SENDING
        log.debug("Begin submission of %d listen(s)", len(batch))
        try:
            self.client.submit(batch, self.token(), self.cancelled)
        except ConfigurationError as e:
            log.error("Configuration error, stopping submissions: %s", e)
            self.error = e
            if self.on_config_error:
                self.on_config_error(e)
            return False
        except SubmissionCancelled:
            return False
        except (TransportError, ProtocolError) as e:
            self.next_attempt = self.backoff.failed(self.monotonic())
            self.state = WorkerState.WAITING
            log.warning("Submission failed: %s; keeping %d listen(s), next attempt in %d min",
                        e, len(batch), self.backoff.interval)
            return True
        except Exception:
            # the batch stays queued and is retried
            self.next_attempt = self.backoff.failed(self.monotonic())
            self.state = WorkerState.WAITING
            log.exception("Unexpected error while submitting %d listen(s), next attempt in %d min",
                          len(batch), self.backoff.interval)
            return True

        self.queue.clear(len(batch))
        self.backoff.reset()
        self.next_attempt = None
        self.state = WorkerState.IDLE
        log.info("Submission successful: %d listen(s). Queue size now %d", len(batch), self.queue.size())
        return True
