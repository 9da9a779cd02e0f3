from __future__ import annotations
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Callable

from listen_queue import ListenQueue
from listenbrainz_client import ConfigurationError, ListenBrainzClient
from state import Listen, ListenEvaluator, PlaybackHost, PlaybackState
from worker import SubmissionWorker

log = logging.getLogger("engine")

Alert = Callable[..., None]


class ListenEngine:
    """Owns the queue, the evaluator and the submission thread.

    The host registers the engine as its observer and calls
    on_track_changed() / on_state_changed(); start() and shutdown()
    bracket the worker's lifetime.
    """

    def __init__(self, host: PlaybackHost, client: ListenBrainzClient,
                 token: Callable[[], str | None], *,
                 alert: Alert | None = None,
                 startup_delay: float = 60.0,
                 monotonic: Callable[[], float] = time.monotonic,
                 wall_clock: Callable[[], float] = time.time):
        self.alert = alert
        # alerts do network I/O; keep them off the host's notification thread
        self.alerts = ThreadPoolExecutor(max_workers=1, thread_name_prefix="listenbrainz-alert")
        self.queue = ListenQueue()
        self.evaluator = ListenEvaluator(host, self.queue, monotonic=monotonic,
                                         wall_clock=wall_clock, on_dropped=self._dropped)
        self.worker = SubmissionWorker(self.queue, client, token, startup_delay=startup_delay,
                                       monotonic=monotonic, on_config_error=self._config_error)

    # -------- observer --------
    def on_track_changed(self, has_previous: bool = True) -> None:
        self.evaluator.on_track_changed(has_previous)

    def on_state_changed(self, state: PlaybackState) -> None:
        self.evaluator.on_state_changed(state)

    # -------- lifecycle --------
    def start(self) -> None:
        log.info("Starting ListenBrainz submission to %s", self.worker.client.host)
        self.worker.start()

    def shutdown(self, timeout: float | None = 10.0) -> None:
        self.worker.stop(timeout)
        pending = self.queue.size()
        if pending:
            log.info("Discarding %d unsubmitted listen(s) at shutdown", pending)
        self.alerts.shutdown(wait=True)

    # -------- alerts --------
    def _config_error(self, e: ConfigurationError) -> None:
        if self.alert:
            self.alert("ERROR", "ListenBrainz configuration error",
                       f"{e}. Fix LISTENBRAINZ_USER_TOKEN and restart; "
                       "get a token at https://listenbrainz.org/profile/",
                       {"pending_queue_size": self.queue.size()})

    def _dropped(self, listen: Listen) -> None:
        if self.alert:
            self.alerts.submit(self.alert, "WARNING", "Submission queue full",
                               f"Dropped listen {listen.artist} - {listen.title}",
                               {"queue_size": self.queue.size()})
