from __future__ import annotations

import enum
import logging
import time
from dataclasses import dataclass
from typing import Callable, Protocol

from listen_queue import CapacityDropped, ListenQueue

log = logging.getLogger("evaluator")

MIN_DURATION = 30         # tracks shorter than this are never submitted
MIN_PLAYED = 240          # 4 minutes is always enough...
LONG_PAUSE = 60           # ...and a pause longer than this may split a track


# -------------------------
# Data carried from the player to the wire
# -------------------------
@dataclass(frozen=True)
class TrackMetadata:
    artist: str | None
    title: str | None
    album: str | None = None
    track_number: str | None = None
    duration: int = 0  # seconds, 0 = unknown
    recording_mbid: str | None = None

    def is_complete(self) -> bool:
        return bool(self.artist) and bool(self.title)


@dataclass(frozen=True)
class Listen:
    """A play that qualified for submission. Strings are kept raw; the
    client escapes them once when building the JSON body."""
    artist: str
    title: str
    listened_at: int  # unix seconds, when the track started
    album: str | None = None
    track_number: str | None = None
    duration: int = 0
    recording_mbid: str | None = None


class PlaybackState(enum.Enum):
    STOPPED = "stop"
    PLAYING = "play"
    PAUSED = "pause"


class PlaybackHost(Protocol):
    """What the evaluator may ask of the player that drives it."""

    def current_metadata(self) -> TrackMetadata | None: ...

    def is_preparsed(self) -> bool: ...

    def video_track_count(self) -> int: ...


def is_eligible(duration: int, played: int) -> bool:
    """Listen rule: at least 30s long, and played for 240s or half of it."""
    if duration < MIN_DURATION:
        return False
    return played >= MIN_PLAYED or played >= duration // 2


@dataclass
class CurrentTrack:
    started: float            # monotonic
    listened_at: int          # wall clock, sent to ListenBrainz
    metadata: TrackMetadata | None = None
    paused_total: float = 0.0
    paused_since: float | None = None

    def played(self, now: float) -> int:
        return int(now - self.started - self.paused_total)


class ListenEvaluator:
    """Turns player notifications into queued listens.

    The host calls on_track_changed() / on_state_changed() from its own
    thread; everything here runs under the queue's lock and never blocks
    beyond it.
    """

    def __init__(self, host: PlaybackHost, queue: ListenQueue, *,
                 monotonic: Callable[[], float] = time.monotonic,
                 wall_clock: Callable[[], float] = time.time,
                 on_dropped: Callable[[Listen], None] | None = None):
        self.host = host
        self.queue = queue
        self.monotonic = monotonic
        self.wall_clock = wall_clock
        self.on_dropped = on_dropped
        self.current: CurrentTrack | None = None
        self.meta_read: bool = False
        self._dropped: list[Listen] = []

    # -------- host notifications --------
    def on_track_changed(self, has_previous: bool = True) -> None:
        with self.queue.lock:
            self._track_changed(has_previous)
        self._report_dropped()

    def on_state_changed(self, state: PlaybackState) -> None:
        if self.host.video_track_count():
            log.debug("Not an audio-only input, not submitting")
            return

        with self.queue.lock:
            self._state_changed(state)
        self._report_dropped()

    def _report_dropped(self) -> None:
        with self.queue.lock:
            dropped, self._dropped = self._dropped, []
        for listen in dropped:
            if self.on_dropped:
                self.on_dropped(listen)

    # -------- internals (queue lock held) --------
    def _track_changed(self, has_previous: bool) -> None:
        if has_previous:
            self._finish_current(self.monotonic())
        self.meta_read = False
        self.current = None

        if self.host.video_track_count():
            log.debug("Not an audio-only input, not submitting")
            return

        self.current = self._new_track()
        if self.host.is_preparsed():
            self._read_metadata()
        # otherwise metadata is read on the first PLAYING transition

    def _state_changed(self, state: PlaybackState) -> None:
        if self.current is None:
            return

        if not self.meta_read and state in (PlaybackState.PLAYING, PlaybackState.PAUSED):
            self._read_metadata()
            return

        now = self.monotonic()
        if state is PlaybackState.STOPPED:
            self._finish_current(now)
        elif state is PlaybackState.PAUSED:
            if self.current.paused_since is None:
                self.current.paused_since = now
        elif state is PlaybackState.PLAYING:
            self._resume(now)

    def _new_track(self) -> CurrentTrack:
        return CurrentTrack(started=self.monotonic(), listened_at=int(self.wall_clock()))

    def _read_metadata(self) -> None:
        self.meta_read = True
        meta = self.host.current_metadata()
        if meta is None or not meta.is_complete():
            log.debug("Missing artist or title, track will not be submitted")
            self.current.metadata = None
            return
        self.current.metadata = meta
        log.debug("Meta data registered: %s - %s", meta.artist, meta.title)

    def _resume(self, now: float) -> None:
        track = self.current
        if track.paused_since is None:
            return
        pause_began = track.paused_since
        pause = now - pause_began
        track.paused_total += pause
        track.paused_since = None
        log.debug("Pause duration: %ds", int(pause))

        if int(pause) <= LONG_PAUSE or track.metadata is None:
            return

        # Evaluate the track as it stood when the pause began. If it already
        # counts, it becomes a listen and the rest of the track starts over.
        played = int(pause_began - track.started - (track.paused_total - pause))
        duration = track.metadata.duration or played
        if not is_eligible(duration, played):
            return

        meta = track.metadata
        self._offer(track, played)
        self.current = self._new_track()
        self.current.metadata = meta

    def _finish_current(self, now: float) -> None:
        track = self.current
        if track is None:
            return
        end = track.paused_since if track.paused_since is not None else now
        self._offer(track, track.played(end))

    def _offer(self, track: CurrentTrack, played: int) -> None:
        meta = track.metadata
        # the track is consumed whatever the outcome
        track.metadata = None
        if meta is None:
            return

        # preparsing sometimes fails to report a length; use the time played
        duration = meta.duration or played
        if duration < MIN_DURATION:
            log.debug("Song too short (%ds < %ds), not submitting", duration, MIN_DURATION)
            return
        if not is_eligible(duration, played):
            log.debug("Song not listened long enough (%ds of %ds), not submitting", played, duration)
            return

        listen = Listen(
            artist=meta.artist,
            title=meta.title,
            listened_at=track.listened_at,
            album=meta.album or None,
            track_number=meta.track_number or None,
            duration=meta.duration,
            recording_mbid=meta.recording_mbid or None,
        )
        try:
            self.queue.push(listen)
        except CapacityDropped as e:
            log.warning("%s, dropping %s - %s", e, listen.artist, listen.title)
            self._dropped.append(listen)
            return
        log.info("Queued listen: %s - %s (played %ds of %ds)", listen.artist, listen.title, played, duration)

