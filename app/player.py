import logging
import requests
import xml.etree.ElementTree as ET
from dataclasses import dataclass

from state import PlaybackState, TrackMetadata

log = logging.getLogger("bluos")

_STATES = {
    "play": PlaybackState.PLAYING,
    "stream": PlaybackState.PLAYING,
    "pause": PlaybackState.PAUSED,
    "stop": PlaybackState.STOPPED,
}


@dataclass
class BluOSStatus:
    title: str | None
    artist: str | None
    album: str | None
    duration: int | None  # seconds
    secs: int | None      # elapsed seconds
    state: str | None     # 'play', 'pause', 'stop'

    def identity(self):
        return (self.artist, self.title, self.album)


class BluOSPlayer:
    """
    Follows a BluOS device by polling /Status (XML) and replays what changed
    as track-change / state-change notifications to an observer (the engine).
    Also answers the engine's metadata queries from the last status seen.
    """
    def __init__(self, host: str, port: int = 11000, timeout: int = 5):
        self.base = f"http://{host}:{port}"
        self.timeout = timeout
        self.last: BluOSStatus | None = None

    def _findtext_any(self, root: ET.Element, *tags: str):
        for t in tags:
            el = root.find(f".//{t}")
            if el is not None and el.text:
                return el.text.strip()
        return None

    def _to_int(self, s):
        if s is None: return None
        try:
            return int(float(s))
        except ValueError:
            return None

    def parse_status(self, text: str) -> BluOSStatus | None:
        try:
            root = ET.fromstring(text)
        except ET.ParseError as e:
            log.debug("Status XML parse failed: %s", e)
            return None

        state = self._findtext_any(root, "state", "status", "mode")
        return BluOSStatus(
            title=self._findtext_any(root, "name", "title1", "title", "song"),
            artist=self._findtext_any(root, "artist", "title2"),
            album=self._findtext_any(root, "album", "title3"),
            duration=self._to_int(self._findtext_any(root, "totlen", "duration", "total", "trackLength", "length")),
            secs=self._to_int(self._findtext_any(root, "secs", "elapsed", "position", "time")),
            state=state.lower() if state else None,
        )

    def get_status(self) -> BluOSStatus | None:
        try:
            resp = requests.get(f"{self.base}/Status", timeout=self.timeout)
            resp.raise_for_status()
        except requests.RequestException as e:
            log.warning("BluOS status fetch failed: %s", e)
            return None
        return self.parse_status(resp.text)

    # -------- host side of the engine --------
    def current_metadata(self) -> TrackMetadata | None:
        s = self.last
        if s is None:
            return None
        return TrackMetadata(artist=s.artist, title=s.title, album=s.album, duration=s.duration or 0)

    def is_preparsed(self) -> bool:
        return True

    def video_track_count(self) -> int:
        return 0

    def update(self, status: BluOSStatus, observer) -> None:
        """Diff status against the previous poll and notify the observer."""
        prev, self.last = self.last, status
        state = _STATES.get(status.state or "")

        if prev is None or status.identity() != prev.identity():
            log.info("Track: %s - %s%s", status.artist, status.title,
                     f" [{status.album}]" if status.album else "")
            observer.on_track_changed(has_previous=prev is not None)
            if state is not None:
                observer.on_state_changed(state)
            return

        if state is not None and state != _STATES.get(prev.state or ""):
            log.debug("State: %s -> %s", prev.state, status.state)
            observer.on_state_changed(state)
