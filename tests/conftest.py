import pytest

from state import TrackMetadata


class FakeClock:
    """Monotonic and wall clock that only move when told to."""

    def __init__(self, start: float = 1000.0, wall: float = 1_700_000_000.0):
        self.now = start
        self.wall_offset = wall - start

    def __call__(self) -> float:
        return self.now

    def wall(self) -> float:
        return self.now + self.wall_offset

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeHost:
    def __init__(self, metadata: TrackMetadata | None = None, preparsed: bool = True, video: int = 0):
        self.metadata = metadata
        self.preparsed = preparsed
        self.video = video

    def current_metadata(self):
        return self.metadata

    def is_preparsed(self) -> bool:
        return self.preparsed

    def video_track_count(self) -> int:
        return self.video


class ScriptedConnection:
    """Hands back a canned response in small pieces and records what was written."""

    def __init__(self, response: bytes = b"", piece: int = 7, write_error: Exception | None = None,
                 read_error: Exception | None = None):
        self.response = response
        self.piece = piece
        self.write_error = write_error
        self.read_error = read_error
        self.written = b""
        self.closed = False

    def write(self, data: bytes) -> None:
        if self.write_error:
            raise self.write_error
        self.written += data

    def read(self, size: int) -> bytes:
        if self.read_error:
            raise self.read_error
        n = min(size, self.piece)
        out, self.response = self.response[:n], self.response[n:]
        return out

    def close(self) -> None:
        self.closed = True


class FakeTransport:
    """Each connect() pops the next scripted outcome: a ScriptedConnection or an exception."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.connects = []
        self.connections = []

    def connect(self, host, port, timeout):
        self.connects.append((host, port, timeout))
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        self.connections.append(outcome)
        return outcome


def http_response(body: bytes = b'{"status": "ok"}', status: str = "200 OK", headers: dict | None = None) -> bytes:
    hdrs = {"Content-Type": "application/json", "Content-Length": str(len(body))}
    if headers is not None:
        hdrs = headers
    head = f"HTTP/1.1 {status}\r\n" + "".join(f"{k}: {v}\r\n" for k, v in hdrs.items()) + "\r\n"
    return head.encode("latin-1") + body


OK_RESPONSE = http_response()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def song():
    return TrackMetadata(artist="Nina Simone", title="Sinnerman", album="Pastel Blues",
                         track_number="9", duration=600, recording_mbid="5a6e1a0c-1d5b-4c52-9f34-9b7e6c7d9f10")
