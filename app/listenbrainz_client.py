import json
import logging
from importlib.metadata import PackageNotFoundError, version
from typing import Callable, Dict, Sequence, Tuple

from state import Listen
from transport import Connection, TLSTransport, Transport

log = logging.getLogger("listenbrainz")

try:
    __version__ = version("listenbrainz-bridge")
except PackageNotFoundError:
    # running from a source checkout
    __version__ = "0.0.0"

USER_AGENT = f"listenbrainz-bridge/{__version__}"
SUBMIT_PATH = "/1/submit-listens"
HTTPS_PORT = 443
SUCCESS_MARKER = '"ok"'         # ListenBrainz answers {"status": "ok"}
MAX_RESPONSE = 64 * 1024
READ_SIZE = 4096


# Custom error classes so callers can branch
class ListenBrainzError(Exception): ...
class ConfigurationError(ListenBrainzError): ...
class TransportError(ListenBrainzError): ...
class ProtocolError(ListenBrainzError): ...


class SubmissionCancelled(Exception): ...


# -------------------------
# JSON body
# -------------------------
def listen_payload(listen: Listen) -> dict:
    track = {"artist_name": listen.artist, "track_name": listen.title}
    if listen.album:
        track["release_name"] = listen.album

    info = {}
    if listen.recording_mbid:
        info["recording_mbid"] = listen.recording_mbid
    if listen.track_number:
        info["tracknumber"] = listen.track_number
    if listen.duration:
        info["duration"] = listen.duration
    if info:
        track["additional_info"] = info

    return {"listened_at": listen.listened_at, "track_metadata": track}


def encode_listens(listens: Sequence[Listen]) -> bytes:
    """Build the submit-listens document. json.dumps does the one and only escaping pass."""
    if not listens:
        raise ValueError("Nothing to submit")
    doc = {
        "listen_type": "single" if len(listens) == 1 else "import",
        "payload": [listen_payload(l) for l in listens],
    }
    # tags decoded with surrogateescape carry lone surrogates; never let them fail the batch
    return json.dumps(doc, ensure_ascii=False).encode("utf-8", "replace")


# -------------------------
# HTTP/1.1 framing
# -------------------------
def build_request(host: str, token: str, body: bytes, user_agent: str = USER_AGENT) -> bytes:
    if any(c in token for c in "\r\n"):
        raise ConfigurationError("ListenBrainz user token contains a line break")
    head = (
        f"POST {SUBMIT_PATH} HTTP/1.1\r\n"
        f"Host: {host}\r\n"
        f"Authorization: Token {token}\r\n"
        f"User-Agent: {user_agent}\r\n"
        "Connection: close\r\n"
        "Accept-Encoding: identity\r\n"
        f"Content-Length: {len(body)}\r\n"
        "Content-Type: application/json\r\n"
        "\r\n"
    )
    return head.encode("utf-8") + body


def _more(conn: Connection, buf: bytes, limit: int) -> bytes:
    chunk = conn.read(READ_SIZE)
    if not chunk:
        raise TransportError("Connection closed before the response was complete")
    buf += chunk
    if len(buf) > limit:
        raise ProtocolError(f"Response larger than {limit} bytes")
    return buf


def _read_chunked(conn: Connection, buf: bytes, limit: int) -> bytes:
    body = b""
    while True:
        while b"\r\n" not in buf:
            buf = _more(conn, buf, limit)
        line, _, buf = buf.partition(b"\r\n")
        try:
            size = int(line.split(b";")[0].strip(), 16)
        except ValueError:
            raise ProtocolError(f"Bad chunk size line: {line[:40]!r}")
        if size == 0:
            return body
        while len(buf) < size + 2:
            buf = _more(conn, buf, limit)
        body += buf[:size]
        buf = buf[size + 2:]
        if len(body) > limit:
            raise ProtocolError(f"Response larger than {limit} bytes")


def read_response(conn: Connection, limit: int = MAX_RESPONSE) -> Tuple[int, Dict[str, str], bytes]:
    """
    Read one HTTP response: status line and headers, then exactly
    Content-Length bytes (or the chunked body, or up to EOF).
    """
    buf = b""
    while b"\r\n\r\n" not in buf:
        chunk = conn.read(READ_SIZE)
        if not chunk:
            if not buf:
                raise TransportError("No response")
            raise TransportError("Connection closed inside response headers")
        buf += chunk
        if len(buf) > limit:
            raise ProtocolError(f"Response headers larger than {limit} bytes")

    head, _, rest = buf.partition(b"\r\n\r\n")
    lines = head.decode("iso-8859-1").split("\r\n")
    parts = lines[0].split(" ", 2)
    if len(parts) < 2 or not parts[0].startswith("HTTP/"):
        raise ProtocolError(f"Bad status line: {lines[0][:80]!r}")
    try:
        status = int(parts[1])
    except ValueError:
        raise ProtocolError(f"Bad status code: {parts[1][:10]!r}")

    headers: Dict[str, str] = {}
    for line in lines[1:]:
        name, sep, value = line.partition(":")
        if sep:
            headers[name.strip().lower()] = value.strip()

    if "chunked" in headers.get("transfer-encoding", "").lower():
        return status, headers, _read_chunked(conn, rest, limit)

    if "content-length" in headers:
        try:
            length = int(headers["content-length"])
        except ValueError:
            raise ProtocolError(f"Bad Content-Length: {headers['content-length']!r}")
        if length < 0 or length > limit:
            raise ProtocolError(f"Unacceptable Content-Length: {length}")
        while len(rest) < length:
            rest = _more(conn, rest, limit)
        return status, headers, rest[:length]

    # Connection: close without a length; the body runs to EOF
    while True:
        chunk = conn.read(READ_SIZE)
        if not chunk:
            return status, headers, rest
        rest += chunk
        if len(rest) > limit:
            raise ProtocolError(f"Response larger than {limit} bytes")


# -------------------------
# Client
# -------------------------
class ListenBrainzClient:
    """Submits batches of listens to /1/submit-listens over a raw TLS connection."""

    def __init__(self, host: str = "api.listenbrainz.org", *, transport: Transport | None = None,
                 timeout: float = 10.0, port: int = HTTPS_PORT, user_agent: str = USER_AGENT):
        self.host = host
        self.port = port
        self.timeout = timeout
        self.user_agent = user_agent
        self.transport = transport or TLSTransport()

    def submit(self, listens: Sequence[Listen], token: str | None,
               cancelled: Callable[[], bool] = lambda: False) -> None:
        """Send one batch. Returns on confirmed success, raises ListenBrainzError otherwise."""
        if not token or not token.strip():
            raise ConfigurationError("ListenBrainz user token not set")

        body = encode_listens(listens)
        request = build_request(self.host, token.strip(), body, self.user_agent)
        log.debug("Submitting %d listen(s) to %s: %s", len(listens), self.host, body.decode("utf-8"))

        _check(cancelled)
        try:
            conn = self.transport.connect(self.host, self.port, self.timeout)
        except OSError as e:
            raise TransportError(f"Connect to {self.host}:{self.port} failed: {e}") from e

        try:
            _check(cancelled)
            try:
                conn.write(request)
            except OSError as e:
                raise TransportError(f"Write failed: {e}") from e

            _check(cancelled)
            try:
                status, _headers, payload = read_response(conn)
            except OSError as e:
                raise TransportError(f"Read failed: {e}") from e
        finally:
            conn.close()

        text = payload.decode("utf-8", errors="replace")
        if status != 200 or SUCCESS_MARKER not in text.lower():
            raise ProtocolError(f"ListenBrainz error {status}: {text[:200]}")
        log.debug("Response %s: %s", status, text[:200])


def _check(cancelled: Callable[[], bool]) -> None:
    if cancelled():
        raise SubmissionCancelled()
