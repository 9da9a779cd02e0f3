import json
import socket

import pytest

from conftest import OK_RESPONSE, FakeTransport, ScriptedConnection, http_response
from listenbrainz_client import (
    ConfigurationError, ListenBrainzClient, ProtocolError, SubmissionCancelled,
    TransportError, build_request, encode_listens, read_response,
)
from state import Listen


def listen(**kw):
    fields = dict(artist="Björk", title="Jóga", listened_at=1_700_000_000)
    fields.update(kw)
    return Listen(**fields)


# -------------------------
# JSON body
# -------------------------
def test_single_listen_document():
    doc = json.loads(encode_listens([listen(album="Homogenic", recording_mbid="abc", track_number="3", duration=305)]))
    assert doc == {
        "listen_type": "single",
        "payload": [{
            "listened_at": 1_700_000_000,
            "track_metadata": {
                "artist_name": "Björk",
                "track_name": "Jóga",
                "release_name": "Homogenic",
                "additional_info": {"recording_mbid": "abc", "tracknumber": "3", "duration": 305},
            },
        }],
    }


def test_batch_is_an_import_and_optional_fields_are_omitted():
    doc = json.loads(encode_listens([listen(), listen(title="Hunter", listened_at=1_700_000_400)]))
    assert doc["listen_type"] == "import"
    assert [p["track_metadata"]["track_name"] for p in doc["payload"]] == ["Jóga", "Hunter"]
    assert doc["payload"][0]["track_metadata"] == {"artist_name": "Björk", "track_name": "Jóga"}


def test_strings_are_escaped_exactly_once():
    title = 'Say "Hi"\n\t\\ 100%25 \x01'
    body = encode_listens([listen(title=title)])
    assert b"\n" not in body
    assert b"\x01" not in body
    assert json.loads(body)["payload"][0]["track_metadata"]["track_name"] == title


def test_lone_surrogates_do_not_break_encoding():
    body = encode_listens([listen(artist=b"M\xf6tley".decode("utf-8", "surrogateescape"))])
    assert json.loads(body)["payload"][0]["track_metadata"]["artist_name"] == "M?tley"


def test_empty_batch_is_refused():
    with pytest.raises(ValueError):
        encode_listens([])


# -------------------------
# HTTP framing
# -------------------------
def test_request_framing():
    body = b'{"x": 1}'
    req = build_request("api.listenbrainz.org", "secret", body, user_agent="ua/1")
    head, _, sent = req.partition(b"\r\n\r\n")
    lines = head.decode().split("\r\n")
    assert lines[0] == "POST /1/submit-listens HTTP/1.1"
    assert "Host: api.listenbrainz.org" in lines
    assert "Authorization: Token secret" in lines
    assert "User-Agent: ua/1" in lines
    assert "Content-Type: application/json" in lines
    assert "Content-Length: 8" in lines
    assert "Connection: close" in lines
    assert sent == body


def test_token_with_line_break_is_a_configuration_error():
    with pytest.raises(ConfigurationError):
        build_request("h", "abc\r\nX-Evil: 1", b"{}")


def test_read_response_stops_at_content_length():
    conn = ScriptedConnection(http_response(b'{"status": "ok"}') + b"garbage")
    status, headers, body = read_response(conn)
    assert status == 200
    assert headers["content-type"] == "application/json"
    assert body == b'{"status": "ok"}'


def test_read_response_chunked():
    raw = (b"HTTP/1.1 200 OK\r\nTransfer-Encoding: chunked\r\n\r\n"
           b"6\r\n{\"stat\r\nA;ext=1\r\nus\": \"ok\"}\r\n0\r\n\r\n")
    status, _, body = read_response(ScriptedConnection(raw, piece=3))
    assert status == 200
    assert body == b'{"status": "ok"}'


def test_read_response_until_eof_without_length():
    raw = b"HTTP/1.0 200 OK\r\nContent-Type: text/plain\r\n\r\nall good, ok"
    assert read_response(ScriptedConnection(raw))[2] == b"all good, ok"


def test_read_response_truncated_body():
    raw = b"HTTP/1.1 200 OK\r\nContent-Length: 100\r\n\r\nshort"
    with pytest.raises(TransportError):
        read_response(ScriptedConnection(raw))


def test_read_response_bad_status_line():
    with pytest.raises(ProtocolError):
        read_response(ScriptedConnection(b"SMTP ready\r\n\r\n"))


def test_read_response_too_large():
    raw = b"HTTP/1.1 200 OK\r\nContent-Length: 999999\r\n\r\n"
    with pytest.raises(ProtocolError):
        read_response(ScriptedConnection(raw), limit=1024)


def test_read_response_nothing_read():
    with pytest.raises(TransportError):
        read_response(ScriptedConnection(b""))


# -------------------------
# submit()
# -------------------------
def test_submit_success():
    conn = ScriptedConnection(OK_RESPONSE)
    transport = FakeTransport(conn)
    client = ListenBrainzClient("lb.example.org", transport=transport, timeout=3)

    client.submit([listen()], "  tok  ")

    assert transport.connects == [("lb.example.org", 443, 3)]
    assert b"Authorization: Token tok\r\n" in conn.written
    assert conn.written.endswith(encode_listens([listen()]))
    assert conn.closed


@pytest.mark.parametrize("response", [
    http_response(b'{"code": 401, "error": "Invalid authorization token."}', status="401 Unauthorized"),
    http_response(b'{"status": "ok"}', status="500 Internal Server Error"),
    http_response(b'{"status": "FAILED"}'),
])
def test_submit_without_success_marker_is_a_protocol_error(response):
    conn = ScriptedConnection(response)
    client = ListenBrainzClient(transport=FakeTransport(conn))
    with pytest.raises(ProtocolError):
        client.submit([listen()], "tok")
    assert conn.closed


@pytest.mark.parametrize("outcome", [
    ConnectionRefusedError("refused"),
    socket.timeout("timed out"),
    ScriptedConnection(write_error=BrokenPipeError("pipe")),
    ScriptedConnection(read_error=socket.timeout("timed out")),
    ScriptedConnection(b""),
])
def test_network_failures_are_transport_errors(outcome):
    client = ListenBrainzClient(transport=FakeTransport(outcome))
    with pytest.raises(TransportError):
        client.submit([listen()], "tok")


@pytest.mark.parametrize("token", [None, "", "   "])
def test_missing_token_fails_before_connecting(token):
    transport = FakeTransport()
    client = ListenBrainzClient(transport=transport)
    with pytest.raises(ConfigurationError):
        client.submit([listen()], token)
    assert transport.connects == []


def test_cancelled_before_connect():
    transport = FakeTransport()
    client = ListenBrainzClient(transport=transport)
    with pytest.raises(SubmissionCancelled):
        client.submit([listen()], "tok", cancelled=lambda: True)
    assert transport.connects == []


def test_cancelled_after_connect_closes_connection():
    conn = ScriptedConnection(OK_RESPONSE)
    checks = iter([False, True])
    client = ListenBrainzClient(transport=FakeTransport(conn))
    with pytest.raises(SubmissionCancelled):
        client.submit([listen()], "tok", cancelled=lambda: next(checks))
    assert conn.written == b""
    assert conn.closed
