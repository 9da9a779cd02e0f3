"""
Blocking TLS transport: connect to host:443, write bytes, read bytes.

Every socket operation runs under the timeout given to connect(); a timeout
surfaces as an OSError (socket.timeout) like any other network failure.
"""

from __future__ import annotations
import logging
import socket
import ssl
from typing import Protocol

log = logging.getLogger("transport")


class Connection(Protocol):
    def write(self, data: bytes) -> None: ...

    def read(self, size: int) -> bytes: ...

    def close(self) -> None: ...


class Transport(Protocol):
    def connect(self, host: str, port: int, timeout: float) -> Connection: ...


class TLSConnection:
    def __init__(self, sock: ssl.SSLSocket):
        self.sock = sock

    def write(self, data: bytes) -> None:
        self.sock.sendall(data)

    def read(self, size: int) -> bytes:
        return self.sock.recv(size)

    def close(self) -> None:
        try:
            self.sock.close()
        except OSError as e:
            log.debug("close failed: %s", e)


class TLSTransport:
    def __init__(self, context: ssl.SSLContext | None = None):
        self.context = context or ssl.create_default_context()

    def connect(self, host: str, port: int, timeout: float) -> TLSConnection:
        log.debug("Opening TLS connection to %s:%s (timeout=%ss)", host, port, timeout)
        raw = socket.create_connection((host, port), timeout=timeout)
        try:
            sock = self.context.wrap_socket(raw, server_hostname=host)
        except Exception:
            raw.close()
            raise
        return TLSConnection(sock)
