"""
Environment configuration.

Env:
- LISTENBRAINZ_USER_TOKEN (required; read again before every submission)
- LISTENBRAINZ_HOST (default api.listenbrainz.org)
- LISTENBRAINZ_TIMEOUT (seconds per connect/send/receive; default 10)
- SUBMIT_STARTUP_DELAY (seconds before the first submission; default 60)
- BLUOS_HOST / BLUOS_PORT / POLL_INTERVAL (player to follow)
- LOG_LEVEL (default INFO)
"""

from __future__ import annotations
import os
from dataclasses import dataclass

TOKEN_ENV = "LISTENBRAINZ_USER_TOKEN"
DEFAULT_HOST = "api.listenbrainz.org"


def user_token() -> str | None:
    token = os.getenv(TOKEN_ENV)
    return token.strip() if token else None


@dataclass(frozen=True)
class Settings:
    submission_host: str = DEFAULT_HOST
    timeout: float = 10.0
    startup_delay: float = 60.0
    bluos_host: str = "127.0.0.1"
    bluos_port: int = 11000
    poll_interval: int = 3
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            submission_host=os.getenv("LISTENBRAINZ_HOST", DEFAULT_HOST).strip() or DEFAULT_HOST,
            timeout=float(os.getenv("LISTENBRAINZ_TIMEOUT", "10")),
            startup_delay=max(0.0, float(os.getenv("SUBMIT_STARTUP_DELAY", "60"))),
            bluos_host=os.getenv("BLUOS_HOST", "127.0.0.1"),
            bluos_port=int(os.getenv("BLUOS_PORT", "11000")),
            poll_interval=max(1, int(os.getenv("POLL_INTERVAL", "3"))),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )
