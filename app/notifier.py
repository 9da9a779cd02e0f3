"""
User-facing notices: webhook and Gotify.

Used for the things a person has to act on, chiefly a missing ListenBrainz
token, and for dropped listens. Each sink ignores messages below its
minimum level, and a failed send is logged and forgotten.

Env:
- NOTIFY_WEBHOOK_URL, NOTIFY_MIN_LEVEL (default WARNING)
- GOTIFY_URL, GOTIFY_TOKEN (app token), GOTIFY_PRIORITY (1..10; default 5), GOTIFY_MIN_LEVEL
- APP_TAG (prefix for titles)
"""

from __future__ import annotations
import os
import logging
import requests

log = logging.getLogger("notifier")

_LEVELS = {"DEBUG": 10, "INFO": 20, "WARNING": 30, "ERROR": 40, "CRITICAL": 50}
DEFAULT_TAG = "ListenBrainz"


def _level(name: str) -> int:
    return _LEVELS.get(name.upper(), 30)


class WebhookNotifier:
    def __init__(self, webhook_url: str | None, min_level: str = "WARNING", app_tag: str = DEFAULT_TAG):
        self.webhook_url = webhook_url.strip() if webhook_url else None
        self.min_level = _level(min_level)
        self.app_tag = app_tag

    def send(self, level: str, title: str, message: str, extra: dict | None = None):
        if not self.webhook_url or _level(level) < self.min_level:
            return
        payload = {
            "level": level.upper(),
            "title": f"{self.app_tag}: {title}",
            "message": message,
            "extra": extra or {},
        }
        try:
            requests.post(self.webhook_url, json=payload, timeout=5)
        except requests.RequestException as e:
            log.debug("Webhook send failed: %s", e)


class GotifyNotifier:
    def __init__(self, url: str | None, token: str | None, min_level: str = "WARNING",
                 default_priority: int = 5, app_tag: str = DEFAULT_TAG):
        self.url = url.rstrip("/") if url else None
        self.token = token.strip() if token else None
        self.min_level = _level(min_level)
        self.default_priority = default_priority
        self.app_tag = app_tag

    def send(self, level: str, title: str, message: str, extra: dict | None = None):
        if not self.url or not self.token or _level(level) < self.min_level:
            return
        body = {
            "title": f"{self.app_tag}: {title}",
            "message": message if not extra else f"{message}\n\n{extra}",
            # errors are the ones worth waking someone up for
            "priority": max(self.default_priority, 8) if _level(level) >= 40 else self.default_priority,
        }
        try:
            requests.post(f"{self.url}/message", json=body, headers={"X-Gotify-Key": self.token}, timeout=5)
        except requests.RequestException as e:
            log.debug("Gotify send failed: %s", e)


class Notifiers:
    """Fans one alert out to every configured sink."""

    def __init__(self, *sinks):
        self.sinks = sinks

    def __call__(self, level: str, title: str, message: str, extra: dict | None = None):
        log.log(_level(level), "%s: %s", title, message)
        for sink in self.sinks:
            sink.send(level, title, message, extra)


def from_env() -> Notifiers:
    app_tag = os.getenv("APP_TAG", DEFAULT_TAG)
    webhook = WebhookNotifier(
        webhook_url=os.getenv("NOTIFY_WEBHOOK_URL"),
        min_level=os.getenv("NOTIFY_MIN_LEVEL", "WARNING"),
        app_tag=app_tag,
    )
    gotify = GotifyNotifier(
        os.getenv("GOTIFY_URL"),
        os.getenv("GOTIFY_TOKEN"),
        min_level=os.getenv("GOTIFY_MIN_LEVEL", "WARNING"),
        default_priority=int(os.getenv("GOTIFY_PRIORITY", "5")),
        app_tag=app_tag,
    )
    return Notifiers(webhook, gotify)
