import time
import logging

from config import Settings, user_token
from engine import ListenEngine
from listenbrainz_client import ListenBrainzClient
from notifier import from_env as notifiers_from_env
from player import BluOSPlayer

settings = Settings.from_env()

# -------------------------
# Logging setup
# -------------------------
logging.basicConfig(
    level=getattr(logging, settings.log_level, logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    force=True,  # ensure our config is used even if libs pre-configure logging
)
log = logging.getLogger("listenbrainz-bridge")


def main():
    alert = notifiers_from_env()     # each sink is a no-op unless configured

    # A missing token is reported by the worker at its first cycle, the same
    # way as if it were removed later; warn early so it is visible at startup.
    if not user_token():
        log.warning("LISTENBRAINZ_USER_TOKEN is not set; listens will not be submitted")

    player = BluOSPlayer(settings.bluos_host, settings.bluos_port)
    client = ListenBrainzClient(settings.submission_host, timeout=settings.timeout)
    engine = ListenEngine(player, client, user_token, alert=alert,
                          startup_delay=settings.startup_delay)

    log.info("Starting BluOS -> ListenBrainz bridge. Poll interval: %ss", settings.poll_interval)
    log.info("BluOS device: %s:%s | Submission host: %s",
             settings.bluos_host, settings.bluos_port, settings.submission_host)
    engine.start()

    try:
        while True:
            status = player.get_status()
            if status is not None:
                log.debug("Parsed: state=%s artist=%s title=%s album=%s elapsed=%s duration=%s",
                          status.state, status.artist, status.title, status.album, status.secs, status.duration)
                player.update(status, engine)
            time.sleep(settings.poll_interval)
    finally:
        engine.shutdown()


def run():
    try:
        main()
    except KeyboardInterrupt:
        log.info("Shutting down…")


if __name__ == "__main__":
    run()
