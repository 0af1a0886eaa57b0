"""Dedicated APScheduler worker process for the expiry sweep."""
from __future__ import annotations

import logging
import signal
import threading

from apscheduler.schedulers.background import BackgroundScheduler

from actiongate.core.config import settings
from actiongate.core.logging import configure_logging
from actiongate.db.session import SessionLocal
from actiongate.services.action_card_service import expire_stale


logger = logging.getLogger(__name__)


def main() -> None:
    configure_logging(log_level=settings.log_level)
    logger.info("Scheduler worker starting (enabled=%s)", settings.scheduler_enabled)

    scheduler = BackgroundScheduler(timezone=settings.scheduler_timezone)

    if settings.scheduler_enabled:
        register_jobs(scheduler)
        scheduler.start()
        run_expiry_sweep()
    else:
        logger.warning("Scheduler disabled via config; worker will idle")

    stop_event = threading.Event()

    def shutdown(signum, frame):  # pragma: no cover - signal handler
        logger.info("Scheduler worker shutting down (signal=%s)", signum)
        if scheduler.running:
            scheduler.shutdown(wait=False)
        stop_event.set()

    signal.signal(signal.SIGINT, shutdown)
    signal.signal(signal.SIGTERM, shutdown)

    try:
        stop_event.wait()
    except KeyboardInterrupt:  # pragma: no cover - manual stop
        shutdown(signal.SIGINT, None)


def register_jobs(scheduler: BackgroundScheduler) -> None:
    scheduler.add_job(
        run_expiry_sweep,
        trigger="interval",
        minutes=settings.expiry_sweep_minutes,
        id="action_card_expiry",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    logger.info("Registered expiry sweep every %s minute(s)", settings.expiry_sweep_minutes)


def run_expiry_sweep(session_factory=None) -> int:
    session = (session_factory or SessionLocal)()
    try:
        expired = expire_stale(session)
        logger.debug("Expiry sweep complete: expired=%s", expired)
        return expired
    except Exception:  # pragma: no cover - keep the scheduler alive
        logger.exception("Expiry sweep failed")
        return 0
    finally:
        session.close()


if __name__ == "__main__":  # pragma: no cover - manual launch
    main()
