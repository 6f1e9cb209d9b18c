"""Dedicated APScheduler worker process."""
from __future__ import annotations

import logging
import signal
import threading

from apscheduler.schedulers.background import BackgroundScheduler

from plan_lifecycle.core.config import settings
from plan_lifecycle.core.logging import configure_logging
from plan_lifecycle.db.session import SessionLocal
from plan_lifecycle.observability.client import flush_opik
from plan_lifecycle.services.job_runner import run_plan_migrations, run_week_closeout


logger = logging.getLogger(__name__)


def main() -> None:
    configure_logging(log_level=settings.log_level)
    logger.info("Scheduler worker starting (enabled=%s)", settings.scheduler_enabled)

    scheduler = BackgroundScheduler(timezone=settings.scheduler_timezone)

    if settings.scheduler_enabled:
        register_jobs(scheduler)
        scheduler.start()
        if settings.jobs_run_on_startup:
            logger.info("Running maintenance once on startup")
            run_maintenance_job()
    else:
        logger.warning("Scheduler disabled via config; worker will idle")

    stop_event = threading.Event()

    def shutdown(signum, frame):  # pragma: no cover - signal handler
        logger.info("Scheduler worker shutting down (signal=%s)", signum)
        if scheduler.running:
            scheduler.shutdown(wait=False)
        flush_opik()
        stop_event.set()

    signal.signal(signal.SIGINT, shutdown)
    signal.signal(signal.SIGTERM, shutdown)

    try:
        stop_event.wait()
    except KeyboardInterrupt:  # pragma: no cover - manual stop
        shutdown(signal.SIGINT, None)


def register_jobs(scheduler: BackgroundScheduler) -> None:
    scheduler.add_job(
        run_maintenance_job,
        trigger="cron",
        day_of_week=str(settings.maintenance_job_day),
        hour=settings.maintenance_job_hour,
        minute=settings.maintenance_job_minute,
        id="plan_maintenance_job",
        replace_existing=True,
    )
    logger.info(
        "Registered maintenance job (day=%s, time=%02d:%02d %s)",
        settings.maintenance_job_day,
        settings.maintenance_job_hour,
        settings.maintenance_job_minute,
        settings.scheduler_timezone,
    )


def run_maintenance_job() -> None:
    session = SessionLocal()
    try:
        migrations = run_plan_migrations(session)
        closeout = run_week_closeout(session)
        logger.info(
            "Maintenance job complete: migrated=%s/%s, closed=%s/%s",
            migrations.plans_updated,
            migrations.plans_scanned,
            closeout.plans_updated,
            closeout.plans_scanned,
        )
    except Exception:  # pragma: no cover - defensive guard
        session.rollback()
        logger.exception("Maintenance job failed")
    finally:
        session.close()


if __name__ == "__main__":  # pragma: no cover - manual launch
    main()
