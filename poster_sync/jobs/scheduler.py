from __future__ import annotations

import time

import uvicorn
from apscheduler.schedulers.background import BackgroundScheduler
from loguru import logger

from poster_sync.api.health import create_app
from poster_sync.config import Settings, load_settings
from poster_sync.db.engine import get_engine
from poster_sync.jobs.runner import configure_logging, run_sync_once

JOB_ID = "poster_sync"


def _run_sync_job(settings: Settings) -> None:
    try:
        run_sync_once(settings=settings, run_type="sync_scheduled")
    except Exception:
        logger.exception("Scheduled sync failed")


def build_scheduler(settings: Settings) -> BackgroundScheduler:
    scheduler = BackgroundScheduler(
        job_defaults={
            "max_instances": settings.sync_max_instances,
            "coalesce": settings.sync_coalesce,
            "misfire_grace_time": settings.sync_misfire_grace_seconds,
        }
    )
    scheduler.add_job(
        _run_sync_job,
        "interval",
        seconds=settings.sync_interval_seconds,
        id=JOB_ID,
        args=[settings],
    )
    return scheduler


def main() -> int:
    settings = load_settings()
    configure_logging(settings.log_level)

    scheduler = build_scheduler(settings)
    scheduler.start()
    logger.info("Scheduler started: interval={}s", settings.sync_interval_seconds)

    try:
        if settings.health_enabled:
            app = create_app(get_engine(settings))
            logger.info("Health endpoint on {}:{}", settings.health_host, settings.health_port)
            uvicorn.run(app, host=settings.health_host, port=settings.health_port, log_level="warning")
        else:
            while True:
                time.sleep(1)
    except KeyboardInterrupt:
        pass
    finally:
        logger.info("Scheduler stopping...")
        scheduler.shutdown(wait=False)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
