# app/tasks/scheduler.py
from __future__ import annotations

import atexit
import os

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger


def start_scheduler(app):
    """
    Runs the circulation sweep (expiry, overdue, reminders) in the background.
    Jobs run inside an app context; under the debug reloader only the
    serving process starts the scheduler.
    """
    if not app.config.get("SCHEDULER_ENABLED", True):
        app.logger.info("[scheduler] Disabled by config.")
        return None

    if app.debug and os.environ.get("WERKZEUG_RUN_MAIN") != "true":
        app.logger.info("[scheduler] Debug reloader secondary process: scheduler skipped.")
        return None

    # imported late to avoid an import cycle with the services
    from app.tasks.circulation_check import run_circulation_check

    interval = app.config.get("SCHEDULER_INTERVAL_MINUTES", 10)
    scheduler = BackgroundScheduler(timezone="UTC")

    def _job_wrapper():
        with app.app_context():
            try:
                run_circulation_check()
            except Exception as ex:
                app.logger.exception(f"[scheduler] circulation_check error: {ex}")

    scheduler.add_job(
        func=_job_wrapper,
        trigger=IntervalTrigger(minutes=interval),
        id="circulation_check_job",
        replace_existing=True,
        max_instances=1,
        coalesce=True,          # missed runs collapse into one
        misfire_grace_time=120
    )

    scheduler.start()
    app.logger.info(f"[scheduler] Circulation check job started (every {interval} minutes).")

    app.extensions["apscheduler"] = scheduler
    atexit.register(lambda: scheduler.shutdown(wait=False))
    return scheduler
