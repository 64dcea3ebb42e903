"""Dedicated scheduler process for the periodic maintenance jobs.

Runs separately from the WSGI workers (separate container or systemd service). Job
definitions are persisted with SQLAlchemyJobStore; each job is stored as a textual
reference to ``run_job_in_app_context`` so the store can reload it after a restart.

The in-request background work (provisioning, teardown retries) does not go through
here: it runs on the web process's own ``BackgroundRunner``.
"""
from __future__ import annotations

import logging
import time
from logging.handlers import RotatingFileHandler
from typing import Optional

from apscheduler.jobstores.sqlalchemy import SQLAlchemyJobStore
from apscheduler.schedulers.background import BackgroundScheduler
from flask import Flask

from . import create_app

logger = logging.getLogger("scheduler")

_app: Optional[Flask] = None


def setup_logging(path: str = "/tmp/alliance-scheduler.log"):
    handler = RotatingFileHandler(path, maxBytes=10 * 1024 * 1024, backupCount=3)
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)


def _get_app() -> Flask:
    # one app (and one teardown queue) per scheduler process
    global _app
    if _app is None:
        _app = create_app()
    return _app


def get_scheduler(app: Flask) -> BackgroundScheduler:
    jobstores = {
        "default": SQLAlchemyJobStore(url=app.config.get("SQLALCHEMY_DATABASE_URI"))
    }
    return BackgroundScheduler(jobstores=jobstores)


def run_job_in_app_context(module_name: str, func_name: str, *a, **kw):
    """Import ``module_name.func_name`` and run it inside the process's app context."""
    try:
        import importlib

        fn = getattr(importlib.import_module(module_name), func_name)
        with _get_app().app_context():
            return fn(*a, **kw)
    except Exception:
        logger.exception("Failed to run job %s.%s in app context", module_name, func_name)
        raise


def register_jobs(scheduler: BackgroundScheduler) -> int:
    """Register every function in ``jobs`` carrying ``@job(...)`` metadata. Returns the count."""
    # Stale persisted jobs may point at functions that no longer exist
    scheduler.remove_all_jobs()
    logger.info("Cleared existing jobs from jobstore before (re)registering")

    from . import jobs as jobs_module

    dispatcher_ref = f"{__name__}:run_job_in_app_context"
    registered = 0
    for name in dir(jobs_module):
        fn = getattr(jobs_module, name)
        meta = getattr(fn, "job_meta", None) if callable(fn) else None
        if not meta:
            continue
        schedule_type = meta.get("schedule", "interval")
        job_id = meta.get("id", name)
        if schedule_type != "interval":
            logger.info("Unsupported schedule type %s for job %s", schedule_type, name)
            continue
        interval_kwargs = {k: meta[k] for k in ("weeks", "days", "hours", "minutes", "seconds") if k in meta}
        if not interval_kwargs:
            interval_kwargs["minutes"] = 15
        scheduler.add_job(
            dispatcher_ref,
            "interval",
            args=[fn.__module__, fn.__name__],
            id=job_id,
            replace_existing=True,
            **interval_kwargs,
        )
        registered += 1
        logger.info("Registered job %s (via dispatcher) schedule=%s meta=%s", job_id, schedule_type, meta)
    if registered == 0:
        logger.info("No decorated jobs found in jobs module to register")
    return registered


def run():
    app = _get_app()
    setup_logging()

    scheduler = get_scheduler(app)
    register_jobs(scheduler)

    with app.app_context():
        scheduler.start()
        logger.info("Scheduler started")
        try:
            while True:
                time.sleep(60)
        except (KeyboardInterrupt, SystemExit):
            logger.info("Shutting down scheduler")
            scheduler.shutdown()
