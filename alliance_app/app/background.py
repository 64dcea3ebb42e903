"""In-process background work for the web workers.

Interaction requests must be answered within a few seconds, so network-heavy side
effects (provisioning, thread creation, teardown retries) are handed to an
APScheduler ``BackgroundScheduler`` owned by the application. Jobs run inside
``app.app_context()`` so they can use the models and ``current_app.logger``.

This is distinct from ``scheduler.py``, which is the separate process running the
persisted periodic jobs.
"""
from __future__ import annotations
import threading
from typing import Callable, Optional

from apscheduler.job import Job
from apscheduler.schedulers.background import BackgroundScheduler
from flask import Flask


class BackgroundRunner:
    def __init__(self, app: Flask, enabled: bool = True):
        self.app = app
        self.enabled = enabled
        self._lock = threading.Lock()
        self._scheduler: Optional[BackgroundScheduler] = None

    @property
    def scheduler(self) -> BackgroundScheduler:
        with self._lock:
            if self._scheduler is None:
                self._scheduler = BackgroundScheduler(daemon=True)
                self._scheduler.start()
                self.app.logger.info("Background scheduler started")
            return self._scheduler

    def _run_in_context(self, fn: Callable, args: tuple, kwargs: dict):
        with self.app.app_context():
            try:
                return fn(*args, **kwargs)
            except Exception:
                self.app.logger.exception("Background task %s failed", getattr(fn, "__name__", fn))

    def submit(self, fn: Callable, *args, **kwargs) -> None:
        """Run ``fn`` once, as soon as possible, in an application context.

        When background work is disabled the call runs inline, in the caller's context.
        """
        if not self.enabled:
            fn(*args, **kwargs)
            return
        self.scheduler.add_job(self._run_in_context, args=[fn, args, kwargs])

    def add_interval(self, fn: Callable, seconds: int, job_id: str) -> Optional[Job]:
        """Register a paused interval job; callers resume it when there is work."""
        if not self.enabled:
            return None
        job = self.scheduler.add_job(
            self._run_in_context,
            "interval",
            seconds=seconds,
            id=job_id,
            args=[fn, (), {}],
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        job.pause()
        return job

    def shutdown(self) -> None:
        with self._lock:
            if self._scheduler is not None:
                self._scheduler.shutdown(wait=False)
                self._scheduler = None
