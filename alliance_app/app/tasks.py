"""One-shot task runner invoked by a CronJob or ad-hoc.

Run with:
  python -m alliance_app.app.tasks run

Sweeps leftover alliance resources once, under a Postgres advisory lock so that
only one replica does it, then keeps retrying rate-limited deletes until the
retry queue is empty or every item was abandoned.
"""
from __future__ import annotations

import logging
import sys
import time

from . import create_app


logger = logging.getLogger("tasks")


def _run_app_tasks():
    app = create_app()
    with app.app_context():
        logger.info("Starting tasks runner")
        from .jobs import sweep_leftover_resources
        from .runtime import get_runtime
        from .utils.pg_lock import pg_try_advisory_lock

        fn_name = "sweep_leftover_resources"
        with pg_try_advisory_lock(fn_name) as locked:
            if not locked:
                logger.info("Lock not acquired for %s, skipping", fn_name)
                return
            logger.info("Lock acquired for %s, running job", fn_name)
            runtime = get_runtime()
            # drain the retry queue here rather than on background threads
            runtime.runner.enabled = False
            sweep_leftover_resources()

            teardown = runtime.teardown
            while len(teardown):
                time.sleep(teardown.interval)
                teardown.drain()
            logger.info("Job %s finished", fn_name)


def main(argv: list[str] | None = None) -> int:
    argv = argv or sys.argv[1:]
    if not argv or argv[0] != "run":
        print("Usage: python -m alliance_app.app.tasks run")
        return 2
    logging.basicConfig(level=logging.INFO)
    _run_app_tasks()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
