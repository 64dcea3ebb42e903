from __future__ import annotations

from flask import current_app

from .runtime import get_runtime


# Job decorator for scheduler auto-discovery
def job(**meta):
    """Decorator to mark a function as a scheduled job.

    Example:
        @job(schedule='interval', minutes=10, id='sweep_leftover_resources')
        def sweep_leftover_resources():
            ...
    Supported meta keys: schedule (e.g. 'interval'), id, minutes, seconds, hours
    """

    def _decorator(fn):
        setattr(fn, "job_meta", meta)
        return fn

    return _decorator


@job(schedule="interval", minutes=10, id="sweep_leftover_resources")
def sweep_leftover_resources() -> int:
    """Re-run teardown for finished or cancelled alliances that still own live resources.

    Catches anything left behind by a worker that died mid-teardown. Resources whose
    delete failed hard or hit the retry ceiling carry ``abandoned_at`` and are skipped.
    Returns the number of alliances swept.
    """
    runtime = get_runtime()
    alliance_ids = runtime.controller.leftover_alliances()
    if not alliance_ids:
        current_app.logger.info("sweep_leftover_resources: nothing to clean up")
        return 0
    current_app.logger.info("sweep_leftover_resources: %s alliance(s) with live resources", len(alliance_ids))
    for alliance_id in alliance_ids:
        runtime.teardown.teardown(alliance_id)
    return len(alliance_ids)
