"""arq worker settings module.

Import path for arq CLI: arq habitloop.workers.settings.WorkerSettings
"""

from __future__ import annotations

from arq import cron
from arq.connections import RedisSettings

from habitloop.config import get_settings
from habitloop.predictions.worker import (
    refresh_leaderboard_job,
    resolve_poll_job,
    worker_shutdown,
    worker_startup,
)


class WorkerSettings:
    """arq worker settings for prediction jobs."""

    functions = [resolve_poll_job, refresh_leaderboard_job]
    cron_jobs = [
        cron(refresh_leaderboard_job, minute=set(range(0, 60, 5)), run_at_startup=True),
    ]
    on_startup = worker_startup
    on_shutdown = worker_shutdown
    redis_settings = RedisSettings.from_dsn(get_settings().redis_url)
    max_jobs = 4
    job_timeout = 300
    max_tries = 5
    allow_abort_jobs = True


__all__ = ["WorkerSettings"]
