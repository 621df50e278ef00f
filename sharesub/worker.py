"""ARQ worker: background job processing."""

import logging

from arq import cron
from arq.connections import RedisSettings

from sharesub.config import get_settings
from sharesub.constants import ARQ_JOB_TIMEOUT, ARQ_MAX_JOBS

logger = logging.getLogger(__name__)


async def startup(ctx: dict) -> None:
    from sharesub.context import build_context
    from sharesub.db.session import create_engine, create_session_factory
    from sharesub.utils import setup_logging

    settings = get_settings()
    setup_logging(verbose=settings.debug)
    ctx["engine"] = create_engine(settings)
    ctx["session_factory"] = create_session_factory(ctx["engine"])
    ctx["app_context"] = build_context(settings)


async def shutdown(ctx: dict) -> None:
    await ctx["app_context"].locks.close()
    await ctx["engine"].dispose()


async def pending_setup_sweeper(ctx: dict) -> None:
    """Cron job: every hour, drop joins whose payment setup never completed."""
    from sharesub.scheduler_tasks import expire_pending_setups

    async with ctx["session_factory"]() as db:
        await expire_pending_setups(db, ctx["app_context"])


class WorkerSettings:
    """ARQ worker configuration."""

    cron_jobs = [cron(pending_setup_sweeper, minute=15)]  # Every hour at :15
    on_startup = startup
    on_shutdown = shutdown

    redis_settings = RedisSettings.from_dsn(get_settings().redis_url or "redis://localhost:6379")

    max_jobs = ARQ_MAX_JOBS
    job_timeout = ARQ_JOB_TIMEOUT
