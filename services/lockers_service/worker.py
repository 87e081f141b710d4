"""ARQ worker for pickup expiry and allocation retries."""

from arq import cron
from libs.common.arq_config import get_redis_settings, worker_options
from libs.common.logging import configure_logging, get_logger

logger = get_logger(__name__)


async def startup(ctx: dict):
    configure_logging()
    logger.info("Lockers worker started")


async def task_expire_stale_pickups(ctx: dict):
    from services.lockers_service.tasks import expire_stale_pickups_job

    logger.info("Running: expire_stale_pickups")
    return await expire_stale_pickups_job()


async def task_retry_pending_allocations(ctx: dict):
    from services.lockers_service.tasks import retry_pending_allocations_job

    logger.info("Running: retry_pending_allocations")
    return await retry_pending_allocations_job()


_options = worker_options()


class WorkerSettings:
    redis_settings = get_redis_settings()
    on_startup = startup
    queue_name = _options["queue_name"]
    job_timeout = _options["job_timeout"]
    max_jobs = _options["max_jobs"]
    keep_result = _options["keep_result"]

    functions = [
        task_expire_stale_pickups,
        task_retry_pending_allocations,
    ]

    cron_jobs = [
        cron(
            task_expire_stale_pickups,
            minute={0, 15, 30, 45},
            run_at_startup=True,
        ),
        cron(
            task_retry_pending_allocations,
            minute={2, 7, 12, 17, 22, 27, 32, 37, 42, 47, 52, 57},
            run_at_startup=True,
        ),
    ]
