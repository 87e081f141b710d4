"""ARQ worker configuration.

Redis connection and job limits for the lockers worker, read from settings.
"""

from urllib.parse import urlparse

from arq.connections import RedisSettings
from libs.common.config import get_settings


def get_redis_settings() -> RedisSettings:
    """REDIS_URL as ARQ RedisSettings; rediss:// turns on TLS."""
    parsed = urlparse(get_settings().REDIS_URL)
    if parsed.scheme not in ("redis", "rediss"):
        raise ValueError(f"Unsupported REDIS_URL scheme: {parsed.scheme!r}")

    return RedisSettings(
        host=parsed.hostname or "localhost",
        port=parsed.port or 6379,
        database=int(parsed.path.lstrip("/") or "0"),
        username=parsed.username or None,
        password=parsed.password,
        ssl=parsed.scheme == "rediss",
        conn_retries=5,
        conn_retry_delay=2,
    )


def worker_options() -> dict:
    """Queue and concurrency options shared by every WorkerSettings."""
    settings = get_settings()
    return {
        "queue_name": settings.WORKER_QUEUE_NAME,
        "job_timeout": settings.WORKER_JOB_TIMEOUT_SECONDS,
        "max_jobs": settings.WORKER_MAX_JOBS,
        # Sweeps are idempotent; a lost result is simply recomputed next run
        "keep_result": 0,
    }
