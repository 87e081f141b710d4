"""Background tasks for the lockers service."""

from libs.common.logging import get_logger
from libs.db.session import session_scope
from services.lockers_service.dependencies import get_dispatcher
from services.lockers_service.harbor_client import get_harbor_client
from services.lockers_service.services.allocation import retry_pending_allocations
from services.lockers_service.services.expiry import expire_stale_pickups

logger = get_logger(__name__)


async def expire_stale_pickups_job(session_factory=None, dispatcher=None) -> dict:
    """Expire ready orders nobody collected within the hold period."""
    async with session_scope(session_factory) as db:
        summary = await expire_stale_pickups(db, dispatcher or get_dispatcher())
    logger.info("Expiry sweep finished: %s", summary)
    return summary


async def retry_pending_allocations_job(session_factory=None, client=None) -> dict:
    """Retry allocation for orders whose provider call failed earlier."""
    async with session_scope(session_factory) as db:
        summary = await retry_pending_allocations(db, client or get_harbor_client())
    logger.info("Allocation retry finished: %s", summary)
    return summary
