"""
Outbox Jobs

Retries post-commit steps (group back-fill, Tier-1 allocation, pick list,
audit) that failed or never ran after an order was committed.
"""

import logging
from datetime import datetime, timezone
from typing import Dict

logger = logging.getLogger(__name__)


async def retry_post_commit_events() -> Dict[str, int]:
    """
    Retry pending and failed outbox events.

    Events that reached OUTBOX_MAX_ATTEMPTS are left as failed for manual
    follow-up.
    """
    logger.info("Starting post-commit event retry...")
    start_time = datetime.now(timezone.utc)

    from app.database import get_db_session
    from app.services.post_commit_service import PostCommitService

    async with get_db_session() as session:
        result = await PostCommitService(session).retry_pending()

    duration = (datetime.now(timezone.utc) - start_time).total_seconds()
    logger.info(
        f"Post-commit retry completed: {result['succeeded']}/{result['processed']} events succeeded "
        f"in {duration:.2f}s"
    )
    return result
