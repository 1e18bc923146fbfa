"""
Billing Celery Tasks
Periodic clearinghouse status polling and automatic billing of unbilled sessions
Source: https://docs.celeryq.dev/en/stable/userguide/tasks.html
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Optional, TypeVar

from aac_billing.api.config import settings
from aac_billing.db.connection import create_engine_for_url, create_session_maker
from aac_billing.services.billing_container import BillingServices, build_billing_services
from aac_billing.services.session_source import InMemorySessionSource, SessionSource
from aac_billing.utils.celery_app import celery_app
from aac_billing.utils.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

# Session tracking lives outside this service; deployments register their adapter here.
_session_source: SessionSource = InMemorySessionSource()


def set_session_source(source: SessionSource) -> None:
    """Register the session source used by the worker's billing sweep."""
    global _session_source
    _session_source = source


async def run_with_services(job: Callable[[BillingServices], Awaitable[T]]) -> T:
    """
    Run ``job`` against freshly built billing services.

    Each task invocation gets its own event loop, so the engine is created
    and disposed per run rather than shared with the API process.
    """
    engine = create_engine_for_url(settings.database_url, pooled=False)
    services = build_billing_services(create_session_maker(engine), session_source=_session_source)
    try:
        return await job(services)
    finally:
        await services.close()
        await engine.dispose()


@celery_app.task(name="billing.poll_claim_statuses")
def poll_claim_statuses_task() -> dict:
    """
    Apply clearinghouse status for every claim awaiting the payer.

    Returns:
        Task result with the number of claims that changed status
    """
    logger.info("Claim status poll started")
    changed = asyncio.run(run_with_services(lambda s: s.claims.poll_claim_statuses()))
    logger.info(f"Claim status poll completed: {changed} claims changed")
    return {"status": "completed", "changed": changed}


@celery_app.task(name="billing.bill_unbilled_sessions")
def bill_unbilled_sessions_task(lookback_days: Optional[int] = None) -> dict:
    """
    Create draft claims for recent sessions that are not on any claim.

    Args:
        lookback_days: Days of sessions to scan (BILLING_UNBILLED_LOOKBACK_DAYS by default)

    Returns:
        Task result with the created claim ids
    """
    logger.info("Automatic billing started")
    claims = asyncio.run(
        run_with_services(lambda s: s.claims.bill_unbilled_sessions(lookback_days=lookback_days))
    )
    claim_ids = [claim.id for claim in claims]
    logger.info(f"Automatic billing completed: {len(claim_ids)} claims created")
    return {"status": "completed", "claims_created": len(claim_ids), "claim_ids": claim_ids}
