"""
Health Check Routes
Service health monitoring endpoints
Source: https://microservices.io/patterns/observability/health-check-api.html
"""

from typing import Any

from fastapi import APIRouter, Depends

from aac_billing.api.deps import get_billing_services
from aac_billing.db.connection import check_db_connection
from aac_billing.services.billing_container import BillingServices
from aac_billing.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(tags=["Health"])


@router.get("/health")
async def health_check() -> dict[str, Any]:
    """Basic health check endpoint for load balancers."""
    return {
        "status": "healthy",
        "service": "aac-billing-api",
    }


@router.get("/health/detailed")
async def detailed_health_check(
    services: BillingServices = Depends(get_billing_services),
) -> dict[str, Any]:
    """Health of the database and the clearinghouse gateway."""
    db_healthy = await check_db_connection()
    clearinghouse = services.clearinghouse.health

    overall_status = "healthy" if db_healthy and not clearinghouse.is_circuit_open else "unhealthy"
    if overall_status != "healthy":
        logger.warning(
            f"Health check degraded: database={db_healthy}, "
            f"clearinghouse={clearinghouse.status.value}"
        )

    return {
        "status": overall_status,
        "service": "aac-billing-api",
        "checks": {
            "database": "healthy" if db_healthy else "unhealthy",
            "clearinghouse": clearinghouse.status.value,
        },
    }
