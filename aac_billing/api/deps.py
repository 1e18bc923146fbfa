"""
FastAPI Dependencies
Dependency injection for the billing services
Source: https://fastapi.tiangolo.com/tutorial/dependencies/
"""

from fastapi import Request

from aac_billing.services.billing_container import BillingServices


def get_billing_services(request: Request) -> BillingServices:
    """
    Billing services built at application startup.

    Tests replace this dependency through ``app.dependency_overrides``.
    """
    services: BillingServices | None = getattr(request.app.state, "billing", None)
    if services is None:
        raise RuntimeError("Billing services are not initialized")
    return services
