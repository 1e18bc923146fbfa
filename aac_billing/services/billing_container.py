"""
Billing service wiring.

Builds the billing services around one session factory, event publisher
and lock table so the API, the Celery tasks and the tests share the same
construction.
"""

from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from aac_billing.core.config import BillingSettings, get_billing_settings
from aac_billing.gateways.clearinghouse_gateway import (
    ClearinghouseGateway,
    get_clearinghouse_gateway,
)
from aac_billing.services.authorization_resolver import AuthorizationResolver
from aac_billing.services.billable_sessions import BillableSessionGenerator
from aac_billing.services.billing_events import BillingEventPublisher
from aac_billing.services.billing_export import BillingExportService
from aac_billing.services.billing_profiles import BillingProfileService
from aac_billing.services.billing_reports import BillingReportService
from aac_billing.services.claim_engine import ClaimLifecycleEngine
from aac_billing.services.cpt_catalog import CPTCatalog, get_cpt_catalog
from aac_billing.services.session_source import InMemorySessionSource, SessionSource
from aac_billing.utils.locks import KeyedLock


@dataclass
class BillingServices:
    """The billing engine's collaborating services."""

    settings: BillingSettings
    catalog: CPTCatalog
    events: BillingEventPublisher
    clearinghouse: ClearinghouseGateway
    session_source: SessionSource
    profiles: BillingProfileService
    authorizations: AuthorizationResolver
    claims: ClaimLifecycleEngine
    reports: BillingReportService
    exports: BillingExportService

    async def close(self) -> None:
        await self.clearinghouse.close()


def build_billing_services(
    session_maker: async_sessionmaker[AsyncSession],
    session_source: Optional[SessionSource] = None,
    clearinghouse: Optional[ClearinghouseGateway] = None,
    settings: Optional[BillingSettings] = None,
    events: Optional[BillingEventPublisher] = None,
    catalog: Optional[CPTCatalog] = None,
) -> BillingServices:
    """Construct the billing services; unspecified collaborators use defaults."""
    settings = settings or get_billing_settings()
    catalog = catalog or get_cpt_catalog()
    events = events or BillingEventPublisher()
    clearinghouse = clearinghouse or get_clearinghouse_gateway(settings)
    session_source = session_source if session_source is not None else InMemorySessionSource()
    locks = KeyedLock()
    profiles = BillingProfileService(session_maker, events, locks)

    return BillingServices(
        settings=settings,
        catalog=catalog,
        events=events,
        clearinghouse=clearinghouse,
        session_source=session_source,
        profiles=profiles,
        authorizations=AuthorizationResolver(session_maker, events, settings),
        claims=ClaimLifecycleEngine(
            session_maker,
            BillableSessionGenerator(catalog, session_source),
            clearinghouse,
            events,
            locks,
            settings,
        ),
        reports=BillingReportService(session_maker, settings),
        exports=BillingExportService(session_maker, profiles, locks),
    )
