"""
Pytest Configuration and Fixtures.
Shared test fixtures for all test modules.
"""

import itertools
from datetime import date
from decimal import Decimal
from typing import Optional

import pytest
import pytest_asyncio

from aac_billing.core.config import BillingSettings
from aac_billing.core.enums import AuthorizationStatus, ClearinghouseProvider
from aac_billing.db.connection import create_engine_for_url, create_session_maker, init_db
from aac_billing.gateways.base import GatewayConfig
from aac_billing.gateways.clearinghouse_gateway import SimulatedClearinghouseGateway
from aac_billing.schemas.billing import (
    Address,
    Authorization,
    BillingProfile,
    InsuranceInfo,
    SessionRecord,
)
from aac_billing.services.billing_container import build_billing_services
from aac_billing.services.billing_events import BillingEventPublisher
from aac_billing.services.session_source import InMemorySessionSource

SERVICE_DATE = date(2026, 3, 10)


@pytest_asyncio.fixture
async def engine(tmp_path):
    """Fresh SQLite database per test."""
    engine = create_engine_for_url(f"sqlite+aiosqlite:///{tmp_path / 'billing.db'}", pooled=False)
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(engine):
    return create_session_maker(engine)


@pytest.fixture
def billing_settings():
    return BillingSettings(
        CLEARINGHOUSE_PROVIDER=ClearinghouseProvider.SIMULATED,
        CLEARINGHOUSE_RETRY_ATTEMPTS=3,
        CLEARINGHOUSE_RETRY_DELAY_SECONDS=0,
    )


@pytest.fixture
def clearinghouse():
    return SimulatedClearinghouseGateway(
        GatewayConfig(
            provider=ClearinghouseProvider.SIMULATED.value,
            retry_attempts=3,
            retry_delay_seconds=0,
        )
    )


@pytest.fixture
def session_source():
    return InMemorySessionSource()


@pytest.fixture
def events():
    return BillingEventPublisher()


@pytest.fixture
def recorded_events(events):
    """Every event published during the test, in order."""
    recorded = []
    events.subscribe(recorded.append)
    return recorded


@pytest.fixture
def billing(session_maker, session_source, clearinghouse, billing_settings, events):
    return build_billing_services(
        session_maker,
        session_source=session_source,
        clearinghouse=clearinghouse,
        settings=billing_settings,
        events=events,
    )


@pytest.fixture
def make_authorization():
    """Factory for authorizations covering 2026."""

    def _make(
        auth_id: str = "auth-1",
        total_units: int = 10,
        used_units: int = 0,
        start_date: date = date(2026, 1, 1),
        end_date: date = date(2026, 12, 31),
        status: AuthorizationStatus = AuthorizationStatus.ACTIVE,
    ) -> Authorization:
        return Authorization(
            id=auth_id,
            auth_number=f"PA-{auth_id}",
            start_date=start_date,
            end_date=end_date,
            total_units=total_units,
            used_units=used_units,
            cpt_codes=["92507", "92508"],
            diagnosis_codes=["F80.2"],
            status=status,
        )

    return _make


@pytest.fixture
def make_profile(make_authorization):
    """Factory for billing profiles; one 10-unit authorization by default."""

    def _make(
        patient_id: str = "patient-1",
        authorizations: Optional[list[Authorization]] = None,
        provider: str = "Blue Cross",
        balance: Decimal = Decimal("0.00"),
    ) -> BillingProfile:
        return BillingProfile(
            patient_id=patient_id,
            insurance_info=InsuranceInfo(
                provider=provider,
                policy_number="POL-12345",
                subscriber_id="SUB-6789",
                subscriber_name="Jordan Rivera",
                effective_date=date(2025, 1, 1),
            ),
            billing_address=Address(
                street1="100 Main St",
                city="Springfield",
                state="IL",
                zip_code="62701",
            ),
            authorizations=(
                authorizations if authorizations is not None else [make_authorization()]
            ),
            balance=balance,
        )

    return _make


@pytest.fixture
def add_sessions(session_source):
    """Register completed sessions with the session source and return their ids."""
    counter = itertools.count(1)

    def _add(
        patient_id: str = "patient-1",
        count: int = 1,
        session_date: date = SERVICE_DATE,
        cpt_code: str = "92507",
        modifiers: Optional[list[str]] = None,
    ) -> list[str]:
        ids = []
        for _ in range(count):
            session_id = f"{patient_id}-session-{next(counter)}"
            session_source.add(
                SessionRecord(
                    session_id=session_id,
                    patient_id=patient_id,
                    session_date=session_date,
                    duration_minutes=45,
                    cpt_code=cpt_code,
                    modifiers=modifiers or [],
                )
            )
            ids.append(session_id)
        return ids

    return _add


# Configure pytest markers
def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line(
        "markers", "unit: mark test as a unit test"
    )
    config.addinivalue_line(
        "markers", "integration: mark test as an integration test"
    )
    config.addinivalue_line(
        "markers", "api: mark test as an API test"
    )
