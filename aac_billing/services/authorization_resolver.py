"""
Authorization Resolver.

Finds the authorization that covers a date of service, and reports on a
patient's current authorization for front-desk warnings.
"""

import logging
from datetime import date
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from aac_billing.core.config import BillingSettings
from aac_billing.core.enums import AuthorizationStatus, BillingEventType
from aac_billing.db.repository import BillingRepository
from aac_billing.schemas.billing import Authorization, AuthorizationStatusReport, BillingProfile
from aac_billing.services.billing_events import BillingEventPublisher

logger = logging.getLogger(__name__)


def find_applicable_authorization(
    profile: BillingProfile, service_date: date
) -> Optional[Authorization]:
    """
    First authorization, in stored order, that is active, covers
    ``service_date`` and still has units left.

    No fallback: without a match the claim must not be created.
    """
    for auth in profile.authorizations:
        if (
            auth.status == AuthorizationStatus.ACTIVE
            and auth.start_date <= service_date <= auth.end_date
            and auth.used_units < auth.total_units
        ):
            return auth
    return None


def find_current_authorization(
    profile: BillingProfile, today: date
) -> Optional[Authorization]:
    """First active, unexpired authorization with units left."""
    for auth in profile.authorizations:
        if (
            auth.status == AuthorizationStatus.ACTIVE
            and not auth.is_expired(today)
            and auth.used_units < auth.total_units
        ):
            return auth
    return None


def authorization_warnings(
    auth: Authorization, today: date, settings: BillingSettings
) -> list[str]:
    warnings = []
    units_remaining = auth.units_remaining
    days_until_expiry = (auth.end_date - today).days

    if units_remaining < settings.AUTH_UNITS_WARNING_THRESHOLD:
        warnings.append(f"Only {units_remaining} units remaining")
    if days_until_expiry < settings.AUTH_EXPIRY_WARNING_DAYS:
        warnings.append(f"Authorization expires in {days_until_expiry} days")
    return warnings


class AuthorizationResolver:
    """Authorization status lookups backed by the profile store."""

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        events: BillingEventPublisher,
        settings: BillingSettings,
    ):
        self.session_maker = session_maker
        self.events = events
        self.settings = settings

    async def check_authorization_status(
        self, patient_id: str, today: Optional[date] = None
    ) -> AuthorizationStatusReport:
        """Units remaining, expiry and warnings for the patient's current authorization."""
        today = today or date.today()

        async with self.session_maker() as session:
            profile = await BillingRepository(session).get_profile(patient_id)

        if profile is None:
            return AuthorizationStatusReport(
                patient_id=patient_id,
                has_active=False,
                warnings=["No billing profile found"],
            )

        auth = find_current_authorization(profile, today)
        if auth is None:
            return AuthorizationStatusReport(
                patient_id=patient_id,
                has_active=False,
                warnings=["No active authorization found"],
            )

        warnings = authorization_warnings(auth, today, self.settings)
        if warnings:
            await self.events.emit(
                BillingEventType.AUTHORIZATION_NEAR_LIMIT,
                patient_id=patient_id,
                authorization_id=auth.id,
                units_remaining=auth.units_remaining,
                expiration_date=auth.end_date.isoformat(),
                warnings=warnings,
            )

        return AuthorizationStatusReport(
            patient_id=patient_id,
            has_active=True,
            units_remaining=auth.units_remaining,
            expiration_date=auth.end_date,
            warnings=warnings,
        )
