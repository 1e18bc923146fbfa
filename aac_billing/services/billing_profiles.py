"""
Billing Profile Store.

Per-patient insurance, address, payment method, authorizations and
balance. Upsert is a full replace keyed by patient id.
"""

import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from aac_billing.core.enums import BillingEventType
from aac_billing.db.repository import BillingRepository
from aac_billing.schemas.billing import BillingProfile
from aac_billing.services.billing_events import BillingEventPublisher
from aac_billing.utils.locks import KeyedLock

logger = logging.getLogger(__name__)


class BillingProfileService:
    """Reads and replaces billing profiles."""

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        events: BillingEventPublisher,
        locks: KeyedLock,
    ):
        self.session_maker = session_maker
        self.events = events
        self.locks = locks

    async def upsert_profile(self, profile: BillingProfile) -> BillingProfile:
        """
        Store ``profile``, replacing any existing profile for the patient.

        Authorization consumption already recorded is never rolled back by
        an upsert.
        """
        async with self.locks.hold(profile.patient_id):
            async with self.session_maker() as session, session.begin():
                saved = await BillingRepository(session).save_profile(profile)

        logger.info(
            f"Billing profile saved for patient {profile.patient_id} "
            f"({len(saved.authorizations)} authorizations)"
        )
        await self.events.emit(
            BillingEventType.PROFILE_UPDATED,
            patient_id=saved.patient_id,
            insurance_provider=saved.insurance_info.provider,
        )
        return saved

    async def get_profile(self, patient_id: str) -> Optional[BillingProfile]:
        async with self.session_maker() as session:
            return await BillingRepository(session).get_profile(patient_id)

    async def list_profiles(self) -> list[BillingProfile]:
        async with self.session_maker() as session:
            return await BillingRepository(session).list_profiles()
