"""
Billing data export and import.

JSON exports are complete and can be imported back; CSV is a claim summary
for spreadsheets.
"""

import json
import logging
from typing import Any, Union

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from aac_billing.core.enums import ExportFormat
from aac_billing.db.repository import BillingRepository
from aac_billing.schemas.billing import BillingImportResult, BillingProfile, Claim
from aac_billing.services.billing_errors import BillingError
from aac_billing.services.billing_profiles import BillingProfileService
from aac_billing.utils.export_formatters import format_billing_as_json, format_claims_as_csv
from aac_billing.utils.locks import KeyedLock

logger = logging.getLogger(__name__)


class BillingImportError(BillingError):
    """Import payload is not a billing JSON export."""

    pass


def parse_billing_export(
    payload: Union[str, bytes, dict[str, Any]],
) -> tuple[list[BillingProfile], list[Claim]]:
    """
    Rehydrate profiles and claims from a JSON export.

    Dates, datetimes, enums and money strings are validated back into
    their domain types.
    """
    try:
        data = json.loads(payload) if isinstance(payload, (str, bytes)) else payload
        profiles = [BillingProfile.model_validate(item) for _, item in data.get("profiles", [])]
        claims = [Claim.model_validate(item) for _, item in data.get("claims", [])]
    except (ValueError, TypeError, AttributeError, PydanticValidationError) as e:
        raise BillingImportError(f"Invalid billing export: {e}")
    return profiles, claims


class BillingExportService:
    """Exports and imports the billing data set."""

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        profiles: BillingProfileService,
        locks: KeyedLock,
    ):
        self.session_maker = session_maker
        self.profiles = profiles
        self.locks = locks

    async def export_billing_data(self, format: ExportFormat = ExportFormat.JSON) -> str:
        async with self.session_maker() as session, session.begin():
            repo = BillingRepository(session)
            profiles = await repo.list_profiles()
            claims = await repo.list_claims()

        logger.info(
            f"Exporting {len(profiles)} profiles and {len(claims)} claims as {format.value}"
        )
        if format == ExportFormat.CSV:
            return format_claims_as_csv(claims)
        return format_billing_as_json(profiles, claims)

    async def import_billing_data(
        self, payload: Union[str, bytes, dict[str, Any]]
    ) -> BillingImportResult:
        """
        Load a JSON export.

        Profiles go through the regular upsert, so each one takes the
        patient's lock and announces ``profile_updated``. Claims whose id
        already exists, whose patient has no profile, or whose sessions are
        already billed are skipped.
        """
        profiles, claims = parse_billing_export(payload)

        for profile in profiles:
            await self.profiles.upsert_profile(profile)

        claims_imported = 0
        for claim in claims:
            async with self.locks.hold(claim.patient_id):
                if await self._import_claim(claim):
                    claims_imported += 1

        logger.info(f"Imported {len(profiles)} profiles and {claims_imported} claims")
        return BillingImportResult(
            profiles_imported=len(profiles),
            claims_imported=claims_imported,
        )

    async def _import_claim(self, claim: Claim) -> bool:
        async with self.session_maker() as session, session.begin():
            repo = BillingRepository(session)
            if await repo.get_claim_record(claim.id) is not None:
                logger.info(f"Import: claim {claim.id} already exists; skipped")
                return False
            if await repo.get_profile_record(claim.patient_id) is None:
                logger.warning(
                    f"Import: claim {claim.id} has no profile for patient "
                    f"{claim.patient_id}; skipped"
                )
                return False
            billed = await repo.billed_session_ids(s.session_id for s in claim.sessions)
            if billed:
                logger.warning(
                    f"Import: claim {claim.id} sessions already billed {sorted(billed)}; skipped"
                )
                return False
            await repo.add_claim(claim)
        return True
