"""
Billing Repository.

Persistence for billing profiles, authorizations and claims. Maps between
the ORM records and the pydantic domain schemas; the caller owns the
session and its transaction.
"""

import logging
from collections.abc import Iterable
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from aac_billing.core.enums import AuthorizationStatus, ClaimStatus, StatusChangeSource
from aac_billing.models.billing import (
    AuthorizationRecord,
    BillableSessionRecord,
    BillingProfileRecord,
    ClaimRecord,
    ClaimStatusHistoryRecord,
)
from aac_billing.models.base import utcnow
from aac_billing.schemas.billing import (
    Address,
    Authorization,
    BillableSession,
    BillingProfile,
    Claim,
    ClaimStatusChange,
    InsuranceInfo,
    PaymentMethod,
)
from aac_billing.utils.money import to_money

logger = logging.getLogger(__name__)


# =============================================================================
# Record <-> Schema Mapping
# =============================================================================


def authorization_from_record(record: AuthorizationRecord) -> Authorization:
    return Authorization(
        id=record.id,
        auth_number=record.auth_number,
        start_date=record.start_date,
        end_date=record.end_date,
        total_units=record.total_units,
        used_units=record.used_units,
        unit_type=record.unit_type,
        cpt_codes=list(record.cpt_codes or []),
        diagnosis_codes=list(record.diagnosis_codes or []),
        status=record.status,
        notes=record.notes,
    )


def profile_from_record(record: BillingProfileRecord) -> BillingProfile:
    return BillingProfile(
        patient_id=record.patient_id,
        insurance_info=InsuranceInfo.model_validate(record.insurance_info),
        billing_address=Address.model_validate(record.billing_address),
        payment_method=(
            PaymentMethod.model_validate(record.payment_method) if record.payment_method else None
        ),
        authorizations=[authorization_from_record(a) for a in record.authorizations],
        balance=record.balance,
        credit_limit=record.credit_limit,
    )


def session_from_record(record: BillableSessionRecord) -> BillableSession:
    return BillableSession(
        session_id=record.session_id,
        service_date=record.session_date,
        duration_minutes=record.duration_minutes,
        cpt_code=record.cpt_code,
        modifiers=list(record.modifiers or []),
        units=record.units,
        rate=record.rate,
        amount=record.amount,
        notes=record.notes,
        supervision_required=record.supervision_required,
        supervisor_id=record.supervisor_id,
    )


def claim_from_record(record: ClaimRecord) -> Claim:
    return Claim(
        id=record.id,
        patient_id=record.patient_id,
        authorization_id=record.authorization_id,
        claim_number=record.claim_number,
        date_of_service=record.date_of_service,
        date_submitted=record.date_submitted,
        sessions=[session_from_record(s) for s in record.sessions],
        total_amount=record.total_amount,
        allowed_amount=record.allowed_amount,
        paid_amount=record.paid_amount,
        patient_responsibility=record.patient_responsibility,
        status=record.status,
        denial_reason=record.denial_reason,
        appeal_count=record.appeal_count,
        payment_date=record.payment_date,
        check_number=record.check_number,
        status_history=[
            ClaimStatusChange(
                previous_status=h.previous_status,
                new_status=h.new_status,
                source=h.source,
                reason=h.reason,
                changed_at=h.changed_at,
            )
            for h in record.status_history
        ],
    )


def _authorization_record(auth: Authorization, position: int) -> AuthorizationRecord:
    return AuthorizationRecord(
        id=auth.id,
        position=position,
        auth_number=auth.auth_number,
        start_date=auth.start_date,
        end_date=auth.end_date,
        total_units=auth.total_units,
        used_units=auth.used_units,
        unit_type=auth.unit_type,
        cpt_codes=list(auth.cpt_codes),
        diagnosis_codes=list(auth.diagnosis_codes),
        status=auth.status,
        notes=auth.notes,
    )


class BillingRepository:
    """
    Repository for billing profiles and claims.

    All writes happen inside the caller's transaction; nothing here commits.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    # =========================================================================
    # Profiles
    # =========================================================================

    async def get_profile_record(self, patient_id: str) -> Optional[BillingProfileRecord]:
        result = await self.session.execute(
            select(BillingProfileRecord)
            .where(BillingProfileRecord.patient_id == patient_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_profile(self, patient_id: str) -> Optional[BillingProfile]:
        record = await self.get_profile_record(patient_id)
        return profile_from_record(record) if record else None

    async def list_profiles(self) -> list[BillingProfile]:
        result = await self.session.execute(
            select(BillingProfileRecord).order_by(BillingProfileRecord.patient_id)
        )
        return [profile_from_record(r) for r in result.scalars().all()]

    async def save_profile(self, profile: BillingProfile) -> BillingProfile:
        """
        Replace the stored profile with ``profile``.

        Authorizations keep their stored consumption: an incoming
        ``used_units`` lower than the stored value is ignored, and an
        exhausted authorization stays exhausted.
        """
        record = await self.get_profile_record(profile.patient_id)
        if record is None:
            record = BillingProfileRecord(patient_id=profile.patient_id)
            record.authorizations = []
            self.session.add(record)

        record.insurance_info = profile.insurance_info.model_dump(mode="json")
        record.insurance_provider = profile.insurance_info.provider
        record.billing_address = profile.billing_address.model_dump(mode="json")
        record.payment_method = (
            profile.payment_method.model_dump(mode="json") if profile.payment_method else None
        )
        record.balance = profile.balance
        record.credit_limit = profile.credit_limit

        existing = {a.id: a for a in record.authorizations}
        authorizations: list[AuthorizationRecord] = []
        for position, auth in enumerate(profile.authorizations):
            stored = existing.get(auth.id)
            if stored is None:
                authorizations.append(_authorization_record(auth, position))
                continue

            used_units = max(stored.used_units, auth.used_units)
            if used_units > auth.used_units:
                logger.warning(
                    f"Authorization {auth.id}: kept stored used_units={stored.used_units} "
                    f"over incoming {auth.used_units}"
                )
            total_units = auth.total_units
            if used_units > total_units:
                logger.warning(
                    f"Authorization {auth.id}: total_units={total_units} is below consumed "
                    f"units; raised to {used_units}"
                )
                total_units = used_units
            status = auth.status
            if stored.status == AuthorizationStatus.EXHAUSTED or used_units >= total_units:
                status = AuthorizationStatus.EXHAUSTED

            stored.position = position
            stored.auth_number = auth.auth_number
            stored.start_date = auth.start_date
            stored.end_date = auth.end_date
            stored.total_units = total_units
            stored.used_units = used_units
            stored.unit_type = auth.unit_type
            stored.cpt_codes = list(auth.cpt_codes)
            stored.diagnosis_codes = list(auth.diagnosis_codes)
            stored.status = status
            stored.notes = auth.notes
            authorizations.append(stored)

        record.authorizations = authorizations
        await self.session.flush()
        return profile_from_record(record)

    async def add_to_balance(self, patient_id: str, amount: Decimal) -> None:
        """Atomically add ``amount`` to the patient's running balance."""
        await self.session.execute(
            update(BillingProfileRecord)
            .where(BillingProfileRecord.patient_id == patient_id)
            .values(balance=BillingProfileRecord.balance + to_money(amount))
            .execution_options(synchronize_session=False)
        )

    # =========================================================================
    # Authorizations
    # =========================================================================

    async def get_authorization(self, authorization_id: str) -> Optional[Authorization]:
        result = await self.session.execute(
            select(AuthorizationRecord)
            .where(AuthorizationRecord.id == authorization_id)
            .execution_options(populate_existing=True)
        )
        record = result.scalar_one_or_none()
        return authorization_from_record(record) if record else None

    async def consume_authorization_units(self, authorization_id: str, units: int) -> bool:
        """
        Add ``units`` to an active authorization's consumption.

        The update only applies while ``used_units + units <= total_units``,
        so two writers can never both spend the last units. Reaching the
        total flips the status to exhausted in the same transaction.
        """
        if units <= 0:
            raise ValueError("units must be positive")

        result = await self.session.execute(
            update(AuthorizationRecord)
            .where(
                AuthorizationRecord.id == authorization_id,
                AuthorizationRecord.status == AuthorizationStatus.ACTIVE,
                AuthorizationRecord.used_units + units <= AuthorizationRecord.total_units,
            )
            .values(
                used_units=AuthorizationRecord.used_units + units,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return False

        await self.session.execute(
            update(AuthorizationRecord)
            .where(
                AuthorizationRecord.id == authorization_id,
                AuthorizationRecord.used_units >= AuthorizationRecord.total_units,
            )
            .values(status=AuthorizationStatus.EXHAUSTED)
            .execution_options(synchronize_session=False)
        )
        return True

    # =========================================================================
    # Claims
    # =========================================================================

    async def add_claim(self, claim: Claim) -> ClaimRecord:
        record = ClaimRecord(
            id=claim.id,
            patient_id=claim.patient_id,
            authorization_id=claim.authorization_id,
            claim_number=claim.claim_number,
            status=claim.status,
            date_of_service=claim.date_of_service,
            date_submitted=claim.date_submitted,
            total_amount=claim.total_amount,
            allowed_amount=claim.allowed_amount,
            paid_amount=claim.paid_amount,
            patient_responsibility=claim.patient_responsibility,
            denial_reason=claim.denial_reason,
            appeal_count=claim.appeal_count,
            payment_date=claim.payment_date,
            check_number=claim.check_number,
        )
        record.sessions = [
            BillableSessionRecord(
                position=position,
                session_id=s.session_id,
                session_date=s.service_date,
                duration_minutes=s.duration_minutes,
                cpt_code=s.cpt_code,
                modifiers=list(s.modifiers),
                units=s.units,
                rate=s.rate,
                amount=s.amount,
                notes=s.notes,
                supervision_required=s.supervision_required,
                supervisor_id=s.supervisor_id,
            )
            for position, s in enumerate(claim.sessions)
        ]
        record.status_history = [
            ClaimStatusHistoryRecord(
                previous_status=h.previous_status,
                new_status=h.new_status,
                source=h.source,
                reason=h.reason,
                changed_at=h.changed_at,
            )
            for h in claim.status_history
        ]
        self.session.add(record)
        await self.session.flush()
        return record

    async def get_claim_record(self, claim_id: str) -> Optional[ClaimRecord]:
        result = await self.session.execute(
            select(ClaimRecord)
            .where(ClaimRecord.id == claim_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_claim_record_by_number(self, claim_number: str) -> Optional[ClaimRecord]:
        result = await self.session.execute(
            select(ClaimRecord)
            .where(ClaimRecord.claim_number == claim_number)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_claim(self, claim_id: str) -> Optional[Claim]:
        record = await self.get_claim_record(claim_id)
        return claim_from_record(record) if record else None

    async def list_claims(
        self,
        patient_id: Optional[str] = None,
        statuses: Optional[Iterable[ClaimStatus]] = None,
        service_from: Optional[date] = None,
        service_to: Optional[date] = None,
    ) -> list[Claim]:
        query = select(ClaimRecord)
        if patient_id:
            query = query.where(ClaimRecord.patient_id == patient_id)
        if statuses is not None:
            query = query.where(ClaimRecord.status.in_(list(statuses)))
        if service_from:
            query = query.where(ClaimRecord.date_of_service >= service_from)
        if service_to:
            query = query.where(ClaimRecord.date_of_service <= service_to)
        query = query.order_by(ClaimRecord.date_of_service, ClaimRecord.created_at)

        result = await self.session.execute(query)
        return [claim_from_record(r) for r in result.scalars().all()]

    async def billed_session_ids(self, session_ids: Iterable[str]) -> set[str]:
        """Session ids already attached to some claim."""
        ids = list(session_ids)
        if not ids:
            return set()
        result = await self.session.execute(
            select(BillableSessionRecord.session_id).where(BillableSessionRecord.session_id.in_(ids))
        )
        return set(result.scalars().all())

    def record_status_change(
        self,
        record: ClaimRecord,
        new_status: ClaimStatus,
        source: StatusChangeSource = StatusChangeSource.SYSTEM,
        reason: Optional[str] = None,
        changed_at: Optional[datetime] = None,
    ) -> None:
        """Set the claim status and append the change to its history."""
        previous_status = record.status
        record.status = new_status
        record.status_history.append(
            ClaimStatusHistoryRecord(
                previous_status=previous_status,
                new_status=new_status,
                source=source,
                reason=reason,
                changed_at=changed_at or utcnow(),
            )
        )
