"""
Claim Lifecycle Engine.

Creates, submits, adjudicates and pays claims:
- Claim creation with authorization-unit consumption
- Submission through the clearinghouse gateway
- Denial, appeal and appeal resolution
- Payment recording and patient balance updates
- Clearinghouse status polling and webhook updates
- Automatic billing of unbilled sessions

Precondition failures and refused transitions are logged and reported as
None/False; only payment validation raises.
"""

import logging
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Awaitable, Callable, Optional
from uuid import uuid4

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from aac_billing.core.config import BillingSettings
from aac_billing.core.enums import (
    AuthorizationStatus,
    BillingEventType,
    ClaimStatus,
    StatusChangeSource,
)
from aac_billing.db.repository import BillingRepository, claim_from_record
from aac_billing.gateways.base import GatewayError
from aac_billing.gateways.clearinghouse_gateway import ClaimSubmission, ClearinghouseGateway
from aac_billing.models.base import utcnow
from aac_billing.models.billing import ClaimRecord
from aac_billing.schemas.billing import (
    Authorization,
    Claim,
    ClaimStatusChange,
    ClaimStatusUpdate,
    PaymentDetails,
)
from aac_billing.services.authorization_resolver import find_applicable_authorization
from aac_billing.services.billable_sessions import BillableSessionGenerator
from aac_billing.services.billing_errors import (
    ClaimNotFoundError,
    ClaimPreconditionError,
    InsufficientAuthorizationUnitsError,
    NoAuthorizationError,
    NoBillableSessionsError,
    NoProfileError,
    PaymentValidationError,
)
from aac_billing.services.billing_events import BillingEventPublisher
from aac_billing.services.claim_state_machine import (
    ClaimStateMachine,
    TransitionContext,
    TransitionEvent,
    get_claim_state_machine,
    is_awaiting_payer,
)
from aac_billing.utils.locks import KeyedLock
from aac_billing.utils.money import ZERO, money_sum

logger = logging.getLogger(__name__)

RecordMutator = Callable[[BillingRepository, ClaimRecord], Awaitable[None]]
RecordGuard = Callable[[ClaimRecord], Optional[str]]


@dataclass
class ClaimCreationResult:
    """Outcome of a claim creation attempt."""

    claim: Optional[Claim] = None
    error: Optional[ClaimPreconditionError] = None

    @property
    def success(self) -> bool:
        return self.claim is not None


def validate_payment(claim: Claim, payment: PaymentDetails) -> list[str]:
    """Consistency checks for a remittance against the claim it pays."""
    errors = []
    if payment.amount < ZERO:
        errors.append("Payment amount cannot be negative")
    if payment.allowed_amount < ZERO:
        errors.append("Allowed amount cannot be negative")
    if payment.patient_responsibility < ZERO:
        errors.append("Patient responsibility cannot be negative")
    if payment.amount > claim.total_amount:
        errors.append(
            f"Payment amount {payment.amount} exceeds claim total {claim.total_amount}"
        )
    if payment.allowed_amount > claim.total_amount:
        errors.append(
            f"Allowed amount {payment.allowed_amount} exceeds claim total {claim.total_amount}"
        )
    return errors


class ClaimLifecycleEngine:
    """
    Drives claims through the status state machine.

    Every mutation runs in one database transaction while holding the
    patient's lock.
    """

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        session_generator: BillableSessionGenerator,
        clearinghouse: ClearinghouseGateway,
        events: BillingEventPublisher,
        locks: KeyedLock,
        settings: BillingSettings,
        state_machine: Optional[ClaimStateMachine] = None,
    ):
        self.session_maker = session_maker
        self.session_generator = session_generator
        self.clearinghouse = clearinghouse
        self.events = events
        self.locks = locks
        self.settings = settings
        self.state_machine = state_machine or get_claim_state_machine()

    # =========================================================================
    # Creation
    # =========================================================================

    async def create_claim(
        self,
        patient_id: str,
        session_ids: list[str],
        submit_immediately: bool = False,
    ) -> Optional[Claim]:
        """Create a draft claim; None when a precondition is not met."""
        result = await self.attempt_create_claim(patient_id, session_ids, submit_immediately)
        return result.claim

    async def attempt_create_claim(
        self,
        patient_id: str,
        session_ids: list[str],
        submit_immediately: bool = False,
    ) -> ClaimCreationResult:
        """
        Create a claim for the given sessions.

        The claim and the authorization unit increment commit together or
        not at all. With ``submit_immediately`` the draft is submitted right
        away; a failed submission leaves it in draft.
        """
        async with self.locks.hold(patient_id):
            try:
                claim, authorization = await self._create_draft(patient_id, session_ids)
            except ClaimPreconditionError as e:
                logger.warning(f"Claim not created for patient {patient_id}: {e}")
                return ClaimCreationResult(error=e)

        logger.info(
            f"Created claim {claim.id} for patient {patient_id}: "
            f"{len(claim.sessions)} sessions, {claim.units} units, {claim.total_amount}"
        )
        await self.events.emit(
            BillingEventType.CLAIM_CREATED,
            patient_id=patient_id,
            claim_id=claim.id,
            amount=claim.total_amount,
            authorization_id=authorization.id,
            session_ids=[s.session_id for s in claim.sessions],
            units=claim.units,
        )
        await self._announce_authorization_usage(patient_id, authorization)

        if submit_immediately and await self.submit_claim(claim.id):
            claim = await self.get_claim(claim.id) or claim
        return ClaimCreationResult(claim=claim)

    async def _create_draft(
        self, patient_id: str, session_ids: list[str]
    ) -> tuple[Claim, Authorization]:
        async with self.session_maker() as session, session.begin():
            repo = BillingRepository(session)

            profile = await repo.get_profile(patient_id)
            if profile is None:
                raise NoProfileError(f"No billing profile for patient {patient_id}", patient_id)

            requested = list(dict.fromkeys(session_ids))
            already_billed = await repo.billed_session_ids(requested)
            lines = await self.session_generator.generate(patient_id, requested, already_billed)
            if not lines:
                raise NoBillableSessionsError(
                    f"No billable sessions among {requested}", patient_id
                )

            date_of_service = lines[0].service_date
            authorization = find_applicable_authorization(profile, date_of_service)
            if authorization is None:
                raise NoAuthorizationError(
                    f"No active authorization covers {date_of_service.isoformat()}", patient_id
                )

            units = sum(line.units for line in lines)
            if units > authorization.units_remaining:
                raise InsufficientAuthorizationUnitsError(
                    f"Authorization {authorization.auth_number} has "
                    f"{authorization.units_remaining} units left, claim needs {units}",
                    patient_id=patient_id,
                    authorization_id=authorization.id,
                    units_needed=units,
                    units_remaining=authorization.units_remaining,
                )

            if not await repo.consume_authorization_units(authorization.id, units):
                raise InsufficientAuthorizationUnitsError(
                    f"Authorization {authorization.auth_number} could not cover {units} units",
                    patient_id=patient_id,
                    authorization_id=authorization.id,
                    units_needed=units,
                    units_remaining=authorization.units_remaining,
                )

            claim = Claim(
                id=str(uuid4()),
                patient_id=patient_id,
                authorization_id=authorization.id,
                date_of_service=date_of_service,
                sessions=lines,
                total_amount=money_sum(line.amount for line in lines),
                status=ClaimStatus.DRAFT,
                status_history=[
                    ClaimStatusChange(
                        new_status=ClaimStatus.DRAFT,
                        source=StatusChangeSource.SYSTEM,
                        reason="Claim created",
                        changed_at=utcnow(),
                    )
                ],
            )
            try:
                record = await repo.add_claim(claim)
            except IntegrityError as e:
                raise NoBillableSessionsError(
                    f"Sessions were billed on another claim: {e.orig}", patient_id
                )

            claim = claim_from_record(record)
            consumed = await repo.get_authorization(authorization.id)
        return claim, consumed or authorization

    async def _announce_authorization_usage(
        self, patient_id: str, authorization: Authorization
    ) -> None:
        if authorization.status == AuthorizationStatus.EXHAUSTED:
            await self.events.emit(
                BillingEventType.AUTHORIZATION_EXHAUSTED,
                patient_id=patient_id,
                authorization_id=authorization.id,
                auth_number=authorization.auth_number,
                total_units=authorization.total_units,
            )
        elif authorization.units_remaining < self.settings.AUTH_UNITS_WARNING_THRESHOLD:
            await self.events.emit(
                BillingEventType.AUTHORIZATION_NEAR_LIMIT,
                patient_id=patient_id,
                authorization_id=authorization.id,
                auth_number=authorization.auth_number,
                units_remaining=authorization.units_remaining,
            )

    # =========================================================================
    # Transitions
    # =========================================================================

    async def _claim_patient_id(self, claim_id: str) -> Optional[str]:
        async with self.session_maker() as session:
            record = await BillingRepository(session).get_claim_record(claim_id)
            return record.patient_id if record else None

    async def _apply_transition(
        self,
        claim_id: str,
        event: TransitionEvent,
        target_status: ClaimStatus,
        source: StatusChangeSource,
        reason: Optional[str] = None,
        guard: Optional[RecordGuard] = None,
        mutate: Optional[RecordMutator] = None,
    ) -> Optional[tuple[Claim, ClaimStatus]]:
        """
        Move a claim to ``target_status`` in one transaction.

        The caller holds the patient lock. Returns the updated claim and its
        previous status, or None when the claim is missing or the move is
        refused.
        """
        async with self.session_maker() as session, session.begin():
            repo = BillingRepository(session)
            record = await repo.get_claim_record(claim_id)
            if record is None:
                logger.warning(f"Claim {claim_id} not found")
                return None

            if guard is not None:
                refusal = guard(record)
                if refusal:
                    logger.warning(f"Claim {claim_id}: {refusal}")
                    return None

            previous_status = record.status
            result = self.state_machine.execute_transition(
                TransitionContext(
                    claim_id=claim_id,
                    current_status=previous_status,
                    target_status=target_status,
                    event=event,
                    reason=reason,
                    metadata={"source": source.value},
                )
            )
            if not result.success:
                return None

            if mutate is not None:
                await mutate(repo, record)
            repo.record_status_change(record, target_status, source=source, reason=reason)
            await session.flush()
            claim = claim_from_record(record)
        return claim, previous_status

    async def _transition(
        self,
        claim_id: str,
        event: TransitionEvent,
        target_status: ClaimStatus,
        source: StatusChangeSource,
        reason: Optional[str] = None,
        guard: Optional[RecordGuard] = None,
        mutate: Optional[RecordMutator] = None,
    ) -> Optional[Claim]:
        patient_id = await self._claim_patient_id(claim_id)
        if patient_id is None:
            logger.warning(f"Claim {claim_id} not found")
            return None

        async with self.locks.hold(patient_id):
            outcome = await self._apply_transition(
                claim_id, event, target_status, source, reason, guard, mutate
            )
        if outcome is None:
            return None

        claim, previous_status = outcome
        await self._announce_transition(claim, previous_status, source, reason)
        return claim

    async def _announce_transition(
        self,
        claim: Claim,
        previous_status: ClaimStatus,
        source: StatusChangeSource,
        reason: Optional[str] = None,
    ) -> None:
        await self.events.emit(
            BillingEventType.CLAIM_STATUS_CHANGED,
            patient_id=claim.patient_id,
            claim_id=claim.id,
            amount=claim.total_amount,
            previous_status=previous_status.value,
            new_status=claim.status.value,
            source=source.value,
            reason=reason,
        )

    # =========================================================================
    # Submission
    # =========================================================================

    async def submit_claim(self, claim_id: str) -> bool:
        """
        Submit a draft claim to the clearinghouse.

        Returns False, changing nothing, when the claim is missing, is not a
        draft, or the clearinghouse fails. The patient's lock is not held
        during the clearinghouse call; a per-claim lock keeps concurrent
        submissions of the same claim from reaching the payer twice.
        """
        patient_id = await self._claim_patient_id(claim_id)
        if patient_id is None:
            logger.warning(f"Cannot submit claim {claim_id}: not found")
            return False

        async with self.locks.hold(f"submission:{claim_id}"):
            async with self.locks.hold(patient_id):
                submission = await self._prepare_submission(claim_id, patient_id)
            if submission is None:
                return False

            try:
                receipt = await self.clearinghouse.submit_claim(submission)
            except GatewayError as e:
                logger.error(f"Submission of claim {claim_id} failed: {e}")
                return False

            async def assign_claim_number(repo: BillingRepository, record: ClaimRecord) -> None:
                record.claim_number = receipt.claim_number
                record.date_submitted = utcnow()

            async with self.locks.hold(patient_id):
                outcome = await self._apply_transition(
                    claim_id,
                    TransitionEvent.SUBMIT,
                    ClaimStatus.SUBMITTED,
                    StatusChangeSource.SYSTEM,
                    reason="Submitted to clearinghouse",
                    mutate=assign_claim_number,
                )
        if outcome is None:
            return False

        submitted, previous_status = outcome
        await self._announce_transition(submitted, previous_status, StatusChangeSource.SYSTEM)
        await self.events.emit(
            BillingEventType.CLAIM_SUBMITTED,
            patient_id=submitted.patient_id,
            claim_id=submitted.id,
            amount=submitted.total_amount,
            claim_number=submitted.claim_number,
        )
        return True

    async def _prepare_submission(
        self, claim_id: str, patient_id: str
    ) -> Optional[ClaimSubmission]:
        async with self.session_maker() as session:
            repo = BillingRepository(session)
            claim = await repo.get_claim(claim_id)
            profile = await repo.get_profile(patient_id)
            authorization = (
                await repo.get_authorization(claim.authorization_id)
                if claim and claim.authorization_id
                else None
            )

        if claim is None or profile is None:
            logger.warning(f"Cannot submit claim {claim_id}: claim or profile missing")
            return None

        check = self.state_machine.validate_transition(
            TransitionContext(
                claim_id=claim_id,
                current_status=claim.status,
                target_status=ClaimStatus.SUBMITTED,
                event=TransitionEvent.SUBMIT,
            )
        )
        if not check.success:
            logger.warning(f"Cannot submit claim {claim_id}: {check.error}")
            return None

        return ClaimSubmission.from_claim(
            claim,
            profile,
            diagnosis_codes=authorization.diagnosis_codes if authorization else None,
        )

    # =========================================================================
    # Adjudication
    # =========================================================================

    async def mark_processing(
        self, claim_id: str, source: StatusChangeSource = StatusChangeSource.CLEARINGHOUSE
    ) -> bool:
        """Payer has picked up a submitted claim."""
        claim = await self._transition(
            claim_id,
            TransitionEvent.START_PROCESSING,
            ClaimStatus.PROCESSING,
            source,
            reason="Payer processing",
        )
        return claim is not None

    async def deny_claim(
        self,
        claim_id: str,
        reason: str,
        source: StatusChangeSource = StatusChangeSource.MANUAL,
    ) -> bool:
        """Deny a submitted or processing claim."""

        async def set_denial(repo: BillingRepository, record: ClaimRecord) -> None:
            record.denial_reason = reason

        claim = await self._transition(
            claim_id,
            TransitionEvent.DENY,
            ClaimStatus.DENIED,
            source,
            reason=reason,
            mutate=set_denial,
        )
        if claim is None:
            return False

        await self.events.emit(
            BillingEventType.CLAIM_DENIED,
            patient_id=claim.patient_id,
            claim_id=claim.id,
            amount=claim.total_amount,
            reason=reason,
        )
        return True

    async def appeal_claim(
        self, claim_id: str, source: StatusChangeSource = StatusChangeSource.MANUAL
    ) -> bool:
        """Appeal a denied claim, up to ``MAX_APPEAL_ATTEMPTS`` times."""
        max_attempts = self.settings.MAX_APPEAL_ATTEMPTS

        def within_appeal_limit(record: ClaimRecord) -> Optional[str]:
            if record.status == ClaimStatus.DENIED and record.appeal_count >= max_attempts:
                return f"appeal limit of {max_attempts} reached"
            return None

        async def count_appeal(repo: BillingRepository, record: ClaimRecord) -> None:
            record.appeal_count += 1

        claim = await self._transition(
            claim_id,
            TransitionEvent.APPEAL,
            ClaimStatus.APPEALED,
            source,
            reason="Denial appealed",
            guard=within_appeal_limit,
            mutate=count_appeal,
        )
        if claim is None:
            return False

        await self.events.emit(
            BillingEventType.CLAIM_APPEALED,
            patient_id=claim.patient_id,
            claim_id=claim.id,
            amount=claim.total_amount,
            appeal_count=claim.appeal_count,
            denial_reason=claim.denial_reason,
        )
        return True

    async def resolve_appeal(
        self,
        claim_id: str,
        accepted: bool,
        reason: Optional[str] = None,
        source: StatusChangeSource = StatusChangeSource.MANUAL,
    ) -> bool:
        """
        Record the payer's answer to an appeal.

        Accepted appeals go back to processing; an upheld denial returns the
        claim to denied.
        """
        if accepted:

            async def clear_denial(repo: BillingRepository, record: ClaimRecord) -> None:
                record.denial_reason = None

            claim = await self._transition(
                claim_id,
                TransitionEvent.APPEAL_ACCEPTED,
                ClaimStatus.PROCESSING,
                source,
                reason=reason or "Appeal accepted",
                mutate=clear_denial,
            )
            return claim is not None

        denial = reason or "Denial upheld on appeal"

        async def set_denial(repo: BillingRepository, record: ClaimRecord) -> None:
            record.denial_reason = denial

        claim = await self._transition(
            claim_id,
            TransitionEvent.APPEAL_UPHELD,
            ClaimStatus.DENIED,
            source,
            reason=denial,
            mutate=set_denial,
        )
        if claim is None:
            return False

        await self.events.emit(
            BillingEventType.CLAIM_DENIED,
            patient_id=claim.patient_id,
            claim_id=claim.id,
            amount=claim.total_amount,
            reason=denial,
            appeal_count=claim.appeal_count,
        )
        return True

    # =========================================================================
    # Payment
    # =========================================================================

    async def process_payment(
        self,
        claim_id: str,
        payment: PaymentDetails,
        source: StatusChangeSource = StatusChangeSource.MANUAL,
    ) -> bool:
        """
        Record a remittance and mark the claim paid.

        The patient's balance grows by the patient responsibility in the
        same transaction. Raises PaymentValidationError for inconsistent
        amounts; returns False when the claim is missing or already paid.
        """
        claim = await self.get_claim(claim_id)
        if claim is None:
            logger.warning(f"Cannot record payment: claim {claim_id} not found")
            return False
        if claim.status == ClaimStatus.PAID:
            logger.warning(f"Claim {claim_id} is already paid; payment ignored")
            return False

        errors = validate_payment(claim, payment)
        if errors:
            raise PaymentValidationError(f"Invalid payment for claim {claim_id}", errors)

        async def record_payment(repo: BillingRepository, record: ClaimRecord) -> None:
            record.paid_amount = payment.amount
            record.allowed_amount = payment.allowed_amount
            record.patient_responsibility = payment.patient_responsibility
            record.payment_date = payment.payment_date
            record.check_number = payment.check_number
            await repo.add_to_balance(record.patient_id, payment.patient_responsibility)

        paid = await self._transition(
            claim_id,
            TransitionEvent.RECORD_PAYMENT,
            ClaimStatus.PAID,
            source,
            reason=f"Payment {payment.check_number}" if payment.check_number else "Payment recorded",
            mutate=record_payment,
        )
        if paid is None:
            return False

        await self.events.emit(
            BillingEventType.PAYMENT_PROCESSED,
            patient_id=paid.patient_id,
            claim_id=paid.id,
            amount=payment.amount,
            allowed_amount=str(payment.allowed_amount),
            patient_responsibility=str(payment.patient_responsibility),
            write_off=str(paid.write_off),
            check_number=payment.check_number,
        )
        return True

    # =========================================================================
    # Clearinghouse Status
    # =========================================================================

    async def apply_status_update(
        self,
        update: ClaimStatusUpdate,
        source: StatusChangeSource = StatusChangeSource.CLEARINGHOUSE,
    ) -> bool:
        """
        Apply a payer status reported by the clearinghouse.

        Returns True when the claim changed status.
        """
        claim = await self._find_claim(update)
        if claim is None:
            logger.warning(
                f"Status update for unknown claim (id={update.claim_id}, "
                f"number={update.claim_number})"
            )
            return False
        if claim.status == update.status:
            return False

        if update.status == ClaimStatus.PROCESSING:
            if claim.status == ClaimStatus.APPEALED:
                return await self.resolve_appeal(claim.id, accepted=True, source=source)
            return await self.mark_processing(claim.id, source=source)

        if update.status == ClaimStatus.DENIED:
            reason = update.denial_reason or "Denied by payer"
            if claim.status == ClaimStatus.APPEALED:
                return await self.resolve_appeal(
                    claim.id, accepted=False, reason=reason, source=source
                )
            return await self.deny_claim(claim.id, reason, source=source)

        if update.status == ClaimStatus.PAID and update.payment is not None:
            return await self.process_payment(claim.id, update.payment, source=source)

        logger.warning(
            f"Claim {claim.id}: clearinghouse status {update.status.value} not applicable"
        )
        return False

    async def _find_claim(self, update: ClaimStatusUpdate) -> Optional[Claim]:
        async with self.session_maker() as session:
            repo = BillingRepository(session)
            if update.claim_id:
                record = await repo.get_claim_record(update.claim_id)
            else:
                record = await repo.get_claim_record_by_number(update.claim_number)
            return claim_from_record(record) if record else None

    async def poll_claim_statuses(self) -> int:
        """
        Ask the clearinghouse about every claim awaiting the payer.

        Returns the number of claims whose status changed.
        """
        pending = await self.list_claims(
            statuses=[s for s in ClaimStatus if is_awaiting_payer(s)]
        )
        changed = 0
        for claim in pending:
            if not claim.claim_number:
                continue
            try:
                update = await self.clearinghouse.get_claim_status(claim.claim_number)
            except GatewayError as e:
                logger.error(f"Status poll for claim {claim.claim_number} failed: {e}")
                continue
            if update is None or update.status == claim.status:
                continue

            update = update.model_copy(update={"claim_id": claim.id})
            try:
                if await self.apply_status_update(update):
                    changed += 1
            except PaymentValidationError as e:
                logger.error(f"Remittance for claim {claim.id} rejected: {e} {e.errors}")

        logger.info(f"Polled {len(pending)} claims, {changed} status changes")
        return changed

    # =========================================================================
    # Automatic Billing
    # =========================================================================

    async def bill_unbilled_sessions(
        self,
        lookback_days: Optional[int] = None,
        today: Optional[date] = None,
    ) -> list[Claim]:
        """
        Create one draft claim per patient for recent sessions not yet on a claim.

        Patients whose sessions cannot be billed (no authorization, unknown
        codes) are skipped and logged.
        """
        if lookback_days is None:
            lookback_days = self.settings.UNBILLED_LOOKBACK_DAYS
        today = today or date.today()
        start = today - timedelta(days=lookback_days)

        async with self.session_maker() as session:
            profiles = await BillingRepository(session).list_profiles()

        source = self.session_generator.session_source
        created = []
        for profile in profiles:
            sessions = await source.list_sessions(profile.patient_id, start, today)
            if not sessions:
                continue

            async with self.session_maker() as session:
                billed = await BillingRepository(session).billed_session_ids(
                    s.session_id for s in sessions
                )
            unbilled = [s.session_id for s in sessions if s.session_id not in billed]
            if not unbilled:
                continue

            result = await self.attempt_create_claim(profile.patient_id, unbilled)
            if result.success:
                created.append(result.claim)
            else:
                logger.info(
                    f"Automatic billing skipped patient {profile.patient_id}: {result.error}"
                )

        logger.info(f"Automatic billing created {len(created)} claims")
        return created

    # =========================================================================
    # Reads
    # =========================================================================

    async def get_claim(self, claim_id: str) -> Optional[Claim]:
        async with self.session_maker() as session:
            return await BillingRepository(session).get_claim(claim_id)

    async def require_claim(self, claim_id: str) -> Claim:
        claim = await self.get_claim(claim_id)
        if claim is None:
            raise ClaimNotFoundError(f"Claim not found: {claim_id}")
        return claim

    async def list_claims(
        self,
        patient_id: Optional[str] = None,
        statuses: Optional[list[ClaimStatus]] = None,
        service_from: Optional[date] = None,
        service_to: Optional[date] = None,
    ) -> list[Claim]:
        async with self.session_maker() as session:
            return await BillingRepository(session).list_claims(
                patient_id=patient_id,
                statuses=statuses,
                service_from=service_from,
                service_to=service_to,
            )
