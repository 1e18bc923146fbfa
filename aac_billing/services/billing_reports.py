"""
Billing Reports.

Read-only aggregation of claims and profiles:
- Summary totals, reimbursement rate and days to payment
- Per-insurer and per-patient statistics
- Aging of unpaid submitted claims
- Naive revenue projections

``build_billing_report`` is a pure function of the claims and profiles it
is given; ``BillingReportService`` loads them from one database snapshot.
"""

import logging
from collections import defaultdict
from collections.abc import Iterable
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from aac_billing.core.config import BillingSettings
from aac_billing.core.enums import ClaimStatus
from aac_billing.db.repository import BillingRepository
from aac_billing.schemas.billing import (
    AgingReport,
    BillingProfile,
    BillingReport,
    BillingSummary,
    Claim,
    FinancialProjections,
    InsurerStats,
    PatientBillingStats,
    ReportPeriod,
)
from aac_billing.utils.money import ZERO, money_sum, to_money

logger = logging.getLogger(__name__)

PENDING_STATUSES = (ClaimStatus.SUBMITTED, ClaimStatus.PROCESSING)


def days_to_payment(claim: Claim) -> Optional[int]:
    """Whole days from submission to payment, None if either date is missing."""
    if claim.payment_date is None or claim.date_submitted is None:
        return None
    return (claim.payment_date - claim.date_submitted.date()).days


def _mean(values: list[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def summarize_claims(claims: list[Claim]) -> BillingSummary:
    paid = [c for c in claims if c.status == ClaimStatus.PAID]
    settled = [c for c in paid if c.payment_date is not None]

    reimbursement_rates = [
        float((c.paid_amount or ZERO) / c.total_amount) * 100
        for c in settled
        if c.total_amount > ZERO
    ]
    payment_days = [float(days_to_payment(c) or 0) for c in settled]

    return BillingSummary(
        total_claims=len(claims),
        total_billed=money_sum(c.total_amount for c in claims),
        total_collected=money_sum(c.paid_amount or ZERO for c in paid),
        total_pending=money_sum(c.total_amount for c in claims if c.status in PENDING_STATUSES),
        total_denied=money_sum(
            c.total_amount for c in claims if c.status == ClaimStatus.DENIED
        ),
        average_reimbursement_rate=_mean(reimbursement_rates),
        average_days_to_payment=_mean(payment_days),
    )


def insurer_stats(
    claims: list[Claim], profiles: dict[str, BillingProfile]
) -> dict[str, InsurerStats]:
    """
    Group claims by the patient's current insurer.

    Claims follow the patient: after a change of insurer, past claims are
    attributed to the new one. Claims without a profile are left out.
    """
    grouped: dict[str, list[Claim]] = defaultdict(list)
    for claim in claims:
        profile = profiles.get(claim.patient_id)
        if profile is None:
            continue
        grouped[profile.insurance_info.provider].append(claim)

    stats = {}
    for insurer, insurer_claims in grouped.items():
        denied = [c for c in insurer_claims if c.status == ClaimStatus.DENIED]
        payment_days = [
            float(days)
            for c in insurer_claims
            if c.status == ClaimStatus.PAID and (days := days_to_payment(c)) is not None
        ]
        stats[insurer] = InsurerStats(
            name=insurer,
            claim_count=len(insurer_claims),
            total_billed=money_sum(c.total_amount for c in insurer_claims),
            total_paid=money_sum(
                c.paid_amount or ZERO for c in insurer_claims if c.status == ClaimStatus.PAID
            ),
            denial_rate=len(denied) / len(insurer_claims) * 100,
            average_days_to_payment=_mean(payment_days),
        )
    return stats


def patient_stats(claims: list[Claim]) -> dict[str, PatientBillingStats]:
    stats: dict[str, PatientBillingStats] = {}
    for claim in claims:
        entry = stats.setdefault(
            claim.patient_id, PatientBillingStats(patient_id=claim.patient_id)
        )
        entry.total_sessions += len(claim.sessions)
        entry.total_billed = to_money(entry.total_billed + claim.total_amount)

        if claim.status == ClaimStatus.PAID:
            entry.total_paid = to_money(entry.total_paid + (claim.paid_amount or ZERO))
            entry.balance = to_money(entry.balance + (claim.patient_responsibility or ZERO))
            if claim.payment_date and (
                entry.last_payment is None or claim.payment_date > entry.last_payment
            ):
                entry.last_payment = claim.payment_date
    return stats


def aging_report(claims: list[Claim], as_of: date, bucket_days: list[int]) -> AgingReport:
    """
    Bucket unpaid submitted claims by days since submission.

    ``bucket_days`` holds the inclusive upper bounds of the current, 30, 60
    and 90 day buckets; anything older lands in ``over90``. Claims never
    submitted are not aged.
    """
    buckets: dict[str, Decimal] = {
        "current": ZERO,
        "days30": ZERO,
        "days60": ZERO,
        "days90": ZERO,
        "over90": ZERO,
    }
    names = ["current", "days30", "days60", "days90"]

    for claim in claims:
        if claim.status == ClaimStatus.PAID or claim.date_submitted is None:
            continue
        days_pending = (as_of - claim.date_submitted.date()).days
        bucket = "over90"
        for name, upper in zip(names, bucket_days):
            if days_pending <= upper:
                bucket = name
                break
        buckets[bucket] += claim.total_amount

    return AgingReport(**buckets)


def project_revenue(
    claims: list[Claim],
    as_of: date,
    collection_rate: Decimal,
    lookback_days: int,
) -> FinancialProjections:
    """
    Linear revenue forecast from the most recent claims.

    Paid claims count at their paid amount, everything else at
    ``collection_rate`` of the billed amount.
    """
    window_start = as_of - timedelta(days=lookback_days)
    recent = [c for c in claims if window_start < c.date_of_service <= as_of]
    monthly = money_sum(
        c.paid_amount if c.paid_amount is not None else c.total_amount * collection_rate
        for c in recent
    )
    rate_percent = (collection_rate * 100).normalize()
    return FinancialProjections(
        next_month=monthly,
        next_quarter=monthly * 3,
        assumptions=[
            f"Based on last {lookback_days} days average",
            f"Assumes {rate_percent:f}% collection rate",
            "Excludes seasonal variations",
        ],
    )


def build_billing_report(
    claims: Iterable[Claim],
    profiles: Iterable[BillingProfile],
    start: date,
    end: date,
    as_of: date,
    settings: BillingSettings,
    generated_at: Optional[datetime] = None,
) -> BillingReport:
    """Report over claims whose date of service falls within ``[start, end]``."""
    period_claims = [c for c in claims if start <= c.date_of_service <= end]
    profile_map = {p.patient_id: p for p in profiles}

    return BillingReport(
        period=ReportPeriod(start=start, end=end),
        generated_at=generated_at or datetime.now(timezone.utc),
        summary=summarize_claims(period_claims),
        by_insurer=insurer_stats(period_claims, profile_map),
        by_patient=patient_stats(period_claims),
        aging=aging_report(period_claims, as_of, settings.AGING_BUCKET_DAYS),
        projections=project_revenue(
            period_claims,
            as_of,
            settings.PROJECTION_COLLECTION_RATE,
            settings.PROJECTION_LOOKBACK_DAYS,
        ),
    )


class BillingReportService:
    """Generates billing reports from the claim store."""

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        settings: BillingSettings,
    ):
        self.session_maker = session_maker
        self.settings = settings

    async def generate_billing_report(
        self,
        start: date,
        end: date,
        as_of: Optional[date] = None,
    ) -> BillingReport:
        """
        Aggregate the claims with a date of service in ``[start, end]``.

        ``as_of`` is the reference day for aging and projections (today
        by default).
        """
        if end < start:
            raise ValueError("Report end date must be on or after start date")
        as_of = as_of or date.today()

        async with self.session_maker() as session, session.begin():
            repo = BillingRepository(session)
            claims = await repo.list_claims(service_from=start, service_to=end)
            profiles = await repo.list_profiles()

        report = build_billing_report(claims, profiles, start, end, as_of, self.settings)
        logger.info(
            f"Billing report {start.isoformat()}..{end.isoformat()}: "
            f"{report.summary.total_claims} claims, billed {report.summary.total_billed}"
        )
        return report
