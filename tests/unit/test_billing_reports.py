"""
Billing Report Tests.

Tests for:
- Aggregation window
- Summary statistics
- Per-insurer and per-patient stats
- Aging buckets
- Projections
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional

import pytest

from aac_billing.core.config import BillingSettings
from aac_billing.core.enums import ClaimStatus
from aac_billing.schemas.billing import (
    Address,
    BillableSession,
    BillingProfile,
    Claim,
    InsuranceInfo,
)
from aac_billing.services.billing_reports import (
    aging_report,
    build_billing_report,
    days_to_payment,
    project_revenue,
)

AS_OF = date(2026, 3, 31)


def _claim(
    claim_id: str,
    date_of_service: date,
    total: str,
    status: ClaimStatus = ClaimStatus.DRAFT,
    patient_id: str = "p1",
    paid: Optional[str] = None,
    responsibility: Optional[str] = None,
    submitted: Optional[datetime] = None,
    payment_date: Optional[date] = None,
    sessions: int = 1,
) -> Claim:
    amount = Decimal(total) / sessions
    return Claim(
        id=claim_id,
        patient_id=patient_id,
        date_of_service=date_of_service,
        sessions=[
            BillableSession(
                session_id=f"{claim_id}-s{i}",
                service_date=date_of_service,
                duration_minutes=45,
                cpt_code="92507",
                units=1,
                rate=amount,
                amount=amount,
            )
            for i in range(sessions)
        ],
        total_amount=Decimal(total),
        status=status,
        paid_amount=Decimal(paid) if paid is not None else None,
        allowed_amount=Decimal(paid) if paid is not None else None,
        patient_responsibility=Decimal(responsibility) if responsibility is not None else None,
        date_submitted=submitted,
        payment_date=payment_date,
    )


def _profile(patient_id: str, provider: str) -> BillingProfile:
    return BillingProfile(
        patient_id=patient_id,
        insurance_info=InsuranceInfo(
            provider=provider,
            policy_number="POL",
            subscriber_id="SUB",
            subscriber_name="Sam Doe",
            effective_date=date(2025, 1, 1),
        ),
        billing_address=Address(street1="1 Elm", city="Salem", state="OR", zip_code="97301"),
    )


def _utc(year, month, day):
    return datetime(year, month, day, 9, 30, tzinfo=timezone.utc)


@pytest.fixture
def settings():
    return BillingSettings()


@pytest.mark.unit
class TestAggregationWindow:
    def test_only_claims_in_window_are_counted(self, settings):
        claims = [
            _claim("before", date(2026, 2, 28), "999.00"),
            _claim("first-day", date(2026, 3, 1), "150.00"),
            _claim("last-day", date(2026, 3, 31), "50.00"),
            _claim("after", date(2026, 4, 1), "999.00"),
        ]
        report = build_billing_report(
            claims, [], date(2026, 3, 1), date(2026, 3, 31), AS_OF, settings
        )
        assert report.summary.total_claims == 2
        assert report.summary.total_billed == Decimal("200.00")

    def test_claims_outside_window_do_not_affect_report(self, settings):
        inside = [_claim("in", date(2026, 3, 10), "150.00", ClaimStatus.SUBMITTED, submitted=_utc(2026, 3, 11))]
        baseline = build_billing_report(
            inside + [_claim("out", date(2026, 5, 1), "10.00")],
            [], date(2026, 3, 1), date(2026, 3, 31), AS_OF, settings,
            generated_at=_utc(2026, 3, 31),
        )
        changed = build_billing_report(
            inside + [_claim("out", date(2026, 5, 1), "7000.00", ClaimStatus.DENIED)],
            [], date(2026, 3, 1), date(2026, 3, 31), AS_OF, settings,
            generated_at=_utc(2026, 3, 31),
        )
        assert baseline == changed


@pytest.mark.unit
class TestSummary:
    def test_totals_by_status(self, settings):
        claims = [
            _claim("d", date(2026, 3, 2), "100.00", ClaimStatus.DRAFT),
            _claim("s", date(2026, 3, 3), "200.00", ClaimStatus.SUBMITTED),
            _claim("pr", date(2026, 3, 4), "300.00", ClaimStatus.PROCESSING),
            _claim("dn", date(2026, 3, 5), "400.00", ClaimStatus.DENIED),
            _claim(
                "pd", date(2026, 3, 6), "150.00", ClaimStatus.PAID,
                paid="120.00", submitted=_utc(2026, 3, 1), payment_date=date(2026, 3, 21),
            ),
        ]
        summary = build_billing_report(
            claims, [], date(2026, 3, 1), date(2026, 3, 31), AS_OF, settings
        ).summary

        assert summary.total_claims == 5
        assert summary.total_billed == Decimal("1150.00")
        assert summary.total_pending == Decimal("500.00")
        assert summary.total_denied == Decimal("400.00")
        assert summary.total_collected == Decimal("120.00")
        assert summary.average_reimbursement_rate == pytest.approx(80.0)
        assert summary.average_days_to_payment == pytest.approx(20.0)

    def test_missing_submission_date_counts_as_zero_days(self, settings):
        claims = [
            _claim(
                "a", date(2026, 3, 6), "150.00", ClaimStatus.PAID,
                paid="120.00", submitted=_utc(2026, 3, 1), payment_date=date(2026, 3, 21),
            ),
            _claim(
                "b", date(2026, 3, 7), "100.00", ClaimStatus.PAID,
                paid="100.00", payment_date=date(2026, 3, 21),
            ),
        ]
        summary = build_billing_report(
            claims, [], date(2026, 3, 1), date(2026, 3, 31), AS_OF, settings
        ).summary
        assert summary.average_reimbursement_rate == pytest.approx(90.0)
        assert summary.average_days_to_payment == pytest.approx(10.0)

    def test_empty_period(self, settings):
        summary = build_billing_report(
            [], [], date(2026, 3, 1), date(2026, 3, 31), AS_OF, settings
        ).summary
        assert summary.total_claims == 0
        assert summary.average_reimbursement_rate == 0.0
        assert summary.average_days_to_payment == 0.0

    def test_days_to_payment(self):
        claim = _claim(
            "a", date(2026, 3, 6), "1.00", ClaimStatus.PAID,
            paid="1.00", submitted=_utc(2026, 3, 1), payment_date=date(2026, 3, 4),
        )
        assert days_to_payment(claim) == 3
        assert days_to_payment(_claim("b", date(2026, 3, 6), "1.00")) is None


@pytest.mark.unit
class TestInsurerAndPatientStats:
    def test_claims_follow_current_insurer(self, settings):
        claims = [
            _claim("a", date(2026, 3, 2), "100.00", ClaimStatus.DENIED, patient_id="p1"),
            _claim(
                "b", date(2026, 3, 3), "100.00", ClaimStatus.PAID, patient_id="p1",
                paid="90.00", submitted=_utc(2026, 3, 3), payment_date=date(2026, 3, 13),
            ),
            _claim("c", date(2026, 3, 4), "50.00", ClaimStatus.SUBMITTED, patient_id="p2"),
            _claim("orphan", date(2026, 3, 4), "75.00", patient_id="nobody"),
        ]
        profiles = [_profile("p1", "Aetna"), _profile("p2", "Cigna")]

        by_insurer = build_billing_report(
            claims, profiles, date(2026, 3, 1), date(2026, 3, 31), AS_OF, settings
        ).by_insurer

        assert set(by_insurer) == {"Aetna", "Cigna"}
        aetna = by_insurer["Aetna"]
        assert aetna.claim_count == 2
        assert aetna.total_billed == Decimal("200.00")
        assert aetna.total_paid == Decimal("90.00")
        assert aetna.denial_rate == pytest.approx(50.0)
        assert aetna.average_days_to_payment == pytest.approx(10.0)
        assert by_insurer["Cigna"].denial_rate == 0.0

    def test_patient_stats(self, settings):
        claims = [
            _claim(
                "a", date(2026, 3, 2), "300.00", ClaimStatus.PAID, sessions=2,
                paid="200.00", responsibility="30.00", payment_date=date(2026, 3, 10),
            ),
            _claim(
                "b", date(2026, 3, 3), "100.00", ClaimStatus.PAID,
                paid="80.00", responsibility="20.00", payment_date=date(2026, 3, 20),
            ),
            _claim("c", date(2026, 3, 4), "100.00", ClaimStatus.SUBMITTED),
        ]
        stats = build_billing_report(
            claims, [], date(2026, 3, 1), date(2026, 3, 31), AS_OF, settings
        ).by_patient["p1"]

        assert stats.total_sessions == 4
        assert stats.total_billed == Decimal("500.00")
        assert stats.total_paid == Decimal("280.00")
        assert stats.balance == Decimal("50.00")
        assert stats.last_payment == date(2026, 3, 20)


@pytest.mark.unit
class TestAging:
    def test_claim_submitted_45_days_ago_is_in_days30(self):
        claim = _claim(
            "e", date(2026, 2, 10), "200.00", ClaimStatus.SUBMITTED, submitted=_utc(2026, 2, 14)
        )
        aging = aging_report([claim], AS_OF, [30, 60, 90, 120])

        assert (AS_OF - date(2026, 2, 14)).days == 45
        assert aging.days30 == Decimal("200.00")
        assert aging.current == aging.days60 == aging.days90 == aging.over90 == Decimal("0.00")

    @pytest.mark.parametrize(
        "days_pending,bucket",
        [(0, "current"), (30, "current"), (31, "days30"), (60, "days30"), (61, "days60"),
         (90, "days60"), (91, "days90"), (120, "days90"), (121, "over90")],
    )
    def test_bucket_boundaries(self, days_pending, bucket):
        submitted = datetime.combine(date.fromordinal(AS_OF.toordinal() - days_pending),
                                     datetime.min.time(), tzinfo=timezone.utc)
        claim = _claim("x", date(2025, 1, 1), "10.00", ClaimStatus.PROCESSING, submitted=submitted)
        aging = aging_report([claim], AS_OF, [30, 60, 90, 120])
        assert getattr(aging, bucket) == Decimal("10.00")

    def test_paid_and_unsubmitted_claims_are_not_aged(self):
        claims = [
            _claim("draft", date(2026, 1, 1), "10.00"),
            _claim(
                "paid", date(2026, 1, 1), "10.00", ClaimStatus.PAID,
                paid="10.00", submitted=_utc(2026, 1, 2), payment_date=date(2026, 1, 20),
            ),
        ]
        aging = aging_report(claims, AS_OF, [30, 60, 90, 120])
        assert aging.model_dump() == {
            "current": Decimal("0.00"),
            "days30": Decimal("0.00"),
            "days60": Decimal("0.00"),
            "days90": Decimal("0.00"),
            "over90": Decimal("0.00"),
        }

    def test_denied_claims_are_aged(self):
        claim = _claim("dn", date(2026, 3, 1), "40.00", ClaimStatus.DENIED, submitted=_utc(2026, 3, 2))
        assert aging_report([claim], AS_OF, [30, 60, 90, 120]).current == Decimal("40.00")


@pytest.mark.unit
class TestProjections:
    def test_recent_claims_projected(self):
        claims = [
            _claim("unpaid", date(2026, 3, 15), "100.00", ClaimStatus.SUBMITTED),
            _claim("paid", date(2026, 3, 20), "150.00", ClaimStatus.PAID, paid="120.00"),
            _claim("old", date(2026, 3, 1), "500.00", ClaimStatus.SUBMITTED),
        ]
        projections = project_revenue(claims, AS_OF, Decimal("0.8"), 30)

        assert projections.next_month == Decimal("200.00")
        assert projections.next_quarter == Decimal("600.00")
        assert projections.assumptions == [
            "Based on last 30 days average",
            "Assumes 80% collection rate",
            "Excludes seasonal variations",
        ]

    def test_claims_after_as_of_excluded(self):
        claims = [
            _claim("recent", date(2026, 3, 31), "100.00", ClaimStatus.SUBMITTED),
            _claim("future", date(2026, 6, 30), "100.00", ClaimStatus.DRAFT),
        ]
        projections = project_revenue(claims, AS_OF, Decimal("0.8"), 30)

        assert projections.next_month == Decimal("80.00")

    def test_collection_rate_is_configurable(self):
        settings = BillingSettings(PROJECTION_COLLECTION_RATE=Decimal("0.5"))
        claims = [_claim("unpaid", date(2026, 3, 15), "100.00", ClaimStatus.SUBMITTED)]
        report = build_billing_report(
            claims, [], date(2026, 3, 1), date(2026, 3, 31), AS_OF, settings
        )
        assert report.projections.next_month == Decimal("50.00")
        assert "Assumes 50% collection rate" in report.projections.assumptions
