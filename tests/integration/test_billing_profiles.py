"""
Integration tests for billing profiles and authorization status.
"""

from datetime import date
from decimal import Decimal

import pytest

from aac_billing.core.enums import AuthorizationStatus, BillingEventType
from aac_billing.schemas.billing import PaymentMethod

TODAY = date(2026, 3, 15)


@pytest.mark.integration
class TestBillingProfileStore:
    """Test profile upsert semantics."""

    @pytest.mark.asyncio
    async def test_upsert_and_get(self, billing, make_profile, recorded_events):
        profile = make_profile(balance=Decimal("12.5"))
        profile.payment_method = PaymentMethod(type="credit", last4="4242")

        saved = await billing.profiles.upsert_profile(profile)
        loaded = await billing.profiles.get_profile("patient-1")

        assert saved == loaded
        assert loaded.balance == Decimal("12.50")
        assert loaded.payment_method.last4 == "4242"
        assert loaded.authorizations[0].auth_number == "PA-auth-1"

        event = recorded_events[-1]
        assert event.event_type == BillingEventType.PROFILE_UPDATED
        assert event.patient_id == "patient-1"
        assert event.data["insurance_provider"] == "Blue Cross"

    @pytest.mark.asyncio
    async def test_missing_profile(self, billing):
        assert await billing.profiles.get_profile("nobody") is None

    @pytest.mark.asyncio
    async def test_upsert_replaces_profile(self, billing, make_profile, make_authorization):
        await billing.profiles.upsert_profile(make_profile())
        await billing.profiles.upsert_profile(
            make_profile(provider="Aetna", authorizations=[make_authorization("auth-2")])
        )

        profile = await billing.profiles.get_profile("patient-1")
        assert profile.insurance_info.provider == "Aetna"
        assert [a.id for a in profile.authorizations] == ["auth-2"]

    @pytest.mark.asyncio
    async def test_authorization_order_is_kept(self, billing, make_profile, make_authorization):
        await billing.profiles.upsert_profile(
            make_profile(
                authorizations=[make_authorization("auth-b"), make_authorization("auth-a")]
            )
        )
        profile = await billing.profiles.get_profile("patient-1")
        assert [a.id for a in profile.authorizations] == ["auth-b", "auth-a"]

    @pytest.mark.asyncio
    async def test_upsert_never_rolls_back_consumption(
        self, billing, make_profile, make_authorization, add_sessions
    ):
        await billing.profiles.upsert_profile(
            make_profile(authorizations=[make_authorization(used_units=8)])
        )
        await billing.claims.create_claim("patient-1", add_sessions())

        await billing.profiles.upsert_profile(
            make_profile(authorizations=[make_authorization(used_units=8)])
        )

        auth = (await billing.profiles.get_profile("patient-1")).authorizations[0]
        assert auth.used_units == 9

    @pytest.mark.asyncio
    async def test_higher_incoming_consumption_is_accepted(
        self, billing, make_profile, make_authorization
    ):
        await billing.profiles.upsert_profile(make_profile())
        await billing.profiles.upsert_profile(
            make_profile(authorizations=[make_authorization(used_units=6)])
        )
        auth = (await billing.profiles.get_profile("patient-1")).authorizations[0]
        assert auth.used_units == 6

    @pytest.mark.asyncio
    async def test_exhausted_stays_exhausted(
        self, billing, make_profile, make_authorization, add_sessions
    ):
        await billing.profiles.upsert_profile(
            make_profile(authorizations=[make_authorization(total_units=1)])
        )
        await billing.claims.create_claim("patient-1", add_sessions())

        await billing.profiles.upsert_profile(
            make_profile(
                authorizations=[make_authorization(total_units=1, status=AuthorizationStatus.ACTIVE)]
            )
        )

        auth = (await billing.profiles.get_profile("patient-1")).authorizations[0]
        assert auth.used_units == 1
        assert auth.status == AuthorizationStatus.EXHAUSTED

    @pytest.mark.asyncio
    async def test_lowered_total_never_drops_below_consumption(
        self, billing, make_profile, make_authorization, add_sessions
    ):
        await billing.profiles.upsert_profile(
            make_profile(authorizations=[make_authorization(used_units=4)])
        )
        await billing.claims.create_claim("patient-1", add_sessions())

        await billing.profiles.upsert_profile(
            make_profile(authorizations=[make_authorization(total_units=3, used_units=3)])
        )

        auth = (await billing.profiles.get_profile("patient-1")).authorizations[0]
        assert auth.used_units == 5
        assert auth.total_units == 5
        assert auth.status == AuthorizationStatus.EXHAUSTED

    @pytest.mark.asyncio
    async def test_list_profiles(self, billing, make_profile, make_authorization):
        await billing.profiles.upsert_profile(
            make_profile("patient-2", authorizations=[make_authorization("auth-2")])
        )
        await billing.profiles.upsert_profile(make_profile("patient-1"))

        assert [p.patient_id for p in await billing.profiles.list_profiles()] == [
            "patient-1",
            "patient-2",
        ]


@pytest.mark.integration
class TestAuthorizationStatus:
    """Test the authorization status report and its warnings."""

    @pytest.mark.asyncio
    async def test_no_profile(self, billing):
        report = await billing.authorizations.check_authorization_status("nobody", TODAY)
        assert report.has_active is False
        assert report.warnings == ["No billing profile found"]

    @pytest.mark.asyncio
    async def test_no_active_authorization(self, billing, make_profile, make_authorization):
        await billing.profiles.upsert_profile(
            make_profile(
                authorizations=[
                    make_authorization("expired", end_date=date(2026, 2, 28)),
                    make_authorization("used-up", total_units=2, used_units=2),
                ]
            )
        )
        report = await billing.authorizations.check_authorization_status("patient-1", TODAY)
        assert report.has_active is False
        assert report.warnings == ["No active authorization found"]

    @pytest.mark.asyncio
    async def test_healthy_authorization(
        self, billing, make_profile, make_authorization, recorded_events
    ):
        await billing.profiles.upsert_profile(
            make_profile(authorizations=[make_authorization(total_units=40, used_units=5)])
        )

        report = await billing.authorizations.check_authorization_status("patient-1", TODAY)

        assert report.has_active is True
        assert report.units_remaining == 35
        assert report.expiration_date == date(2026, 12, 31)
        assert report.warnings == []
        assert recorded_events[-1].event_type == BillingEventType.PROFILE_UPDATED

    @pytest.mark.asyncio
    async def test_low_units_and_near_expiry(
        self, billing, make_profile, make_authorization, recorded_events
    ):
        await billing.profiles.upsert_profile(
            make_profile(
                authorizations=[
                    make_authorization(total_units=10, used_units=7, end_date=date(2026, 3, 25))
                ]
            )
        )

        report = await billing.authorizations.check_authorization_status("patient-1", TODAY)

        assert report.units_remaining == 3
        assert report.warnings == [
            "Only 3 units remaining",
            "Authorization expires in 10 days",
        ]
        event = recorded_events[-1]
        assert event.event_type == BillingEventType.AUTHORIZATION_NEAR_LIMIT
        assert event.data["warnings"] == report.warnings

    @pytest.mark.asyncio
    async def test_thresholds_come_from_settings(
        self, billing, billing_settings, make_profile, make_authorization
    ):
        billing_settings.AUTH_UNITS_WARNING_THRESHOLD = 3
        await billing.profiles.upsert_profile(
            make_profile(authorizations=[make_authorization(total_units=10, used_units=7)])
        )

        report = await billing.authorizations.check_authorization_status("patient-1", TODAY)

        assert report.warnings == []
