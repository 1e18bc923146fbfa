"""
Unit tests for the clearinghouse gateways.
"""

from datetime import date
from decimal import Decimal

import httpx
import pytest

from aac_billing.core.config import BillingSettings
from aac_billing.core.enums import ClaimStatus, ClearinghouseProvider, GatewayStatus
from aac_billing.gateways.base import GatewayConfig, GatewayHealth, retry_call
from aac_billing.gateways.clearinghouse_gateway import (
    ClaimSubmission,
    ClearinghouseRejectedError,
    ClearinghouseTimeoutError,
    ClearinghouseUnavailableError,
    HttpClearinghouseGateway,
    SimulatedClearinghouseGateway,
    get_clearinghouse_gateway,
)
from aac_billing.schemas.billing import BillableSession, Claim


def _config(**overrides):
    data = {"provider": "test", "retry_attempts": 3, "retry_delay_seconds": 0}
    data.update(overrides)
    return GatewayConfig(**data)


@pytest.fixture
def submission(make_profile):
    claim = Claim(
        id="claim-1",
        patient_id="patient-1",
        date_of_service=date(2026, 3, 10),
        sessions=[
            BillableSession(
                session_id="s1",
                service_date=date(2026, 3, 10),
                duration_minutes=45,
                cpt_code="92507",
                modifiers=["GN"],
                units=1,
                rate=Decimal("150.00"),
                amount=Decimal("150.00"),
            )
        ],
        total_amount=Decimal("150.00"),
    )
    return ClaimSubmission.from_claim(claim, make_profile(), ["F80.2"])


def _http_gateway(handler, config=None, api_key=None):
    return HttpClearinghouseGateway(
        config or _config(),
        base_url="https://clearinghouse.test",
        api_key=api_key,
        transport=httpx.MockTransport(handler),
    )


@pytest.mark.unit
class TestClaimSubmission:
    def test_from_claim(self, submission):
        assert submission.payer == "Blue Cross"
        assert submission.policy_number == "POL-12345"
        assert submission.lines[0]["cpt_code"] == "92507"
        assert submission.lines[0]["modifiers"] == ["GN"]

    def test_payload_is_json_safe(self, submission):
        payload = submission.to_payload()
        assert payload["total_amount"] == "150.00"
        assert payload["date_of_service"] == "2026-03-10"
        assert payload["lines"][0]["charge"] == "150.00"
        assert payload["diagnosis_codes"] == ["F80.2"]


@pytest.mark.unit
class TestGatewayHealth:
    def test_degrades_then_opens(self):
        health = GatewayHealth()
        health.record_failure("boom", circuit_breaker_threshold=4, timeout_seconds=60)
        assert health.status == GatewayStatus.HEALTHY
        health.record_failure("boom", circuit_breaker_threshold=4, timeout_seconds=60)
        assert health.status == GatewayStatus.DEGRADED
        health.record_failure("boom", 4, 60)
        health.record_failure("boom", 4, 60)
        assert health.status == GatewayStatus.UNHEALTHY
        assert health.is_circuit_open

    def test_success_closes_circuit(self):
        health = GatewayHealth()
        health.record_failure("boom", 1, 60)
        health.record_success()
        assert health.is_circuit_open is False
        assert health.consecutive_failures == 0
        assert health.error_count == 1
        assert health.request_count == 2


@pytest.mark.unit
class TestRetryCall:
    @pytest.mark.asyncio
    async def test_retries_until_success(self):
        calls = []

        async def flaky():
            calls.append(1)
            if len(calls) < 3:
                raise ClearinghouseUnavailableError("down")
            return "ok"

        result = await retry_call(
            flaky, max_attempts=3, delay=0, exceptions=(ClearinghouseUnavailableError,)
        )
        assert result == "ok"
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_non_retryable_raises_immediately(self):
        calls = []

        async def rejected():
            calls.append(1)
            raise ClearinghouseRejectedError("bad claim")

        with pytest.raises(ClearinghouseRejectedError):
            await retry_call(
                rejected, max_attempts=3, delay=0, exceptions=(ClearinghouseUnavailableError,)
            )
        assert len(calls) == 1


@pytest.mark.unit
class TestHttpClearinghouseGateway:
    @pytest.mark.asyncio
    async def test_submit_returns_claim_number(self, submission):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["auth"] = request.headers.get("authorization")
            return httpx.Response(200, json={"claim_number": "CH-001"})

        gateway = _http_gateway(handler, api_key="secret")
        receipt = await gateway.submit_claim(submission)
        await gateway.close()

        assert receipt.claim_number == "CH-001"
        assert seen == {"path": "/claims", "auth": "Bearer secret"}
        assert gateway.health.status == GatewayStatus.HEALTHY

    @pytest.mark.asyncio
    async def test_server_errors_are_retried(self, submission):
        attempts = []

        def handler(request: httpx.Request) -> httpx.Response:
            attempts.append(request)
            if len(attempts) < 3:
                return httpx.Response(503)
            return httpx.Response(201, json={"claim_number": "CH-002"})

        gateway = _http_gateway(handler)
        receipt = await gateway.submit_claim(submission)
        await gateway.close()

        assert receipt.claim_number == "CH-002"
        assert len(attempts) == 3

    @pytest.mark.asyncio
    async def test_rejection_is_not_retried(self, submission):
        attempts = []

        def handler(request: httpx.Request) -> httpx.Response:
            attempts.append(request)
            return httpx.Response(400, text="missing subscriber")

        gateway = _http_gateway(handler)
        with pytest.raises(ClearinghouseRejectedError):
            await gateway.submit_claim(submission)
        await gateway.close()

        assert len(attempts) == 1

    @pytest.mark.asyncio
    async def test_missing_claim_number_is_rejection(self, submission):
        gateway = _http_gateway(lambda request: httpx.Response(200, json={}))
        with pytest.raises(ClearinghouseRejectedError):
            await gateway.submit_claim(submission)
        await gateway.close()

    @pytest.mark.asyncio
    async def test_timeout_after_retries(self, submission):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        gateway = _http_gateway(handler)
        with pytest.raises(ClearinghouseTimeoutError):
            await gateway.submit_claim(submission)
        await gateway.close()

        assert gateway.health.consecutive_failures == 1

    @pytest.mark.asyncio
    async def test_status_lookup(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/claims/CH-001/status"
            return httpx.Response(
                200,
                json={
                    "status": "paid",
                    "payment": {
                        "amount": "120.00",
                        "allowed_amount": "120.00",
                        "patient_responsibility": "30.00",
                        "payment_date": "2026-04-01",
                    },
                },
            )

        gateway = _http_gateway(handler)
        update = await gateway.get_claim_status("CH-001")
        await gateway.close()

        assert update.claim_number == "CH-001"
        assert update.status == ClaimStatus.PAID
        assert update.payment.amount == Decimal("120.00")

    @pytest.mark.asyncio
    async def test_unknown_claim_number(self):
        gateway = _http_gateway(lambda request: httpx.Response(404))
        assert await gateway.get_claim_status("CH-404") is None
        await gateway.close()


@pytest.mark.unit
class TestSimulatedClearinghouseGateway:
    @pytest.mark.asyncio
    async def test_accepts_and_reports_processing_once(self, submission):
        gateway = SimulatedClearinghouseGateway(_config(), claim_number_prefix="TST")
        receipt = await gateway.submit_claim(submission)

        assert receipt.claim_number.startswith("TST")
        assert gateway.submissions == [submission]

        update = await gateway.get_claim_status(receipt.claim_number)
        assert update.status == ClaimStatus.PROCESSING
        assert update.claim_id == "claim-1"
        assert await gateway.get_claim_status(receipt.claim_number) is None

    @pytest.mark.asyncio
    async def test_outage_is_retried(self, submission):
        gateway = SimulatedClearinghouseGateway(_config())
        gateway.fail_next(2)
        receipt = await gateway.submit_claim(submission)
        assert receipt.claim_number

    @pytest.mark.asyncio
    async def test_outage_longer_than_retries(self, submission):
        gateway = SimulatedClearinghouseGateway(_config())
        gateway.fail_next(3)
        with pytest.raises(ClearinghouseUnavailableError):
            await gateway.submit_claim(submission)
        assert gateway.submissions == []

    @pytest.mark.asyncio
    async def test_circuit_breaker_opens(self, submission):
        gateway = SimulatedClearinghouseGateway(
            _config(retry_attempts=1, circuit_breaker_threshold=2)
        )
        gateway.fail_next(2)
        for _ in range(2):
            with pytest.raises(ClearinghouseUnavailableError):
                await gateway.submit_claim(submission)

        with pytest.raises(ClearinghouseUnavailableError, match="circuit breaker open"):
            await gateway.submit_claim(submission)
        assert gateway.health.status == GatewayStatus.UNHEALTHY
        assert gateway.submissions == []


@pytest.mark.unit
class TestGatewayFactory:
    def test_simulated_by_default(self):
        gateway = get_clearinghouse_gateway(BillingSettings(CLAIM_NUMBER_PREFIX="AAC"))
        assert isinstance(gateway, SimulatedClearinghouseGateway)
        assert gateway.claim_number_prefix == "AAC"

    @pytest.mark.asyncio
    async def test_http_provider(self):
        gateway = get_clearinghouse_gateway(
            BillingSettings(
                CLEARINGHOUSE_PROVIDER=ClearinghouseProvider.HTTP,
                CLEARINGHOUSE_BASE_URL="https://clearinghouse.test",
                CLEARINGHOUSE_RETRY_ATTEMPTS=5,
            )
        )
        assert isinstance(gateway, HttpClearinghouseGateway)
        assert gateway.config.retry_attempts == 5
        await gateway.close()
