"""
Insurance Clearinghouse Gateway.

Hands claims to the clearinghouse and reads back their adjudication status:
- HTTP backend (httpx) for a real clearinghouse endpoint
- Simulated in-process backend for development and tests

Submission is retried with exponential backoff on outages and timeouts;
payer rejections are not retried. A circuit breaker stops hammering an
unhealthy endpoint.
"""

import asyncio
import logging
import secrets
import string
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Optional

import httpx

from aac_billing.core.config import BillingSettings, get_billing_settings
from aac_billing.core.enums import ClaimStatus, ClearinghouseProvider
from aac_billing.gateways.base import (
    GatewayConfig,
    GatewayError,
    GatewayHealth,
    GatewayTimeoutError,
    GatewayUnavailableError,
    retry_call,
)
from aac_billing.schemas.billing import BillingProfile, Claim, ClaimStatusUpdate

logger = logging.getLogger(__name__)


class ClearinghouseUnavailableError(GatewayUnavailableError):
    """Clearinghouse unreachable or returned a server error."""

    pass


class ClearinghouseTimeoutError(GatewayTimeoutError):
    """Clearinghouse request timed out."""

    pass


class ClearinghouseRejectedError(GatewayError):
    """Clearinghouse refused the claim (front-end edit failure)."""

    pass


RETRYABLE_ERRORS = (ClearinghouseUnavailableError, ClearinghouseTimeoutError)


@dataclass
class ClaimSubmission:
    """Claim data sent to the clearinghouse."""

    claim_id: str
    patient_id: str
    payer: str
    policy_number: str
    subscriber_id: str
    date_of_service: date
    total_amount: Decimal
    lines: list[dict[str, Any]] = field(default_factory=list)
    diagnosis_codes: list[str] = field(default_factory=list)

    @classmethod
    def from_claim(
        cls, claim: Claim, profile: BillingProfile, diagnosis_codes: Optional[list[str]] = None
    ) -> "ClaimSubmission":
        insurance = profile.insurance_info
        return cls(
            claim_id=claim.id,
            patient_id=claim.patient_id,
            payer=insurance.provider,
            policy_number=insurance.policy_number,
            subscriber_id=insurance.subscriber_id,
            date_of_service=claim.date_of_service,
            total_amount=claim.total_amount,
            lines=[
                {
                    "session_id": s.session_id,
                    "service_date": s.service_date.isoformat(),
                    "cpt_code": s.cpt_code,
                    "modifiers": list(s.modifiers),
                    "units": s.units,
                    "charge": str(s.amount),
                }
                for s in claim.sessions
            ],
            diagnosis_codes=list(diagnosis_codes or []),
        )

    def to_payload(self) -> dict[str, Any]:
        return {
            "claim_id": self.claim_id,
            "patient_id": self.patient_id,
            "payer": self.payer,
            "policy_number": self.policy_number,
            "subscriber_id": self.subscriber_id,
            "date_of_service": self.date_of_service.isoformat(),
            "total_amount": str(self.total_amount),
            "lines": self.lines,
            "diagnosis_codes": self.diagnosis_codes,
        }


@dataclass
class SubmissionReceipt:
    """Acknowledgement of an accepted submission."""

    claim_number: str
    accepted_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class ClearinghouseGateway(ABC):
    """
    Base clearinghouse gateway.

    Subclasses implement the raw calls; this class adds retry, circuit
    breaking and logging.
    """

    def __init__(self, config: GatewayConfig):
        self.config = config
        self.health = GatewayHealth()

    @property
    def gateway_name(self) -> str:
        return f"Clearinghouse[{self.config.provider}]"

    @abstractmethod
    async def _submit(self, submission: ClaimSubmission) -> SubmissionReceipt:
        """Send one submission; raise a clearinghouse error on failure."""
        pass

    @abstractmethod
    async def _fetch_status(self, claim_number: str) -> Optional[ClaimStatusUpdate]:
        """Fetch the current payer status for a claim number."""
        pass

    async def _call(self, func, *args):  # type: ignore[no-untyped-def]
        if self.health.is_circuit_open:
            raise ClearinghouseUnavailableError(
                f"{self.gateway_name}: circuit breaker open",
                provider=self.config.provider,
            )
        try:
            result = await retry_call(
                func,
                *args,
                max_attempts=self.config.retry_attempts,
                delay=self.config.retry_delay_seconds,
                exceptions=RETRYABLE_ERRORS,
            )
        except RETRYABLE_ERRORS as e:
            self.health.record_failure(
                str(e),
                self.config.circuit_breaker_threshold,
                self.config.circuit_breaker_timeout_seconds,
            )
            raise
        self.health.record_success()
        return result

    async def submit_claim(self, submission: ClaimSubmission) -> SubmissionReceipt:
        """Submit a claim and return the clearinghouse claim number."""
        receipt = await self._call(self._submit, submission)
        logger.info(
            f"{self.gateway_name}: claim {submission.claim_id} accepted "
            f"as {receipt.claim_number}"
        )
        return receipt

    async def get_claim_status(self, claim_number: str) -> Optional[ClaimStatusUpdate]:
        """Return the payer's latest status, or None when nothing is known."""
        return await self._call(self._fetch_status, claim_number)

    async def close(self) -> None:
        """Clean up gateway resources."""
        logger.info(f"{self.gateway_name} gateway closed")


class HttpClearinghouseGateway(ClearinghouseGateway):
    """
    Clearinghouse reached over HTTP.

    Endpoints:
        POST {base}/claims                       -> {"claim_number": ...}
        GET  {base}/claims/{claim_number}/status -> status document
    """

    def __init__(
        self,
        config: GatewayConfig,
        base_url: str,
        api_key: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(config)
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        self._http_client = httpx.AsyncClient(
            base_url=base_url,
            timeout=config.timeout_seconds,
            headers=headers,
            transport=transport,
        )

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            response = await self._http_client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            raise ClearinghouseTimeoutError(
                f"Clearinghouse request timed out: {method} {url}",
                provider=self.config.provider,
                original_error=e,
            )
        except httpx.TransportError as e:
            raise ClearinghouseUnavailableError(
                f"Could not reach clearinghouse: {e}",
                provider=self.config.provider,
                original_error=e,
            )

        if response.status_code >= 500:
            raise ClearinghouseUnavailableError(
                f"Clearinghouse returned {response.status_code}",
                provider=self.config.provider,
            )
        return response

    async def _submit(self, submission: ClaimSubmission) -> SubmissionReceipt:
        response = await self._request("POST", "/claims", json=submission.to_payload())

        if response.status_code >= 400:
            raise ClearinghouseRejectedError(
                f"Clearinghouse rejected claim {submission.claim_id}: "
                f"{response.status_code} {response.text}",
                provider=self.config.provider,
            )

        data = response.json()
        claim_number = data.get("claim_number")
        if not claim_number:
            raise ClearinghouseRejectedError(
                "Clearinghouse response did not include a claim number",
                provider=self.config.provider,
            )
        return SubmissionReceipt(claim_number=claim_number)

    async def _fetch_status(self, claim_number: str) -> Optional[ClaimStatusUpdate]:
        response = await self._request("GET", f"/claims/{claim_number}/status")

        if response.status_code == 404:
            return None
        if response.status_code >= 400:
            raise ClearinghouseRejectedError(
                f"Status lookup for {claim_number} failed: {response.status_code}",
                provider=self.config.provider,
            )

        data = response.json()
        data.setdefault("claim_number", claim_number)
        return ClaimStatusUpdate.model_validate(data)

    async def close(self) -> None:
        await self._http_client.aclose()
        await super().close()


class SimulatedClearinghouseGateway(ClearinghouseGateway):
    """
    In-process clearinghouse.

    Accepts every claim and reports it as processing on the next status
    poll. Payer outcomes can be scripted with ``set_status`` and outages
    with ``fail_next``. Each scripted status is delivered once.
    """

    def __init__(
        self,
        config: Optional[GatewayConfig] = None,
        claim_number_prefix: str = "CLM",
        latency_seconds: float = 0.0,
    ):
        super().__init__(config or GatewayConfig(provider=ClearinghouseProvider.SIMULATED.value))
        self.claim_number_prefix = claim_number_prefix
        self.latency_seconds = latency_seconds
        self.submissions: list[ClaimSubmission] = []
        self._statuses: dict[str, ClaimStatusUpdate] = {}
        self._pending_failures: list[GatewayError] = []

    def _generate_claim_number(self) -> str:
        suffix = "".join(secrets.choice(string.ascii_uppercase + string.digits) for _ in range(5))
        return f"{self.claim_number_prefix}{int(time.time() * 1000)}{suffix}"

    def fail_next(self, count: int = 1, error: Optional[GatewayError] = None) -> None:
        """Make the next ``count`` calls raise ``error`` (an outage by default)."""
        for _ in range(count):
            self._pending_failures.append(
                error or ClearinghouseUnavailableError("Simulated clearinghouse outage")
            )

    def set_status(self, claim_number: str, update: ClaimStatusUpdate) -> None:
        """Script the payer's answer for a claim number."""
        self._statuses[claim_number] = update

    async def _maybe_fail(self) -> None:
        if self.latency_seconds:
            await asyncio.sleep(self.latency_seconds)
        if self._pending_failures:
            raise self._pending_failures.pop(0)

    async def _submit(self, submission: ClaimSubmission) -> SubmissionReceipt:
        await self._maybe_fail()
        claim_number = self._generate_claim_number()
        self.submissions.append(submission)
        self._statuses[claim_number] = ClaimStatusUpdate(
            claim_id=submission.claim_id,
            claim_number=claim_number,
            status=ClaimStatus.PROCESSING,
        )
        return SubmissionReceipt(claim_number=claim_number)

    async def _fetch_status(self, claim_number: str) -> Optional[ClaimStatusUpdate]:
        await self._maybe_fail()
        return self._statuses.pop(claim_number, None)


def get_clearinghouse_gateway(
    settings: Optional[BillingSettings] = None,
) -> ClearinghouseGateway:
    """Build the configured clearinghouse gateway."""
    settings = settings or get_billing_settings()
    config = GatewayConfig(
        provider=settings.CLEARINGHOUSE_PROVIDER.value,
        timeout_seconds=settings.CLEARINGHOUSE_TIMEOUT_SECONDS,
        retry_attempts=settings.CLEARINGHOUSE_RETRY_ATTEMPTS,
        retry_delay_seconds=settings.CLEARINGHOUSE_RETRY_DELAY_SECONDS,
    )

    if settings.CLEARINGHOUSE_PROVIDER == ClearinghouseProvider.HTTP:
        return HttpClearinghouseGateway(
            config,
            base_url=settings.CLEARINGHOUSE_BASE_URL,
            api_key=settings.CLEARINGHOUSE_API_KEY,
        )
    return SimulatedClearinghouseGateway(
        config,
        claim_number_prefix=settings.CLAIM_NUMBER_PREFIX,
    )
