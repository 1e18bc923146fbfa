"""
Base Gateway Support for External Billing Systems.

Shared pieces for gateways that talk to systems outside the engine:
- Error hierarchy
- Retry with exponential backoff (retry_call)
- Circuit breaker health tracking
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional
import asyncio
import logging

from aac_billing.core.enums import GatewayStatus

logger = logging.getLogger(__name__)


class GatewayError(Exception):
    """Base exception for gateway errors."""

    def __init__(
        self,
        message: str,
        provider: Optional[str] = None,
        original_error: Optional[Exception] = None,
    ):
        super().__init__(message)
        self.provider = provider
        self.original_error = original_error


class GatewayUnavailableError(GatewayError):
    """Raised when the external system cannot be reached."""

    pass


class GatewayTimeoutError(GatewayError):
    """Raised when an external request times out."""

    pass


@dataclass
class GatewayConfig:
    """Configuration for a gateway instance."""

    provider: str
    timeout_seconds: float = 30.0
    retry_attempts: int = 3
    retry_delay_seconds: float = 1.0
    circuit_breaker_threshold: int = 5
    circuit_breaker_timeout_seconds: float = 60.0


@dataclass
class GatewayHealth:
    """Health status for a gateway."""

    status: GatewayStatus = GatewayStatus.HEALTHY
    last_check: Optional[datetime] = None
    consecutive_failures: int = 0
    last_error: Optional[str] = None
    request_count: int = 0
    error_count: int = 0
    circuit_open_until: Optional[datetime] = None

    @property
    def is_circuit_open(self) -> bool:
        """Check if circuit breaker is open."""
        if self.circuit_open_until is None:
            return False
        return datetime.now(timezone.utc) < self.circuit_open_until

    def record_success(self) -> None:
        """Record a successful request."""
        self.consecutive_failures = 0
        self.request_count += 1
        self.last_check = datetime.now(timezone.utc)
        self.circuit_open_until = None
        self.status = GatewayStatus.HEALTHY

    def record_failure(
        self, error: str, circuit_breaker_threshold: int, timeout_seconds: float
    ) -> None:
        """Record a failed request."""
        self.consecutive_failures += 1
        self.error_count += 1
        self.request_count += 1
        self.last_error = error
        self.last_check = datetime.now(timezone.utc)

        if self.consecutive_failures >= circuit_breaker_threshold:
            self.circuit_open_until = datetime.now(timezone.utc) + timedelta(
                seconds=timeout_seconds
            )
            self.status = GatewayStatus.UNHEALTHY
        elif self.consecutive_failures >= circuit_breaker_threshold // 2:
            self.status = GatewayStatus.DEGRADED


async def retry_call(
    func: Callable,
    *args,
    max_attempts: int = 3,
    delay: float = 1.0,
    backoff_factor: float = 2.0,
    exceptions: tuple = (Exception,),
    **kwargs,
):
    """Await ``func``, retrying the listed exceptions with exponential backoff."""
    last_exception: Optional[BaseException] = None
    current_delay = delay

    for attempt in range(max_attempts):
        try:
            return await func(*args, **kwargs)
        except exceptions as e:
            last_exception = e
            if attempt < max_attempts - 1:
                logger.warning(
                    f"Attempt {attempt + 1}/{max_attempts} failed: {e}. "
                    f"Retrying in {current_delay:.1f}s..."
                )
                await asyncio.sleep(current_delay)
                current_delay *= backoff_factor
            else:
                logger.error(
                    f"All {max_attempts} attempts failed. Last error: {e}"
                )

    raise last_exception or GatewayError("All retry attempts failed")
