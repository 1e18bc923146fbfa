"""
Billing engine exceptions.

Precondition failures are returned to callers as typed reasons rather than
raised through the claim workflow; validation failures are raised.
"""

from typing import Optional


class BillingError(Exception):
    """Base exception for billing engine errors."""

    pass


class ClaimPreconditionError(BillingError):
    """A claim cannot be created from the given inputs."""

    def __init__(self, message: str, patient_id: Optional[str] = None):
        super().__init__(message)
        self.patient_id = patient_id


class NoProfileError(ClaimPreconditionError):
    """No billing profile exists for the patient."""

    pass


class NoBillableSessionsError(ClaimPreconditionError):
    """None of the requested sessions can be billed."""

    pass


class NoAuthorizationError(ClaimPreconditionError):
    """No active authorization covers the date of service."""

    pass


class InsufficientAuthorizationUnitsError(NoAuthorizationError):
    """The covering authorization has fewer units left than the claim needs."""

    def __init__(
        self,
        message: str,
        patient_id: Optional[str] = None,
        authorization_id: Optional[str] = None,
        units_needed: int = 0,
        units_remaining: int = 0,
    ):
        super().__init__(message, patient_id=patient_id)
        self.authorization_id = authorization_id
        self.units_needed = units_needed
        self.units_remaining = units_remaining


class PaymentValidationError(BillingError):
    """Payment amounts are inconsistent with the claim."""

    def __init__(self, message: str, errors: Optional[list[str]] = None):
        super().__init__(message)
        self.errors = errors or []


class ClaimNotFoundError(BillingError):
    """Raised when claim is not found."""

    pass
