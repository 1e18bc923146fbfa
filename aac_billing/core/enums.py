"""
Core Enumerations for the AAC Therapy Billing Engine.

Claim lifecycle, authorization, insurance and reporting enums shared by
the ORM models, pydantic schemas and services.
"""

from enum import Enum


# =============================================================================
# Claim Enums
# =============================================================================


class ClaimStatus(str, Enum):
    """Claim lifecycle status.

    State Machine Transitions:
    DRAFT -> SUBMITTED
    SUBMITTED -> PROCESSING | DENIED
    PROCESSING -> DENIED
    DENIED -> APPEALED
    APPEALED -> PROCESSING | DENIED
    any non-PAID status -> PAID
    """

    DRAFT = "draft"
    SUBMITTED = "submitted"
    PROCESSING = "processing"
    PAID = "paid"
    DENIED = "denied"
    APPEALED = "appealed"


class StatusChangeSource(str, Enum):
    """Who triggered a claim status change."""

    SYSTEM = "system"
    CLEARINGHOUSE = "clearinghouse"
    MANUAL = "manual"


# =============================================================================
# Authorization Enums
# =============================================================================


class AuthorizationStatus(str, Enum):
    """Stored authorization status.

    EXHAUSTED is one-way. EXPIRED is only ever set by data entry; the
    engine treats expiry as a date predicate.
    """

    ACTIVE = "active"
    EXPIRED = "expired"
    EXHAUSTED = "exhausted"


class UnitType(str, Enum):
    """Units an authorization is counted in."""

    SESSIONS = "sessions"
    MINUTES = "minutes"
    HOURS = "hours"


# =============================================================================
# Insurance / Profile Enums
# =============================================================================


class SubscriberRelationship(str, Enum):
    """Patient relationship to the insurance subscriber."""

    SELF = "self"
    SPOUSE = "spouse"
    CHILD = "child"
    OTHER = "other"


class CoverageType(str, Enum):
    """Insurance coverage type."""

    PRIVATE = "private"
    MEDICARE = "medicare"
    MEDICAID = "medicaid"
    TRICARE = "tricare"
    OTHER = "other"


class PaymentMethodType(str, Enum):
    """Patient payment method on file."""

    CREDIT = "credit"
    DEBIT = "debit"
    ACH = "ach"
    CHECK = "check"


# =============================================================================
# CPT Catalog Enums
# =============================================================================


class CPTCategory(str, Enum):
    """Billing code categories for speech/AAC therapy."""

    EVALUATION = "evaluation"
    TREATMENT = "treatment"
    GROUP = "group"
    TELETHERAPY = "teletherapy"


# =============================================================================
# Event / Export Enums
# =============================================================================


class BillingEventType(str, Enum):
    """Domain events emitted for audit and analytics collaborators."""

    PROFILE_UPDATED = "billing_profile_updated"
    CLAIM_CREATED = "claim_created"
    CLAIM_SUBMITTED = "claim_submitted"
    CLAIM_STATUS_CHANGED = "claim_status_changed"
    CLAIM_DENIED = "claim_denied"
    CLAIM_APPEALED = "claim_appealed"
    PAYMENT_PROCESSED = "payment_processed"
    AUTHORIZATION_EXHAUSTED = "authorization_exhausted"
    AUTHORIZATION_NEAR_LIMIT = "authorization_near_limit"


class ExportFormat(str, Enum):
    """Supported billing export formats."""

    JSON = "json"
    CSV = "csv"


# =============================================================================
# Gateway Enums
# =============================================================================


class GatewayStatus(str, Enum):
    """Health of an external gateway as seen by its circuit breaker."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


class ClearinghouseProvider(str, Enum):
    """Clearinghouse backends."""

    SIMULATED = "simulated"
    HTTP = "http"
