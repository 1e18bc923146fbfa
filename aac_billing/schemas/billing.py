"""
Pydantic Schemas for the Billing Engine.

Domain types shared by the services, the repository and the HTTP layer:
billing profiles and authorizations, billable sessions, claims, payment
and status updates, and the derived billing report.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Annotated, Optional

from pydantic import (
    AfterValidator,
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)

from aac_billing.core.enums import (
    AuthorizationStatus,
    ClaimStatus,
    CoverageType,
    CPTCategory,
    PaymentMethodType,
    StatusChangeSource,
    SubscriberRelationship,
    UnitType,
)
from aac_billing.utils.money import ZERO, to_money

Money = Annotated[Decimal, AfterValidator(to_money)]


# =============================================================================
# Profile Schemas
# =============================================================================


class InsuranceInfo(BaseModel):
    """Patient insurance coverage details."""

    provider: str = Field(..., min_length=1, max_length=200, description="Insurance company name")
    policy_number: str = Field(..., min_length=1, max_length=100)
    group_number: Optional[str] = Field(None, max_length=100)
    subscriber_id: str = Field(..., min_length=1, max_length=100)
    subscriber_name: str = Field(..., min_length=1, max_length=200)
    relationship: SubscriberRelationship = SubscriberRelationship.SELF
    coverage_type: CoverageType = CoverageType.PRIVATE
    copay: Optional[Money] = Field(None, ge=0)
    deductible: Optional[Money] = Field(None, ge=0)
    deductible_met: Optional[Money] = Field(None, ge=0)
    out_of_pocket_max: Optional[Money] = Field(None, ge=0)
    out_of_pocket_met: Optional[Money] = Field(None, ge=0)
    effective_date: date
    termination_date: Optional[date] = None


class Address(BaseModel):
    """Billing address."""

    street1: str = Field(..., min_length=1, max_length=200)
    street2: Optional[str] = Field(None, max_length=200)
    city: str = Field(..., min_length=1, max_length=100)
    state: str = Field(..., min_length=1, max_length=50)
    zip_code: str = Field(..., min_length=1, max_length=20)
    country: str = Field(default="US", max_length=50)


class PaymentMethod(BaseModel):
    """Payment method on file; only the last four digits are kept."""

    type: PaymentMethodType
    last4: str = Field(..., pattern=r"^\d{4}$")
    expiry_month: Optional[int] = Field(None, ge=1, le=12)
    expiry_year: Optional[int] = Field(None, ge=2000)
    is_default: bool = True


class Authorization(BaseModel):
    """
    Insurer permission to bill up to ``total_units`` between two dates.

    ``used_units`` only ever grows. Once it reaches ``total_units`` the
    status is ``exhausted`` for good. Expiry is never stored; it is
    evaluated against ``end_date`` when needed.
    """

    id: str = Field(..., min_length=1, max_length=64)
    auth_number: str = Field(..., min_length=1, max_length=100)
    start_date: date
    end_date: date
    total_units: int = Field(..., ge=0)
    used_units: int = Field(default=0, ge=0)
    unit_type: UnitType = UnitType.SESSIONS
    cpt_codes: list[str] = Field(default_factory=list)
    diagnosis_codes: list[str] = Field(default_factory=list)
    status: AuthorizationStatus = AuthorizationStatus.ACTIVE
    notes: Optional[str] = None

    @model_validator(mode="after")
    def check_window_and_exhaustion(self) -> "Authorization":
        if self.end_date < self.start_date:
            raise ValueError("end_date must be on or after start_date")
        if self.used_units > self.total_units:
            raise ValueError("used_units cannot exceed total_units")
        if self.used_units == self.total_units:
            self.status = AuthorizationStatus.EXHAUSTED
        return self

    @property
    def units_remaining(self) -> int:
        return max(self.total_units - self.used_units, 0)

    def is_expired(self, on: date) -> bool:
        return self.end_date < on


class BillingProfile(BaseModel):
    """One billing profile per patient, replaced wholesale on upsert."""

    patient_id: str = Field(..., min_length=1, max_length=64)
    insurance_info: InsuranceInfo
    billing_address: Address
    payment_method: Optional[PaymentMethod] = None
    authorizations: list[Authorization] = Field(default_factory=list)
    balance: Money = ZERO
    credit_limit: Money = Field(default=ZERO, ge=0)

    @field_validator("authorizations")
    @classmethod
    def unique_authorization_ids(cls, v: list[Authorization]) -> list[Authorization]:
        ids = [auth.id for auth in v]
        if len(ids) != len(set(ids)):
            raise ValueError("authorization ids must be unique within a profile")
        return v


# =============================================================================
# Session / Catalog Schemas
# =============================================================================


class CPTCode(BaseModel):
    """Catalog entry for a billable procedure code."""

    model_config = ConfigDict(frozen=True)

    code: str
    description: str
    category: CPTCategory
    default_rate: Money
    default_units: int = Field(default=1, ge=1)
    requires_modifier: bool = False
    allowed_modifiers: tuple[str, ...] = ()


class SessionRecord(BaseModel):
    """A completed therapy session as reported by session tracking."""

    session_id: str = Field(..., min_length=1, max_length=64)
    patient_id: str = Field(..., min_length=1, max_length=64)
    session_date: date
    duration_minutes: int = Field(..., gt=0)
    cpt_code: str
    modifiers: list[str] = Field(default_factory=list)
    notes: Optional[str] = None
    supervision_required: bool = False
    supervisor_id: Optional[str] = None


class BillableSession(BaseModel):
    """Priced, coded line item. Immutable once generated."""

    model_config = ConfigDict(frozen=True)

    session_id: str
    service_date: date
    duration_minutes: int = Field(..., gt=0)
    cpt_code: str
    modifiers: list[str] = Field(default_factory=list)
    units: int = Field(..., ge=1)
    rate: Money = Field(..., ge=0)
    amount: Money = Field(..., ge=0)
    notes: Optional[str] = None
    supervision_required: bool = False
    supervisor_id: Optional[str] = None

    @model_validator(mode="after")
    def check_amount(self) -> "BillableSession":
        if self.amount != to_money(self.rate * self.units):
            raise ValueError("amount must equal rate x units")
        return self


# =============================================================================
# Claim Schemas
# =============================================================================


class ClaimStatusChange(BaseModel):
    """One entry in a claim's status history."""

    previous_status: Optional[ClaimStatus] = None
    new_status: ClaimStatus
    source: StatusChangeSource = StatusChangeSource.SYSTEM
    reason: Optional[str] = None
    changed_at: datetime


class Claim(BaseModel):
    """Bundled bill for one or more sessions."""

    id: str
    patient_id: str
    authorization_id: Optional[str] = None
    claim_number: Optional[str] = None
    date_of_service: date
    date_submitted: Optional[datetime] = None
    sessions: list[BillableSession] = Field(default_factory=list)
    total_amount: Money
    allowed_amount: Optional[Money] = None
    paid_amount: Optional[Money] = None
    patient_responsibility: Optional[Money] = None
    status: ClaimStatus = ClaimStatus.DRAFT
    denial_reason: Optional[str] = None
    appeal_count: int = Field(default=0, ge=0)
    payment_date: Optional[date] = None
    check_number: Optional[str] = None
    status_history: list[ClaimStatusChange] = Field(default_factory=list)

    @property
    def units(self) -> int:
        return sum(s.units for s in self.sessions)

    @property
    def write_off(self) -> Optional[Decimal]:
        """Billed minus allowed; reporting only."""
        if self.allowed_amount is None:
            return None
        return to_money(self.total_amount - self.allowed_amount)


class PaymentDetails(BaseModel):
    """Remittance recorded against a claim."""

    amount: Money
    allowed_amount: Money
    patient_responsibility: Money
    check_number: Optional[str] = Field(None, max_length=50)
    payment_date: date


class ClaimStatusUpdate(BaseModel):
    """Status notification from the clearinghouse (poll result or webhook)."""

    claim_id: Optional[str] = None
    claim_number: Optional[str] = None
    status: ClaimStatus
    denial_reason: Optional[str] = None
    payment: Optional[PaymentDetails] = None

    @model_validator(mode="after")
    def check_reference_and_payload(self) -> "ClaimStatusUpdate":
        if not self.claim_id and not self.claim_number:
            raise ValueError("claim_id or claim_number is required")
        if self.status == ClaimStatus.PAID and self.payment is None:
            raise ValueError("paid status updates must carry payment details")
        return self


# =============================================================================
# Authorization Status
# =============================================================================


class AuthorizationStatusReport(BaseModel):
    """Read-only summary of a patient's current authorization."""

    patient_id: str
    has_active: bool
    units_remaining: int = 0
    expiration_date: Optional[date] = None
    warnings: list[str] = Field(default_factory=list)


# =============================================================================
# Report Schemas
# =============================================================================


class ReportPeriod(BaseModel):
    start: date
    end: date


class BillingSummary(BaseModel):
    total_claims: int = 0
    total_billed: Money = ZERO
    total_collected: Money = ZERO
    total_pending: Money = ZERO
    total_denied: Money = ZERO
    average_reimbursement_rate: float = Field(0.0, description="Percent of billed amount paid")
    average_days_to_payment: float = 0.0


class InsurerStats(BaseModel):
    name: str
    claim_count: int = 0
    total_billed: Money = ZERO
    total_paid: Money = ZERO
    denial_rate: float = Field(0.0, description="Percent of claims denied")
    average_days_to_payment: float = 0.0


class PatientBillingStats(BaseModel):
    patient_id: str
    total_sessions: int = 0
    total_billed: Money = ZERO
    total_paid: Money = ZERO
    balance: Money = ZERO
    last_payment: Optional[date] = None


class AgingReport(BaseModel):
    """Unpaid submitted claims bucketed by days since submission."""

    current: Money = ZERO
    days30: Money = ZERO
    days60: Money = ZERO
    days90: Money = ZERO
    over90: Money = ZERO


class FinancialProjections(BaseModel):
    next_month: Money = ZERO
    next_quarter: Money = ZERO
    assumptions: list[str] = Field(default_factory=list)


class BillingReport(BaseModel):
    """Derived on demand; never persisted."""

    period: ReportPeriod
    generated_at: datetime
    summary: BillingSummary
    by_insurer: dict[str, InsurerStats] = Field(default_factory=dict)
    by_patient: dict[str, PatientBillingStats] = Field(default_factory=dict)
    aging: AgingReport
    projections: FinancialProjections


# =============================================================================
# Request / Response Schemas
# =============================================================================


class ClaimCreateRequest(BaseModel):
    patient_id: str = Field(..., min_length=1, max_length=64)
    session_ids: list[str] = Field(..., min_length=1)
    submit_immediately: bool = False


class ClaimDenyRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=500)


class AppealResolutionRequest(BaseModel):
    accepted: bool
    reason: Optional[str] = Field(None, max_length=500)


class BillingImportResult(BaseModel):
    profiles_imported: int
    claims_imported: int
