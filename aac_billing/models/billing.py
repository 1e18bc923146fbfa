"""
Billing Engine Models.

Billing profiles with their ordered authorizations, claims with the
billable sessions they own, and the claim status audit trail.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from aac_billing.core.enums import (
    AuthorizationStatus,
    ClaimStatus,
    StatusChangeSource,
    UnitType,
)
from aac_billing.models.base import Base, TimeStampedModel, UTCDateTime, UUIDModel, utcnow


class BillingProfileRecord(Base, TimeStampedModel):
    """
    Per-patient billing profile.

    Insurance, address and payment method are stored as JSON documents;
    authorizations are rows so unit consumption can be updated atomically.
    """

    __tablename__ = "billing_profiles"

    patient_id: Mapped[str] = mapped_column(
        String(64),
        primary_key=True,
        comment="External patient identifier",
    )
    insurance_info: Mapped[dict] = mapped_column(
        JSON,
        nullable=False,
        comment="Insurance information document",
    )
    insurance_provider: Mapped[str] = mapped_column(
        String(200),
        nullable=False,
        index=True,
        comment="Current insurance provider name (denormalized for reporting)",
    )
    billing_address: Mapped[dict] = mapped_column(
        JSON,
        nullable=False,
        comment="Billing address document",
    )
    payment_method: Mapped[Optional[dict]] = mapped_column(
        JSON,
        nullable=True,
        comment="Payment method on file",
    )
    balance: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        default=Decimal("0.00"),
        nullable=False,
        comment="Running patient balance",
    )
    credit_limit: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        default=Decimal("0.00"),
        nullable=False,
        comment="Patient credit limit",
    )

    authorizations: Mapped[list["AuthorizationRecord"]] = relationship(
        back_populates="profile",
        cascade="all, delete-orphan",
        order_by="AuthorizationRecord.position",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<BillingProfileRecord(patient_id={self.patient_id}, provider={self.insurance_provider})>"


class AuthorizationRecord(Base, TimeStampedModel):
    """Insurer authorization to bill up to ``total_units`` within a date window."""

    __tablename__ = "authorizations"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    patient_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("billing_profiles.patient_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    position: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        comment="Order within the profile; resolution scans in this order",
    )
    auth_number: Mapped[str] = mapped_column(String(100), nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    total_units: Mapped[int] = mapped_column(Integer, nullable=False)
    used_units: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    unit_type: Mapped[UnitType] = mapped_column(
        Enum(UnitType),
        default=UnitType.SESSIONS,
        nullable=False,
    )
    cpt_codes: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    diagnosis_codes: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    status: Mapped[AuthorizationStatus] = mapped_column(
        Enum(AuthorizationStatus),
        default=AuthorizationStatus.ACTIVE,
        nullable=False,
    )
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    profile: Mapped["BillingProfileRecord"] = relationship(back_populates="authorizations")

    __table_args__ = (
        CheckConstraint("used_units >= 0", name="ck_authorizations_used_units_non_negative"),
        CheckConstraint("total_units >= 0", name="ck_authorizations_total_units_non_negative"),
        Index("ix_authorizations_patient_position", "patient_id", "position"),
    )

    def __repr__(self) -> str:
        return f"<AuthorizationRecord(id={self.id}, {self.used_units}/{self.total_units}, {self.status})>"


class ClaimRecord(Base, UUIDModel, TimeStampedModel):
    """
    Insurance claim for one or more therapy sessions.

    Append-only: claims are never deleted, and a paid claim is never
    written again.
    """

    __tablename__ = "claims"

    patient_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("billing_profiles.patient_id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    authorization_id: Mapped[Optional[str]] = mapped_column(
        String(64),
        nullable=True,
        comment="Authorization whose units this claim consumed",
    )
    claim_number: Mapped[Optional[str]] = mapped_column(
        String(64),
        unique=True,
        nullable=True,
        comment="Assigned by the clearinghouse on submission",
    )
    status: Mapped[ClaimStatus] = mapped_column(
        Enum(ClaimStatus),
        default=ClaimStatus.DRAFT,
        nullable=False,
        index=True,
    )
    date_of_service: Mapped[date] = mapped_column(
        Date,
        nullable=False,
        index=True,
        comment="Date of the first session on the claim",
    )
    date_submitted: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    # Financials
    total_amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
        comment="Sum of session amounts, fixed at creation",
    )
    allowed_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    paid_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    patient_responsibility: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)

    # Adjudication
    denial_reason: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    appeal_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    payment_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    check_number: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    sessions: Mapped[list["BillableSessionRecord"]] = relationship(
        back_populates="claim",
        cascade="all, delete-orphan",
        order_by="BillableSessionRecord.position",
        lazy="selectin",
    )
    status_history: Mapped[list["ClaimStatusHistoryRecord"]] = relationship(
        back_populates="claim",
        cascade="all, delete-orphan",
        order_by="ClaimStatusHistoryRecord.id",
        lazy="selectin",
    )

    __table_args__ = (
        Index("ix_claims_patient_status", "patient_id", "status"),
        Index("ix_claims_status_submitted", "status", "date_submitted"),
    )

    def __repr__(self) -> str:
        return f"<ClaimRecord(id={self.id}, patient_id={self.patient_id}, status={self.status})>"


class BillableSessionRecord(Base):
    """
    Priced line item owned by exactly one claim.

    The unique session id enforces that no therapy session is billed twice.
    """

    __tablename__ = "billable_sessions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    claim_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("claims.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    session_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    session_date: Mapped[date] = mapped_column(Date, nullable=False)
    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    cpt_code: Mapped[str] = mapped_column(String(10), nullable=False)
    modifiers: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    units: Mapped[int] = mapped_column(Integer, nullable=False)
    rate: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    supervision_required: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    supervisor_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    claim: Mapped["ClaimRecord"] = relationship(back_populates="sessions")


class ClaimStatusHistoryRecord(Base):
    """Status change history for a claim."""

    __tablename__ = "claim_status_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    claim_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("claims.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    previous_status: Mapped[Optional[ClaimStatus]] = mapped_column(Enum(ClaimStatus), nullable=True)
    new_status: Mapped[ClaimStatus] = mapped_column(Enum(ClaimStatus), nullable=False)
    source: Mapped[StatusChangeSource] = mapped_column(
        Enum(StatusChangeSource),
        default=StatusChangeSource.SYSTEM,
        nullable=False,
    )
    reason: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    changed_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)

    claim: Mapped["ClaimRecord"] = relationship(back_populates="status_history")

    def __repr__(self) -> str:
        return f"<ClaimStatusHistoryRecord(claim_id={self.claim_id}, {self.previous_status} -> {self.new_status})>"
