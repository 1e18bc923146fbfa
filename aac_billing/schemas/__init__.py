"""
Pydantic Schemas for the billing engine.

This module exports the domain, report and request schemas.
"""

from aac_billing.schemas.billing import (
    Address,
    AgingReport,
    AppealResolutionRequest,
    Authorization,
    AuthorizationStatusReport,
    BillableSession,
    BillingImportResult,
    BillingProfile,
    BillingReport,
    BillingSummary,
    Claim,
    ClaimCreateRequest,
    ClaimDenyRequest,
    ClaimStatusChange,
    ClaimStatusUpdate,
    CPTCode,
    FinancialProjections,
    InsuranceInfo,
    InsurerStats,
    Money,
    PatientBillingStats,
    PaymentDetails,
    PaymentMethod,
    ReportPeriod,
    SessionRecord,
)

__all__ = [
    # Profiles
    "Address",
    "Authorization",
    "BillingProfile",
    "InsuranceInfo",
    "PaymentMethod",
    # Sessions / catalog
    "BillableSession",
    "CPTCode",
    "SessionRecord",
    # Claims
    "Claim",
    "ClaimStatusChange",
    "ClaimStatusUpdate",
    "PaymentDetails",
    "AuthorizationStatusReport",
    # Reports
    "AgingReport",
    "BillingReport",
    "BillingSummary",
    "FinancialProjections",
    "InsurerStats",
    "PatientBillingStats",
    "ReportPeriod",
    # Requests
    "AppealResolutionRequest",
    "BillingImportResult",
    "ClaimCreateRequest",
    "ClaimDenyRequest",
    "Money",
]
