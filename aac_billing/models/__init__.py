"""
SQLAlchemy Models for the billing engine.

This module exports all database models for the application.
"""

from aac_billing.models.base import Base, TimeStampedModel, UTCDateTime, UUIDModel
from aac_billing.models.billing import (
    AuthorizationRecord,
    BillableSessionRecord,
    BillingProfileRecord,
    ClaimRecord,
    ClaimStatusHistoryRecord,
)

__all__ = [
    "Base",
    "TimeStampedModel",
    "UTCDateTime",
    "UUIDModel",
    "BillingProfileRecord",
    "AuthorizationRecord",
    "ClaimRecord",
    "BillableSessionRecord",
    "ClaimStatusHistoryRecord",
]
