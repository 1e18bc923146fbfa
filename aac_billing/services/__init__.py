"""
Services Layer for the Billing Engine.

Exports the CPT catalog, profile store, authorization resolver, claim
lifecycle engine, reporting and export services.
"""

from aac_billing.services.authorization_resolver import (
    AuthorizationResolver,
    find_applicable_authorization,
)
from aac_billing.services.billable_sessions import BillableSessionGenerator
from aac_billing.services.billing_container import BillingServices, build_billing_services
from aac_billing.services.billing_errors import (
    BillingError,
    ClaimNotFoundError,
    ClaimPreconditionError,
    InsufficientAuthorizationUnitsError,
    NoAuthorizationError,
    NoBillableSessionsError,
    NoProfileError,
    PaymentValidationError,
)
from aac_billing.services.billing_events import BillingEvent, BillingEventPublisher
from aac_billing.services.billing_export import BillingExportService, BillingImportError
from aac_billing.services.billing_profiles import BillingProfileService
from aac_billing.services.billing_reports import BillingReportService, build_billing_report
from aac_billing.services.claim_engine import ClaimCreationResult, ClaimLifecycleEngine
from aac_billing.services.claim_state_machine import (
    ClaimStateMachine,
    TransitionEvent,
    get_claim_state_machine,
)
from aac_billing.services.cpt_catalog import CPTCatalog, get_cpt_catalog
from aac_billing.services.session_source import InMemorySessionSource, SessionSource

__all__ = [
    # Catalog
    "CPTCatalog",
    "get_cpt_catalog",
    # Profiles and authorizations
    "BillingProfileService",
    "AuthorizationResolver",
    "find_applicable_authorization",
    # Sessions
    "SessionSource",
    "InMemorySessionSource",
    "BillableSessionGenerator",
    # Claims
    "ClaimLifecycleEngine",
    "ClaimCreationResult",
    "ClaimStateMachine",
    "TransitionEvent",
    "get_claim_state_machine",
    # Reporting and export
    "BillingReportService",
    "build_billing_report",
    "BillingExportService",
    "BillingImportError",
    # Events
    "BillingEvent",
    "BillingEventPublisher",
    # Wiring
    "BillingServices",
    "build_billing_services",
    # Errors
    "BillingError",
    "ClaimPreconditionError",
    "NoProfileError",
    "NoBillableSessionsError",
    "NoAuthorizationError",
    "InsufficientAuthorizationUnitsError",
    "PaymentValidationError",
    "ClaimNotFoundError",
]
