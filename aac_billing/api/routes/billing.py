"""
Billing API Endpoints.

Provides:
- Billing profile upsert and lookup
- Authorization status checks
- Claim creation, submission, payment, denial and appeals
- Clearinghouse status webhook
- Billing reports, export and import

Soft failures from the engine map to 404 (missing profile or claim),
409 (claim state or authorization does not allow it) and 422 (invalid
input).
"""

import logging
from datetime import date
from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, Query, Response, status
from pydantic import BaseModel

from aac_billing.api.deps import get_billing_services
from aac_billing.core.enums import ClaimStatus, ExportFormat
from aac_billing.schemas.billing import (
    AppealResolutionRequest,
    AuthorizationStatusReport,
    BillingImportResult,
    BillingProfile,
    BillingReport,
    Claim,
    ClaimCreateRequest,
    ClaimDenyRequest,
    ClaimStatusUpdate,
    PaymentDetails,
)
from aac_billing.services.billing_container import BillingServices
from aac_billing.services.billing_errors import (
    ClaimNotFoundError,
    NoAuthorizationError,
    NoBillableSessionsError,
    NoProfileError,
    PaymentValidationError,
)
from aac_billing.services.billing_export import BillingImportError
from aac_billing.utils.errors import ConflictError, NotFoundError, ValidationError
from aac_billing.utils.export_formatters import generate_filename, get_content_type

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/v1/billing",
    tags=["billing"],
)


class StatusUpdateResponse(BaseModel):
    applied: bool


async def _claim_after(
    services: BillingServices, claim_id: str, succeeded: bool, action: str
) -> Claim:
    """Return the claim, or explain why ``action`` did nothing."""
    try:
        claim = await services.claims.require_claim(claim_id)
    except ClaimNotFoundError:
        raise NotFoundError(f"Claim not found: {claim_id}")
    if not succeeded:
        raise ConflictError(f"Claim {claim_id} cannot be {action} from status {claim.status.value}")
    return claim


# =============================================================================
# Profiles
# =============================================================================


@router.put("/profiles/{patient_id}", response_model=BillingProfile)
async def upsert_profile(
    patient_id: str,
    profile: BillingProfile,
    services: BillingServices = Depends(get_billing_services),
) -> BillingProfile:
    """Create or fully replace a patient's billing profile."""
    if profile.patient_id != patient_id:
        raise ValidationError("patient_id in body does not match the URL")
    return await services.profiles.upsert_profile(profile)


@router.get("/profiles", response_model=list[BillingProfile])
async def list_profiles(
    services: BillingServices = Depends(get_billing_services),
) -> list[BillingProfile]:
    return await services.profiles.list_profiles()


@router.get("/profiles/{patient_id}", response_model=BillingProfile)
async def get_profile(
    patient_id: str,
    services: BillingServices = Depends(get_billing_services),
) -> BillingProfile:
    profile = await services.profiles.get_profile(patient_id)
    if profile is None:
        raise NotFoundError(f"No billing profile for patient {patient_id}")
    return profile


@router.get(
    "/profiles/{patient_id}/authorization-status",
    response_model=AuthorizationStatusReport,
)
async def check_authorization_status(
    patient_id: str,
    services: BillingServices = Depends(get_billing_services),
) -> AuthorizationStatusReport:
    """Units remaining, expiry and warnings for the patient's current authorization."""
    return await services.authorizations.check_authorization_status(patient_id)


# =============================================================================
# Claims
# =============================================================================


@router.post("/claims", response_model=Claim, status_code=status.HTTP_201_CREATED)
async def create_claim(
    request: ClaimCreateRequest,
    services: BillingServices = Depends(get_billing_services),
) -> Claim:
    """
    Create a claim for completed sessions.

    Missing profile -> 404, nothing billable -> 422, no authorization or
    not enough units -> 409.
    """
    result = await services.claims.attempt_create_claim(
        request.patient_id,
        request.session_ids,
        submit_immediately=request.submit_immediately,
    )
    if result.success:
        return result.claim

    error = result.error
    if isinstance(error, NoProfileError):
        raise NotFoundError(str(error))
    if isinstance(error, NoBillableSessionsError):
        raise ValidationError(str(error))
    if isinstance(error, NoAuthorizationError):
        raise ConflictError(str(error))
    raise ValidationError(str(error))


@router.get("/claims", response_model=list[Claim])
async def list_claims(
    patient_id: Optional[str] = Query(None),
    claim_status: Optional[list[ClaimStatus]] = Query(None, alias="status"),
    service_from: Optional[date] = Query(None),
    service_to: Optional[date] = Query(None),
    services: BillingServices = Depends(get_billing_services),
) -> list[Claim]:
    return await services.claims.list_claims(
        patient_id=patient_id,
        statuses=claim_status,
        service_from=service_from,
        service_to=service_to,
    )


@router.get("/claims/{claim_id}", response_model=Claim)
async def get_claim(
    claim_id: str,
    services: BillingServices = Depends(get_billing_services),
) -> Claim:
    try:
        return await services.claims.require_claim(claim_id)
    except ClaimNotFoundError:
        raise NotFoundError(f"Claim not found: {claim_id}")


@router.post("/claims/{claim_id}/submit", response_model=Claim)
async def submit_claim(
    claim_id: str,
    services: BillingServices = Depends(get_billing_services),
) -> Claim:
    """Submit a draft claim. Transitions: DRAFT -> SUBMITTED"""
    submitted = await services.claims.submit_claim(claim_id)
    return await _claim_after(services, claim_id, submitted, "submitted")


@router.post("/claims/{claim_id}/payment", response_model=Claim)
async def process_payment(
    claim_id: str,
    payment: PaymentDetails,
    services: BillingServices = Depends(get_billing_services),
) -> Claim:
    """Record a remittance. Valid from any status except PAID."""
    try:
        paid = await services.claims.process_payment(claim_id, payment)
    except PaymentValidationError as e:
        raise ValidationError(f"{e}: {'; '.join(e.errors)}")
    return await _claim_after(services, claim_id, paid, "paid")


@router.post("/claims/{claim_id}/deny", response_model=Claim)
async def deny_claim(
    claim_id: str,
    request: ClaimDenyRequest,
    services: BillingServices = Depends(get_billing_services),
) -> Claim:
    """Deny a claim. Valid from: SUBMITTED, PROCESSING"""
    denied = await services.claims.deny_claim(claim_id, request.reason)
    return await _claim_after(services, claim_id, denied, "denied")


@router.post("/claims/{claim_id}/appeal", response_model=Claim)
async def appeal_claim(
    claim_id: str,
    services: BillingServices = Depends(get_billing_services),
) -> Claim:
    """Appeal a denial. Valid from: DENIED"""
    appealed = await services.claims.appeal_claim(claim_id)
    return await _claim_after(services, claim_id, appealed, "appealed")


@router.post("/claims/{claim_id}/appeal/resolve", response_model=Claim)
async def resolve_appeal(
    claim_id: str,
    request: AppealResolutionRequest,
    services: BillingServices = Depends(get_billing_services),
) -> Claim:
    """Record the payer's appeal decision. Valid from: APPEALED"""
    resolved = await services.claims.resolve_appeal(
        claim_id, accepted=request.accepted, reason=request.reason
    )
    return await _claim_after(services, claim_id, resolved, "resolved")


@router.post("/clearinghouse/status", response_model=StatusUpdateResponse)
async def clearinghouse_status_webhook(
    update: ClaimStatusUpdate,
    services: BillingServices = Depends(get_billing_services),
) -> StatusUpdateResponse:
    """Status notification pushed by the clearinghouse."""
    try:
        applied = await services.claims.apply_status_update(update)
    except PaymentValidationError as e:
        raise ValidationError(f"{e}: {'; '.join(e.errors)}")
    return StatusUpdateResponse(applied=applied)


# =============================================================================
# Reports and Export
# =============================================================================


@router.get("/reports", response_model=BillingReport)
async def generate_billing_report(
    start: date = Query(..., description="First date of service included"),
    end: date = Query(..., description="Last date of service included"),
    as_of: Optional[date] = Query(None, description="Reference day for aging"),
    services: BillingServices = Depends(get_billing_services),
) -> BillingReport:
    try:
        return await services.reports.generate_billing_report(start, end, as_of=as_of)
    except ValueError as e:
        raise ValidationError(str(e))


@router.get("/export")
async def export_billing_data(
    format: ExportFormat = Query(ExportFormat.JSON),
    services: BillingServices = Depends(get_billing_services),
) -> Response:
    content = await services.exports.export_billing_data(format)
    return Response(
        content=content,
        media_type=get_content_type(format),
        headers={"Content-Disposition": f'attachment; filename="{generate_filename(format)}"'},
    )


@router.post("/import", response_model=BillingImportResult)
async def import_billing_data(
    payload: dict[str, Any] = Body(...),
    services: BillingServices = Depends(get_billing_services),
) -> BillingImportResult:
    """Load a JSON export produced by ``/export``."""
    try:
        return await services.exports.import_billing_data(payload)
    except BillingImportError as e:
        raise ValidationError(str(e))
