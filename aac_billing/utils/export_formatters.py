"""
Export Formatters for Billing Data.

JSON (full dump of profiles and claims) and CSV (claim summary) renderings
used by the export service and the /export endpoint.
"""

import csv
import io
import json
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Iterable, Optional

from aac_billing.core.enums import ExportFormat
from aac_billing.schemas.billing import BillingProfile, Claim
from aac_billing.utils.money import ZERO

CSV_HEADERS = ["Claim ID", "Patient ID", "Date", "Amount", "Status", "Paid Amount"]


class JSONEncoder(json.JSONEncoder):
    """
    JSON encoder for billing data.

    Decimals are written as strings so cents survive the round trip;
    dates and datetimes as ISO-8601.
    """

    def default(self, obj: Any) -> Any:
        if isinstance(obj, Decimal):
            return str(obj)
        if isinstance(obj, datetime):
            return obj.isoformat()
        if isinstance(obj, date):
            return obj.isoformat()
        if isinstance(obj, Enum):
            return obj.value
        if isinstance(obj, (set, frozenset, tuple)):
            return list(obj)
        return super().default(obj)


def format_billing_as_json(
    profiles: Iterable[BillingProfile],
    claims: Iterable[Claim],
    export_date: Optional[datetime] = None,
) -> str:
    """
    Full billing dump.

    Layout: ``{"profiles": [[patient_id, profile], ...],
    "claims": [[claim_id, claim], ...], "exportDate": iso}``
    """
    export_date = export_date or datetime.now(timezone.utc)
    data = {
        "profiles": [[p.patient_id, p.model_dump()] for p in profiles],
        "claims": [[c.id, c.model_dump()] for c in claims],
        "exportDate": export_date,
    }
    return json.dumps(data, cls=JSONEncoder, indent=2)


def format_claims_as_csv(claims: Iterable[Claim]) -> str:
    """
    Claim summary, one row per claim.

    Lossy: no authorizations, sessions or payment detail beyond the paid
    amount.
    """
    output = io.StringIO()
    writer = csv.writer(output, lineterminator="\n")
    writer.writerow(CSV_HEADERS)

    for claim in claims:
        writer.writerow(
            [
                claim.id,
                claim.patient_id,
                format_us_date(claim.date_of_service),
                _format_value(claim.total_amount),
                claim.status.value,
                _format_value(claim.paid_amount if claim.paid_amount is not None else ZERO),
            ]
        )

    return output.getvalue()


def format_us_date(value: date) -> str:
    """US locale short date, e.g. 3/7/2026."""
    return f"{value.month}/{value.day}/{value.year}"


def _format_value(value: Any) -> str:
    """Format a value for CSV output."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, list):
        return ",".join(str(v) for v in value)
    return str(value)


def generate_filename(
    format: ExportFormat,
    export_date: Optional[date] = None,
    prefix: str = "billing",
) -> str:
    """
    Generate a filename for the export.

    Args:
        format: Export format
        export_date: Date stamped into the name (today by default)
        prefix: Filename prefix

    Returns:
        Filename with extension
    """
    export_date = export_date or date.today()
    extension = "json" if format == ExportFormat.JSON else "csv"
    return f"{prefix}_{export_date.isoformat()}.{extension}"


def get_content_type(format: ExportFormat) -> str:
    """
    Get the Content-Type header for the export format.

    Args:
        format: Export format

    Returns:
        MIME type string
    """
    if format == ExportFormat.JSON:
        return "application/json"
    return "text/csv"
