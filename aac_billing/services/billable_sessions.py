"""
Billable Session Generator.

Turns session ids into priced, coded line items. Rate and units come from
the CPT catalog by the session's code. Sessions that cannot be billed are
skipped with a logged reason: unknown patient/session, unknown code,
missing required modifier, or already on another claim.
"""

import logging

from aac_billing.schemas.billing import BillableSession, SessionRecord
from aac_billing.services.cpt_catalog import CPTCatalog
from aac_billing.services.session_source import SessionSource
from aac_billing.utils.money import to_money

logger = logging.getLogger(__name__)


class BillableSessionGenerator:
    """Prices sessions against the CPT catalog."""

    def __init__(self, catalog: CPTCatalog, session_source: SessionSource):
        self.catalog = catalog
        self.session_source = session_source

    def price_session(self, session: SessionRecord) -> BillableSession | None:
        """Price one session, or None when its code cannot be billed."""
        entry = self.catalog.lookup(session.cpt_code)
        if entry is None:
            logger.warning(f"Session {session.session_id}: unknown CPT code {session.cpt_code}")
            return None
        if not self.catalog.modifiers_valid(session.cpt_code, session.modifiers):
            logger.warning(
                f"Session {session.session_id}: CPT {session.cpt_code} requires one of "
                f"modifiers {list(entry.allowed_modifiers)}"
            )
            return None

        units = entry.default_units
        return BillableSession(
            session_id=session.session_id,
            service_date=session.session_date,
            duration_minutes=session.duration_minutes,
            cpt_code=entry.code,
            modifiers=list(session.modifiers),
            units=units,
            rate=entry.default_rate,
            amount=to_money(entry.default_rate * units),
            notes=session.notes,
            supervision_required=session.supervision_required,
            supervisor_id=session.supervisor_id,
        )

    async def generate(
        self,
        patient_id: str,
        session_ids: list[str],
        already_billed: set[str] | frozenset[str] = frozenset(),
    ) -> list[BillableSession]:
        """
        Billable line items for the requested sessions, in request order.

        Duplicate ids in ``session_ids`` are billed once.
        """
        unique_ids = list(dict.fromkeys(session_ids))
        sessions = await self.session_source.get_sessions(patient_id, unique_ids)

        found = {s.session_id for s in sessions}
        missing = [sid for sid in unique_ids if sid not in found]
        if missing:
            logger.warning(f"Patient {patient_id}: sessions not found: {missing}")

        billable = []
        for session in sessions:
            if session.session_id in already_billed:
                logger.info(f"Session {session.session_id} is already on a claim; skipping")
                continue
            line = self.price_session(session)
            if line is not None:
                billable.append(line)
        return billable
