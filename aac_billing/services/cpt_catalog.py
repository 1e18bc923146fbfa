"""
CPT Code Catalog for speech and AAC therapy billing.

Reference rates and unit defaults for the procedure codes the clinic bills:
speech/language evaluation and treatment, speech generating device
evaluation, cognitive/memory training, play-based therapeutic activities
and teletherapy.
"""

from decimal import Decimal
from typing import Optional

from aac_billing.core.enums import CPTCategory
from aac_billing.schemas.billing import CPTCode


# Code, description, category, default rate, default units, modifier rules
DEFAULT_CPT_CODES: tuple[CPTCode, ...] = (
    # Speech therapy
    CPTCode(
        code="92507",
        description="Speech/hearing therapy (AAC device training)",
        category=CPTCategory.TREATMENT,
        default_rate=Decimal("150.00"),
    ),
    CPTCode(
        code="92508",
        description="Speech/hearing therapy, group",
        category=CPTCategory.GROUP,
        default_rate=Decimal("50.00"),
    ),
    # AAC device evaluation
    CPTCode(
        code="92607",
        description="Evaluation for speech generating device",
        category=CPTCategory.EVALUATION,
        default_rate=Decimal("200.00"),
    ),
    CPTCode(
        code="92608",
        description="Speech generating device evaluation follow-up",
        category=CPTCategory.EVALUATION,
        default_rate=Decimal("175.00"),
    ),
    # Cognitive / memory training
    CPTCode(
        code="97130",
        description="Cognitive function therapeutic activities (memory games)",
        category=CPTCategory.TREATMENT,
        default_rate=Decimal("140.00"),
    ),
    CPTCode(
        code="96125",
        description="Cognitive assessment by physician/psychologist (memory evaluation)",
        category=CPTCategory.EVALUATION,
        default_rate=Decimal("180.00"),
    ),
    CPTCode(
        code="96127",
        description="Cognitive assessment by technician (working memory test)",
        category=CPTCategory.EVALUATION,
        default_rate=Decimal("120.00"),
    ),
    # Therapeutic activities
    CPTCode(
        code="97530",
        description="Therapeutic activities (play-based AAC games)",
        category=CPTCategory.TREATMENT,
        default_rate=Decimal("130.00"),
    ),
    # Speech evaluations
    CPTCode(
        code="92521",
        description="Evaluation of speech fluency",
        category=CPTCategory.EVALUATION,
        default_rate=Decimal("200.00"),
    ),
    CPTCode(
        code="92522",
        description="Evaluation of speech sound production",
        category=CPTCategory.EVALUATION,
        default_rate=Decimal("200.00"),
    ),
    CPTCode(
        code="92523",
        description="Evaluation of speech and language",
        category=CPTCategory.EVALUATION,
        default_rate=Decimal("250.00"),
    ),
    CPTCode(
        code="92524",
        description="Behavioral and qualitative analysis of voice",
        category=CPTCategory.EVALUATION,
        default_rate=Decimal("175.00"),
    ),
    # Teletherapy
    CPTCode(
        code="98966",
        description="Telephone assessment and management",
        category=CPTCategory.TELETHERAPY,
        default_rate=Decimal("75.00"),
        requires_modifier=True,
        allowed_modifiers=("95", "GT"),
    ),
)


class CPTCatalog:
    """Read-only lookup of billable procedure codes."""

    def __init__(self, codes: tuple[CPTCode, ...] = DEFAULT_CPT_CODES):
        self._codes: dict[str, CPTCode] = {c.code: c for c in codes}

    def lookup(self, code: str) -> Optional[CPTCode]:
        return self._codes.get(code)

    def rate_for(self, code: str) -> Optional[Decimal]:
        entry = self._codes.get(code)
        return entry.default_rate if entry else None

    def all_codes(self) -> list[CPTCode]:
        return list(self._codes.values())

    def by_category(self, category: CPTCategory) -> list[CPTCode]:
        return [c for c in self._codes.values() if c.category == category]

    def modifiers_valid(self, code: str, modifiers: list[str]) -> bool:
        """
        Whether ``modifiers`` satisfy the code's modifier rule.

        Codes that require a modifier need at least one from their allowed
        list; other codes accept any modifiers.
        """
        entry = self._codes.get(code)
        if entry is None:
            return False
        if not entry.requires_modifier:
            return True
        return any(m in entry.allowed_modifiers for m in modifiers)

    def __contains__(self, code: object) -> bool:
        return code in self._codes

    def __len__(self) -> int:
        return len(self._codes)


_catalog: Optional[CPTCatalog] = None


def get_cpt_catalog() -> CPTCatalog:
    """Process-wide default catalog."""
    global _catalog
    if _catalog is None:
        _catalog = CPTCatalog()
    return _catalog
