"""
Claim Status State Machine.

Provides:
- Valid status transitions
- Transition validation
- Transition callbacks

State Diagram:
    DRAFT -> SUBMITTED
    SUBMITTED -> PROCESSING | DENIED
    PROCESSING -> DENIED
    DENIED -> APPEALED
    APPEALED -> PROCESSING (appeal accepted) | DENIED (denial upheld)
    DRAFT | SUBMITTED | PROCESSING | DENIED | APPEALED -> PAID
    PAID is terminal.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Optional

from aac_billing.core.enums import ClaimStatus

logger = logging.getLogger(__name__)


class TransitionEvent(str, Enum):
    """Events that trigger state transitions."""

    SUBMIT = "submit"
    START_PROCESSING = "start_processing"
    DENY = "deny"
    APPEAL = "appeal"
    APPEAL_ACCEPTED = "appeal_accepted"
    APPEAL_UPHELD = "appeal_upheld"
    RECORD_PAYMENT = "record_payment"


@dataclass
class Transition:
    """Represents a valid state transition."""

    from_status: ClaimStatus
    to_status: ClaimStatus
    event: TransitionEvent
    requires_reason: bool = False
    auto_transition: bool = False  # Driven by clearinghouse status


@dataclass
class TransitionContext:
    """Context for a transition attempt."""

    claim_id: str
    current_status: ClaimStatus
    target_status: ClaimStatus
    event: TransitionEvent
    reason: Optional[str] = None
    metadata: dict = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class TransitionResult:
    """Result of a transition attempt."""

    success: bool
    from_status: ClaimStatus
    to_status: Optional[ClaimStatus] = None
    error: Optional[str] = None
    transition: Optional[Transition] = None


# =============================================================================
# Valid Transitions Definition
# =============================================================================


VALID_TRANSITIONS: list[Transition] = [
    # From DRAFT
    Transition(
        from_status=ClaimStatus.DRAFT,
        to_status=ClaimStatus.SUBMITTED,
        event=TransitionEvent.SUBMIT,
    ),

    # From SUBMITTED
    Transition(
        from_status=ClaimStatus.SUBMITTED,
        to_status=ClaimStatus.PROCESSING,
        event=TransitionEvent.START_PROCESSING,
        auto_transition=True,
    ),
    Transition(
        from_status=ClaimStatus.SUBMITTED,
        to_status=ClaimStatus.DENIED,
        event=TransitionEvent.DENY,
        requires_reason=True,
    ),

    # From PROCESSING
    Transition(
        from_status=ClaimStatus.PROCESSING,
        to_status=ClaimStatus.DENIED,
        event=TransitionEvent.DENY,
        requires_reason=True,
    ),

    # From DENIED
    Transition(
        from_status=ClaimStatus.DENIED,
        to_status=ClaimStatus.APPEALED,
        event=TransitionEvent.APPEAL,
    ),

    # From APPEALED
    Transition(
        from_status=ClaimStatus.APPEALED,
        to_status=ClaimStatus.PROCESSING,
        event=TransitionEvent.APPEAL_ACCEPTED,
    ),
    Transition(
        from_status=ClaimStatus.APPEALED,
        to_status=ClaimStatus.DENIED,
        event=TransitionEvent.APPEAL_UPHELD,
        requires_reason=True,
    ),
] + [
    # Remittance is recorded from any open status
    Transition(
        from_status=status,
        to_status=ClaimStatus.PAID,
        event=TransitionEvent.RECORD_PAYMENT,
    )
    for status in (
        ClaimStatus.DRAFT,
        ClaimStatus.SUBMITTED,
        ClaimStatus.PROCESSING,
        ClaimStatus.DENIED,
        ClaimStatus.APPEALED,
    )
]


# =============================================================================
# State Machine
# =============================================================================


class ClaimStateMachine:
    """
    State machine for claim status transitions.

    Manages valid status transitions and validates transition requests.
    """

    def __init__(self):
        """Initialize state machine with transition map."""
        self._transitions: dict[tuple[ClaimStatus, TransitionEvent], Transition] = {}
        self._from_status_map: dict[ClaimStatus, list[Transition]] = {}
        self._callbacks: dict[TransitionEvent, list[Callable]] = {}

        self._build_transition_maps()

    def _build_transition_maps(self) -> None:
        """Build lookup maps for transitions."""
        for transition in VALID_TRANSITIONS:
            key = (transition.from_status, transition.event)
            self._transitions[key] = transition

            if transition.from_status not in self._from_status_map:
                self._from_status_map[transition.from_status] = []
            self._from_status_map[transition.from_status].append(transition)

    def get_valid_transitions(self, status: ClaimStatus) -> list[Transition]:
        """Get all valid transitions from a given status."""
        return self._from_status_map.get(status, [])

    def get_valid_events(self, status: ClaimStatus) -> list[TransitionEvent]:
        """Get all valid events for a given status."""
        return [t.event for t in self.get_valid_transitions(status)]

    def get_next_statuses(self, status: ClaimStatus) -> list[ClaimStatus]:
        """Get all possible next statuses from current status."""
        return [t.to_status for t in self.get_valid_transitions(status)]

    def can_transition(
        self,
        from_status: ClaimStatus,
        to_status: ClaimStatus,
    ) -> bool:
        """Check if transition from one status to another is valid."""
        for transition in self.get_valid_transitions(from_status):
            if transition.to_status == to_status:
                return True
        return False

    def get_transition(
        self,
        from_status: ClaimStatus,
        event: TransitionEvent,
    ) -> Optional[Transition]:
        """Get transition for a status and event combination."""
        return self._transitions.get((from_status, event))

    def validate_transition(self, context: TransitionContext) -> TransitionResult:
        """
        Validate a transition attempt.

        Args:
            context: Transition context with all details

        Returns:
            TransitionResult indicating success/failure
        """
        transition = self.get_transition(context.current_status, context.event)

        if not transition:
            return TransitionResult(
                success=False,
                from_status=context.current_status,
                error=f"Invalid transition: {context.current_status.value} + {context.event.value}",
            )

        if context.target_status != transition.to_status:
            return TransitionResult(
                success=False,
                from_status=context.current_status,
                error=f"Target status mismatch. Expected {transition.to_status.value}, got {context.target_status.value}",
            )

        if transition.requires_reason and not context.reason:
            return TransitionResult(
                success=False,
                from_status=context.current_status,
                error="Reason is required for this transition",
            )

        return TransitionResult(
            success=True,
            from_status=context.current_status,
            to_status=transition.to_status,
            transition=transition,
        )

    def execute_transition(self, context: TransitionContext) -> TransitionResult:
        """
        Execute a state transition.

        Validates the transition and triggers callbacks.
        """
        result = self.validate_transition(context)
        if not result.success:
            logger.warning(
                f"Transition refused for claim {context.claim_id}: {result.error}"
            )
            return result

        callbacks = self._callbacks.get(context.event, [])
        for callback in callbacks:
            try:
                callback(context, result)
            except Exception as e:
                logger.error(f"Transition callback error: {e}")

        logger.info(
            f"Claim {context.claim_id} transitioned: "
            f"{context.current_status.value} -> {result.to_status.value} "
            f"(event: {context.event.value})"
        )

        return result

    def register_callback(
        self,
        event: TransitionEvent,
        callback: Callable[[TransitionContext, TransitionResult], None],
    ) -> None:
        """Register a callback for a transition event."""
        if event not in self._callbacks:
            self._callbacks[event] = []
        self._callbacks[event].append(callback)

    def unregister_callback(
        self,
        event: TransitionEvent,
        callback: Callable,
    ) -> None:
        """Unregister a callback."""
        if event in self._callbacks and callback in self._callbacks[event]:
            self._callbacks[event].remove(callback)


# =============================================================================
# Status Helpers
# =============================================================================


def is_terminal_status(status: ClaimStatus) -> bool:
    """Paid claims are immutable."""
    return status == ClaimStatus.PAID


def is_pending_status(status: ClaimStatus) -> bool:
    """Submitted and awaiting payer adjudication."""
    return status in (
        ClaimStatus.SUBMITTED,
        ClaimStatus.PROCESSING,
    )


def is_awaiting_payer(status: ClaimStatus) -> bool:
    """Statuses whose outcome the clearinghouse will report."""
    return status in (
        ClaimStatus.SUBMITTED,
        ClaimStatus.PROCESSING,
        ClaimStatus.APPEALED,
    )


# =============================================================================
# Singleton Instance
# =============================================================================


_state_machine: Optional[ClaimStateMachine] = None


def get_claim_state_machine() -> ClaimStateMachine:
    """Get singleton state machine instance."""
    global _state_machine
    if _state_machine is None:
        _state_machine = ClaimStateMachine()
    return _state_machine
