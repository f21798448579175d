"""Escrow Leg Lifecycle Guard.

Uses python-statemachine to enforce the order in which a leg may progress.
Whatever the coordinator or a caller attempts, an illegal transition (e.g.,
PENDING -> FUNDED) raises TransitionNotAllowed before the record changes.

The machine is instantiated per transition from the record's current
status; it holds no state of its own between calls.

Transition table:
    PENDING   -> DEPLOYED   (deployment_confirmed)
    DEPLOYED  -> FUNDED     (funding_confirmed)
    FUNDED    -> VERIFIED   (verification_passed)
    PENDING   -> FAILED     (unrecoverable_error)
    DEPLOYED  -> FAILED     (unrecoverable_error)
    FUNDED    -> FAILED     (unrecoverable_error)
    VERIFIED  -> FAILED     (unrecoverable_error, e.g. conflicting events)
"""

from __future__ import annotations

from statemachine import State, StateMachine


class EscrowLifecycleMachine(StateMachine):
    """State machine that guards one escrow leg's lifecycle.

    Usage:
        sm = EscrowLifecycleMachine(current_status="DEPLOYED")
        sm.funding_confirmed()  # transitions to FUNDED
        sm.status               # "FUNDED"
    """

    # --- States ---
    PENDING = State("PENDING", initial=True)
    DEPLOYED = State("DEPLOYED")
    FUNDED = State("FUNDED")
    VERIFIED = State("VERIFIED")
    FAILED = State("FAILED", final=True)

    # --- Events / Transitions ---
    deployment_confirmed = PENDING.to(DEPLOYED)
    funding_confirmed = DEPLOYED.to(FUNDED)
    verification_passed = FUNDED.to(VERIFIED)

    unrecoverable_error = (
        PENDING.to(FAILED) | DEPLOYED.to(FAILED) | FUNDED.to(FAILED) | VERIFIED.to(FAILED)
    )

    def __init__(self, current_status: str = "PENDING") -> None:
        valid_values = {s.value for s in self.states}
        if current_status not in valid_values:
            valid = ", ".join(sorted(valid_values))
            raise ValueError(
                f"Unknown status '{current_status}'. Valid states: {valid}"
            )
        super().__init__(start_value=current_status)

    @property
    def status(self) -> str:
        """Current state value as a string (matches LegStatus)."""
        return str(self.current_state_value)

    def get_allowed_events(self) -> list[str]:
        """Event names that can fire from the current state."""
        return [event.id for event in self.allowed_events]


def validate_transition(current_status: str, event_name: str) -> str:
    """Fire `event_name` from `current_status` and return the resulting status.

    Raises:
        TransitionNotAllowed: If the transition is illegal.
        ValueError: If the status or event name is unknown.
    """
    sm = EscrowLifecycleMachine(current_status=current_status)

    event_method = getattr(sm, event_name, None)
    if event_method is None or not callable(event_method):
        raise ValueError(
            f"Unknown event '{event_name}'. "
            f"Allowed events from {current_status}: {sm.get_allowed_events()}"
        )

    event_method()
    return sm.status
