"""Phase Engine: the single place escrow phases are derived from time.

    compute_phase(schedule, deployment_epoch, now) -> PhaseInfo

Boundaries are inclusive on the phase they start: at exactly
`epoch + public_withdrawal_start` the escrow is in PUBLIC_WITHDRAWAL.
Phases only move forward as `now` grows. PUBLIC_CANCELLATION has no end;
its next phase is reported as EXPIRED, which is never entered.

Action table (who may do what, per phase):

    FINALITY              nothing
    PRIVATE_WITHDRAWAL    maker: withdraw    taker: withdraw
    PUBLIC_WITHDRAWAL                        anyone: withdraw
    PRIVATE_CANCELLATION  maker: cancel      anyone: withdraw
    PUBLIC_CANCELLATION   maker: cancel      anyone: cancel, withdraw

Withdrawal always requires the secret. Nothing here performs I/O.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from htlc_swap.domain.enums import Action, Actor, ActorScope, Phase
from htlc_swap.domain.timelocks import BOUNDARY_NAMES, TimelockSchedule


@dataclass(frozen=True)
class ActionGrant:
    """One permitted action and who it is granted to."""

    action: Action
    scope: ActorScope

    def applies_to(self, actor: Actor) -> bool:
        return self.scope is ActorScope.ANYONE or self.scope.value == actor.value


_WITHDRAW = Action.WITHDRAW_WITH_SECRET
_CANCEL = Action.CANCEL

ACTION_TABLE: dict[Phase, frozenset[ActionGrant]] = {
    Phase.PENDING_DEPLOYMENT: frozenset(),
    Phase.FINALITY: frozenset(),
    Phase.PRIVATE_WITHDRAWAL: frozenset({
        ActionGrant(_WITHDRAW, ActorScope.MAKER),
        ActionGrant(_WITHDRAW, ActorScope.TAKER),
    }),
    Phase.PUBLIC_WITHDRAWAL: frozenset({
        ActionGrant(_WITHDRAW, ActorScope.ANYONE),
    }),
    Phase.PRIVATE_CANCELLATION: frozenset({
        ActionGrant(_CANCEL, ActorScope.MAKER),
        ActionGrant(_WITHDRAW, ActorScope.ANYONE),
    }),
    Phase.PUBLIC_CANCELLATION: frozenset({
        ActionGrant(_CANCEL, ActorScope.MAKER),
        ActionGrant(_CANCEL, ActorScope.ANYONE),
        ActionGrant(_WITHDRAW, ActorScope.ANYONE),
    }),
}

PHASE_DESCRIPTIONS: dict[Phase, str] = {
    Phase.PENDING_DEPLOYMENT: "Escrow not deployed yet - no timelocks running",
    Phase.FINALITY: "Finality period - no actions allowed",
    Phase.PRIVATE_WITHDRAWAL: "Private withdrawal period - maker or taker can withdraw with secret",
    Phase.PUBLIC_WITHDRAWAL: "Public withdrawal period - anyone can withdraw with secret",
    Phase.PRIVATE_CANCELLATION: "Private cancellation period - maker can cancel",
    Phase.PUBLIC_CANCELLATION: "Public cancellation period - anyone can cancel",
}

# Phase entered at each boundary, in boundary order.
_TIMED_PHASES = (
    Phase.FINALITY,
    Phase.PRIVATE_WITHDRAWAL,
    Phase.PUBLIC_WITHDRAWAL,
    Phase.PRIVATE_CANCELLATION,
    Phase.PUBLIC_CANCELLATION,
)

PHASE_ORDER: dict[Phase, int] = {phase: i for i, phase in enumerate(_TIMED_PHASES)}


@dataclass(frozen=True)
class PhaseInfo:
    """Where an escrow stands in its timelock schedule at one instant.

    Attributes:
        phase: Current phase.
        description: Human-readable summary of the phase.
        time_remaining: Seconds until the next boundary. None when there is
            no next boundary (PUBLIC_CANCELLATION) or no epoch yet.
        next_phase: Phase that follows (EXPIRED after PUBLIC_CANCELLATION).
        next_phase_at: Absolute time of the next boundary, if any.
        allowed_actions: Grants in force during this phase.
    """

    phase: Phase
    description: str
    time_remaining: int | None
    next_phase: Phase
    next_phase_at: int | None
    allowed_actions: frozenset[ActionGrant] = field(default_factory=frozenset)

    @property
    def unbounded(self) -> bool:
        """True once the escrow sits in its open-ended final phase."""
        return self.phase is Phase.PUBLIC_CANCELLATION

    def actions_for(self, actor: Actor) -> frozenset[Action]:
        return allowed_actions(self.phase, actor)

    def to_dict(self) -> dict:
        return {
            "phase": self.phase.value,
            "description": self.description,
            "time_remaining": self.time_remaining,
            "next_phase": self.next_phase.value,
            "next_phase_at": self.next_phase_at,
            "allowed_actions": sorted(
                f"{grant.scope.value}:{grant.action.value}" for grant in self.allowed_actions
            ),
        }


def allowed_actions(phase: Phase, actor: Actor) -> frozenset[Action]:
    """Actions `actor` may take during `phase`."""
    return frozenset(
        grant.action for grant in ACTION_TABLE.get(phase, frozenset()) if grant.applies_to(actor)
    )


def is_action_allowed(phase: Phase, actor: Actor, action: Action) -> bool:
    return action in allowed_actions(phase, actor)


def compute_phase(schedule: TimelockSchedule, deployment_epoch: int, now: int) -> PhaseInfo:
    """Derive the phase of an escrow deployed at `deployment_epoch`, as of `now`."""
    boundaries = schedule.absolute(deployment_epoch)
    passed = sum(1 for boundary in boundaries if boundary <= now)
    phase = _TIMED_PHASES[passed]

    if passed == len(boundaries):
        return PhaseInfo(
            phase=phase,
            description=PHASE_DESCRIPTIONS[phase],
            time_remaining=None,
            next_phase=Phase.EXPIRED,
            next_phase_at=None,
            allowed_actions=ACTION_TABLE[phase],
        )

    next_at = boundaries[passed]
    return PhaseInfo(
        phase=phase,
        description=PHASE_DESCRIPTIONS[phase],
        time_remaining=next_at - now,
        next_phase=_TIMED_PHASES[passed + 1],
        next_phase_at=next_at,
        allowed_actions=ACTION_TABLE[phase],
    )


def pending_phase() -> PhaseInfo:
    """PhaseInfo for a leg whose contract is not deployed yet."""
    return PhaseInfo(
        phase=Phase.PENDING_DEPLOYMENT,
        description=PHASE_DESCRIPTIONS[Phase.PENDING_DEPLOYMENT],
        time_remaining=None,
        next_phase=Phase.FINALITY,
        next_phase_at=None,
    )


def time_until(schedule: TimelockSchedule, deployment_epoch: int, now: int, boundary: str) -> int:
    """Seconds until the named boundary opens, or 0 if it already has."""
    if boundary not in BOUNDARY_NAMES:
        raise ValueError(f"Unknown boundary '{boundary}'. Valid: {', '.join(BOUNDARY_NAMES)}")
    at = deployment_epoch + getattr(schedule, boundary)
    return max(0, at - now)


def format_duration(seconds: int | None) -> str:
    """Render a duration as e.g. '1d 2h 3m 4s'. None means no limit."""
    if seconds is None:
        return "No time limit"
    days, rest = divmod(seconds, 86400)
    hours, rest = divmod(rest, 3600)
    minutes, secs = divmod(rest, 60)
    if days:
        return f"{days}d {hours}h {minutes}m {secs}s"
    if hours:
        return f"{hours}h {minutes}m {secs}s"
    if minutes:
        return f"{minutes}m {secs}s"
    return f"{secs}s"
