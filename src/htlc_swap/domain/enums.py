"""Domain enumerations for the swap coordinator.

These enums define the canonical states and tags used throughout the system.
They are framework-agnostic (no pydantic, no redis imports).
"""

import enum


class LegRole(enum.StrEnum):
    """Which side of the two-chain swap an escrow belongs to."""

    SOURCE = "source"
    DESTINATION = "destination"

    @property
    def counterpart(self) -> "LegRole":
        return LegRole.DESTINATION if self is LegRole.SOURCE else LegRole.SOURCE


class Phase(enum.StrEnum):
    """Timelock phases of a deployed escrow, in time order.

    EXPIRED is only ever reported as the "next phase" of PUBLIC_CANCELLATION;
    no escrow is ever in it. PENDING_DEPLOYMENT is reported for a leg whose
    deployment epoch is not known yet.
    """

    PENDING_DEPLOYMENT = "PENDING_DEPLOYMENT"
    FINALITY = "FINALITY"
    PRIVATE_WITHDRAWAL = "PRIVATE_WITHDRAWAL"
    PUBLIC_WITHDRAWAL = "PUBLIC_WITHDRAWAL"
    PRIVATE_CANCELLATION = "PRIVATE_CANCELLATION"
    PUBLIC_CANCELLATION = "PUBLIC_CANCELLATION"
    EXPIRED = "EXPIRED"


class Actor(enum.StrEnum):
    """Who is asking what they may do."""

    MAKER = "maker"
    TAKER = "taker"
    THIRD_PARTY = "third_party"


class ActorScope(enum.StrEnum):
    """Who an action grant applies to."""

    MAKER = "maker"
    TAKER = "taker"
    ANYONE = "anyone"


class Action(enum.StrEnum):
    WITHDRAW_WITH_SECRET = "withdraw_with_secret"
    CANCEL = "cancel"


class LegStatus(enum.StrEnum):
    """Lifecycle states of one escrow leg.

    Transitions are enforced by the EscrowLifecycleMachine guard.
    See domain/state_machine.py for the transition table.
    """

    PENDING = "PENDING"
    DEPLOYED = "DEPLOYED"
    FUNDED = "FUNDED"
    VERIFIED = "VERIFIED"
    FAILED = "FAILED"


class DeploymentStatus(enum.StrEnum):
    PENDING = "pending"
    DEPLOYED = "deployed"
    FAILED = "failed"


class FundingStatus(enum.StrEnum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class VerificationStatus(enum.StrEnum):
    UNVERIFIED = "unverified"
    VERIFIED = "verified"
    FAILED = "failed"


class ChainEventKind(enum.StrEnum):
    """Escrow contract events the reconciler understands.

    The values are the contract event names as they appear in the logs.
    """

    WITHDRAWAL = "Withdrawal"
    CANCELLATION = "EscrowCancelled"
    RESCUE = "FundsRescued"


class Outcome(enum.StrEnum):
    """Terminal on-chain outcome of an escrow, set by observed events."""

    WITHDRAWN = "withdrawn"
    CANCELLED = "cancelled"
