"""Domain layer — pure swap logic with zero framework dependencies."""

from htlc_swap.domain.enums import (
    Action,
    Actor,
    ChainEventKind,
    LegRole,
    LegStatus,
    Outcome,
    Phase,
)
from htlc_swap.domain.exceptions import (
    GatewayReverted,
    GatewayTransient,
    InvalidOrder,
    InvalidSchedule,
    InvalidStateTransitionError,
    ProtocolViolation,
    StateMismatch,
    SwapError,
    SwapNotFoundError,
    TerminalStateConflict,
)
from htlc_swap.domain.gateway_protocol import ChainGateway, ResourceLimits
from htlc_swap.domain.models import (
    ChainEvent,
    EscrowImmutables,
    EscrowRecord,
    SwapOrder,
    SwapRecord,
)
from htlc_swap.domain.phase_engine import PhaseInfo, allowed_actions, compute_phase
from htlc_swap.domain.state_machine import EscrowLifecycleMachine, validate_transition
from htlc_swap.domain.timelocks import TimelockSchedule, validate_schedule

__all__ = [
    "Action",
    "Actor",
    "ChainEventKind",
    "LegRole",
    "LegStatus",
    "Outcome",
    "Phase",
    "GatewayReverted",
    "GatewayTransient",
    "InvalidOrder",
    "InvalidSchedule",
    "InvalidStateTransitionError",
    "ProtocolViolation",
    "StateMismatch",
    "SwapError",
    "SwapNotFoundError",
    "TerminalStateConflict",
    "ChainGateway",
    "ResourceLimits",
    "ChainEvent",
    "EscrowImmutables",
    "EscrowRecord",
    "SwapOrder",
    "SwapRecord",
    "PhaseInfo",
    "allowed_actions",
    "compute_phase",
    "EscrowLifecycleMachine",
    "validate_transition",
    "TimelockSchedule",
    "validate_schedule",
]
