"""Domain exceptions for the swap coordinator.

Every error carries a stable upper-snake `code`. The coordinator persists
that code on a failed leg, so callers can tell a reverted deployment from a
diverging on-chain balance without parsing messages.
"""

from __future__ import annotations


class SwapError(Exception):
    """Base exception for all domain errors."""

    def __init__(self, message: str, code: str = "SWAP_ERROR") -> None:
        self.message = message
        self.code = code
        super().__init__(self.message)


# --- Construction Errors ---


class InvalidSchedule(SwapError):
    """Timelock boundaries are out of order or not non-negative integers."""

    def __init__(self, message: str) -> None:
        super().__init__(message=message, code="INVALID_SCHEDULE")


class InvalidOrder(SwapError):
    """Order terms cannot produce a valid two-leg swap.

    Example: a zero amount, or both legs on the same chain id.
    """

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message=message, code="INVALID_ORDER")
        self.field = field


# --- Gateway Errors ---


class GatewayError(SwapError):
    """Base exception for failures reported by a chain gateway."""


class GatewayTransient(GatewayError):
    """Network error or timeout talking to the chain. May be retried."""

    def __init__(self, message: str, operation: str | None = None) -> None:
        super().__init__(message=message, code="GATEWAY_TRANSIENT")
        self.operation = operation


class GatewayReverted(GatewayError):
    """The transaction was mined but reverted. Terminal for that attempt."""

    def __init__(
        self,
        message: str,
        revert_reason: str | None = None,
        tx_hash: str | None = None,
    ) -> None:
        super().__init__(message=message, code="GATEWAY_REVERTED")
        self.revert_reason = revert_reason
        self.tx_hash = tx_hash


class GatewayNotConfiguredError(SwapError):
    """No chain gateway was registered for a leg's chain id."""

    def __init__(self, chain_id: int) -> None:
        super().__init__(
            message=f"No chain gateway configured for chain id {chain_id}",
            code="GATEWAY_NOT_CONFIGURED",
        )
        self.chain_id = chain_id


# --- Integrity Errors ---


class StateMismatch(SwapError):
    """On-chain state diverges from the locally held record. Never auto-corrected."""

    def __init__(self, field: str, expected: object, actual: object) -> None:
        super().__init__(
            message=f"On-chain {field} mismatch: expected {expected!r}, got {actual!r}",
            code="STATE_MISMATCH",
        )
        self.field = field
        self.expected = expected
        self.actual = actual


class TerminalStateConflict(SwapError):
    """Contradictory terminal events (withdrawal and cancellation) for one escrow."""

    def __init__(self, message: str, tx_hashes: tuple[str, ...] = ()) -> None:
        super().__init__(message=message, code="TERMINAL_STATE_CONFLICT")
        self.tx_hashes = tx_hashes


class ProtocolViolation(SwapError):
    """A revealed secret does not hash to the hashlock, or an event log is malformed."""

    def __init__(self, message: str, tx_hash: str | None = None) -> None:
        super().__init__(message=message, code="PROTOCOL_VIOLATION")
        self.tx_hash = tx_hash


# --- Lifecycle Errors ---


class InvalidStateTransitionError(SwapError):
    """Raised when an attempted lifecycle transition is not allowed.

    Example: PENDING -> FUNDED (must be deployed first).
    """

    def __init__(self, current_state: str, attempted: str) -> None:
        super().__init__(
            message=f"Invalid lifecycle transition: {current_state} -> {attempted}",
            code="INVALID_STATE_TRANSITION",
        )
        self.current_state = current_state
        self.attempted = attempted


class SwapNotFoundError(SwapError):
    """Raised when a swap id does not exist in the store."""

    def __init__(self, swap_id: str) -> None:
        super().__init__(
            message=f"Swap not found: {swap_id}",
            code="SWAP_NOT_FOUND",
        )
        self.swap_id = swap_id
