"""Application services — leg lifecycle, event reconciliation, swap coordination."""

from htlc_swap.services.lifecycle_service import EscrowLifecycleService, StepOutcome
from htlc_swap.services.reconciler import decode_event, reconcile_events
from htlc_swap.services.swap_coordinator import SwapCoordinator

__all__ = [
    "EscrowLifecycleService",
    "StepOutcome",
    "SwapCoordinator",
    "decode_event",
    "reconcile_events",
]
