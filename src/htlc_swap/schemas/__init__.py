"""Pydantic schemas for stored swaps and status views."""

from htlc_swap.schemas.swap import (
    ChainEventSchema,
    EscrowImmutablesSchema,
    EscrowRecordSchema,
    LegStatusView,
    SwapRecordSchema,
    SwapStatusView,
    TimelockScheduleSchema,
    dump_swap,
    load_swap,
)

__all__ = [
    "ChainEventSchema",
    "EscrowImmutablesSchema",
    "EscrowRecordSchema",
    "LegStatusView",
    "SwapRecordSchema",
    "SwapStatusView",
    "TimelockScheduleSchema",
    "dump_swap",
    "load_swap",
]
