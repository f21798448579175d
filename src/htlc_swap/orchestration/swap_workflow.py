"""Swap workflows — drive both legs and run monitoring passes.

    run_swap_setup:  deploy -> fund -> verify on both legs, concurrently
    poll_swap:       pull events and report phases for both legs

A failure on one leg is recorded in the returned state and never cancels
or fails the other leg.

Usage:
    from htlc_swap.orchestration.swap_workflow import run_swap_setup

    state = await run_swap_setup(coordinator, swap)
    if state["ready"]:
        ...
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, TypedDict

from htlc_swap.domain.enums import LegRole, LegStatus
from htlc_swap.domain.exceptions import SwapError
from htlc_swap.logging_config import get_logger

if TYPE_CHECKING:
    from htlc_swap.domain.models import EscrowRecord, SwapRecord
    from htlc_swap.services.swap_coordinator import SwapCoordinator

logger = get_logger(__name__)


class SwapSetupState(TypedDict):
    """Result of driving both legs towards VERIFIED."""

    swap_id: str
    source_status: str
    destination_status: str
    errors: dict[str, str]
    ready: bool


class SwapPollState(TypedDict):
    """Result of one monitoring pass."""

    swap_id: str
    phases: dict[str, dict]
    outcomes: dict[str, str | None]
    secret_revealed: bool
    errors: dict[str, str]


async def _drive_leg(
    coordinator: SwapCoordinator,
    swap: SwapRecord,
    role: LegRole,
    timeout: float | None,
) -> EscrowRecord:
    record = swap.leg(role)
    while record.status not in (LegStatus.VERIFIED, LegStatus.FAILED):
        record = await coordinator.advance_leg(swap, role, timeout=timeout)
    return record


async def run_swap_setup(
    coordinator: SwapCoordinator,
    swap: SwapRecord,
    timeout: float | None = None,
) -> SwapSetupState:
    """Drive both legs to VERIFIED at the same time.

    Args:
        coordinator: Coordinator that owns `swap`.
        swap: Swap to set up.
        timeout: Per gateway call timeout; defaults to the configured one.

    Returns:
        SwapSetupState with each leg's final status and any error per leg.
    """
    roles = list(LegRole)
    logger.info("workflow.setup_started", swap_id=swap.swap_id)
    results = await asyncio.gather(
        *(_drive_leg(coordinator, swap, role, timeout) for role in roles),
        return_exceptions=True,
    )

    errors: dict[str, str] = {}
    for role, result in zip(roles, results, strict=True):
        if isinstance(result, SwapError):
            errors[role.value] = f"{result.code}: {result.message}"
            logger.warning(
                "workflow.leg_error", swap_id=swap.swap_id, role=role.value, code=result.code
            )
        elif isinstance(result, BaseException):
            raise result

    state: SwapSetupState = {
        "swap_id": swap.swap_id,
        "source_status": swap.source_leg.status.value,
        "destination_status": swap.destination_leg.status.value,
        "errors": errors,
        "ready": all(swap.leg(role).status is LegStatus.VERIFIED for role in roles),
    }
    logger.info(
        "workflow.setup_finished",
        swap_id=swap.swap_id,
        ready=state["ready"],
        source=state["source_status"],
        destination=state["destination_status"],
    )
    return state


async def poll_swap(
    coordinator: SwapCoordinator,
    swap: SwapRecord,
    timeout: float | None = None,
) -> SwapPollState:
    """One monitoring pass: sync events on deployed legs, then read phases."""
    phases: dict[str, dict] = {}
    errors: dict[str, str] = {}

    for role in LegRole:
        try:
            await coordinator.sync_events(swap, role, timeout=timeout)
            phase = await coordinator.refresh_phase(swap, role, timeout=timeout)
            phases[role.value] = phase.to_dict()
        except SwapError as exc:
            errors[role.value] = f"{exc.code}: {exc.message}"
            logger.warning(
                "workflow.poll_error", swap_id=swap.swap_id, role=role.value, code=exc.code
            )

    return {
        "swap_id": swap.swap_id,
        "phases": phases,
        "outcomes": {
            role.value: swap.leg(role).outcome.value if swap.leg(role).outcome else None
            for role in LegRole
        },
        "secret_revealed": swap.revealed_secret is not None,
        "errors": errors,
    }
