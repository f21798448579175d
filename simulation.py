#!/usr/bin/env python3
"""HTLC Swap Coordinator — End-to-End Simulation.

Runs four scenarios against two in-memory simulated chains:

    Scenario 1: Happy Path
        - Both legs deployed, funded and verified concurrently
        - Taker withdraws on the destination chain, revealing the secret
        - The revealed secret is used to withdraw on the source chain

    Scenario 2: Underfunded Escrow
        - Source leg funded with one unit less than amount + safety deposit
        - Verification detects the shortfall -> leg FAILED

    Scenario 3: Timeout and Cancellation
        - Nobody withdraws; time passes both cancellation boundaries
        - Maker cancels the destination leg first, then the source leg

    Scenario 4: Flaky RPC
        - First funding transaction times out at the RPC layer
        - The retry goes out with a higher gas ceiling and succeeds

Usage:
    uv run python simulation.py
    uv run python simulation.py --scenario 2
    uv run python simulation.py --redis       # persist swaps to REDIS_URL
"""

from __future__ import annotations

import argparse
import asyncio

# ---------------------------------------------------------------------------
# Configure structured logging BEFORE importing app modules
# ---------------------------------------------------------------------------
from htlc_swap.config import Settings, get_settings
from htlc_swap.logging_config import get_logger, setup_logging_from_settings

setup_logging_from_settings(get_settings())
logger = get_logger("simulation")

from htlc_swap.domain.enums import Actor, LegRole  # noqa: E402
from htlc_swap.domain.exceptions import GatewayTransient, StateMismatch  # noqa: E402
from htlc_swap.domain.hashlock import generate_secret  # noqa: E402
from htlc_swap.domain.models import SwapOrder, SwapRecord  # noqa: E402
from htlc_swap.domain.phase_engine import format_duration  # noqa: E402
from htlc_swap.infrastructure.simulated_gateway import SimulatedChainGateway  # noqa: E402
from htlc_swap.infrastructure.swap_store import (  # noqa: E402
    SwapRepository,
    close_redis,
    init_redis,
)
from htlc_swap.orchestration.swap_workflow import poll_swap, run_swap_setup  # noqa: E402
from htlc_swap.services.swap_coordinator import SwapCoordinator  # noqa: E402

SEPOLIA = 11155111
CALIBRATION = 314159

MAKER = "0x742d35cc6634c0532925a3b844bc9e7595f2bd18"
TAKER = "0x8ba1f109551bd432803012645ac136ddd64dba72"
MAKER_ASSET = "0x1c7d4b196cb0c7b01d743fbc6116a902379c7238"
TAKER_ASSET = "0xad1fae6e2b4b4d2b8a2a0b0e3bd3d0e0f1c5d6a7"

_use_redis = False


# ---------------------------------------------------------------------------
# Setup helpers
# ---------------------------------------------------------------------------
class Chains:
    """The two simulated chains, moved forward in lockstep."""

    def __init__(self) -> None:
        self.source = SimulatedChainGateway(SEPOLIA)
        self.destination = SimulatedChainGateway(CALIBRATION)

    def advance(self, seconds: int) -> None:
        self.source.advance_time(seconds)
        self.destination.advance_time(seconds)

    @property
    def now(self) -> int:
        return self.source.time


async def build_coordinator(chains: Chains) -> SwapCoordinator:
    settings = Settings(fund_retry_delay_seconds=0.2)
    repository = None
    if _use_redis:
        client = await init_redis(settings)
        repository = SwapRepository(client, key_prefix=settings.swap_key_prefix)
    return SwapCoordinator(
        settings,
        gateways={SEPOLIA: chains.source, CALIBRATION: chains.destination},
        repository=repository,
    )


def sample_order() -> SwapOrder:
    return SwapOrder(
        maker=MAKER,
        taker=TAKER,
        maker_asset=MAKER_ASSET,
        taker_asset=TAKER_ASSET,
        making_amount=1_000_000,
        taking_amount=990_000_000_000_000_000,
        src_safety_deposit=10_000,
        dst_safety_deposit=10_000_000_000_000_000,
        src_chain_id=SEPOLIA,
        dst_chain_id=CALIBRATION,
    )


# ---------------------------------------------------------------------------
# Print helpers
# ---------------------------------------------------------------------------
def banner(text: str) -> None:
    """Print a prominent banner."""
    width = 70
    print("\n" + "=" * width)
    print(f"  {text}")
    print("=" * width + "\n")


def section(text: str) -> None:
    """Print a section header."""
    print(f"\n--- {text} ---\n")


async def print_status(coordinator: SwapCoordinator, swap: SwapRecord, now: int) -> None:
    """Pretty-print both legs of a swap."""
    view = await coordinator.status_view(swap, now)
    for leg in (view.source, view.destination):
        remaining = "-"
        if leg.phase != "PENDING_DEPLOYMENT":
            remaining = format_duration(leg.time_remaining)
        print(
            f"  [{leg.role:<11}] {leg.status:<8} phase={leg.phase:<20} "
            f"next in {remaining:<14} outcome={leg.outcome or '-'}"
        )
        if leg.failure_code:
            print(f"                failure: {leg.failure_code}: {leg.failure_reason}")
    print(f"  secret revealed: {view.secret_revealed}   terminal: {view.is_terminal}")


def print_actions(coordinator: SwapCoordinator, swap: SwapRecord, now: int) -> None:
    for actor in Actor:
        actions = coordinator.next_actions(swap, actor, now)
        rendered = ", ".join(
            f"{role.value}: {sorted(a.value for a in acts) or '-'}"
            for role, acts in actions.items()
        )
        print(f"  {actor.value:<12} {rendered}")


# ===========================================================================
# Scenario 1: Happy Path
# ===========================================================================
async def scenario_1_happy_path() -> None:
    banner("SCENARIO 1: Happy Path (withdrawal reveals the secret)")
    chains = Chains()
    coordinator = await build_coordinator(chains)
    swap = coordinator.create_swap(sample_order(), generate_secret())

    section("Step 1: Deploy, fund and verify both legs")
    state = await run_swap_setup(coordinator, swap)
    print(f"  ready={state['ready']} errors={state['errors'] or '-'}")
    await print_status(coordinator, swap, chains.now)

    section("Step 2: Finality passes, private withdrawal opens")
    chains.advance(coordinator.current_phase(swap, LegRole.DESTINATION, chains.now).time_remaining)
    print_actions(coordinator, swap, chains.now)

    section("Step 3: Taker withdraws on the destination chain")
    chains.destination.emit_withdrawal(swap.destination_leg.contract_address, swap.secret)
    poll = await poll_swap(coordinator, swap)
    print(f"  outcomes={poll['outcomes']} secret_revealed={poll['secret_revealed']}")

    section("Step 4: Revealed secret claims the source leg")
    secret = coordinator.secret_for(swap, LegRole.SOURCE)
    chains.source.emit_withdrawal(swap.source_leg.contract_address, secret)
    await poll_swap(coordinator, swap)
    await print_status(coordinator, swap, chains.now)


# ===========================================================================
# Scenario 2: Underfunded Escrow
# ===========================================================================
async def scenario_2_underfunded() -> None:
    banner("SCENARIO 2: Underfunded Escrow (verification catches it)")
    chains = Chains()
    coordinator = await build_coordinator(chains)
    swap = coordinator.create_swap(sample_order(), generate_secret())
    expected = swap.source_leg.immutables.expected_funding

    section(f"Step 1: Fund the source leg with {expected - 1} instead of {expected}")
    await coordinator.deploy_leg(swap, LegRole.SOURCE)
    await coordinator.fund_leg(swap, LegRole.SOURCE, amount=expected - 1)

    section("Step 2: Verify")
    try:
        await coordinator.verify_leg(swap, LegRole.SOURCE)
    except StateMismatch as exc:
        print(f"  ❌ {exc.code}: {exc.message}")
    await print_status(coordinator, swap, chains.now)


# ===========================================================================
# Scenario 3: Timeout and Cancellation
# ===========================================================================
async def scenario_3_cancellation() -> None:
    banner("SCENARIO 3: Timeout and Cancellation")
    chains = Chains()
    coordinator = await build_coordinator(chains)
    swap = coordinator.create_swap(sample_order(), generate_secret())
    await run_swap_setup(coordinator, swap)

    dst_schedule = swap.destination_leg.immutables.schedule
    src_schedule = swap.source_leg.immutables.schedule

    section("Step 1: Destination cancellation opens")
    chains.advance(dst_schedule.cancellation_start)
    await print_status(coordinator, swap, chains.now)
    print_actions(coordinator, swap, chains.now)
    chains.destination.emit_cancellation(swap.destination_leg.contract_address)

    section("Step 2: Source cancellation opens")
    chains.advance(src_schedule.cancellation_start - dst_schedule.cancellation_start)
    chains.source.emit_cancellation(swap.source_leg.contract_address)
    poll = await poll_swap(coordinator, swap)
    print(f"  outcomes={poll['outcomes']}")
    await print_status(coordinator, swap, chains.now)


# ===========================================================================
# Scenario 4: Flaky RPC
# ===========================================================================
async def scenario_4_flaky_rpc() -> None:
    banner("SCENARIO 4: Flaky RPC (funding retried with more gas)")
    chains = Chains()
    coordinator = await build_coordinator(chains)
    swap = coordinator.create_swap(sample_order(), generate_secret())
    chains.source.fail_next("send_funds", GatewayTransient("rpc timeout", operation="send_funds"))

    state = await run_swap_setup(coordinator, swap)
    for address, amount, limits in chains.source.sent:
        print(f"  sent {amount} to {address[:12]}... gas_limit={limits.gas_limit}")
    print(f"  send_funds calls: {chains.source.calls['send_funds']}  ready={state['ready']}")
    await print_status(coordinator, swap, chains.now)


# ===========================================================================
# Main
# ===========================================================================
SCENARIOS = {
    1: scenario_1_happy_path,
    2: scenario_2_underfunded,
    3: scenario_3_cancellation,
    4: scenario_4_flaky_rpc,
}


async def run(scenario: int = 0, use_redis: bool = False) -> None:
    """Run one scenario, or all of them when `scenario` is 0."""
    global _use_redis
    _use_redis = use_redis

    if scenario and scenario not in SCENARIOS:
        print(f"Unknown scenario {scenario}. Available: {', '.join(map(str, SCENARIOS))}")
        return

    logger.info("simulation.started", scenario=scenario or "all", redis=use_redis)
    try:
        for num, func in SCENARIOS.items():
            if scenario in (0, num):
                await func()
        print("\n" + "=" * 70)
        print("  ✅ SIMULATION FINISHED")
        print("=" * 70 + "\n")
    finally:
        if use_redis:
            await close_redis()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="HTLC Swap Coordinator Simulation")
    parser.add_argument(
        "--scenario",
        type=int,
        default=0,
        help="Run a specific scenario (1-4). Default: run all.",
    )
    parser.add_argument(
        "--redis",
        action="store_true",
        help="Persist swaps to the Redis instance at REDIS_URL.",
    )
    args = parser.parse_args()
    asyncio.run(run(args.scenario, use_redis=args.redis))
