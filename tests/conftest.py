"""Shared test fixtures for the HTLC swap coordinator test suite.

Provides:
    - Settings isolated from any local .env file
    - Two simulated chains and a coordinator wired to them
    - A sample order, secret and freshly created swap
    - Async test support via pytest-asyncio
"""

from __future__ import annotations

import pytest

from htlc_swap.config import Settings
from htlc_swap.domain.enums import LegRole, LegStatus
from htlc_swap.domain.models import SwapOrder
from htlc_swap.domain.timelocks import TimelockSchedule
from htlc_swap.infrastructure.simulated_gateway import SimulatedChainGateway
from htlc_swap.services.swap_coordinator import SwapCoordinator

SRC_CHAIN_ID = 11155111
DST_CHAIN_ID = 314159

MAKER = "0x742d35cc6634c0532925a3b844bc9e7595f2bd18"
TAKER = "0x8ba1f109551bd432803012645ac136ddd64dba72"
MAKER_ASSET = "0x1c7d4b196cb0c7b01d743fbc6116a902379c7238"
TAKER_ASSET = "0xad1fae6e2b4b4d2b8a2a0b0e3bd3d0e0f1c5d6a7"

SECRET = "0x" + "11" * 32
WRONG_SECRET = "0x" + "22" * 32


# ---------------------------------------------------------------------------
# Configuration Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings() -> Settings:
    """Default settings, no retry delay, never read from .env."""
    return Settings(_env_file=None, fund_retry_delay_seconds=0)


@pytest.fixture
def schedule() -> TimelockSchedule:
    """The 60/120/300/600 schedule used in the phase examples."""
    return TimelockSchedule(
        withdrawal_start=60,
        public_withdrawal_start=120,
        cancellation_start=300,
        public_cancellation_start=600,
    )


# ---------------------------------------------------------------------------
# Chain Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def source_gateway() -> SimulatedChainGateway:
    return SimulatedChainGateway(SRC_CHAIN_ID)


@pytest.fixture
def destination_gateway() -> SimulatedChainGateway:
    return SimulatedChainGateway(DST_CHAIN_ID)


@pytest.fixture
def coordinator(
    settings: Settings,
    source_gateway: SimulatedChainGateway,
    destination_gateway: SimulatedChainGateway,
) -> SwapCoordinator:
    return SwapCoordinator(
        settings,
        gateways={SRC_CHAIN_ID: source_gateway, DST_CHAIN_ID: destination_gateway},
    )


# ---------------------------------------------------------------------------
# Domain Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def secret() -> str:
    return SECRET


@pytest.fixture
def order() -> SwapOrder:
    """A valid EVM-to-EVM order with 6- and 18-decimal amounts."""
    return SwapOrder(
        maker=MAKER,
        taker=TAKER,
        maker_asset=MAKER_ASSET,
        taker_asset=TAKER_ASSET,
        making_amount=1_000_000,
        taking_amount=990_000_000_000_000_000,
        src_safety_deposit=10_000,
        dst_safety_deposit=10_000_000_000_000_000,
        src_chain_id=SRC_CHAIN_ID,
        dst_chain_id=DST_CHAIN_ID,
    )


@pytest.fixture
def swap(coordinator: SwapCoordinator, order: SwapOrder, secret: str):
    """A freshly created swap with both legs PENDING."""
    return coordinator.create_swap(order, secret)


@pytest.fixture
def verify_both_legs(coordinator: SwapCoordinator):
    """Async helper that drives both legs of a swap to VERIFIED."""

    async def _verify(swap) -> None:
        for role in LegRole:
            while swap.leg(role).status is not LegStatus.VERIFIED:
                await coordinator.advance_leg(swap, role)

    return _verify
