"""Infrastructure adapters: swap store and simulated chain gateway."""

from htlc_swap.infrastructure.simulated_gateway import SimulatedChainGateway
from htlc_swap.infrastructure.swap_store import (
    SwapRepository,
    close_redis,
    get_redis,
    init_redis,
)

__all__ = [
    "SimulatedChainGateway",
    "SwapRepository",
    "close_redis",
    "get_redis",
    "init_redis",
]
