"""Chain Gateway Protocol.

Defines the capability the coordinator consumes from each chain: time,
contract reads, balances, deployment, transfers and event logs. This is a
Protocol (structural subtyping), so a web3 adapter, a Stellar adapter or the
simulated gateway only need to match the shape.

Implementations report failures with the domain gateway errors:
    - GatewayTransient  network trouble, rate limits, dropped connections
    - GatewayReverted   the transaction was mined and reverted
The coordinator adds its own timeout around every call.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable


@dataclass(frozen=True)
class ResourceLimits:
    """Per-attempt transaction ceilings.

    Attributes:
        gas_limit: Maximum gas (or the chain's equivalent resource unit).
        max_fee_per_gas: Optional fee cap; None lets the gateway decide.
    """

    gas_limit: int
    max_fee_per_gas: int | None = None

    def bumped(self, gas_limit: int) -> ResourceLimits:
        return ResourceLimits(gas_limit=gas_limit, max_fee_per_gas=self.max_fee_per_gas)


@dataclass(frozen=True)
class DeployReceipt:
    """Result of a confirmed deployment."""

    address: str
    tx_hash: str
    block_number: int
    timestamp: int


@dataclass(frozen=True)
class TxReceipt:
    """Result of a confirmed transfer.

    `status` is 1 for success and 0 for a revert; gateways may also raise
    GatewayReverted directly.
    """

    tx_hash: str
    status: int
    block_number: int
    timestamp: int
    revert_reason: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == 1


@dataclass(frozen=True)
class RawChainEvent:
    """An undecoded event log entry as the gateway returns it.

    `name` is the contract event name (Withdrawal, EscrowCancelled,
    FundsRescued) and `args` its decoded arguments.
    """

    name: str
    block_number: int
    timestamp: int
    tx_hash: str
    args: dict[str, Any] = field(default_factory=dict)
    log_index: int = 0


@runtime_checkable
class ChainGateway(Protocol):
    """Protocol that every chain adapter must satisfy."""

    async def get_current_time(self) -> int:
        """Timestamp of the latest block, in seconds."""
        ...

    async def get_block_number(self) -> int:
        """Number of the latest block."""
        ...

    async def read_invariant(self, contract_address: str, name: str) -> Any:
        """Call a view getter (e.g. RESCUE_DELAY, HASHLOCK) on a contract."""
        ...

    async def get_balance(self, address: str) -> int:
        """Balance of `address` in the smallest unit."""
        ...

    async def deploy(
        self,
        bytecode: str,
        constructor_args: dict[str, Any],
        limits: ResourceLimits,
        confirmations: int,
    ) -> DeployReceipt:
        """Deploy a contract and wait for `confirmations` blocks."""
        ...

    async def send_funds(
        self,
        address: str,
        amount: int,
        limits: ResourceLimits,
        confirmations: int,
    ) -> TxReceipt:
        """Transfer `amount` to `address` and wait for `confirmations` blocks."""
        ...

    async def query_events(
        self,
        contract_address: str,
        event_name: str,
        from_block: int,
        to_block: int,
    ) -> list[RawChainEvent]:
        """Event logs named `event_name` emitted by a contract in a block range."""
        ...
