"""Simulated chain gateway — an in-memory chain for dry runs and tests.

Satisfies the ChainGateway protocol without any network. Deployments record
their constructor arguments as readable invariants, transfers move balances,
and escrow events are emitted by the helper methods. Time only moves when
advance_time() is called.

Failure injection:
    gateway.fail_next("send_funds", GatewayTransient("rpc timeout"))
    gateway.set_latency("deploy", 5.0)   # trips a caller timeout
"""

from __future__ import annotations

import asyncio
import uuid
from collections import Counter, defaultdict, deque
from typing import Any

from eth_utils import keccak, to_hex

from htlc_swap.domain.enums import ChainEventKind
from htlc_swap.domain.exceptions import GatewayReverted
from htlc_swap.domain.gateway_protocol import (
    DeployReceipt,
    RawChainEvent,
    ResourceLimits,
    TxReceipt,
)
from htlc_swap.logging_config import get_logger

logger = get_logger(__name__)

DEFAULT_RESCUE_DELAY = 86_400

_CONSTRUCTOR_INVARIANTS = {
    "order_hash": "ORDER_HASH",
    "hashlock": "HASHLOCK",
    "maker": "MAKER",
    "taker": "TAKER",
    "token": "TOKEN",
    "amount": "AMOUNT",
    "safety_deposit": "SAFETY_DEPOSIT",
}


def _tx_hash() -> str:
    return "0x" + uuid.uuid4().hex + uuid.uuid4().hex


class SimulatedChainGateway:
    """In-memory chain that the coordinator can deploy to and fund."""

    def __init__(
        self,
        chain_id: int,
        start_time: int = 1_700_000_000,
        start_block: int = 1,
        rescue_delay: int = DEFAULT_RESCUE_DELAY,
        factory: str = "0x" + "0" * 40,
    ) -> None:
        self.chain_id = chain_id
        self.time = start_time
        self.block_number = start_block
        self.rescue_delay = rescue_delay
        self.factory = factory
        self.calls: Counter[str] = Counter()
        self.sent: list[tuple[str, int, ResourceLimits]] = []
        self._invariants: dict[str, dict[str, Any]] = {}
        self._balances: defaultdict[str, int] = defaultdict(int)
        self._events: list[tuple[str, RawChainEvent]] = []
        self._failures: defaultdict[str, deque[Exception]] = defaultdict(deque)
        self._latency: dict[str, float] = {}

    # ------------------------------------------------------------------
    # Test / simulation controls
    # ------------------------------------------------------------------

    def fail_next(self, operation: str, error: Exception, times: int = 1) -> None:
        """Make the next `times` calls to `operation` raise `error`."""
        self._failures[operation].extend([error] * times)

    def set_latency(self, operation: str, seconds: float) -> None:
        self._latency[operation] = seconds

    def advance_time(self, seconds: int, blocks: int = 1) -> None:
        self.time += seconds
        self.block_number += blocks

    def set_invariant(self, address: str, name: str, value: Any) -> None:
        self._invariants[address][name] = value

    def set_balance(self, address: str, amount: int) -> None:
        self._balances[address] = amount

    def emit_withdrawal(
        self, address: str, secret: str | bytes, tx_hash: str | None = None
    ) -> RawChainEvent:
        return self.emit_log(address, ChainEventKind.WITHDRAWAL, {"secret": secret}, tx_hash)

    def emit_cancellation(self, address: str, tx_hash: str | None = None) -> RawChainEvent:
        return self.emit_log(address, ChainEventKind.CANCELLATION, {}, tx_hash)

    def emit_rescue(self, address: str, token: str, amount: int) -> RawChainEvent:
        args = {"token": token, "amount": amount}
        return self.emit_log(address, ChainEventKind.RESCUE, args)

    def emit_log(
        self,
        address: str,
        name: str,
        args: dict[str, Any],
        tx_hash: str | None = None,
    ) -> RawChainEvent:
        """Append a log under any event name with arbitrary arguments."""
        self.block_number += 1
        event = RawChainEvent(
            name=str(name),
            block_number=self.block_number,
            timestamp=self.time,
            tx_hash=tx_hash or _tx_hash(),
            args=args,
            log_index=len(self._events),
        )
        self._events.append((address, event))
        return event

    async def _enter(self, operation: str) -> None:
        self.calls[operation] += 1
        latency = self._latency.get(operation, 0.0)
        # always yield, so concurrent callers interleave like real I/O
        await asyncio.sleep(latency)
        if self._failures[operation]:
            raise self._failures[operation].popleft()

    # ------------------------------------------------------------------
    # ChainGateway protocol
    # ------------------------------------------------------------------

    async def get_current_time(self) -> int:
        await self._enter("get_current_time")
        return self.time

    async def get_block_number(self) -> int:
        await self._enter("get_block_number")
        return self.block_number

    async def read_invariant(self, contract_address: str, name: str) -> Any:
        await self._enter("read_invariant")
        try:
            return self._invariants[contract_address][name]
        except KeyError as err:
            raise GatewayReverted(
                f"Call to {name}() on {contract_address} reverted",
                revert_reason="no such getter or contract",
            ) from err

    async def get_balance(self, address: str) -> int:
        await self._enter("get_balance")
        return self._balances[address]

    async def deploy(
        self,
        bytecode: str,
        constructor_args: dict[str, Any],
        limits: ResourceLimits,
        confirmations: int,
    ) -> DeployReceipt:
        await self._enter("deploy")
        address = "0x" + uuid.uuid4().hex + uuid.uuid4().hex[:8]
        invariants = {
            name: constructor_args[arg]
            for arg, name in _CONSTRUCTOR_INVARIANTS.items()
            if arg in constructor_args
        }
        invariants["TIMELOCKS"] = tuple(constructor_args.get("timelocks", ()))
        invariants["RESCUE_DELAY"] = self.rescue_delay
        invariants["FACTORY"] = self.factory
        invariants["PROXY_BYTECODE_HASH"] = to_hex(keccak(hexstr=bytecode))
        self._invariants[address] = invariants
        self.block_number += max(confirmations, 1)

        logger.debug(
            "simulated_gateway.deployed",
            chain_id=self.chain_id,
            address=address,
            gas_limit=limits.gas_limit,
        )
        return DeployReceipt(
            address=address,
            tx_hash=_tx_hash(),
            block_number=self.block_number,
            timestamp=self.time,
        )

    async def send_funds(
        self,
        address: str,
        amount: int,
        limits: ResourceLimits,
        confirmations: int,
    ) -> TxReceipt:
        await self._enter("send_funds")
        if address not in self._invariants:
            raise GatewayReverted(f"No contract at {address}", revert_reason="unknown recipient")
        self._balances[address] += amount
        self.sent.append((address, amount, limits))
        self.block_number += max(confirmations, 1)
        return TxReceipt(
            tx_hash=_tx_hash(),
            status=1,
            block_number=self.block_number,
            timestamp=self.time,
        )

    async def query_events(
        self,
        contract_address: str,
        event_name: str,
        from_block: int,
        to_block: int,
    ) -> list[RawChainEvent]:
        await self._enter("query_events")
        return [
            event
            for address, event in self._events
            if address == contract_address
            and event.name == event_name
            and from_block <= event.block_number <= to_block
        ]
