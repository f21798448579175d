"""Swap and escrow record types.

Plain dataclasses, no framework imports. Immutables and schedules are frozen;
EscrowRecord and SwapRecord are mutable but are only ever changed by the
SwapCoordinator, which swaps in whole updated copies (see services/).

All amounts are Python ints in the asset's smallest unit.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from htlc_swap.domain.enums import (
    ChainEventKind,
    DeploymentStatus,
    FundingStatus,
    LegRole,
    LegStatus,
    Outcome,
    VerificationStatus,
)
from htlc_swap.domain.timelocks import TimelockSchedule

PENDING_ADDRESS = "pending"


@dataclass(frozen=True)
class SwapOrder:
    """Negotiated order terms, as accepted by both parties.

    `signed_order` is whatever the order protocol produced; it is carried
    along untouched and never persisted. Destination-chain addresses default
    to the source-chain ones when both chains share an address format.
    """

    maker: str
    taker: str
    maker_asset: str
    taker_asset: str
    making_amount: int
    taking_amount: int
    src_safety_deposit: int
    dst_safety_deposit: int
    src_chain_id: int
    dst_chain_id: int
    order_hash: str | None = None
    dst_maker: str | None = None
    dst_taker: str | None = None
    signed_order: Any = field(default=None, compare=False, repr=False)

    def terms(self) -> dict:
        """Order terms without the opaque signed payload."""
        return {
            "maker": self.maker,
            "taker": self.taker,
            "maker_asset": self.maker_asset,
            "taker_asset": self.taker_asset,
            "making_amount": str(self.making_amount),
            "taking_amount": str(self.taking_amount),
            "src_safety_deposit": str(self.src_safety_deposit),
            "dst_safety_deposit": str(self.dst_safety_deposit),
            "src_chain_id": self.src_chain_id,
            "dst_chain_id": self.dst_chain_id,
            "dst_maker": self.dst_maker,
            "dst_taker": self.dst_taker,
        }


@dataclass(frozen=True)
class EscrowImmutables:
    """Parameters fixed at deployment. Any on-chain divergence is a StateMismatch."""

    hash_of_secret: str
    maker: str
    taker: str
    asset: str
    amount: int
    safety_deposit: int
    schedule: TimelockSchedule
    source_chain_id: int
    destination_chain_id: int
    order_hash: str

    @property
    def expected_funding(self) -> int:
        """Exact amount the escrow must hold once funded."""
        return self.amount + self.safety_deposit

    def constructor_args(self) -> dict:
        return {
            "order_hash": self.order_hash,
            "hashlock": self.hash_of_secret,
            "maker": self.maker,
            "taker": self.taker,
            "token": self.asset,
            "amount": self.amount,
            "safety_deposit": self.safety_deposit,
            "timelocks": list(self.schedule.offsets()),
            "src_chain_id": self.source_chain_id,
            "dst_chain_id": self.destination_chain_id,
        }

    def invariant_expectations(self) -> dict[str, object]:
        """On-chain getter name -> value it must return."""
        return {
            "HASHLOCK": self.hash_of_secret,
            "ORDER_HASH": self.order_hash,
            "MAKER": self.maker,
            "TAKER": self.taker,
            "TOKEN": self.asset,
            "AMOUNT": self.amount,
            "SAFETY_DEPOSIT": self.safety_deposit,
            "TIMELOCKS": self.schedule.offsets(),
        }


# --- Chain events (tagged variant) ---


@dataclass(frozen=True)
class WithdrawalPayload:
    secret: str


@dataclass(frozen=True)
class CancellationPayload:
    pass


@dataclass(frozen=True)
class RescuePayload:
    token: str
    amount: int


EventPayload = WithdrawalPayload | CancellationPayload | RescuePayload

PAYLOAD_TYPES: dict[ChainEventKind, type] = {
    ChainEventKind.WITHDRAWAL: WithdrawalPayload,
    ChainEventKind.CANCELLATION: CancellationPayload,
    ChainEventKind.RESCUE: RescuePayload,
}


@dataclass(frozen=True)
class ChainEvent:
    """One decoded escrow contract event."""

    kind: ChainEventKind
    block_number: int
    timestamp: int
    tx_hash: str
    payload: EventPayload

    def __post_init__(self) -> None:
        expected = PAYLOAD_TYPES[self.kind]
        if not isinstance(self.payload, expected):
            raise TypeError(
                f"{self.kind.value} event needs a {expected.__name__}, "
                f"got {type(self.payload).__name__}"
            )

    @property
    def identity(self) -> tuple[str, str]:
        return (self.kind.value, self.tx_hash.lower())


# --- Records ---


@dataclass
class EscrowRecord:
    """Durable state of one escrow leg."""

    role: LegRole
    immutables: EscrowImmutables
    contract_address: str = PENDING_ADDRESS
    status: LegStatus = LegStatus.PENDING
    deployment_status: DeploymentStatus = DeploymentStatus.PENDING
    funding_status: FundingStatus = FundingStatus.PENDING
    verification_status: VerificationStatus = VerificationStatus.UNVERIFIED
    deployment_tx_hash: str | None = None
    funding_tx_hash: str | None = None
    deployed_at: int | None = None
    funded_at: int | None = None
    funded_amount: int | None = None
    verified_at: int | None = None
    rescue_delay: int | None = None
    observed_events: list[ChainEvent] = field(default_factory=list)
    last_known_balance: int | None = None
    outcome: Outcome | None = None
    revealed_secret: str | None = None
    failure_code: str | None = None
    failure_reason: str | None = None

    @property
    def is_deployed(self) -> bool:
        return self.contract_address != PENDING_ADDRESS and self.deployed_at is not None

    @property
    def is_failed(self) -> bool:
        return self.status is LegStatus.FAILED

    @property
    def is_settled(self) -> bool:
        """Withdrawn or cancelled on-chain."""
        return self.outcome is not None


@dataclass
class SwapRecord:
    """A two-leg swap and everything known about it."""

    swap_id: str
    hash_of_secret: str
    source_leg: EscrowRecord
    destination_leg: EscrowRecord
    secret: str | None = None
    revealed_secret: str | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def leg(self, role: LegRole) -> EscrowRecord:
        return self.source_leg if role is LegRole.SOURCE else self.destination_leg

    def set_leg(self, role: LegRole, record: EscrowRecord) -> None:
        if role is LegRole.SOURCE:
            self.source_leg = record
        else:
            self.destination_leg = record

    @property
    def known_secret(self) -> str | None:
        return self.secret or self.revealed_secret

    @property
    def is_terminal(self) -> bool:
        legs = (self.source_leg, self.destination_leg)
        if any(leg.is_failed for leg in legs):
            return True
        return all(leg.is_settled for leg in legs)
