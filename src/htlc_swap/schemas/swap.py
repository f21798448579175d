"""Pydantic schemas for persisted swaps and the read-only status view.

These schemas define the stored JSON shape of a SwapRecord and the view
handed to monitoring callers. They are kept apart from the domain
dataclasses so the domain layer stays free of pydantic.

Amounts are Python ints in memory and decimal strings in JSON, so a swap
record survives any JSON consumer without being coerced to floating point.
"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer

from htlc_swap.domain.enums import (
    ChainEventKind,
    DeploymentStatus,
    FundingStatus,
    LegRole,
    LegStatus,
    Outcome,
    VerificationStatus,
)
from htlc_swap.domain.models import (
    CancellationPayload,
    ChainEvent,
    EscrowImmutables,
    EscrowRecord,
    RescuePayload,
    SwapRecord,
    WithdrawalPayload,
)
from htlc_swap.domain.timelocks import TimelockSchedule

Amount = Annotated[int, PlainSerializer(str, return_type=str, when_used="json")]

# ---------------------------------------------------------------------------
# Persisted Swap Schemas
# ---------------------------------------------------------------------------


class TimelockScheduleSchema(BaseModel):
    """Timelock offsets in seconds from deployment."""

    model_config = ConfigDict(from_attributes=True)

    withdrawal_start: int = Field(..., ge=0)
    public_withdrawal_start: int = Field(..., ge=0)
    cancellation_start: int = Field(..., ge=0)
    public_cancellation_start: int = Field(..., ge=0)

    def to_domain(self) -> TimelockSchedule:
        return TimelockSchedule(
            withdrawal_start=self.withdrawal_start,
            public_withdrawal_start=self.public_withdrawal_start,
            cancellation_start=self.cancellation_start,
            public_cancellation_start=self.public_cancellation_start,
        )


class EscrowImmutablesSchema(BaseModel):
    """Deployment parameters of one escrow."""

    model_config = ConfigDict(from_attributes=True)

    hash_of_secret: str
    maker: str
    taker: str
    asset: str
    amount: Amount
    safety_deposit: Amount
    schedule: TimelockScheduleSchema
    source_chain_id: int
    destination_chain_id: int
    order_hash: str

    def to_domain(self) -> EscrowImmutables:
        return EscrowImmutables(
            hash_of_secret=self.hash_of_secret,
            maker=self.maker,
            taker=self.taker,
            asset=self.asset,
            amount=self.amount,
            safety_deposit=self.safety_deposit,
            schedule=self.schedule.to_domain(),
            source_chain_id=self.source_chain_id,
            destination_chain_id=self.destination_chain_id,
            order_hash=self.order_hash,
        )


class WithdrawalPayloadSchema(BaseModel):
    kind: Literal["Withdrawal"] = "Withdrawal"
    secret: str


class CancellationPayloadSchema(BaseModel):
    kind: Literal["EscrowCancelled"] = "EscrowCancelled"


class RescuePayloadSchema(BaseModel):
    kind: Literal["FundsRescued"] = "FundsRescued"
    token: str
    amount: Amount


EventPayloadSchema = Annotated[
    WithdrawalPayloadSchema | CancellationPayloadSchema | RescuePayloadSchema,
    Field(discriminator="kind"),
]


class ChainEventSchema(BaseModel):
    """One observed escrow contract event."""

    kind: ChainEventKind
    block_number: int
    timestamp: int
    tx_hash: str
    payload: EventPayloadSchema

    @classmethod
    def from_domain(cls, event: ChainEvent) -> ChainEventSchema:
        payload = event.payload
        if isinstance(payload, WithdrawalPayload):
            payload_schema: EventPayloadSchema = WithdrawalPayloadSchema(secret=payload.secret)
        elif isinstance(payload, RescuePayload):
            payload_schema = RescuePayloadSchema(token=payload.token, amount=payload.amount)
        else:
            payload_schema = CancellationPayloadSchema()
        return cls(
            kind=event.kind,
            block_number=event.block_number,
            timestamp=event.timestamp,
            tx_hash=event.tx_hash,
            payload=payload_schema,
        )

    def to_domain(self) -> ChainEvent:
        payload = self.payload
        if isinstance(payload, WithdrawalPayloadSchema):
            domain_payload = WithdrawalPayload(secret=payload.secret)
        elif isinstance(payload, RescuePayloadSchema):
            domain_payload = RescuePayload(token=payload.token, amount=payload.amount)
        else:
            domain_payload = CancellationPayload()
        return ChainEvent(
            kind=self.kind,
            block_number=self.block_number,
            timestamp=self.timestamp,
            tx_hash=self.tx_hash,
            payload=domain_payload,
        )


class EscrowRecordSchema(BaseModel):
    """Stored state of one escrow leg."""

    role: LegRole
    immutables: EscrowImmutablesSchema
    contract_address: str
    status: LegStatus
    deployment_status: DeploymentStatus
    funding_status: FundingStatus
    verification_status: VerificationStatus
    deployment_tx_hash: str | None = None
    funding_tx_hash: str | None = None
    deployed_at: int | None = None
    funded_at: int | None = None
    funded_amount: Amount | None = None
    verified_at: int | None = None
    rescue_delay: int | None = None
    observed_events: list[ChainEventSchema] = Field(default_factory=list)
    last_known_balance: Amount | None = None
    outcome: Outcome | None = None
    revealed_secret: str | None = None
    failure_code: str | None = None
    failure_reason: str | None = None

    @classmethod
    def from_domain(cls, record: EscrowRecord) -> EscrowRecordSchema:
        return cls(
            role=record.role,
            immutables=EscrowImmutablesSchema.model_validate(record.immutables),
            contract_address=record.contract_address,
            status=record.status,
            deployment_status=record.deployment_status,
            funding_status=record.funding_status,
            verification_status=record.verification_status,
            deployment_tx_hash=record.deployment_tx_hash,
            funding_tx_hash=record.funding_tx_hash,
            deployed_at=record.deployed_at,
            funded_at=record.funded_at,
            funded_amount=record.funded_amount,
            verified_at=record.verified_at,
            rescue_delay=record.rescue_delay,
            observed_events=[ChainEventSchema.from_domain(e) for e in record.observed_events],
            last_known_balance=record.last_known_balance,
            outcome=record.outcome,
            revealed_secret=record.revealed_secret,
            failure_code=record.failure_code,
            failure_reason=record.failure_reason,
        )

    def to_domain(self) -> EscrowRecord:
        return EscrowRecord(
            role=self.role,
            immutables=self.immutables.to_domain(),
            contract_address=self.contract_address,
            status=self.status,
            deployment_status=self.deployment_status,
            funding_status=self.funding_status,
            verification_status=self.verification_status,
            deployment_tx_hash=self.deployment_tx_hash,
            funding_tx_hash=self.funding_tx_hash,
            deployed_at=self.deployed_at,
            funded_at=self.funded_at,
            funded_amount=self.funded_amount,
            verified_at=self.verified_at,
            rescue_delay=self.rescue_delay,
            observed_events=[e.to_domain() for e in self.observed_events],
            last_known_balance=self.last_known_balance,
            outcome=self.outcome,
            revealed_secret=self.revealed_secret,
            failure_code=self.failure_code,
            failure_reason=self.failure_reason,
        )


class SwapRecordSchema(BaseModel):
    """Stored form of a whole swap, keyed by swap_id."""

    swap_id: str
    hash_of_secret: str
    secret: str | None = None
    revealed_secret: str | None = None
    created_at: datetime
    source_leg: EscrowRecordSchema
    destination_leg: EscrowRecordSchema

    @classmethod
    def from_domain(cls, swap: SwapRecord) -> SwapRecordSchema:
        return cls(
            swap_id=swap.swap_id,
            hash_of_secret=swap.hash_of_secret,
            secret=swap.secret,
            revealed_secret=swap.revealed_secret,
            created_at=swap.created_at,
            source_leg=EscrowRecordSchema.from_domain(swap.source_leg),
            destination_leg=EscrowRecordSchema.from_domain(swap.destination_leg),
        )

    def to_domain(self) -> SwapRecord:
        return SwapRecord(
            swap_id=self.swap_id,
            hash_of_secret=self.hash_of_secret,
            secret=self.secret,
            revealed_secret=self.revealed_secret,
            created_at=self.created_at,
            source_leg=self.source_leg.to_domain(),
            destination_leg=self.destination_leg.to_domain(),
        )


def dump_swap(swap: SwapRecord) -> str:
    """Serialize a swap to its stored JSON form."""
    return SwapRecordSchema.from_domain(swap).model_dump_json()


def load_swap(data: str | bytes) -> SwapRecord:
    """Rebuild a swap from its stored JSON form."""
    return SwapRecordSchema.model_validate_json(data).to_domain()


# ---------------------------------------------------------------------------
# Status View Schemas
# ---------------------------------------------------------------------------


class LegStatusView(BaseModel):
    """One leg as shown to monitoring callers."""

    role: str
    contract_address: str
    status: str
    deployment_status: str
    funding_status: str
    verification_status: str
    outcome: str | None
    phase: str
    time_remaining: int | None = Field(
        description="Seconds until the next phase; null when unbounded or not deployed"
    )
    next_phase: str
    last_known_balance: Amount | None
    failure_code: str | None
    failure_reason: str | None


class SwapStatusView(BaseModel):
    """Consistent snapshot of both legs of a swap."""

    swap_id: str
    hash_of_secret: str
    secret_revealed: bool
    is_terminal: bool
    source: LegStatusView
    destination: LegStatusView
