"""Event Reconciler — folds on-chain escrow events into an EscrowRecord.

    reconcile_events(record, events) -> updated copy of record

The input record is never modified; the coordinator decides whether to apply
the returned copy. Rules:
    - Withdrawal     sets the WITHDRAWN outcome and stores the revealed secret.
    - EscrowCancelled sets the CANCELLED outcome.
    - FundsRescued   is history only; it does not change the outcome.
    - An event already in the history (same kind and tx hash) is skipped.
    - A second, different terminal event raises TerminalStateConflict and
      nothing from the batch is applied.
"""

from __future__ import annotations

from dataclasses import replace
from typing import TYPE_CHECKING, Any

from eth_utils import to_hex

from htlc_swap.domain.enums import ChainEventKind, Outcome
from htlc_swap.domain.exceptions import ProtocolViolation, TerminalStateConflict
from htlc_swap.domain.models import (
    CancellationPayload,
    ChainEvent,
    RescuePayload,
    WithdrawalPayload,
)
from htlc_swap.logging_config import get_logger

if TYPE_CHECKING:
    from collections.abc import Iterable

    from htlc_swap.domain.gateway_protocol import RawChainEvent
    from htlc_swap.domain.models import EscrowRecord

logger = get_logger(__name__)

_OUTCOME_FOR_KIND = {
    ChainEventKind.WITHDRAWAL: Outcome.WITHDRAWN,
    ChainEventKind.CANCELLATION: Outcome.CANCELLED,
}


def decode_event(raw: RawChainEvent) -> ChainEvent:
    """Turn a raw gateway log entry into a typed ChainEvent.

    A bytes32 secret, as EVM log decoders return it, becomes 0x-prefixed hex.

    Raises:
        ProtocolViolation: For an event name the escrow contracts do not
            emit, or missing or malformed arguments.
    """
    try:
        kind = ChainEventKind(raw.name)
    except ValueError as err:
        raise ProtocolViolation(
            f"Unknown escrow event '{raw.name}' in tx {raw.tx_hash}", tx_hash=raw.tx_hash
        ) from err

    try:
        if kind is ChainEventKind.WITHDRAWAL:
            payload = WithdrawalPayload(secret=_as_hex(raw.args["secret"]))
        elif kind is ChainEventKind.CANCELLATION:
            payload = CancellationPayload()
        else:
            payload = RescuePayload(token=str(raw.args["token"]), amount=int(raw.args["amount"]))
    except KeyError as err:
        raise ProtocolViolation(
            f"{raw.name} event in tx {raw.tx_hash} is missing {err}", tx_hash=raw.tx_hash
        ) from err
    except (TypeError, ValueError) as err:
        raise ProtocolViolation(
            f"{raw.name} event in tx {raw.tx_hash} has a malformed argument: {err}",
            tx_hash=raw.tx_hash,
        ) from err

    return ChainEvent(
        kind=kind,
        block_number=raw.block_number,
        timestamp=raw.timestamp,
        tx_hash=raw.tx_hash,
        payload=payload,
    )


def _as_hex(value: Any) -> str:
    if isinstance(value, (bytes, bytearray)):
        return to_hex(value)
    return str(value)


def reconcile_events(record: EscrowRecord, events: Iterable[ChainEvent]) -> EscrowRecord:
    """Fold `events` into a copy of `record`.

    Raises:
        TerminalStateConflict: If the batch (or the batch plus history)
            contains both a withdrawal and a cancellation, or two distinct
            withdrawals or cancellations.
    """
    history = list(record.observed_events)
    seen = {event.identity for event in history}
    outcome = record.outcome
    outcome_tx = next(
        (e.tx_hash for e in history if _OUTCOME_FOR_KIND.get(e.kind) is outcome),
        None,
    )
    revealed_secret = record.revealed_secret
    applied = 0

    for event in sorted(events, key=lambda e: (e.block_number, e.timestamp)):
        if event.identity in seen:
            continue
        seen.add(event.identity)

        new_outcome = _OUTCOME_FOR_KIND.get(event.kind)
        if new_outcome is not None:
            if outcome is not None:
                raise TerminalStateConflict(
                    f"Escrow {record.contract_address} already {outcome.value} "
                    f"(tx {outcome_tx}) but observed {event.kind.value} in tx {event.tx_hash}",
                    tx_hashes=tuple(h for h in (outcome_tx, event.tx_hash) if h),
                )
            outcome = new_outcome
            outcome_tx = event.tx_hash
            if isinstance(event.payload, WithdrawalPayload):
                revealed_secret = event.payload.secret

        history.append(event)
        applied += 1

    if applied:
        logger.debug(
            "reconciler.applied",
            role=record.role.value,
            address=record.contract_address,
            applied=applied,
            outcome=outcome.value if outcome else None,
        )

    return replace(
        record,
        observed_events=history,
        outcome=outcome,
        revealed_secret=revealed_secret,
    )
