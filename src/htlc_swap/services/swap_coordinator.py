"""Swap Coordinator — owns both legs of every swap it creates or loads.

This is the application layer that coordinates between:
    - Phase engine (what is allowed now)
    - Lifecycle service (deploy -> fund -> verify per leg)
    - Event reconciler (withdrawals, cancellations, rescues)
    - Swap repository (optional persistence after every change)

Concurrency: every leg has its own asyncio.Lock. All writes to a leg happen
under its lock and replace the leg with a finished copy in one step, so a
reader never sees a half-applied transition. Different legs never share a
lock, so the source and destination legs can be driven at the same time.
A swap's locks are dropped once the swap is terminal and they are idle.
"""

from __future__ import annotations

import asyncio
import copy
import uuid
from collections import defaultdict
from contextlib import AsyncExitStack, asynccontextmanager
from dataclasses import replace
from typing import TYPE_CHECKING

from htlc_swap.domain.enums import Action, ChainEventKind, LegRole, LegStatus
from htlc_swap.domain.exceptions import (
    GatewayNotConfiguredError,
    InvalidOrder,
    ProtocolViolation,
    TerminalStateConflict,
)
from htlc_swap.domain.hashlock import (
    derive_order_hash,
    hash_secret,
    is_valid_address,
    is_valid_secret,
    secret_matches,
)
from htlc_swap.domain.models import EscrowImmutables, EscrowRecord, SwapRecord, WithdrawalPayload
from htlc_swap.domain.phase_engine import allowed_actions, compute_phase, pending_phase
from htlc_swap.logging_config import get_logger, swap_context
from htlc_swap.schemas.swap import LegStatusView, SwapStatusView
from htlc_swap.services.lifecycle_service import EscrowLifecycleService, gateway_call
from htlc_swap.services.reconciler import decode_event, reconcile_events

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Iterable, Mapping

    from htlc_swap.config import Settings
    from htlc_swap.domain.enums import Actor
    from htlc_swap.domain.gateway_protocol import ChainGateway, RawChainEvent
    from htlc_swap.domain.models import ChainEvent, SwapOrder
    from htlc_swap.domain.phase_engine import PhaseInfo
    from htlc_swap.domain.timelocks import TimelockSchedule
    from htlc_swap.infrastructure.swap_store import SwapRepository

logger = get_logger(__name__)

_ADVANCE_DONE = (LegStatus.VERIFIED, LegStatus.FAILED)


class SwapCoordinator:
    """Creates swaps and drives, reconciles and reports both of their legs."""

    def __init__(
        self,
        settings: Settings,
        gateways: Mapping[int, ChainGateway],
        repository: SwapRepository | None = None,
    ) -> None:
        """Initialize the coordinator.

        Args:
            settings: Configuration (timelocks, gas ceilings, timeouts).
            gateways: Chain gateway per chain id.
            repository: Optional store; when given, every change is saved.
        """
        self._settings = settings
        self._gateways = dict(gateways)
        self._repository = repository
        self._lifecycle = EscrowLifecycleService(settings)
        self._locks: defaultdict[tuple[str, LegRole], asyncio.Lock] = defaultdict(asyncio.Lock)

    # ------------------------------------------------------------------
    # Swap Creation
    # ------------------------------------------------------------------

    def create_swap(
        self,
        order: SwapOrder,
        secret: str,
        source_schedule: TimelockSchedule | None = None,
        destination_schedule: TimelockSchedule | None = None,
    ) -> SwapRecord:
        """Build a swap with both legs PENDING.

        Schedules default to the configured ones; both are validated when
        constructed. Raises InvalidOrder for unusable order terms.
        """
        self._validate_order(order)
        if not is_valid_secret(secret):
            raise InvalidOrder("Secret must be 32 bytes of 0x-prefixed hex", field="secret")

        src_schedule = source_schedule or self._settings.source_schedule
        dst_schedule = destination_schedule or self._settings.destination_schedule
        if (
            self._settings.enforce_destination_precedence
            and dst_schedule.cancellation_start >= src_schedule.cancellation_start
        ):
            raise InvalidOrder(
                "Destination cancellation must open before source cancellation "
                f"({dst_schedule.cancellation_start}s >= {src_schedule.cancellation_start}s)",
                field="schedule",
            )

        hash_of_secret = hash_secret(secret)
        order_hash = order.order_hash or derive_order_hash(order.terms())
        source = EscrowImmutables(
            hash_of_secret=hash_of_secret,
            maker=order.maker,
            taker=order.taker,
            asset=order.maker_asset,
            amount=order.making_amount,
            safety_deposit=order.src_safety_deposit,
            schedule=src_schedule,
            source_chain_id=order.src_chain_id,
            destination_chain_id=order.dst_chain_id,
            order_hash=order_hash,
        )
        destination = EscrowImmutables(
            hash_of_secret=hash_of_secret,
            maker=order.dst_maker or order.maker,
            taker=order.dst_taker or order.taker,
            asset=order.taker_asset,
            amount=order.taking_amount,
            safety_deposit=order.dst_safety_deposit,
            schedule=dst_schedule,
            source_chain_id=order.src_chain_id,
            destination_chain_id=order.dst_chain_id,
            order_hash=order_hash,
        )

        swap = SwapRecord(
            swap_id=str(uuid.uuid4()),
            hash_of_secret=hash_of_secret,
            source_leg=EscrowRecord(role=LegRole.SOURCE, immutables=source),
            destination_leg=EscrowRecord(role=LegRole.DESTINATION, immutables=destination),
            secret=secret,
        )
        logger.info(
            "swap.created",
            swap_id=swap.swap_id,
            order_hash=order_hash,
            src_chain=order.src_chain_id,
            dst_chain=order.dst_chain_id,
        )
        return swap

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def advance_leg(
        self,
        swap: SwapRecord,
        role: LegRole,
        timeout: float | None = None,
        funding_amount: int | None = None,
    ) -> EscrowRecord:
        """Run the leg's next lifecycle step.

        No-op once the leg is VERIFIED or FAILED: the current record is
        returned and the gateway is not touched.
        """
        async with self._leg_lock(swap, role):
            record = swap.leg(role)
            if record.status in _ADVANCE_DONE:
                return record
            return await self._step(swap, role, record, timeout, funding_amount)

    async def deploy_leg(
        self, swap: SwapRecord, role: LegRole, timeout: float | None = None
    ) -> EscrowRecord:
        """Deploy the leg unless it is already past PENDING."""
        return await self._advance_from(swap, role, LegStatus.PENDING, timeout)

    async def fund_leg(
        self,
        swap: SwapRecord,
        role: LegRole,
        timeout: float | None = None,
        amount: int | None = None,
    ) -> EscrowRecord:
        """Fund the leg if it is DEPLOYED; otherwise return it unchanged."""
        return await self._advance_from(swap, role, LegStatus.DEPLOYED, timeout, amount)

    async def verify_leg(
        self, swap: SwapRecord, role: LegRole, timeout: float | None = None
    ) -> EscrowRecord:
        """Verify the leg if it is FUNDED; otherwise return it unchanged."""
        return await self._advance_from(swap, role, LegStatus.FUNDED, timeout)

    async def _advance_from(
        self,
        swap: SwapRecord,
        role: LegRole,
        expected: LegStatus,
        timeout: float | None,
        amount: int | None = None,
    ) -> EscrowRecord:
        async with self._leg_lock(swap, role):
            record = swap.leg(role)
            if record.status is not expected:
                return record
            return await self._step(swap, role, record, timeout, amount)

    async def _step(
        self,
        swap: SwapRecord,
        role: LegRole,
        record: EscrowRecord,
        timeout: float | None,
        funding_amount: int | None,
    ) -> EscrowRecord:
        """Run one lifecycle step. Caller holds the leg lock."""
        gateway = self._gateway_for(record)
        timeout = self._timeout(timeout)

        with swap_context(swap.swap_id, role=role.value):
            if record.status is LegStatus.PENDING:
                outcome = await self._lifecycle.deploy(record, gateway, timeout)
            elif record.status is LegStatus.DEPLOYED:
                outcome = await self._lifecycle.fund(record, gateway, timeout, funding_amount)
            else:
                outcome = await self._lifecycle.verify(record, gateway, timeout)

            await self._commit(swap, role, outcome.record)
            if outcome.error is not None:
                raise outcome.error
            return outcome.record

    # ------------------------------------------------------------------
    # Phases and actions
    # ------------------------------------------------------------------

    def current_phase(self, swap: SwapRecord, role: LegRole, now: int) -> PhaseInfo:
        """Phase of a leg at `now`, measured from the leg's own deployment epoch."""
        record = swap.leg(role)
        if not record.is_deployed:
            return pending_phase()
        return compute_phase(record.immutables.schedule, record.deployed_at, now)

    async def refresh_phase(
        self, swap: SwapRecord, role: LegRole, timeout: float | None = None
    ) -> PhaseInfo:
        """current_phase using the leg chain's latest block time."""
        record = swap.leg(role)
        if not record.is_deployed:
            return pending_phase()
        gateway = self._gateway_for(record)
        now = await gateway_call(
            gateway.get_current_time(), self._timeout(timeout), "get_current_time"
        )
        return self.current_phase(swap, role, now)

    def next_actions(
        self, swap: SwapRecord, actor: Actor, now: int
    ) -> dict[LegRole, frozenset[Action]]:
        """Actions `actor` can take on each leg right now.

        A leg offers nothing until it is VERIFIED, and nothing once it failed
        or settled on-chain. Withdrawal is only offered when the secret is
        known to this coordinator.
        """
        result: dict[LegRole, frozenset[Action]] = {}
        for role in LegRole:
            record = swap.leg(role)
            if record.status is not LegStatus.VERIFIED or record.is_settled:
                result[role] = frozenset()
                continue
            actions = set(allowed_actions(self.current_phase(swap, role, now).phase, actor))
            if self.secret_for(swap, role) is None:
                actions.discard(Action.WITHDRAW_WITH_SECRET)
            result[role] = frozenset(actions)
        return result

    def secret_for(self, swap: SwapRecord, role: LegRole) -> str | None:
        """Secret usable for withdrawing on `role`'s leg, if known.

        Includes a secret revealed on-chain by a withdrawal on the other leg.
        """
        return swap.known_secret or swap.leg(role.counterpart).revealed_secret

    # ------------------------------------------------------------------
    # Event reconciliation
    # ------------------------------------------------------------------

    async def reconcile(
        self, swap: SwapRecord, role: LegRole, events: Iterable[ChainEvent]
    ) -> EscrowRecord:
        """Apply observed chain events to a leg.

        Raises:
            ProtocolViolation: A withdrawal revealed a secret that does not
                hash to the swap's hashlock. The leg is marked FAILED.
            TerminalStateConflict: Both a withdrawal and a cancellation were
                observed. The leg is marked FAILED.
        """
        events = list(events)
        async with self._leg_lock(swap, role):
            with swap_context(swap.swap_id, role=role.value):
                return await self._reconcile_locked(swap, role, events)

    async def _reconcile_locked(
        self,
        swap: SwapRecord,
        role: LegRole,
        events: Iterable[ChainEvent] = (),
        raw_events: Iterable[RawChainEvent] = (),
        balance: int | None = None,
    ) -> EscrowRecord:
        """Validate, fold and commit events in one write. Caller holds the leg lock."""
        record = swap.leg(role)
        try:
            events = [*events, *(decode_event(raw) for raw in raw_events)]
            for event in events:
                payload = event.payload
                if isinstance(payload, WithdrawalPayload) and not secret_matches(
                    payload.secret, swap.hash_of_secret
                ):
                    raise ProtocolViolation(
                        f"Withdrawal in tx {event.tx_hash} revealed a secret that does "
                        f"not match hashlock {swap.hash_of_secret}",
                        tx_hash=event.tx_hash,
                    )
            updated = reconcile_events(record, events)
        except (ProtocolViolation, TerminalStateConflict) as exc:
            logger.error("leg.reconcile_failed", code=exc.code, reason=exc.message)
            if not record.is_failed:
                await self._commit(swap, role, self._lifecycle.fail(record, exc.code, exc.message))
            raise

        if updated.revealed_secret and swap.revealed_secret is None:
            swap.revealed_secret = updated.revealed_secret
            logger.info(
                "swap.secret_revealed",
                observed_on=role.value,
                usable_on=role.counterpart.value,
            )
        if updated.outcome is not None and updated.outcome != record.outcome:
            logger.info("leg.settled", outcome=updated.outcome.value)
        if balance is not None:
            updated = replace(updated, last_known_balance=balance)

        await self._commit(swap, role, updated)
        return updated

    async def sync_events(
        self,
        swap: SwapRecord,
        role: LegRole,
        from_block: int | None = None,
        to_block: int | None = None,
        timeout: float | None = None,
    ) -> EscrowRecord:
        """Pull withdrawal, cancellation and rescue logs for a leg and reconcile them.

        Defaults to the last `event_lookback_blocks` blocks. The new events and
        the refreshed balance are committed together.

        Raises:
            ProtocolViolation: A log is malformed or reveals a wrong secret.
                The leg is marked FAILED.
            TerminalStateConflict: Contradictory terminal events were seen.
        """
        record = swap.leg(role)
        if not record.is_deployed:
            return record
        gateway = self._gateway_for(record)
        timeout = self._timeout(timeout)
        if to_block is None:
            to_block = await gateway_call(gateway.get_block_number(), timeout, "get_block_number")
        if from_block is None:
            from_block = max(0, to_block - self._settings.event_lookback_blocks)

        raw_events = []
        for kind in ChainEventKind:
            raw_events.extend(
                await gateway_call(
                    gateway.query_events(record.contract_address, kind.value, from_block, to_block),
                    timeout,
                    f"query_events:{kind.value}",
                )
            )
        raw_events.sort(key=lambda e: (e.block_number, e.log_index))
        balance = await gateway_call(
            gateway.get_balance(record.contract_address), timeout, "get_balance"
        )

        logger.debug(
            "leg.events_fetched",
            swap_id=swap.swap_id,
            role=role.value,
            from_block=from_block,
            to_block=to_block,
            count=len(raw_events),
        )
        async with self._leg_lock(swap, role):
            with swap_context(swap.swap_id, role=role.value):
                return await self._reconcile_locked(
                    swap, role, raw_events=raw_events, balance=balance
                )

    # ------------------------------------------------------------------
    # Read helpers
    # ------------------------------------------------------------------

    async def snapshot(self, swap: SwapRecord) -> SwapRecord:
        """Deep copy of the swap taken while neither leg is mid-transition."""
        async with AsyncExitStack() as stack:
            for role in LegRole:
                await stack.enter_async_context(self._leg_lock(swap, role))
            return copy.deepcopy(swap)

    async def status_view(self, swap: SwapRecord, now: int) -> SwapStatusView:
        """Consistent combined view of both legs for display or monitoring."""
        snap = await self.snapshot(swap)
        legs = {}
        for role in LegRole:
            record = snap.leg(role)
            phase = self.current_phase(snap, role, now)
            legs[role.value] = LegStatusView(
                role=role.value,
                contract_address=record.contract_address,
                status=record.status.value,
                deployment_status=record.deployment_status.value,
                funding_status=record.funding_status.value,
                verification_status=record.verification_status.value,
                outcome=record.outcome.value if record.outcome else None,
                phase=phase.phase.value,
                time_remaining=phase.time_remaining,
                next_phase=phase.next_phase.value,
                last_known_balance=record.last_known_balance,
                failure_code=record.failure_code,
                failure_reason=record.failure_reason,
            )
        return SwapStatusView(
            swap_id=snap.swap_id,
            hash_of_secret=snap.hash_of_secret,
            secret_revealed=snap.revealed_secret is not None,
            is_terminal=snap.is_terminal,
            source=legs[LegRole.SOURCE.value],
            destination=legs[LegRole.DESTINATION.value],
        )

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _validate_order(self, order: SwapOrder) -> None:
        for name in ("making_amount", "taking_amount"):
            value = getattr(order, name)
            if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
                raise InvalidOrder(f"{name} must be a positive integer, got {value!r}", field=name)
        for name in ("src_safety_deposit", "dst_safety_deposit"):
            value = getattr(order, name)
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                raise InvalidOrder(
                    f"{name} must be a non-negative integer, got {value!r}", field=name
                )
        if order.src_chain_id == order.dst_chain_id:
            raise InvalidOrder(
                f"Source and destination chain ids must differ (both {order.src_chain_id})",
                field="dst_chain_id",
            )
        for name in ("maker", "taker", "maker_asset", "taker_asset", "dst_maker", "dst_taker"):
            value = getattr(order, name)
            if value is None and name.startswith("dst_"):
                continue
            if not is_valid_address(value):
                raise InvalidOrder(f"{name} is not a valid address: {value!r}", field=name)

    def _gateway_for(self, record: EscrowRecord) -> ChainGateway:
        immutables = record.immutables
        chain_id = (
            immutables.source_chain_id
            if record.role is LegRole.SOURCE
            else immutables.destination_chain_id
        )
        try:
            return self._gateways[chain_id]
        except KeyError as err:
            raise GatewayNotConfiguredError(chain_id) from err

    @asynccontextmanager
    async def _leg_lock(self, swap: SwapRecord, role: LegRole) -> AsyncIterator[None]:
        try:
            async with self._locks[(swap.swap_id, role)]:
                yield
        finally:
            if swap.is_terminal:
                self._release_locks(swap.swap_id)

    def _release_locks(self, swap_id: str) -> None:
        for role in LegRole:
            lock = self._locks.get((swap_id, role))
            if lock is not None and not lock.locked():
                del self._locks[(swap_id, role)]

    def _timeout(self, timeout: float | None) -> float:
        return self._settings.gateway_timeout_seconds if timeout is None else timeout

    async def _commit(self, swap: SwapRecord, role: LegRole, record: EscrowRecord) -> None:
        """Install the finished record and persist the swap."""
        swap.set_leg(role, record)
        if self._repository is not None:
            try:
                await self._repository.save(swap)
            except Exception:
                logger.exception("swap.persist_failed", swap_id=swap.swap_id, role=role.value)
                raise
