"""Tests for SwapCoordinator: creation, lifecycle, phases, reconciliation."""

from __future__ import annotations

import asyncio
from dataclasses import replace

import pytest

from htlc_swap.config import Settings
from htlc_swap.domain.enums import (
    Action,
    Actor,
    ChainEventKind,
    LegRole,
    LegStatus,
    Outcome,
    Phase,
)
from htlc_swap.domain.exceptions import (
    GatewayNotConfiguredError,
    GatewayReverted,
    GatewayTransient,
    InvalidOrder,
    InvalidSchedule,
    ProtocolViolation,
    StateMismatch,
    TerminalStateConflict,
)
from htlc_swap.domain.hashlock import hash_secret
from htlc_swap.domain.models import (
    CancellationPayload,
    ChainEvent,
    WithdrawalPayload,
)
from htlc_swap.domain.timelocks import TimelockSchedule
from htlc_swap.services.swap_coordinator import SwapCoordinator

SOURCE = LegRole.SOURCE
DESTINATION = LegRole.DESTINATION
WRONG_SECRET = "0x" + "22" * 32


def withdrawal(secret: str, tx: str = "0xw1", block: int = 50) -> ChainEvent:
    return ChainEvent(ChainEventKind.WITHDRAWAL, block, 0, tx, WithdrawalPayload(secret))


def cancellation(tx: str = "0xc1", block: int = 60) -> ChainEvent:
    return ChainEvent(ChainEventKind.CANCELLATION, block, 0, tx, CancellationPayload())


class RecordingRepository:
    """Stands in for SwapRepository; keeps every saved status pair."""

    def __init__(self) -> None:
        self.saved: list[tuple[LegStatus, LegStatus]] = []

    async def save(self, swap) -> None:
        self.saved.append((swap.source_leg.status, swap.destination_leg.status))


class LegHistoryRepository:
    """Keeps (event count, balance) of one leg at every save."""

    def __init__(self, role: LegRole) -> None:
        self.role = role
        self.saved: list[tuple[int, int | None]] = []

    async def save(self, swap) -> None:
        leg = swap.leg(self.role)
        self.saved.append((len(leg.observed_events), leg.last_known_balance))


# ---------------------------------------------------------------------------
# Swap creation
# ---------------------------------------------------------------------------


class TestCreateSwap:
    def test_creates_two_pending_legs(self, swap, order, secret, settings) -> None:
        assert swap.hash_of_secret == hash_secret(secret)
        assert swap.source_leg.status is LegStatus.PENDING
        assert swap.destination_leg.status is LegStatus.PENDING

        src = swap.source_leg.immutables
        dst = swap.destination_leg.immutables
        assert src.amount == order.making_amount
        assert src.asset == order.maker_asset
        assert dst.amount == order.taking_amount
        assert dst.asset == order.taker_asset
        assert src.order_hash == dst.order_hash
        assert src.order_hash.startswith("0x")
        assert src.schedule == settings.source_schedule
        assert dst.schedule == settings.destination_schedule

    def test_swap_ids_unique(self, coordinator, order, secret) -> None:
        assert coordinator.create_swap(order, secret).swap_id != coordinator.create_swap(
            order, secret
        ).swap_id

    def test_explicit_order_hash_kept(self, coordinator, order, secret) -> None:
        swap = coordinator.create_swap(replace(order, order_hash="0xfeed"), secret)
        assert swap.source_leg.immutables.order_hash == "0xfeed"

    @pytest.mark.parametrize(
        ("field", "value"),
        [
            ("making_amount", 0),
            ("taking_amount", -5),
            ("making_amount", True),
            ("src_safety_deposit", -1),
            ("dst_chain_id", 11155111),
            ("maker", "not-an-address"),
            ("taker_asset", "0x1234"),
            ("dst_taker", "0xnope"),
        ],
    )
    def test_invalid_order(self, coordinator, order, secret, field: str, value) -> None:
        with pytest.raises(InvalidOrder) as exc_info:
            coordinator.create_swap(replace(order, **{field: value}), secret)
        assert exc_info.value.code == "INVALID_ORDER"

    def test_zero_safety_deposit_allowed(self, coordinator, order, secret) -> None:
        coordinator.create_swap(replace(order, src_safety_deposit=0), secret)

    def test_invalid_secret(self, coordinator, order) -> None:
        with pytest.raises(InvalidOrder, match="Secret"):
            coordinator.create_swap(order, "0x1234")

    def test_destination_must_cancel_first(self, coordinator, order, secret) -> None:
        source = TimelockSchedule(60, 120, 300, 600)
        destination = TimelockSchedule(60, 120, 300, 400)
        with pytest.raises(InvalidOrder, match="Destination cancellation"):
            coordinator.create_swap(order, secret, source, destination)

    def test_precedence_check_can_be_disabled(self, order, secret) -> None:
        settings = Settings(_env_file=None, enforce_destination_precedence=False)
        coordinator = SwapCoordinator(settings, gateways={})
        schedule = TimelockSchedule(60, 120, 300, 600)
        swap = coordinator.create_swap(order, secret, schedule, schedule)
        assert swap.destination_leg.immutables.schedule == schedule

    def test_invalid_schedule_never_built(self) -> None:
        with pytest.raises(InvalidSchedule):
            TimelockSchedule(60, 30, 300, 600)


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


class TestAdvanceLeg:
    @pytest.mark.asyncio
    async def test_steps_to_verified(self, coordinator, swap) -> None:
        statuses = []
        for _ in range(3):
            record = await coordinator.advance_leg(swap, SOURCE)
            statuses.append(record.status)
        assert statuses == [LegStatus.DEPLOYED, LegStatus.FUNDED, LegStatus.VERIFIED]
        assert swap.source_leg.status is LegStatus.VERIFIED
        assert swap.destination_leg.status is LegStatus.PENDING

    @pytest.mark.asyncio
    async def test_verified_leg_is_noop(
        self, coordinator, swap, source_gateway, verify_both_legs
    ) -> None:
        await verify_both_legs(swap)
        before = swap.source_leg
        calls = sum(source_gateway.calls.values())

        after = await coordinator.advance_leg(swap, SOURCE)

        assert after is before
        assert sum(source_gateway.calls.values()) == calls

    @pytest.mark.asyncio
    async def test_concurrent_deploys_deploy_once(self, coordinator, swap, source_gateway) -> None:
        first, second = await asyncio.gather(
            coordinator.deploy_leg(swap, SOURCE),
            coordinator.deploy_leg(swap, SOURCE),
        )
        assert source_gateway.calls["deploy"] == 1
        assert first.contract_address == second.contract_address

    @pytest.mark.asyncio
    async def test_legs_advance_independently(
        self, coordinator, swap, source_gateway, destination_gateway
    ) -> None:
        await asyncio.gather(
            coordinator.advance_leg(swap, SOURCE),
            coordinator.advance_leg(swap, DESTINATION),
        )
        assert source_gateway.calls["deploy"] == 1
        assert destination_gateway.calls["deploy"] == 1
        assert swap.source_leg.status is swap.destination_leg.status is LegStatus.DEPLOYED

    @pytest.mark.asyncio
    async def test_underfunded_leg_fails_verification(self, coordinator, swap) -> None:
        expected = swap.source_leg.immutables.expected_funding
        await coordinator.deploy_leg(swap, SOURCE)
        await coordinator.fund_leg(swap, SOURCE, amount=expected - 1)
        assert swap.source_leg.status is LegStatus.FUNDED

        with pytest.raises(StateMismatch):
            await coordinator.verify_leg(swap, SOURCE)

        leg = swap.source_leg
        assert leg.status is LegStatus.FAILED
        assert leg.failure_code == "STATE_MISMATCH"
        assert await coordinator.advance_leg(swap, SOURCE) is leg

    @pytest.mark.asyncio
    async def test_transient_deploy_can_be_retried(
        self, coordinator, swap, source_gateway
    ) -> None:
        source_gateway.fail_next("deploy", GatewayTransient("connection reset"))
        with pytest.raises(GatewayTransient):
            await coordinator.advance_leg(swap, SOURCE)
        assert swap.source_leg.status is LegStatus.PENDING

        record = await coordinator.advance_leg(swap, SOURCE)
        assert record.status is LegStatus.DEPLOYED

    @pytest.mark.asyncio
    async def test_slow_gateway_times_out(self, coordinator, swap, source_gateway) -> None:
        source_gateway.set_latency("deploy", 1.0)
        with pytest.raises(GatewayTransient, match="timed out"):
            await coordinator.advance_leg(swap, SOURCE, timeout=0.01)
        assert swap.source_leg.status is LegStatus.PENDING

    @pytest.mark.asyncio
    async def test_missing_gateway(self, settings, swap, source_gateway) -> None:
        coordinator = SwapCoordinator(settings, gateways={11155111: source_gateway})
        with pytest.raises(GatewayNotConfiguredError):
            await coordinator.advance_leg(swap, DESTINATION)

    @pytest.mark.asyncio
    async def test_other_leg_unaffected_by_failure(
        self, coordinator, swap, destination_gateway
    ) -> None:
        destination_gateway.fail_next("deploy", GatewayReverted("bad bytecode"))
        results = await asyncio.gather(
            coordinator.advance_leg(swap, SOURCE),
            coordinator.advance_leg(swap, DESTINATION),
            return_exceptions=True,
        )
        assert isinstance(results[1], GatewayReverted)
        assert swap.destination_leg.status is LegStatus.FAILED
        assert swap.source_leg.status is LegStatus.DEPLOYED

    @pytest.mark.asyncio
    async def test_every_change_is_persisted(self, settings, order, secret, source_gateway) -> None:
        repository = RecordingRepository()
        coordinator = SwapCoordinator(
            settings, gateways={11155111: source_gateway}, repository=repository
        )
        swap = coordinator.create_swap(order, secret)

        await coordinator.advance_leg(swap, SOURCE)
        await coordinator.advance_leg(swap, SOURCE)

        assert [src for src, _ in repository.saved] == [LegStatus.DEPLOYED, LegStatus.FUNDED]


# ---------------------------------------------------------------------------
# Phases and actions
# ---------------------------------------------------------------------------


class TestPhases:
    def test_undeployed_leg(self, coordinator, swap) -> None:
        info = coordinator.current_phase(swap, SOURCE, 10**10)
        assert info.phase is Phase.PENDING_DEPLOYMENT

    @pytest.mark.asyncio
    async def test_each_leg_uses_its_own_schedule(
        self, coordinator, swap, verify_both_legs
    ) -> None:
        await verify_both_legs(swap)
        epoch = swap.destination_leg.deployed_at

        # default offsets: source public withdrawal at 600s, destination at 300s
        assert coordinator.current_phase(swap, SOURCE, epoch + 300).phase is (
            Phase.PRIVATE_WITHDRAWAL
        )
        assert coordinator.current_phase(swap, DESTINATION, epoch + 300).phase is (
            Phase.PUBLIC_WITHDRAWAL
        )

    @pytest.mark.asyncio
    async def test_refresh_phase_uses_chain_time(
        self, coordinator, swap, destination_gateway
    ) -> None:
        await coordinator.deploy_leg(swap, DESTINATION)
        destination_gateway.advance_time(60)
        info = await coordinator.refresh_phase(swap, DESTINATION)
        assert info.phase is Phase.PRIVATE_WITHDRAWAL


class TestNextActions:
    def test_nothing_before_verification(self, coordinator, swap) -> None:
        actions = coordinator.next_actions(swap, Actor.MAKER, 10**10)
        assert actions == {SOURCE: frozenset(), DESTINATION: frozenset()}

    @pytest.mark.asyncio
    async def test_private_withdrawal(self, coordinator, swap, verify_both_legs) -> None:
        await verify_both_legs(swap)
        now = swap.source_leg.deployed_at + 60

        taker = coordinator.next_actions(swap, Actor.TAKER, now)
        third = coordinator.next_actions(swap, Actor.THIRD_PARTY, now)

        assert taker[SOURCE] == frozenset({Action.WITHDRAW_WITH_SECRET})
        assert third[SOURCE] == frozenset()

    @pytest.mark.asyncio
    async def test_withdrawal_needs_known_secret(
        self, coordinator, swap, verify_both_legs
    ) -> None:
        await verify_both_legs(swap)
        swap.secret = None
        now = swap.source_leg.deployed_at + 10_000

        actions = coordinator.next_actions(swap, Actor.MAKER, now)

        assert actions[SOURCE] == frozenset({Action.CANCEL})

    @pytest.mark.asyncio
    async def test_settled_leg_offers_nothing(
        self, coordinator, swap, secret, verify_both_legs
    ) -> None:
        await verify_both_legs(swap)
        await coordinator.reconcile(swap, DESTINATION, [withdrawal(secret)])
        now = swap.destination_leg.deployed_at + 60

        actions = coordinator.next_actions(swap, Actor.MAKER, now)

        assert actions[DESTINATION] == frozenset()
        assert actions[SOURCE] == frozenset({Action.WITHDRAW_WITH_SECRET})


# ---------------------------------------------------------------------------
# Reconciliation
# ---------------------------------------------------------------------------


class TestReconcile:
    @pytest.mark.asyncio
    async def test_withdrawal_reveals_secret_to_other_leg(
        self, coordinator, swap, secret, verify_both_legs
    ) -> None:
        await verify_both_legs(swap)
        swap.secret = None
        assert coordinator.secret_for(swap, SOURCE) is None

        record = await coordinator.reconcile(swap, DESTINATION, [withdrawal(secret)])

        assert record.outcome is Outcome.WITHDRAWN
        assert swap.revealed_secret == secret
        assert coordinator.secret_for(swap, SOURCE) == secret

    @pytest.mark.asyncio
    async def test_reconcile_is_idempotent(
        self, coordinator, swap, secret, verify_both_legs
    ) -> None:
        await verify_both_legs(swap)
        events = [withdrawal(secret)]
        first = await coordinator.reconcile(swap, SOURCE, events)
        second = await coordinator.reconcile(swap, SOURCE, events)
        assert second == first
        assert len(second.observed_events) == 1

    @pytest.mark.asyncio
    async def test_wrong_secret_is_protocol_violation(
        self, coordinator, swap, verify_both_legs
    ) -> None:
        await verify_both_legs(swap)
        with pytest.raises(ProtocolViolation):
            await coordinator.reconcile(swap, SOURCE, [withdrawal(WRONG_SECRET)])

        leg = swap.source_leg
        assert leg.status is LegStatus.FAILED
        assert leg.failure_code == "PROTOCOL_VIOLATION"
        assert leg.outcome is None
        assert swap.revealed_secret is None

    @pytest.mark.asyncio
    async def test_conflicting_events_fail_leg(
        self, coordinator, swap, secret, verify_both_legs
    ) -> None:
        await verify_both_legs(swap)
        with pytest.raises(TerminalStateConflict):
            await coordinator.reconcile(swap, SOURCE, [withdrawal(secret), cancellation()])

        leg = swap.source_leg
        assert leg.status is LegStatus.FAILED
        assert leg.failure_code == "TERMINAL_STATE_CONFLICT"
        assert leg.outcome is None
        assert swap.is_terminal


class TestSyncEvents:
    @pytest.mark.asyncio
    async def test_sync_picks_up_withdrawal(
        self, coordinator, swap, secret, destination_gateway, verify_both_legs
    ) -> None:
        await verify_both_legs(swap)
        address = swap.destination_leg.contract_address
        destination_gateway.emit_withdrawal(address, secret)
        destination_gateway.set_balance(address, 0)

        record = await coordinator.sync_events(swap, DESTINATION)

        assert record.outcome is Outcome.WITHDRAWN
        assert record.last_known_balance == 0
        assert swap.revealed_secret == secret
        assert destination_gateway.calls["query_events"] == 3

    @pytest.mark.asyncio
    async def test_sync_respects_block_range(
        self, coordinator, swap, destination_gateway, verify_both_legs
    ) -> None:
        await verify_both_legs(swap)
        event = destination_gateway.emit_cancellation(swap.destination_leg.contract_address)

        record = await coordinator.sync_events(
            swap, DESTINATION, from_block=event.block_number + 1, to_block=event.block_number + 10
        )

        assert record.outcome is None

    @pytest.mark.asyncio
    async def test_undeployed_leg_skipped(self, coordinator, swap, source_gateway) -> None:
        record = await coordinator.sync_events(swap, SOURCE)
        assert record is swap.source_leg
        assert sum(source_gateway.calls.values()) == 0

    @pytest.mark.asyncio
    async def test_bytes_secret_is_accepted(
        self, coordinator, swap, secret, source_gateway, verify_both_legs
    ) -> None:
        await verify_both_legs(swap)
        address = swap.source_leg.contract_address
        source_gateway.emit_withdrawal(address, bytes.fromhex(secret[2:]), tx_hash="0xgood")

        record = await coordinator.sync_events(swap, SOURCE)

        assert record.status is LegStatus.VERIFIED
        assert record.outcome is Outcome.WITHDRAWN
        assert record.revealed_secret == secret

    @pytest.mark.asyncio
    async def test_malformed_log_fails_leg(
        self, coordinator, swap, source_gateway, verify_both_legs
    ) -> None:
        await verify_both_legs(swap)
        address = swap.source_leg.contract_address
        source_gateway.emit_log(address, ChainEventKind.WITHDRAWAL, {}, tx_hash="0xbad")

        with pytest.raises(ProtocolViolation, match="missing") as exc_info:
            await coordinator.sync_events(swap, SOURCE)

        assert exc_info.value.tx_hash == "0xbad"
        assert swap.source_leg.status is LegStatus.FAILED
        assert swap.source_leg.failure_code == "PROTOCOL_VIOLATION"
        assert swap.destination_leg.status is LegStatus.VERIFIED

    @pytest.mark.asyncio
    async def test_events_and_balance_saved_together(
        self, settings, order, secret, source_gateway, destination_gateway
    ) -> None:
        repository = LegHistoryRepository(DESTINATION)
        coordinator = SwapCoordinator(
            settings,
            gateways={11155111: source_gateway, 314159: destination_gateway},
            repository=repository,
        )
        swap = coordinator.create_swap(order, secret)
        for _ in range(3):
            await coordinator.advance_leg(swap, DESTINATION)
        address = swap.destination_leg.contract_address
        destination_gateway.emit_withdrawal(address, secret)
        destination_gateway.set_balance(address, 0)
        repository.saved.clear()

        await coordinator.sync_events(swap, DESTINATION)

        assert repository.saved == [(1, 0)]


# ---------------------------------------------------------------------------
# Lock lifetime
# ---------------------------------------------------------------------------


class TestLocks:
    @pytest.mark.asyncio
    async def test_locks_dropped_once_swap_is_terminal(
        self, coordinator, swap, secret, verify_both_legs
    ) -> None:
        await verify_both_legs(swap)
        await coordinator.reconcile(swap, SOURCE, [withdrawal(secret)])
        assert not swap.is_terminal
        assert (swap.swap_id, SOURCE) in coordinator._locks

        await coordinator.reconcile(swap, DESTINATION, [withdrawal(secret, tx="0xw2")])
        assert swap.is_terminal
        assert not [key for key in coordinator._locks if key[0] == swap.swap_id]

        await coordinator.snapshot(swap)
        await coordinator.advance_leg(swap, SOURCE)
        assert not [key for key in coordinator._locks if key[0] == swap.swap_id]

    @pytest.mark.asyncio
    async def test_failed_swap_releases_locks(
        self, coordinator, swap, verify_both_legs
    ) -> None:
        await verify_both_legs(swap)
        with pytest.raises(ProtocolViolation):
            await coordinator.reconcile(swap, SOURCE, [withdrawal(WRONG_SECRET)])
        assert swap.is_terminal
        assert not [key for key in coordinator._locks if key[0] == swap.swap_id]


# ---------------------------------------------------------------------------
# Read helpers
# ---------------------------------------------------------------------------


class TestSnapshots:
    @pytest.mark.asyncio
    async def test_snapshot_is_independent(self, coordinator, swap) -> None:
        await coordinator.advance_leg(swap, SOURCE)
        snap = await coordinator.snapshot(swap)

        assert snap == swap
        assert snap.source_leg is not swap.source_leg
        await coordinator.advance_leg(swap, SOURCE)
        assert snap.source_leg.status is LegStatus.DEPLOYED

    @pytest.mark.asyncio
    async def test_status_view(self, coordinator, swap, verify_both_legs) -> None:
        await verify_both_legs(swap)
        now = swap.source_leg.deployed_at

        view = await coordinator.status_view(swap, now)

        assert view.swap_id == swap.swap_id
        assert view.source.status == "VERIFIED"
        assert view.source.phase == "FINALITY"
        assert view.source.time_remaining == 60
        assert not view.secret_revealed
        assert not view.is_terminal
        data = view.model_dump(mode="json")
        assert data["destination"]["last_known_balance"] == str(
            swap.destination_leg.immutables.expected_funding
        )
