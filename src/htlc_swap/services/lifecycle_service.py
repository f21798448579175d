"""Escrow Lifecycle Service — one leg's deploy, fund and verify steps.

This is the layer that talks to a ChainGateway on behalf of a single leg:
    - Domain state machine (transition guard)
    - Chain gateway (deployment, transfer, reads)
    - Resource ceilings and the funding retry policy from Settings

Every step takes the current EscrowRecord and returns a StepOutcome holding
an updated copy. The caller (the SwapCoordinator) commits that copy. A step
that ends the leg returns the FAILED copy together with the error so the
failure is stored before it is raised. A transient gateway error during
deployment or verification leaves the record untouched and is raised as is.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Any

from statemachine.exceptions import TransitionNotAllowed
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_fixed

from htlc_swap.domain.enums import (
    DeploymentStatus,
    FundingStatus,
    LegRole,
    LegStatus,
    VerificationStatus,
)
from htlc_swap.domain.exceptions import (
    GatewayError,
    GatewayReverted,
    GatewayTransient,
    InvalidStateTransitionError,
    StateMismatch,
    SwapError,
)
from htlc_swap.domain.gateway_protocol import ResourceLimits
from htlc_swap.domain.state_machine import validate_transition
from htlc_swap.logging_config import get_logger

if TYPE_CHECKING:
    from collections.abc import Awaitable

    from htlc_swap.config import Settings
    from htlc_swap.domain.gateway_protocol import ChainGateway, TxReceipt
    from htlc_swap.domain.models import EscrowRecord

logger = get_logger(__name__)

FUNDING_ATTEMPTS = 2


@dataclass(frozen=True)
class StepOutcome:
    """Updated record from one lifecycle step, plus the error that ended it, if any."""

    record: EscrowRecord
    error: SwapError | None = None


class EscrowLifecycleService:
    """Drives a single escrow leg through PENDING -> DEPLOYED -> FUNDED -> VERIFIED."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings

    # ------------------------------------------------------------------
    # Deployment
    # ------------------------------------------------------------------

    async def deploy(
        self,
        record: EscrowRecord,
        gateway: ChainGateway,
        timeout: float,
    ) -> StepOutcome:
        """Deploy the escrow contract. A revert fails the leg; never retried here."""
        new_status = self._guard(record, "deployment_confirmed")
        bytecode = (
            self._settings.escrow_src_bytecode
            if record.role is LegRole.SOURCE
            else self._settings.escrow_dst_bytecode
        )
        limits = ResourceLimits(gas_limit=self._settings.deploy_gas_limit)

        try:
            receipt = await gateway_call(
                gateway.deploy(
                    bytecode,
                    record.immutables.constructor_args(),
                    limits,
                    self._settings.required_confirmations,
                ),
                timeout,
                "deploy",
            )
        except GatewayReverted as exc:
            logger.error("leg.deploy_reverted", role=record.role.value, reason=exc.revert_reason)
            return StepOutcome(self.fail(record, exc.code, exc.message), exc)

        logger.info(
            "leg.deployed",
            role=record.role.value,
            address=receipt.address,
            tx_hash=receipt.tx_hash,
            epoch=receipt.timestamp,
        )
        return StepOutcome(
            replace(
                record,
                status=LegStatus(new_status),
                deployment_status=DeploymentStatus.DEPLOYED,
                contract_address=receipt.address,
                deployment_tx_hash=receipt.tx_hash,
                deployed_at=receipt.timestamp,
            )
        )

    # ------------------------------------------------------------------
    # Funding
    # ------------------------------------------------------------------

    async def fund(
        self,
        record: EscrowRecord,
        gateway: ChainGateway,
        timeout: float,
        amount: int | None = None,
    ) -> StepOutcome:
        """Send amount + safety deposit to the escrow.

        A transient failure is retried once with a higher gas ceiling. If the
        retry fails too, or the first attempt reverts, the leg fails carrying
        every attempt's message. An `amount` other than the expected total is
        sent as asked but flagged; verification will then reject the leg.
        """
        new_status = self._guard(record, "funding_confirmed")
        expected = record.immutables.expected_funding
        amount = expected if amount is None else amount
        if amount != expected:
            logger.warning(
                "leg.funding_amount_mismatch",
                role=record.role.value,
                expected=str(expected),
                supplied=str(amount),
            )

        base_limits = ResourceLimits(gas_limit=self._settings.fund_gas_limit)
        errors: list[str] = []

        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(FUNDING_ATTEMPTS),
                wait=wait_fixed(self._settings.fund_retry_delay_seconds),
                retry=retry_if_exception_type(GatewayTransient),
                reraise=True,
            ):
                with attempt:
                    number = attempt.retry_state.attempt_number
                    limits = base_limits
                    if number > 1:
                        limits = base_limits.bumped(
                            self._settings.bumped_gas_limit(base_limits.gas_limit)
                        )
                        logger.warning(
                            "leg.funding_retry",
                            role=record.role.value,
                            gas_limit=limits.gas_limit,
                            previous_error=errors[-1] if errors else None,
                        )
                    receipt = await self._send(
                        record, gateway, amount, limits, timeout, number, errors
                    )
        except GatewayError as exc:
            reason = "; ".join(errors) or exc.message
            logger.error("leg.funding_failed", role=record.role.value, errors=errors)
            return StepOutcome(self.fail(record, exc.code, reason), exc)

        logger.info(
            "leg.funded",
            role=record.role.value,
            address=record.contract_address,
            amount=str(amount),
            tx_hash=receipt.tx_hash,
        )
        return StepOutcome(
            replace(
                record,
                status=LegStatus(new_status),
                funding_status=FundingStatus.COMPLETED,
                funding_tx_hash=receipt.tx_hash,
                funded_amount=amount,
                funded_at=receipt.timestamp,
            )
        )

    async def _send(
        self,
        record: EscrowRecord,
        gateway: ChainGateway,
        amount: int,
        limits: ResourceLimits,
        timeout: float,
        attempt_number: int,
        errors: list[str],
    ) -> TxReceipt:
        try:
            receipt = await gateway_call(
                gateway.send_funds(
                    record.contract_address,
                    amount,
                    limits,
                    self._settings.required_confirmations,
                ),
                timeout,
                "send_funds",
            )
            if not receipt.succeeded:
                raise GatewayReverted(
                    f"Funding transaction {receipt.tx_hash} reverted",
                    revert_reason=receipt.revert_reason,
                    tx_hash=receipt.tx_hash,
                )
        except GatewayError as exc:
            errors.append(f"attempt {attempt_number} (gas {limits.gas_limit}): {exc.message}")
            raise
        return receipt

    # ------------------------------------------------------------------
    # Verification
    # ------------------------------------------------------------------

    async def verify(
        self,
        record: EscrowRecord,
        gateway: ChainGateway,
        timeout: float,
    ) -> StepOutcome:
        """Re-read on-chain getters and balance and compare with the record."""
        new_status = self._guard(record, "verification_passed")
        address = record.contract_address
        immutables = record.immutables

        try:
            for name, expected in immutables.invariant_expectations().items():
                actual = await gateway_call(gateway.read_invariant(address, name), timeout, name)
                self._require_equal(name, expected, actual)

            rescue_delay = await gateway_call(
                gateway.read_invariant(address, "RESCUE_DELAY"), timeout, "RESCUE_DELAY"
            )
            if self._settings.expected_rescue_delay is not None:
                self._require_equal(
                    "RESCUE_DELAY", self._settings.expected_rescue_delay, rescue_delay
                )
            if self._settings.expected_factory is not None:
                factory = await gateway_call(
                    gateway.read_invariant(address, "FACTORY"), timeout, "FACTORY"
                )
                self._require_equal("FACTORY", self._settings.expected_factory, factory)

            if record.funded_amount != immutables.expected_funding:
                raise StateMismatch(
                    "funded_amount", immutables.expected_funding, record.funded_amount
                )

            balance = await gateway_call(gateway.get_balance(address), timeout, "get_balance")
            if balance != immutables.expected_funding:
                raise StateMismatch("balance", immutables.expected_funding, balance)

            now = await gateway_call(gateway.get_current_time(), timeout, "get_current_time")
        except StateMismatch as exc:
            logger.error(
                "leg.verification_mismatch",
                role=record.role.value,
                field=exc.field,
                expected=str(exc.expected),
                actual=str(exc.actual),
            )
            return StepOutcome(self.fail(record, exc.code, exc.message), exc)

        logger.info("leg.verified", role=record.role.value, address=address, balance=str(balance))
        return StepOutcome(
            replace(
                record,
                status=LegStatus(new_status),
                verification_status=VerificationStatus.VERIFIED,
                rescue_delay=int(rescue_delay),
                last_known_balance=balance,
                verified_at=now,
            )
        )

    # ------------------------------------------------------------------
    # Failure
    # ------------------------------------------------------------------

    def fail(self, record: EscrowRecord, code: str, reason: str) -> EscrowRecord:
        """Return a FAILED copy of `record`, marking the step that was in flight."""
        new_status = self._guard(record, "unrecoverable_error")
        changes: dict[str, Any] = {}
        if record.deployment_status is DeploymentStatus.PENDING:
            changes["deployment_status"] = DeploymentStatus.FAILED
        elif record.funding_status is FundingStatus.PENDING:
            changes["funding_status"] = FundingStatus.FAILED
        elif record.verification_status is VerificationStatus.UNVERIFIED:
            changes["verification_status"] = VerificationStatus.FAILED

        return replace(
            record,
            status=LegStatus(new_status),
            failure_code=code,
            failure_reason=reason,
            **changes,
        )

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _guard(self, record: EscrowRecord, event_name: str) -> str:
        """Validate a transition against the lifecycle machine and return the new status.

        Raises InvalidStateTransitionError if the transition is illegal.
        """
        try:
            return validate_transition(record.status.value, event_name)
        except (TransitionNotAllowed, ValueError) as err:
            raise InvalidStateTransitionError(record.status.value, event_name) from err

    @staticmethod
    def _require_equal(name: str, expected: object, actual: object) -> None:
        if _normalize(expected) != _normalize(actual):
            raise StateMismatch(name, expected, actual)


async def gateway_call(awaitable: Awaitable[Any], timeout: float, operation: str) -> Any:
    """Await a gateway call, turning a timeout into GatewayTransient."""
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except TimeoutError as err:
        raise GatewayTransient(
            f"Gateway call '{operation}' timed out after {timeout}s",
            operation=operation,
        ) from err


def _normalize(value: object) -> object:
    if isinstance(value, str):
        return value.lower()
    if isinstance(value, list | tuple):
        return tuple(_normalize(v) for v in value)
    return value
