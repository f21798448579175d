"""Coordinator configuration via pydantic-settings.

Reads from .env file or environment variables. The SwapCoordinator is handed
a Settings instance at construction, so nothing in the core reads ambient
configuration on its own.

Usage:
    from htlc_swap.config import get_settings
    settings = get_settings()
    print(settings.source_schedule)
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict

from htlc_swap.domain.timelocks import TimelockSchedule


class Settings(BaseSettings):
    """Central configuration for the swap coordinator."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # --- Application ---
    app_env: Literal["development", "staging", "production"] = "development"
    app_log_level: str = "INFO"
    json_logs: bool = False

    # --- Redis (swap record store) ---
    redis_url: str = "redis://localhost:6379/0"
    swap_key_prefix: str = "swap:"

    # --- Chain gateway ---
    gateway_timeout_seconds: float = 30.0
    required_confirmations: int = 1
    event_lookback_blocks: int = 100

    # --- Resource ceilings ---
    deploy_gas_limit: int = 3_000_000
    fund_gas_limit: int = 100_000
    fund_retry_gas_bump_percent: int = 50
    fund_retry_delay_seconds: float = 2.0

    # --- Contract artifacts ---
    escrow_src_bytecode: str = "0x"
    escrow_dst_bytecode: str = "0x"

    # --- Expected on-chain invariants (checked during verification when set) ---
    expected_rescue_delay: int | None = None
    expected_factory: str | None = None

    # --- Timelock offsets, seconds from deployment ---
    src_withdrawal_start: int = 60
    src_public_withdrawal_start: int = 600
    src_cancellation_start: int = 1800
    src_public_cancellation_start: int = 3600
    dst_withdrawal_start: int = 60
    dst_public_withdrawal_start: int = 300
    dst_cancellation_start: int = 1200
    dst_public_cancellation_start: int = 2400

    # Destination cancellation must open before source cancellation.
    enforce_destination_precedence: bool = True

    @property
    def is_development(self) -> bool:
        return self.app_env == "development"

    @property
    def source_schedule(self) -> TimelockSchedule:
        """Validated timelock schedule for the source leg."""
        return TimelockSchedule(
            withdrawal_start=self.src_withdrawal_start,
            public_withdrawal_start=self.src_public_withdrawal_start,
            cancellation_start=self.src_cancellation_start,
            public_cancellation_start=self.src_public_cancellation_start,
        )

    @property
    def destination_schedule(self) -> TimelockSchedule:
        """Validated timelock schedule for the destination leg."""
        return TimelockSchedule(
            withdrawal_start=self.dst_withdrawal_start,
            public_withdrawal_start=self.dst_public_withdrawal_start,
            cancellation_start=self.dst_cancellation_start,
            public_cancellation_start=self.dst_public_cancellation_start,
        )

    def bumped_gas_limit(self, gas_limit: int) -> int:
        """Gas ceiling for the single funding retry."""
        return gas_limit + (gas_limit * self.fund_retry_gas_bump_percent) // 100


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached singleton of the settings."""
    return Settings()
