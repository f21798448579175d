"""Timelock schedule for one escrow leg.

Four boundaries, each an offset in seconds from the leg's deployment epoch:

    withdrawal_start           end of finality, private withdrawal opens
    public_withdrawal_start    anyone holding the secret may withdraw
    cancellation_start         maker may cancel
    public_cancellation_start  anyone may cancel (no end)

A schedule is validated when it is constructed; an out-of-order schedule
raises InvalidSchedule and never exists as an instance.
"""

from __future__ import annotations

from dataclasses import astuple, dataclass

from htlc_swap.domain.exceptions import InvalidSchedule

BOUNDARY_NAMES = (
    "withdrawal_start",
    "public_withdrawal_start",
    "cancellation_start",
    "public_cancellation_start",
)


@dataclass(frozen=True)
class TimelockSchedule:
    """Ordered, non-negative offsets t0 <= t1 <= t2 <= t3."""

    withdrawal_start: int
    public_withdrawal_start: int
    cancellation_start: int
    public_cancellation_start: int

    def __post_init__(self) -> None:
        validate_schedule(self)

    @classmethod
    def from_offsets(cls, offsets: tuple[int, int, int, int] | list[int]) -> TimelockSchedule:
        """Build a schedule from (t0, t1, t2, t3)."""
        if len(offsets) != len(BOUNDARY_NAMES):
            raise InvalidSchedule(
                f"Expected {len(BOUNDARY_NAMES)} timelock offsets, got {len(offsets)}"
            )
        return cls(*offsets)

    def offsets(self) -> tuple[int, int, int, int]:
        return astuple(self)

    def absolute(self, epoch: int) -> tuple[int, int, int, int]:
        """Absolute boundary timestamps for a leg deployed at `epoch`."""
        return tuple(epoch + offset for offset in self.offsets())  # type: ignore[return-value]


def validate_schedule(schedule: TimelockSchedule) -> None:
    """Check integer, non-negative, non-decreasing boundaries.

    Raises:
        InvalidSchedule: On the first violated rule.
    """
    values = schedule.offsets()
    for name, value in zip(BOUNDARY_NAMES, values, strict=True):
        # bool is an int subclass but never a valid number of seconds
        if isinstance(value, bool) or not isinstance(value, int):
            raise InvalidSchedule(f"{name} must be an integer number of seconds, got {value!r}")
        if value < 0:
            raise InvalidSchedule(f"{name} must be non-negative, got {value}")

    for (earlier_name, earlier), (later_name, later) in zip(
        zip(BOUNDARY_NAMES, values, strict=True),
        zip(BOUNDARY_NAMES[1:], values[1:], strict=True),
        strict=False,
    ):
        if earlier > later:
            raise InvalidSchedule(
                f"{earlier_name} ({earlier}) must not be after {later_name} ({later})"
            )
