"""Async workflows that drive and monitor both legs of a swap."""

from htlc_swap.orchestration.swap_workflow import poll_swap, run_swap_setup

__all__ = ["poll_swap", "run_swap_setup"]
