"""Coordinator for hashlocked, timelocked cross-chain escrow swaps."""

__version__ = "0.1.0"
