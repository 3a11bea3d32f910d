"""Recurring job entrypoints for reward settlement."""

__all__ = ["rewards"]
