"""Replay historical smart-contract transactions and collect call-stack statistics."""

__version__ = "0.1.0"
