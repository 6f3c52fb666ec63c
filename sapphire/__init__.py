"""Sapphire — declarative state reconciliation for a macOS host."""

__version__ = "0.1.0"
