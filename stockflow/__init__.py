"""Inventory ledger, allocation and demand-driven reorder engine."""

__version__ = "1.0.0"
