"""Stacks Lakehouse: contract and token catalogue built from chainhook events."""

__version__ = "0.1.0"
