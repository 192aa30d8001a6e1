"""Ordinal-aware Bitcoin transaction building, an in-memory chain and a bitcoind-like RPC service."""

__version__ = "0.1.0"