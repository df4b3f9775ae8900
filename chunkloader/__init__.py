"""Chunked account uploads for Solana programs and relay round proposals."""

__version__ = "0.1.0"
