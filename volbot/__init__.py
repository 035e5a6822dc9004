"""Solana volume bot."""

__version__ = "0.1.0"
