"""Cached, multi-source USD prices for wallet holdings."""

__version__ = "0.1.0"
