"""Headless terminal multiplexer daemon and client, with remote shell helpers."""

__version__ = "0.1.0"

__all__ = ["__version__"]