"""Asyncio SIP transaction layer: keys, timers, message builders and RFC 3261 state machines."""

__version__ = "0.2.42"

__all__ = ["context", "key", "message", "timer", "transaction", "types"]