"""
pinrelay - A webhook relay that keeps one pinned status card per stream.

This package provides tools for:
- Routing inbound webhook events to a stream and forum topic
- Serializing processing per stream through a dedicated actor
- Maintaining the pinned message in Telegram (unpin, send, pin)
- Emitting per-event telemetry for rollback decisions
"""

__version__ = "0.1.0"
