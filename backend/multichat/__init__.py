"""Multistream chat backend package.

This package contains the chat aggregation service: a shared Twitch IRC
connection pool, message normalization, reference-counted channel
subscriptions, and WebSocket fan-out to browser sessions.

Modules are structured for single responsibility and testability.
"""

from .core.logging import register_levels

register_levels()
