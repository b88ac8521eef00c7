"""
Notification Fanout

Typed client events and the registry that pushes them to every live
connection of a user, or to every connection at once.
"""

from .events import (
    WalletUpdateEvent,
    TransactionStatusEvent,
    MarketResultEvent,
    OptionGameResultEvent,
    NotificationEvent,
)
from .fanout import Connection, Notifier, ConnectionRegistry

__all__ = [
    "WalletUpdateEvent",
    "TransactionStatusEvent",
    "MarketResultEvent",
    "OptionGameResultEvent",
    "NotificationEvent",
    "Connection",
    "Notifier",
    "ConnectionRegistry",
]
