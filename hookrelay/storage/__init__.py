"""Durable storage backends for endpoints, events and delivery jobs."""

from hookrelay.storage.base import DeliveryStore
from hookrelay.storage.memory import InMemoryDeliveryStore
from hookrelay.storage.sqlite import SQLiteDeliveryStore

__all__ = [
    "DeliveryStore",
    "InMemoryDeliveryStore",
    "SQLiteDeliveryStore",
]
