"""Relay transaction re-indexer and status monitor."""

from .api import app
from .monitor import TransactionMonitor

__all__ = ["app", "TransactionMonitor"]
