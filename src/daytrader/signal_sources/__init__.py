"""
Signal sources and their resilience wrapper.
"""

from .base import SignalSource
from .quote_source import QuoteSignalSource
from .resilient import ResilientSignalSource

__all__ = [
    "SignalSource",
    "QuoteSignalSource",
    "ResilientSignalSource",
]
