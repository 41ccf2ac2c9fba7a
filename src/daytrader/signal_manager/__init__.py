"""
Signal Manager

Quorum-based consensus across independent signal sources.
"""

from .aggregator import QuorumPolicy, SignalAggregator, SignalProvider

__all__ = [
    "QuorumPolicy",
    "SignalAggregator",
    "SignalProvider",
]
