"""
Practice acceptance monitoring engine.
"""

from .classifier import classify, Verdict
from .cycle import MonitoringCycle, CycleSummary
from .fetcher import RateLimitedFetcher
from .status_store import StatusStore, CheckMeta

__all__ = ['classify', 'Verdict', 'MonitoringCycle', 'CycleSummary', 'RateLimitedFetcher', 'StatusStore', 'CheckMeta']
