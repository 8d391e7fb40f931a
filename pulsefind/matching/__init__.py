"""Match sources and multi-source aggregation."""

from .aggregator import MatchAggregator, deduplicate, rank
from .base import PlatformSearcher
from .models import MatchCandidate, MetadataHint, ScanMetrics, ScanResult, Source

__all__ = [
    "MatchAggregator",
    "deduplicate",
    "rank",
    "PlatformSearcher",
    "MatchCandidate",
    "MetadataHint",
    "ScanMetrics",
    "ScanResult",
    "Source",
]
