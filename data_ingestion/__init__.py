"""
Data Ingestion Package.

Market-data collection: the collector interface, the concrete
collectors and the data model they produce. No reconciliation
happens here; see validation/.

Sub-packages:
- collectors: collector interface, toolkit and implementations
"""

from data_ingestion.types import (
    CollectContext,
    CollectorConfig,
    CollectorResult,
    DegradationLabel,
    HttpQuoteConfig,
    MarketDataPoint,
    PhaseResult,
)


__all__ = [
    "CollectContext",
    "CollectorConfig",
    "CollectorResult",
    "DegradationLabel",
    "HttpQuoteConfig",
    "MarketDataPoint",
    "PhaseResult",
]
