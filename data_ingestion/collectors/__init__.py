"""
Data Ingestion - Collectors Package.

Each collector is responsible for one data source.

Collectors:
- http_quote: JSON quote endpoints (aiohttp)
- static: fixed readings (replays, manual input)

Helpers:
- toolkit: per-source retry / cache / data-point helpers
- factory: builds collectors from configuration
"""

from data_ingestion.collectors.base import Collector
from data_ingestion.collectors.factory import COLLECTOR_TYPES, create_collector, create_collectors
from data_ingestion.collectors.http_quote import HttpQuoteCollector
from data_ingestion.collectors.static import StaticCollector
from data_ingestion.collectors.toolkit import CollectorToolkit


__all__ = [
    "Collector",
    "CollectorToolkit",
    "HttpQuoteCollector",
    "StaticCollector",
    "COLLECTOR_TYPES",
    "create_collector",
    "create_collectors",
]
