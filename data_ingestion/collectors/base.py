"""
Data Ingestion - Base Collector.

============================================================
PURPOSE
============================================================
Interface every market-data collector implements.

============================================================
DESIGN PRINCIPLES
============================================================
- Collection only: no reconciliation, no persistence
- Resilience comes from the composed CollectorToolkit
- collect() returns a CollectorResult envelope; an empty
  envelope is a valid answer (the phase consults the fallback
  policy), an exception means the source failed

============================================================
"""

import logging
from abc import ABC, abstractmethod
from typing import Optional, Tuple

from data_ingestion.collectors.toolkit import CollectorToolkit
from data_ingestion.types import CollectContext, CollectorResult


class Collector(ABC):
    """
    Abstract market-data collector.

    Attributes:
        name: Source name; also keys the breaker, rate limiter and cache
        market: Calendar market the source depends on (None: always open)
        critical_fields: Fields this source must deliver; a result
            missing any of them is marked PARTIAL
    """

    def __init__(
        self,
        name: str,
        toolkit: CollectorToolkit,
        market: Optional[str] = None,
        critical_fields: Tuple[str, ...] = (),
    ):
        self.name = name
        self.market = market
        self.critical_fields = tuple(critical_fields)
        self.toolkit = toolkit
        self._logger = logging.getLogger(f"collector.{name}")

    @property
    def expected_fields(self) -> Tuple[str, ...]:
        """Fields this source delivers on a trading day."""
        return self.critical_fields

    @abstractmethod
    async def collect(self, context: CollectContext) -> CollectorResult:
        """Fetch this source's data for context.date."""
        pass

    async def close(self) -> None:
        """Release network resources, if any."""

    def __repr__(self) -> str:
        return f"<{type(self).__name__} name={self.name} market={self.market}>"
