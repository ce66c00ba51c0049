"""
Data Ingestion - Static Collector.

Serves a fixed set of readings. Used to replay a recorded day,
to feed manually entered figures, and in tests.
"""

from typing import Any, Dict, Mapping, Optional, Tuple

from data_ingestion.collectors.base import Collector
from data_ingestion.collectors.toolkit import CollectorToolkit
from data_ingestion.types import CollectContext, CollectorResult


class StaticCollector(Collector):
    """
    Returns the configured readings on every call.

    readings maps field -> number or {value, change, changePct}.
    """

    def __init__(
        self,
        name: str,
        toolkit: CollectorToolkit,
        readings: Optional[Mapping[str, Any]] = None,
        payload: Optional[Mapping[str, Any]] = None,
        market: Optional[str] = None,
        critical_fields: Tuple[str, ...] = (),
        delayed: bool = False,
    ):
        super().__init__(name, toolkit, market=market, critical_fields=critical_fields)
        self._readings = dict(readings or {})
        self._payload = dict(payload or {})
        self._delayed = delayed

    async def collect(self, context: CollectContext) -> CollectorResult:
        make = (
            self.toolkit.make_delayed_data_point
            if self._delayed
            else self.toolkit.make_data_point
        )
        points = {}
        for field_name, reading in self._readings.items():
            if isinstance(reading, Mapping):
                points[field_name] = make(
                    reading.get("value"),
                    change=reading.get("change"),
                    change_pct=reading.get("changePct"),
                )
            else:
                points[field_name] = make(reading)

        return self.toolkit.make_result(points=points, payload=self._payload)

    @property
    def expected_fields(self) -> Tuple[str, ...]:
        return tuple(dict.fromkeys(self.critical_fields + tuple(self._readings)))

    def readings(self) -> Dict[str, Any]:
        return dict(self._readings)
