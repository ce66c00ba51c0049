"""
Data Ingestion - HTTP Quote Collector.

============================================================
PURPOSE
============================================================
Generic collector for JSON quote endpoints.

Fetches one JSON document per run and maps configured keys to
canonical fields:

    field_map = (("SP500", "^GSPC"), ("VIX", "^VIX"))

A document entry may be a bare number or an object with
price/value, change and changePct keys.

============================================================
FAILURE HANDLING
============================================================
- Requests go through the toolkit (rate limit, retry, breaker)
- Fresh responses are cached for cache_ttl_seconds; a result
  served from that cache is flagged from_cache
- When the source fails, the last cached document is served
  with every point labelled DELAYED
- With nothing cached, the failure propagates as CollectorError

============================================================
"""

from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional, Tuple

import aiohttp

from core.exceptions import CollectorError
from data_ingestion.collectors.base import Collector
from data_ingestion.collectors.toolkit import CollectorToolkit
from data_ingestion.types import CollectContext, CollectorResult, HttpQuoteConfig, MarketDataPoint


CACHE_KEY = "quotes"


class HttpQuoteCollector(Collector):
    """Collector for a JSON quote endpoint."""

    def __init__(
        self,
        config: HttpQuoteConfig,
        toolkit: CollectorToolkit,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        super().__init__(
            name=config.source_name,
            toolkit=toolkit,
            market=config.market,
            critical_fields=config.critical_fields,
        )
        if not config.url:
            raise CollectorError("HttpQuoteCollector requires a url", source=config.source_name)
        self._config = config
        self._session = session
        self._owns_session = session is None

    @property
    def config(self) -> HttpQuoteConfig:
        return self._config

    @property
    def expected_fields(self) -> Tuple[str, ...]:
        mapped = tuple(name for name, _ in self._config.field_map)
        return tuple(dict.fromkeys(self.critical_fields + mapped))

    async def collect(self, context: CollectContext) -> CollectorResult:
        try:
            document, cache_hit = await self.toolkit.with_cache_status(
                CACHE_KEY,
                self._config.cache_ttl_seconds,
                lambda: self.toolkit.with_retry(
                    self._fetch,
                    max_retries=self._config.max_retries,
                ),
            )
        except Exception as e:
            stale = self.toolkit.get_stale(CACHE_KEY)
            if stale is None:
                raise CollectorError(
                    f"{self.name} fetch failed: {e}",
                    source=self.name,
                    cause=e,
                )
            data, cached_at = stale
            fetched_at = datetime.fromtimestamp(cached_at, tz=timezone.utc).isoformat()
            self._logger.warning(f"[{self.name}] serving cached data from {fetched_at}: {e}")
            return self._build_result(data, delayed=True, fetched_at=fetched_at)

        return self._build_result(document or {}, from_cache=cache_hit)

    # ============================================================
    # HTTP
    # ============================================================

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self._config.timeout_seconds),
                headers={
                    "Accept": "application/json",
                    "User-Agent": "MarketDigestPipeline/1.0",
                },
            )
            self._owns_session = True
        return self._session

    async def _fetch(self) -> Dict[str, Any]:
        session = await self._get_session()
        try:
            async with session.get(
                self._config.url,
                params=dict(self._config.params) or None,
                headers=dict(self._config.headers) or None,
            ) as response:
                if response.status >= 400:
                    body = await response.text()
                    raise CollectorError(
                        f"HTTP {response.status}",
                        source=self.name,
                        context={"body": body[:500], "url": self._config.url},
                    )
                document = await response.json(content_type=None)
        except aiohttp.ClientError as e:
            raise CollectorError(f"Connection error: {e}", source=self.name, cause=e)

        if self._config.data_key:
            document = (document or {}).get(self._config.data_key)
        if not isinstance(document, Mapping):
            raise CollectorError(
                f"Unexpected response shape: {type(document).__name__}",
                source=self.name,
            )
        return dict(document)

    async def close(self) -> None:
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()

    # ============================================================
    # PARSING
    # ============================================================

    def _build_result(
        self,
        document: Mapping[str, Any],
        delayed: bool = False,
        fetched_at: Optional[str] = None,
        from_cache: bool = False,
    ) -> CollectorResult:
        points: Dict[str, MarketDataPoint] = {}
        for field_name, key in self._config.field_map:
            if key not in document:
                continue
            points[field_name] = self._to_point(document[key], delayed, fetched_at)

        payload = {k: document[k] for k in self._config.payload_keys if k in document}
        return self.toolkit.make_result(
            points=points,
            payload=payload,
            from_cache=from_cache or delayed,
        )

    def _to_point(self, entry: Any, delayed: bool, fetched_at: Optional[str]) -> MarketDataPoint:
        change = change_pct = None
        if isinstance(entry, Mapping):
            value = entry.get("price", entry.get("value"))
            change = entry.get("change")
            change_pct = entry.get("changePct", entry.get("changesPercentage"))
        else:
            value = entry

        if delayed:
            return self.toolkit.make_delayed_data_point(
                value, change=change, change_pct=change_pct, fetched_at=fetched_at
            )
        return self.toolkit.make_data_point(value, change=change, change_pct=change_pct)
