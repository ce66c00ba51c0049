"""
Data Ingestion - Collector Factory.

Builds collectors from the `collectors` section of the pipeline
configuration:

    collectors:
      phase1:
        - type: http_quote
          name: fmp
          market: XNYS
          url: https://...
          field_map: {SP500: "^GSPC"}
      phase2:
        - type: static
          name: twse
          readings: {TAIEX: 22458}
"""

import logging
from typing import Any, Callable, Dict, List, Mapping

from core.exceptions import ConfigurationError
from data_ingestion.collectors.base import Collector
from data_ingestion.collectors.http_quote import HttpQuoteCollector
from data_ingestion.collectors.static import StaticCollector
from data_ingestion.collectors.toolkit import CollectorToolkit
from data_ingestion.types import HttpQuoteConfig


logger = logging.getLogger(__name__)


ToolkitProvider = Callable[[str], CollectorToolkit]


def _pairs(value: Any) -> tuple:
    if isinstance(value, Mapping):
        return tuple((str(k), str(v)) for k, v in value.items())
    return tuple(tuple(item) for item in (value or ()))


def _build_http_quote(spec: Mapping[str, Any], toolkit: CollectorToolkit) -> Collector:
    config = HttpQuoteConfig(
        source_name=spec["name"],
        enabled=bool(spec.get("enabled", True)),
        market=spec.get("market"),
        max_retries=int(spec.get("max_retries", 3)),
        timeout_seconds=float(spec.get("timeout_seconds", 30.0)),
        cache_ttl_seconds=float(spec.get("cache_ttl_seconds", 300.0)),
        critical_fields=tuple(spec.get("critical_fields", ())),
        url=spec.get("url", ""),
        params=_pairs(spec.get("params")),
        headers=_pairs(spec.get("headers")),
        field_map=_pairs(spec.get("field_map")),
        payload_keys=tuple(spec.get("payload_keys", ())),
        data_key=spec.get("data_key"),
    )
    return HttpQuoteCollector(config, toolkit)


def _build_static(spec: Mapping[str, Any], toolkit: CollectorToolkit) -> Collector:
    return StaticCollector(
        spec["name"],
        toolkit,
        readings=spec.get("readings"),
        payload=spec.get("payload"),
        market=spec.get("market"),
        critical_fields=tuple(spec.get("critical_fields", ())),
        delayed=bool(spec.get("delayed", False)),
    )


COLLECTOR_TYPES: Dict[str, Callable[[Mapping[str, Any], CollectorToolkit], Collector]] = {
    "http_quote": _build_http_quote,
    "static": _build_static,
}


def create_collector(spec: Mapping[str, Any], toolkit_for: ToolkitProvider) -> Collector:
    """Instantiate one collector from its config entry."""
    kind = spec.get("type")
    name = spec.get("name")
    if not name:
        raise ConfigurationError("collector entry requires a name", config_key="collectors")
    builder = COLLECTOR_TYPES.get(kind)
    if builder is None:
        raise ConfigurationError(
            f"Unknown collector type {kind!r} for {name}",
            config_key="collectors",
        )
    return builder(spec, toolkit_for(name))


def create_collectors(
    specs: Mapping[str, List[Mapping[str, Any]]],
    toolkit_for: ToolkitProvider,
) -> Dict[str, List[Collector]]:
    """Build the per-phase collector groups, skipping disabled entries."""
    groups: Dict[str, List[Collector]] = {}
    for phase, entries in specs.items():
        group = []
        for spec in entries or []:
            if not spec.get("enabled", True):
                logger.info(f"Collector {spec.get('name')} disabled, skipping")
                continue
            group.append(create_collector(spec, toolkit_for))
        groups[phase] = group
    return groups
