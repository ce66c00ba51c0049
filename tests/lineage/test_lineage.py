"""
Tests for field lineage tracking.
"""

import pytest

from data_ingestion.types import CollectorResult, DegradationLabel, MarketDataPoint, PhaseResult
from lineage.tracker import AnomalyType, LineageTracker
from storage.phase_store import lineage_key


@pytest.fixture
def tracker(memory_store, mock_clock):
    return LineageTracker("2026-01-15", store=memory_store, clock=mock_clock)


def phase1_result() -> PhaseResult:
    return PhaseResult(
        phase="phase1",
        date="2026-01-15",
        collected_at="2026-01-15T01:00:00+00:00",
        per_source_results={
            "fmp": CollectorResult(
                source="fmp",
                points={
                    "SP500": MarketDataPoint(5200.0, source="fmp"),
                    "VIX": MarketDataPoint.na("fmp"),
                },
            ),
            "yahoo": CollectorResult(
                source="yahoo",
                from_cache=True,
                points={
                    "SP500": MarketDataPoint(5199.0, source="yahoo"),
                    "VIX": MarketDataPoint(16.0, source="yahoo", degraded=DegradationLabel.DELAYED),
                },
            ),
            "failed": None,
        },
    )


class TestLineageTracker:

    def test_value_dropped_detected(self, tracker):
        tracker.record("phase1", "SP500", value=5200.0, source="fmp")
        tracker.record_market_data("phase3", {"date": "2026-01-15"})

        anomalies = tracker.detect_anomalies()

        assert len(anomalies) == 1
        anomaly = anomalies[0]
        assert anomaly.field == "SP500"
        assert anomaly.type == AnomalyType.VALUE_DROPPED
        assert anomaly.from_state == {"phase": "phase1", "value": 5200.0, "source": "fmp"}
        assert anomaly.to_state == {"phase": "phase3", "value": None, "source": "missing"}

    def test_degradation_added_detected(self, tracker):
        tracker.record("phase1", "TAIEX", value=22458.0, source="twse")
        tracker.record("phase3", "TAIEX", value=22458.0, source="twse", degraded="UNVERIFIED")

        anomalies = tracker.detect_anomalies()

        assert [a.type for a in anomalies] == [AnomalyType.DEGRADATION_ADDED]
        assert anomalies[0].to_state == {"phase": "phase3", "degraded": "UNVERIFIED"}

    def test_clean_transition_has_no_anomaly(self, tracker):
        tracker.record("phase2", "TAIEX", value=22458.0, source="twse")
        tracker.record("phase3", "TAIEX", value=22458.0, source="twse")

        assert tracker.detect_anomalies() == []

    def test_record_phase_result_takes_first_source_with_value(self, tracker):
        tracker.record_phase_result("phase1", phase1_result().to_dict())

        entries = tracker.entries()
        assert entries["SP500"][0].source == "fmp"
        assert entries["VIX"][0].source == "yahoo"
        assert entries["VIX"][0].degraded == "DELAYED"
        assert entries["VIX"][0].from_cache is True
        assert "NASDAQ" not in entries

    def test_record_phase_result_marks_expected_fields_missing(self, tracker):
        tracker.record_phase_result(
            "phase1",
            phase1_result().to_dict(),
            expected_fields=("SP500", "NASDAQ", "DJI"),
        )

        entries = tracker.entries()
        assert entries["SP500"][0].value == 5200.0
        assert entries["NASDAQ"][0].value is None
        assert entries["NASDAQ"][0].source == "missing"
        assert entries["DJI"][0].source == "missing"
        assert "TAIEX" not in entries

    def test_never_collected_is_not_a_drop(self, tracker):
        tracker.record_phase_result("phase1", phase1_result().to_dict(), expected_fields=("NASDAQ",))
        tracker.record_market_data("phase3", {"SP500": {"value": 5200.0, "source": "fmp"}})

        dropped = [a.field for a in tracker.detect_anomalies() if a.type == AnomalyType.VALUE_DROPPED]
        assert "NASDAQ" not in dropped
        assert tracker.entries()["NASDAQ"][0].source == "missing"

    def test_missing_then_na_is_not_degradation(self, tracker):
        tracker.record("phase1", "DJI", value=None, source="missing")
        tracker.record("phase3", "DJI", value=None, source="none", degraded="NA")

        assert tracker.detect_anomalies() == []

    def test_record_market_data_accepts_points_and_dicts(self, tracker):
        tracker.record_market_data("phase3", {
            "SP500": MarketDataPoint(5200.0, source="fmp", verified=True),
            "TAIEX": {"value": 22458.0, "source": "twse", "degraded": ""},
        })

        entries = tracker.entries()
        assert entries["SP500"][0].value == 5200.0
        assert entries["TAIEX"][0].source == "twse"
        assert entries["VIX"][0].source == "missing"
        assert set(entries) == set(tracker.tracked_fields)

    def test_untracked_fields_ignored(self, memory_store, mock_clock):
        tracker = LineageTracker("2026-01-15", store=memory_store, clock=mock_clock, tracked_fields=("TAIEX",))

        tracker.record_market_data("phase3", {"SP500": {"value": 1.0}})

        assert list(tracker.entries()) == ["TAIEX"]

    def test_save_writes_document(self, tracker, memory_store, mock_clock):
        tracker.record("phase1", "SP500", value=5200.0, source="fmp")
        tracker.record_market_data("phase3", {})

        report = tracker.save()

        stored = memory_store.load(lineage_key("2026-01-15"))
        assert stored == report
        assert stored["date"] == "2026-01-15"
        assert stored["generatedAt"] == mock_clock.format_iso()
        assert stored["anomalyCount"] == 1
        assert stored["anomalies"][0]["type"] == "value_dropped"
        assert stored["entries"]["SP500"][0]["value"] == 5200.0

    def test_save_without_store(self, mock_clock):
        tracker = LineageTracker("2026-01-15", clock=mock_clock)

        assert tracker.save()["fieldCount"] == 0
