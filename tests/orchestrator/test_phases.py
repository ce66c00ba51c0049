"""
Tests for the four phase functions.
"""

from datetime import timedelta

import pytest
from unittest.mock import AsyncMock

from core.exceptions import CollectorError, PhaseInputError, StaleDataError
from data_ingestion.collectors.base import Collector
from data_ingestion.collectors.static import StaticCollector
from data_ingestion.types import CollectContext, CollectorResult
from orchestrator.phases import (
    BRIEF_CRITICAL,
    BRIEF_DEGRADED,
    BRIEF_OK,
    RunContext,
    brief_status,
    run_phase1,
    run_phase2,
    run_phase3,
    run_phase4,
)

from conftest import RUN_DATE


# ============================================================
# TEST COLLECTORS
# ============================================================

class FailingCollector(Collector):

    async def collect(self, context: CollectContext) -> CollectorResult:
        raise CollectorError("upstream 503", source=self.name)


class ScriptedCollector(Collector):
    """Returns the queued readings one call at a time."""

    def __init__(self, name, toolkit, responses, market=None):
        super().__init__(name, toolkit, market=market)
        self._responses = list(responses)
        self.calls = 0

    async def collect(self, context: CollectContext) -> CollectorResult:
        self.calls += 1
        readings = self._responses.pop(0) if self._responses else {}
        points = {k: self.toolkit.make_data_point(v) for k, v in readings.items()}
        return self.toolkit.make_result(points=points)


@pytest.fixture
def run():
    return RunContext(run_id="test-run", date=RUN_DATE)


@pytest.fixture
def deps(deps_factory):
    return deps_factory()


# ============================================================
# COLLECTION PHASES
# ============================================================

class TestCollectPhases:

    @pytest.mark.asyncio
    async def test_phase1_checkpoints_every_source(self, deps, run, memory_store):
        document = await run_phase1(deps, run)

        assert document["phase"] == "phase1"
        assert document["date"] == RUN_DATE
        assert set(document["perSourceResults"]) == {"fmp", "yahoo"}
        assert document["perSourceResults"]["fmp"]["points"]["SP500"]["value"] == 5200.0
        assert document["errors"] == {}
        assert document["marketContext"]["XNYS"]["isTradingDay"] is True
        assert memory_store.load_checkpoint("phase1") == document

    @pytest.mark.asyncio
    async def test_failing_source_is_recorded_not_raised(self, deps, run):
        deps.collectors["phase1"].append(FailingCollector("broken", deps.toolkit_for("broken")))

        document = await run_phase1(deps, run)

        assert document["perSourceResults"]["broken"] is None
        assert document["errors"] == {"broken": "upstream 503"}
        assert document["perSourceResults"]["fmp"] is not None

    @pytest.mark.asyncio
    async def test_closed_market_sources_are_skipped(self, deps):
        saturday = RunContext(run_id="test-run", date="2026-01-17")

        document = await run_phase2(deps, saturday)

        twse = document["perSourceResults"]["twse"]
        assert twse["skipped"] is True
        assert twse["quality"] == "NO_MARKET_DATA"
        assert twse["reason"] == "weekend"
        assert twse["points"] == {}

    @pytest.mark.asyncio
    async def test_empty_response_on_trading_day_falls_back(self, deps, run, no_sleep):
        deps.collectors["phase2"] = [
            ScriptedCollector("twse", deps.toolkit_for("twse"), [], market="TWSE"),
        ]

        document = await run_phase2(deps, run)

        twse = document["perSourceResults"]["twse"]
        assert twse["quality"] == "FALLBACK"
        assert twse["prevDate"] == "2026-01-14"
        assert deps.collectors["phase2"][0].calls == 4
        assert no_sleep.calls == [1.0, 3.0, 10.0]

    @pytest.mark.asyncio
    async def test_empty_response_recovered_by_retry(self, deps, run):
        deps.collectors["phase2"] = [
            ScriptedCollector("twse", deps.toolkit_for("twse"), [{}, {"TAIEX": 22458}], market="TWSE"),
        ]

        document = await run_phase2(deps, run)

        twse = document["perSourceResults"]["twse"]
        assert twse["quality"] == "OK"
        assert twse["points"]["TAIEX"]["value"] == 22458

    @pytest.mark.asyncio
    async def test_empty_response_without_market_is_kept(self, deps, run, no_sleep):
        deps.collectors["phase1"] = [ScriptedCollector("manual", deps.toolkit_for("manual"), [])]

        document = await run_phase1(deps, run)

        assert document["perSourceResults"]["manual"]["points"] == {}
        assert no_sleep.calls == []

    @pytest.mark.asyncio
    async def test_phase2_passes_phase1_as_context(self, deps, run):
        collector = ScriptedCollector("twse", deps.toolkit_for("twse"), [{"TAIEX": 1}])
        collector.collect = AsyncMock(wraps=collector.collect)
        deps.collectors["phase2"] = [collector]
        phase1 = await run_phase1(deps, run)

        await run_phase2(deps, run)

        context = collector.collect.await_args.args[0]
        assert context.previous_phase == phase1
        assert context.phase == "phase2"

    @pytest.mark.asyncio
    async def test_phase1_reports_previous_us_session(self, deps):
        monday = RunContext(run_id="test-run", date="2026-01-19")

        document = await run_phase1(deps, monday)

        assert document["sessionDates"] == {"XNYS": "2026-01-16"}
        assert document["marketContext"]["XNYS"]["isTradingDay"] is True
        assert document["perSourceResults"]["fmp"]["skipped"] is False
        assert document["perSourceResults"]["fmp"]["points"]["SP500"]["value"] == 5200.0

    @pytest.mark.asyncio
    async def test_previous_session_fallback_uses_session_date(self, deps, no_sleep):
        deps.collectors["phase1"] = [
            ScriptedCollector("fmp", deps.toolkit_for("fmp"), [], market="XNYS"),
        ]
        tuesday = RunContext(run_id="test-run", date="2026-01-20")

        document = await run_phase1(deps, tuesday)

        fmp = document["perSourceResults"]["fmp"]
        assert fmp["quality"] == "FALLBACK"
        assert fmp["prevDate"] == "2026-01-15"
        assert no_sleep.calls == [1.0, 3.0, 10.0]

    @pytest.mark.asyncio
    async def test_phase2_has_no_previous_session(self, deps, run):
        document = await run_phase2(deps, run)

        assert document["sessionDates"] == {}

    @pytest.mark.asyncio
    async def test_missing_critical_field_marks_partial(self, deps, run):
        deps.collectors["phase2"] = [
            StaticCollector(
                "twse",
                deps.toolkit_for("twse"),
                readings={"USDTWD": 32.1},
                market="TWSE",
                critical_fields=("TAIEX",),
            ),
        ]

        document = await run_phase2(deps, run)

        twse = document["perSourceResults"]["twse"]
        assert twse["quality"] == "PARTIAL"
        assert twse["reason"] == "missing critical fields: TAIEX"
        assert twse["points"]["USDTWD"]["value"] == 32.1

    @pytest.mark.asyncio
    async def test_complete_source_stays_ok(self, deps, run):
        document = await run_phase2(deps, run)

        assert document["perSourceResults"]["twse"]["quality"] == "OK"

    @pytest.mark.asyncio
    async def test_no_collectors_configured(self, deps, run):
        deps.collectors = {}

        document = await run_phase1(deps, run)

        assert document["perSourceResults"] == {}


# ============================================================
# PHASE 3
# ============================================================

class TestPhase3:

    @pytest.mark.asyncio
    async def test_reconciles_both_collection_phases(self, deps, run, memory_store):
        await run_phase1(deps, run)
        await run_phase2(deps, run)

        document = await run_phase3(deps, run)

        market = document["marketData"]
        assert market["date"] == RUN_DATE
        assert market["TAIEX"]["verified"] is True
        assert market["SP500"]["verified"] is True
        assert market["margin"] == {"balance": 3.1e11}
        assert market["DXY"]["degraded"] == "NA"
        assert document["inputs"] == {"phase1": True, "phase2": True}
        assert document["hasErrors"] is False
        assert "DXY" in document["validationReport"]["degradedFields"]
        assert memory_store.load_checkpoint("phase3") == document

    @pytest.mark.asyncio
    async def test_missing_phase2_checkpoint(self, deps, run):
        with pytest.raises(PhaseInputError):
            await run_phase3(deps, run)

    @pytest.mark.asyncio
    async def test_stale_phase2_rejected_on_weekdays(self, deps, run, mock_clock):
        await run_phase2(deps, run)
        mock_clock.advance(hours=4)

        with pytest.raises(StaleDataError):
            await run_phase3(deps, run)

    @pytest.mark.asyncio
    async def test_weekend_mode_allows_older_data(self, deps, run, mock_clock):
        await run_phase2(deps, run)
        mock_clock.advance(hours=40)

        document = await run_phase3(deps, RunContext("weekend-run", "2026-01-17", weekend_mode=True))

        assert document["date"] == RUN_DATE
        assert document["marketData"]["TAIEX"]["value"] == 22458.0

    @pytest.mark.asyncio
    async def test_missing_collected_at_is_stale(self, deps, run, memory_store):
        memory_store.save_checkpoint("phase2", {"phase": "phase2", "date": RUN_DATE, "perSourceResults": {}})

        with pytest.raises(StaleDataError):
            await run_phase3(deps, run)

    @pytest.mark.asyncio
    async def test_phase1_from_another_day_is_ignored(self, deps, run, memory_store):
        await run_phase1(deps, run)
        phase1 = memory_store.load_checkpoint("phase1")
        phase1["date"] = "2026-01-14"
        memory_store.save_checkpoint("phase1", phase1)
        await run_phase2(deps, run)

        document = await run_phase3(deps, run)

        assert document["inputs"]["phase1"] is False
        assert document["marketData"]["SP500"]["degraded"] == "NA"

    @pytest.mark.asyncio
    async def test_source_errors_are_carried(self, deps, run):
        deps.collectors["phase2"].append(FailingCollector("broken", deps.toolkit_for("broken")))
        await run_phase2(deps, run)

        document = await run_phase3(deps, run)

        assert document["sourceErrors"] == {"broken": "upstream 503"}


# ============================================================
# PHASE 4
# ============================================================

class TestPhase4:

    @pytest.mark.asyncio
    async def test_missing_phase3_checkpoint(self, deps, run):
        with pytest.raises(PhaseInputError):
            await run_phase4(deps, run)

    @pytest.mark.asyncio
    async def test_assembles_and_publishes_brief(self, deps_factory, run, memory_store):
        briefs = []
        deps = deps_factory(publisher=briefs.append)
        await run_phase1(deps, run)
        await run_phase2(deps, run)
        await run_phase3(deps, run)

        document = await run_phase4(deps, run)

        assert document["status"] == BRIEF_DEGRADED
        assert document["published"] is True
        assert len(briefs) == 1
        assert briefs[0]["date"] == RUN_DATE
        assert briefs[0]["weekendMode"] is False
        assert briefs[0]["marketData"]["TAIEX"]["value"] == 22458.0
        assert memory_store.load_checkpoint("phase4") == document

    @pytest.mark.asyncio
    async def test_async_publisher(self, deps_factory, run, memory_store):
        publisher = AsyncMock()
        deps = deps_factory(publisher=publisher)
        memory_store.save_checkpoint("phase3", {"date": RUN_DATE, "marketData": {}, "validationReport": {}})

        document = await run_phase4(deps, run)

        publisher.assert_awaited_once()
        assert document["published"] is True

    @pytest.mark.asyncio
    async def test_publisher_failure_is_recorded(self, deps_factory, run, memory_store):
        def publisher(brief):
            raise OSError("disk full")

        deps = deps_factory(publisher=publisher)
        memory_store.save_checkpoint("phase3", {"date": RUN_DATE, "marketData": {}, "validationReport": {}})

        document = await run_phase4(deps, run)

        assert document["published"] is False
        assert document["publishError"] == "disk full"

    @pytest.mark.asyncio
    async def test_all_na_is_critical_degraded(self, deps, run, memory_store):
        memory_store.save_checkpoint("phase3", {
            "date": RUN_DATE,
            "marketData": {"date": RUN_DATE, "TAIEX": {"value": None, "degraded": "NA"}},
            "validationReport": {"degradedFields": ["TAIEX"]},
        })

        document = await run_phase4(deps, run)

        assert document["status"] == BRIEF_CRITICAL
        assert document["published"] is False


class TestBriefStatus:

    def test_ok(self):
        data = {"TAIEX": {"value": 22458.0, "degraded": ""}}

        assert brief_status(data, ["TAIEX"], []) == BRIEF_OK

    def test_degraded(self):
        data = {"TAIEX": {"value": 22458.0}, "SP500": {"value": None}}

        assert brief_status(data, ["TAIEX", "SP500"], ["SP500"]) == BRIEF_DEGRADED

    def test_critical_when_nothing_has_a_value(self):
        data = {"TAIEX": {"value": None}, "SP500": "garbage", "VIX": {"value": "x"}}

        assert brief_status(data, ["TAIEX", "SP500", "VIX", "DXY"], []) == BRIEF_CRITICAL
