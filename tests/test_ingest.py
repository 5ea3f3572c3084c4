"""
Tests for the nightly ingest engine and source bookkeeping.

Covers per-source isolation, cross-reference dedup, cursor resumption,
adapter deadlines and the aggregate status rules.
"""
from unittest.mock import patch

from legiswatch.models.legislation_source import LegislationSource
from legiswatch.models.normalized_update import JurisdictionLevel, NormalizedUpdate, TopicTag
from legiswatch.models.raw_legislation_item import RawLegislationItem
from legiswatch.models.source_run import SourceRun, SourceRunStatus
from legiswatch.services import ingest as ingest_module
from legiswatch.services.ingest import IngestEngine, _parse_datetime
from legiswatch.services.source_registry import (
    DEFAULT_SOURCE_FILTERS,
    ensure_sources,
    update_source,
)
from legiswatch.services.sources import AdapterRegistry

from tests.fixtures.legislation_fixtures import (
    FakeAdapter,
    add_source,
    make_item,
    make_items,
)


def _engine(session_factory, *adapters, timeout: float = 5.0) -> IngestEngine:
    return IngestEngine(session_factory, AdapterRegistry(adapters), fetch_timeout=timeout)


def _seed_sources(session_factory, *source_ids, **kwargs):
    with session_factory() as db:
        for source_id in source_ids:
            add_source(db, source_id, **kwargs)
        db.commit()


def _runs_by_source(session_factory):
    with session_factory() as db:
        return {
            run.source_key: {
                "status": run.status,
                "new": run.new_items_count,
                "fetched": run.items_fetched,
                "dups": run.duplicates_skipped,
                "error": run.error_message,
                "cursor_after": run.cursor_after,
                "finished_at": run.finished_at,
            }
            for run in db.query(SourceRun).all()
        }


# ---------------------------------------------------------------------------
# Aggregate behaviour
# ---------------------------------------------------------------------------

class TestNightlyIngestAggregate:
    """End-to-end runs across several sources."""

    def test_three_sources_one_failing_reports_partial(self, session_factory):
        """Two healthy sources (5 + 3 items) and one throwing source."""
        _seed_sources(session_factory, "alpha", "beta", "gamma")
        engine = _engine(
            session_factory,
            FakeAdapter("alpha", make_items("a", 5)),
            FakeAdapter("beta", make_items("b", 3)),
            FakeAdapter("gamma", fetch_error=RuntimeError("upstream exploded")),
        )

        result = engine.run_nightly_ingest()

        assert result.status is SourceRunStatus.PARTIAL
        assert result.sources_processed == 2
        assert result.total_items_fetched == 8
        assert result.new_items_stored == 8
        assert result.duplicates_skipped == 0
        assert len(result.errors) == 1
        assert "gamma" in result.errors[0]
        assert "upstream exploded" in result.errors[0]

        runs = _runs_by_source(session_factory)
        assert runs["alpha"]["status"] is SourceRunStatus.SUCCESS
        assert runs["alpha"]["new"] == 5
        assert runs["beta"]["new"] == 3
        assert runs["gamma"]["status"] is SourceRunStatus.FAILED
        assert runs["gamma"]["error"] == "upstream exploded"
        assert all(r["finished_at"] is not None for r in runs.values())

        with session_factory() as db:
            assert db.query(NormalizedUpdate).count() == 8
            assert db.query(RawLegislationItem).count() == 8
            gamma = db.get(LegislationSource, "gamma")
            assert gamma.last_run_status == "failed"
            assert gamma.last_run_error == "upstream exploded"
            alpha = db.get(LegislationSource, "alpha")
            assert alpha.last_run_status == "success"
            assert alpha.last_run_error is None

    def test_failing_first_source_does_not_block_siblings(self, session_factory):
        """Sources run in id order; an early failure must not stop the rest."""
        _seed_sources(session_factory, "aaa_broken", "zzz_healthy")
        engine = _engine(
            session_factory,
            FakeAdapter("aaa_broken", fetch_error=ValueError("bad payload")),
            FakeAdapter("zzz_healthy", make_items("z", 2)),
        )

        result = engine.run_nightly_ingest()

        assert [r.source_key for r in result.source_results] == ["aaa_broken", "zzz_healthy"]
        assert result.source_results[0].status is SourceRunStatus.FAILED
        assert result.source_results[1].status is SourceRunStatus.SUCCESS
        assert result.new_items_stored == 2
        with session_factory() as db:
            assert db.query(NormalizedUpdate).filter_by(source_id="zzz_healthy").count() == 2

    def test_all_clean_sources_report_success(self, session_factory):
        _seed_sources(session_factory, "alpha")
        result = _engine(session_factory, FakeAdapter("alpha", make_items("a", 2))).run_nightly_ingest()

        assert result.status is SourceRunStatus.SUCCESS
        assert result.errors == []

    def test_no_source_processed_with_errors_reports_failed(self, session_factory):
        _seed_sources(session_factory, "alpha")
        engine = _engine(session_factory, FakeAdapter("alpha", fetch_error=RuntimeError("down")))

        result = engine.run_nightly_ingest()

        assert result.status is SourceRunStatus.FAILED
        assert result.sources_processed == 0

    def test_disabled_sources_are_skipped(self, session_factory):
        _seed_sources(session_factory, "alpha")
        with session_factory() as db:
            add_source(db, "beta", enabled=False)
            db.commit()
        beta = FakeAdapter("beta", make_items("b", 1))

        result = _engine(session_factory, FakeAdapter("alpha"), beta).run_nightly_ingest()

        assert [r.source_key for r in result.source_results] == ["alpha"]
        assert beta.calls == []


# ---------------------------------------------------------------------------
# Per-source failure modes
# ---------------------------------------------------------------------------

class TestSourceFailureModes:
    """Missing adapters, unavailable adapters, deadlines and inline errors."""

    def test_missing_adapter_records_failure_without_run_row(self, session_factory):
        _seed_sources(session_factory, "orphan")

        result = _engine(session_factory).run_nightly_ingest()

        assert result.errors == ["No adapter registered for source: orphan"]
        assert result.source_results[0].status is SourceRunStatus.FAILED
        assert result.status is SourceRunStatus.FAILED
        assert _runs_by_source(session_factory) == {}

    def test_unavailable_adapter_finalizes_run_failed(self, session_factory):
        _seed_sources(session_factory, "keyless")
        adapter = FakeAdapter("keyless", make_items("k", 2), available=False)

        result = _engine(session_factory, adapter).run_nightly_ingest()

        assert adapter.calls == []
        runs = _runs_by_source(session_factory)
        assert runs["keyless"]["status"] is SourceRunStatus.FAILED
        assert runs["keyless"]["error"] == "Source not available"
        assert result.sources_processed == 0
        assert result.new_items_stored == 0

    def test_hung_adapter_times_out_as_source_failure(self, session_factory):
        _seed_sources(session_factory, "slow", "quick")
        engine = _engine(
            session_factory,
            FakeAdapter("slow", make_items("s", 1), delay=2.0),
            FakeAdapter("quick", make_items("q", 1)),
            timeout=0.05,
        )

        result = engine.run_nightly_ingest()

        runs = _runs_by_source(session_factory)
        assert runs["slow"]["status"] is SourceRunStatus.FAILED
        assert "timed out" in runs["slow"]["error"]
        assert runs["quick"]["status"] is SourceRunStatus.SUCCESS
        assert result.status is SourceRunStatus.PARTIAL

    def test_inline_adapter_errors_mark_run_partial(self, session_factory):
        _seed_sources(session_factory, "alpha")
        adapter = FakeAdapter("alpha", make_items("a", 2), errors=["LegiScan error for TX: 503"])

        result = _engine(session_factory, adapter).run_nightly_ingest()

        assert result.errors == ["[alpha] LegiScan error for TX: 503"]
        assert result.status is SourceRunStatus.PARTIAL
        assert result.new_items_stored == 2
        runs = _runs_by_source(session_factory)
        assert runs["alpha"]["status"] is SourceRunStatus.PARTIAL
        assert runs["alpha"]["error"] == "LegiScan error for TX: 503"


# ---------------------------------------------------------------------------
# Dedup
# ---------------------------------------------------------------------------

class TestCrossReferenceDedup:
    """At most one original NormalizedUpdate per cross-reference key."""

    def test_same_bill_from_two_sources_is_stored_once(self, session_factory):
        _seed_sources(session_factory, "alpha", "beta")
        engine = _engine(
            session_factory,
            FakeAdapter("alpha", [make_item("1001", cross_ref_key="UT-HB123-2025")]),
            FakeAdapter("beta", [make_item("hb-123", cross_ref_key="UT-HB123-2025")]),
        )

        result = engine.run_nightly_ingest()

        assert result.new_items_stored == 1
        assert result.duplicates_skipped == 1
        with session_factory() as db:
            originals = (
                db.query(NormalizedUpdate)
                .filter_by(cross_ref_key="UT-HB123-2025", is_duplicate=False)
                .all()
            )
            assert len(originals) == 1
            assert originals[0].source_id == "alpha"

    def test_duplicates_within_one_fetch_are_caught(self, session_factory):
        _seed_sources(session_factory, "alpha")
        items = [
            make_item("1", cross_ref_key="FR-2025-00001"),
            make_item("1-amended", cross_ref_key="FR-2025-00001"),
        ]

        result = _engine(session_factory, FakeAdapter("alpha", items)).run_nightly_ingest()

        assert result.new_items_stored == 1
        assert result.duplicates_skipped == 1
        runs = _runs_by_source(session_factory)
        assert runs["alpha"]["dups"] == 1
        assert runs["alpha"]["fetched"] == 2

    def test_missing_cross_ref_falls_back_to_source_scoped_key(self, session_factory):
        _seed_sources(session_factory, "alpha")
        _engine(session_factory, FakeAdapter("alpha", [make_item("X-9")])).run_nightly_ingest()

        with session_factory() as db:
            update = db.query(NormalizedUpdate).one()
            assert update.cross_ref_key == "alpha:X-9"

    def test_rerun_stores_nothing_new(self, session_factory):
        _seed_sources(session_factory, "alpha")
        adapter = FakeAdapter("alpha", make_items("a", 3))

        first = _engine(session_factory, adapter).run_nightly_ingest()
        second = _engine(session_factory, adapter).run_nightly_ingest()

        assert first.new_items_stored == 3
        assert second.new_items_stored == 0
        assert second.duplicates_skipped == 3
        with session_factory() as db:
            assert db.query(NormalizedUpdate).count() == 3

    def test_normalized_fields_are_persisted(self, session_factory):
        _seed_sources(session_factory, "alpha")
        item = make_item(
            "T-1",
            level=JurisdictionLevel.TRIBAL,
            state=None,
            topics=(TopicTag.NAHASDA_CORE, TopicTag.IHBG),
            cross_ref_key="FR-2025-01234",
        )

        _engine(session_factory, FakeAdapter("alpha", [item])).run_nightly_ingest()

        with session_factory() as db:
            update = db.query(NormalizedUpdate).one()
            raw = db.get(RawLegislationItem, update.raw_item_id)
            assert update.jurisdiction_level is JurisdictionLevel.TRIBAL
            assert update.topics == ["nahasda_core", "ihbg"]
            assert update.is_processed is False
            assert update.introduced_date.year == 2025
            assert raw.external_id == "T-1"
            assert raw.raw_data == {"kind": "opaque", "data": {}}
            assert len(raw.content_hash) == 32


# ---------------------------------------------------------------------------
# Cursor resumption and fetch parameters
# ---------------------------------------------------------------------------

class TestCursorAndParams:
    """Fetch parameters are assembled from the source row and prior runs."""

    def test_next_run_resumes_from_last_successful_cursor(self, session_factory):
        _seed_sources(session_factory, "alpha")
        adapter = FakeAdapter("alpha", make_items("a", 1), cursor="2025-02-01")

        _engine(session_factory, adapter).run_nightly_ingest()
        _engine(session_factory, adapter).run_nightly_ingest()

        assert adapter.calls[0].since is None
        assert adapter.calls[1].since == "2025-02-01"

    def test_partial_run_cursor_is_not_trusted(self, session_factory):
        _seed_sources(session_factory, "alpha")
        adapter = FakeAdapter("alpha", cursor="2025-02-01", errors=["page 2 failed"])

        _engine(session_factory, adapter).run_nightly_ingest()
        _engine(session_factory, adapter).run_nightly_ingest()

        assert adapter.calls[1].since is None

    def test_run_start_is_cursor_when_adapter_returns_none(self, session_factory):
        _seed_sources(session_factory, "alpha")
        _engine(session_factory, FakeAdapter("alpha")).run_nightly_ingest()

        runs = _runs_by_source(session_factory)
        assert _parse_datetime(runs["alpha"]["cursor_after"]) is not None

    def test_filters_and_tribal_flag_are_forwarded(self, session_factory):
        _seed_sources(
            session_factory,
            "alpha",
            state_filter=["UT", "AZ"],
            topic_filter=["nahasda_core", "landlord_tenant"],
        )
        adapter = FakeAdapter("alpha")

        _engine(session_factory, adapter).run_nightly_ingest()

        params = adapter.calls[0]
        assert params.states == ["UT", "AZ"]
        assert params.topics == [TopicTag.NAHASDA_CORE, TopicTag.LANDLORD_TENANT]
        assert params.include_tribal is True

    def test_no_tribal_flag_without_tribal_topics(self, session_factory):
        _seed_sources(session_factory, "alpha", topic_filter=["eviction"])
        adapter = FakeAdapter("alpha")

        _engine(session_factory, adapter).run_nightly_ingest()

        assert adapter.calls[0].include_tribal is False


# ---------------------------------------------------------------------------
# Source registry
# ---------------------------------------------------------------------------

class TestSourceRegistry:
    """Source rows mirror the adapter registry."""

    def test_ensure_sources_creates_rows_once(self, session_factory):
        registry = AdapterRegistry([FakeAdapter("legiscan"), FakeAdapter("alpha")])

        with session_factory() as db:
            assert ensure_sources(db, registry) == 2
            assert ensure_sources(db, registry) == 0
            legiscan = db.get(LegislationSource, "legiscan")
            assert legiscan.state_filter == DEFAULT_SOURCE_FILTERS["legiscan"]["state_filter"]
            assert db.get(LegislationSource, "alpha").state_filter is None

    def test_update_source_toggles_and_clears_filters(self, session_factory):
        _seed_sources(session_factory, "alpha", state_filter=["UT"])

        with session_factory() as db:
            source = update_source(db, "alpha", enabled=False, state_filter=[])
            assert source.enabled is False
            assert source.state_filter is None
            assert update_source(db, "missing", enabled=True) is None

    def test_registry_replaces_duplicate_ids(self):
        first, second = FakeAdapter("alpha"), FakeAdapter("alpha")
        registry = AdapterRegistry([first, second])

        assert len(registry) == 1
        assert registry.get("alpha") is second
        assert "alpha" in registry
        assert registry.get("missing") is None


class TestRunReporting:
    """Logging and result reporting after a source's run is committed."""

    def test_stored_summary_is_logged(self, session_factory, caplog):
        caplog.set_level("INFO", logger="legiswatch.services.ingest")
        _seed_sources(session_factory, "alpha")
        items = [
            make_item("a-1", cross_ref_key="UT-HB1-2025"),
            make_item("a-2", cross_ref_key="UT-HB1-2025"),
            make_item("a-3"),
        ]

        result = _engine(session_factory, FakeAdapter("alpha", items)).run_nightly_ingest()

        assert result.status is SourceRunStatus.SUCCESS
        assert "Stored 2 new items from alpha, skipped 1 duplicates" in caplog.text

    def test_fault_after_commit_does_not_abort_siblings(self, session_factory):
        _seed_sources(session_factory, "aaa_first", "zzz_second")
        engine = _engine(
            session_factory,
            FakeAdapter("aaa_first", make_items("a", 2)),
            FakeAdapter("zzz_second", make_items("z", 3)),
        )

        def info(msg, *args, **kwargs):
            if msg.startswith("Stored") and args[1] == "aaa_first":
                raise RuntimeError("log sink down")

        with patch.object(ingest_module.logger, "info", side_effect=info):
            result = engine.run_nightly_ingest()

        assert [r.source_key for r in result.source_results] == ["aaa_first", "zzz_second"]
        assert result.source_results[1].status is SourceRunStatus.SUCCESS
        assert result.errors == ["Source aaa_first failed: log sink down"]
        assert result.status is SourceRunStatus.PARTIAL

        runs = _runs_by_source(session_factory)
        assert runs["aaa_first"]["status"] is SourceRunStatus.SUCCESS
        assert runs["aaa_first"]["new"] == 2
        assert runs["zzz_second"]["new"] == 3
        with session_factory() as db:
            assert db.query(NormalizedUpdate).count() == 5


class TestParseDatetime:
    def test_parses_dates_and_offsets(self):
        assert _parse_datetime("2025-01-15").day == 15
        parsed = _parse_datetime("2025-01-15T10:00:00Z")
        assert parsed.tzinfo is None
        assert parsed.hour == 10

    def test_rejects_garbage(self):
        assert _parse_datetime("sometime soon") is None
        assert _parse_datetime(None) is None
