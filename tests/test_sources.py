"""
Tests for the bundled source adapters and keyword classification.

HTTP is served by ``httpx.MockTransport``; no network access.
"""
import asyncio
from datetime import datetime

import httpx
import pytest

from legiswatch.core.config import Settings
from legiswatch.models.normalized_update import ItemType, JurisdictionLevel, Severity, TopicTag
from legiswatch.schemas.legislation import SourceFetchParams
from legiswatch.services.sources import build_default_registry
from legiswatch.services.sources.classification import (
    classify_topics,
    is_relevant,
    matches_topic_filter,
)
from legiswatch.services.sources.federal_register import FederalRegisterAdapter
from legiswatch.services.sources.legiscan import LegiScanAdapter, normalize_bill

from tests.fixtures.legislation_fixtures import (
    FEDERAL_REGISTER_RESPONSE,
    LEGISCAN_SEARCH_RESPONSE,
)


def _settings(**overrides):
    values = {
        "DATABASE_URL": "sqlite://",
        "REDIS_URL": "redis://localhost:6379/15",
        "LEGISCAN_API_KEY": "test-legiscan-key",
    }
    values.update(overrides)
    return Settings(**values)


def _transport(handler, requests):
    def record(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return handler(request)

    return httpx.MockTransport(record)


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------

class TestClassification:
    def test_nahasda_text_gets_tribal_topics(self):
        topics = classify_topics("Revisions to the Indian Housing Block Grant environmental review")
        assert topics == [TopicTag.NAHASDA_CORE, TopicTag.IHBG, TopicTag.ENVIRONMENTAL]

    def test_landlord_text_gets_subtopics(self):
        topics = classify_topics("Eviction notice periods and security deposit limits")
        assert topics == [
            TopicTag.LANDLORD_TENANT,
            TopicTag.SECURITY_DEPOSIT,
            TopicTag.EVICTION,
        ]

    def test_structured_tribal_signal_overrides_text(self):
        assert classify_topics("Formula update", tribal_signal=True) == [TopicTag.NAHASDA_CORE]

    def test_hud_document_falls_back_to_hud_general(self):
        assert classify_topics("Paperwork notice", hud_document=True) == [TopicTag.HUD_GENERAL]

    def test_unrelated_text_is_not_relevant(self):
        topics = classify_topics("Highway speed limits")
        assert topics == [TopicTag.NOT_RELEVANT]
        assert is_relevant(topics) is False

    def test_topic_filter(self):
        assert matches_topic_filter([TopicTag.EVICTION], None) is True
        assert matches_topic_filter([TopicTag.EVICTION], []) is True
        assert matches_topic_filter([TopicTag.EVICTION], [TopicTag.IHBG]) is False
        assert matches_topic_filter(
            [TopicTag.LANDLORD_TENANT, TopicTag.EVICTION], [TopicTag.EVICTION]
        ) is True


# ---------------------------------------------------------------------------
# Federal Register
# ---------------------------------------------------------------------------

class TestFederalRegisterAdapter:
    def test_fetch_keeps_relevant_documents(self):
        requests = []
        adapter = FederalRegisterAdapter(
            _settings(),
            transport=_transport(lambda r: httpx.Response(200, json=FEDERAL_REGISTER_RESPONSE), requests),
        )

        result = asyncio.run(adapter.fetch(SourceFetchParams()))

        assert result.errors == []
        assert [i.source_key for i in result.items] == ["2025-01234", "2025-02222"]

        rule = result.items[0]
        assert rule.source == "federal_register"
        assert rule.type is ItemType.REGULATION
        assert rule.jurisdiction.level is JurisdictionLevel.FEDERAL
        assert rule.topics == [TopicTag.NAHASDA_CORE, TopicTag.IHBG]
        assert rule.severity is Severity.HIGH
        assert rule.cross_ref_key == "FR-2025-01234"
        assert rule.cfr_references[0].part == 1000
        assert rule.raw.kind == "regulation"

        notice = result.items[1]
        assert notice.type is ItemType.NOTICE
        assert notice.severity is Severity.LOW
        assert TopicTag.FAIR_HOUSING in notice.topics

        assert result.cursor == datetime.utcnow().date().isoformat()
        assert requests[0].url.params.get("conditions[agencies][]") == (
            "housing-and-urban-development-department"
        )

    def test_since_cursor_sets_publication_window(self):
        requests = []
        adapter = FederalRegisterAdapter(
            _settings(),
            transport=_transport(lambda r: httpx.Response(200, json={"results": []}), requests),
        )

        asyncio.run(adapter.fetch(SourceFetchParams(since="2025-01-10T01:30:00")))

        assert requests[0].url.params.get("conditions[publication_date][gte]") == "2025-01-10"

    def test_client_error_is_reported_inline(self):
        requests = []
        adapter = FederalRegisterAdapter(
            _settings(),
            transport=_transport(lambda r: httpx.Response(404, json={}), requests),
        )

        result = asyncio.run(adapter.fetch(SourceFetchParams()))

        assert result.items == []
        assert result.errors == ["Federal Register API error: 404"]
        assert result.cursor is None

    def test_topic_filter_applies(self):
        adapter = FederalRegisterAdapter(
            _settings(),
            transport=_transport(lambda r: httpx.Response(200, json=FEDERAL_REGISTER_RESPONSE), []),
        )

        result = asyncio.run(adapter.fetch(SourceFetchParams(topics=[TopicTag.FAIR_HOUSING])))

        assert [i.source_key for i in result.items] == ["2025-02222"]

    def test_api_key_header_is_sent_when_configured(self):
        requests = []
        adapter = FederalRegisterAdapter(
            _settings(FEDERAL_REGISTER_API_KEY="fr-key"),
            transport=_transport(lambda r: httpx.Response(200, json={"results": []}), requests),
        )

        asyncio.run(adapter.fetch(SourceFetchParams()))

        assert requests[0].headers["X-Api-Key"] == "fr-key"


# ---------------------------------------------------------------------------
# LegiScan
# ---------------------------------------------------------------------------

class TestLegiScanAdapter:
    def test_unavailable_without_key(self):
        adapter = LegiScanAdapter(_settings(LEGISCAN_API_KEY=None))

        assert asyncio.run(adapter.is_available()) is False
        with pytest.raises(RuntimeError):
            asyncio.run(adapter.fetch(SourceFetchParams(states=["UT"])))

    def test_requires_state_filter(self):
        adapter = LegiScanAdapter(_settings())

        with pytest.raises(ValueError):
            asyncio.run(adapter.fetch(SourceFetchParams()))

    def test_fetch_keeps_relevant_bills(self):
        requests = []
        adapter = LegiScanAdapter(
            _settings(),
            transport=_transport(lambda r: httpx.Response(200, json=LEGISCAN_SEARCH_RESPONSE), requests),
        )

        result = asyncio.run(adapter.fetch(SourceFetchParams(states=["UT"])))

        assert result.errors == []
        assert len(result.items) == 1
        bill = result.items[0]
        assert bill.source_key == "1776001"
        assert bill.jurisdiction.state == "UT"
        assert bill.status == "Introduced"
        assert bill.severity is Severity.MEDIUM
        assert bill.cross_ref_key == "UT-HB123-2025"
        assert bill.topics == [TopicTag.LANDLORD_TENANT, TopicTag.SECURITY_DEPOSIT]

        params = requests[0].url.params
        assert params["op"] == "getSearch"
        assert params["state"] == "UT"
        assert params["key"] == "test-legiscan-key"

    def test_per_state_errors_do_not_stop_other_states(self):
        def handler(request):
            if request.url.params["state"] == "TX":
                return httpx.Response(403, json={})
            if request.url.params["state"] == "NM":
                return httpx.Response(200, json={"status": "ERROR", "alert": {"message": "Bad state"}})
            return httpx.Response(200, json=LEGISCAN_SEARCH_RESPONSE)

        adapter = LegiScanAdapter(_settings(), transport=_transport(handler, []))

        result = asyncio.run(adapter.fetch(SourceFetchParams(states=["TX", "UT", "NM"])))

        assert [i.jurisdiction.state for i in result.items] == ["UT"]
        assert result.errors[0] == "LegiScan error for TX: 403"
        assert result.errors[1].startswith("LegiScan error for NM:")
        assert "Bad state" in result.errors[1]

    def test_normalize_bill_status_and_severity(self):
        bill = LEGISCAN_SEARCH_RESPONSE["searchresult"]["1"]

        normalized = normalize_bill(bill, "UT", 2025)

        assert normalized.status == "Passed"
        assert normalized.severity is Severity.HIGH
        assert normalized.topics == [TopicTag.NOT_RELEVANT]
        assert normalized.raw.bill_number == "SB9"

    def test_normalize_bill_unknown_status_and_missing_session(self):
        normalized = normalize_bill({"bill_id": 42, "title": "Rental registry"}, "TX", 2026)

        assert normalized.status == "Unknown"
        assert normalized.cross_ref_key == "TX-42-2026"


def test_default_registry_contains_bundled_adapters():
    registry = build_default_registry(_settings())

    assert len(registry) == 2
    assert "federal_register" in registry
    assert isinstance(registry.get("legiscan"), LegiScanAdapter)
    assert registry.get("courtlistener") is None
