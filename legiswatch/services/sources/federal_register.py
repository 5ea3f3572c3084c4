# legiswatch/services/sources/federal_register.py

from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional

import logging

import httpx

from tenacity import retry, wait_exponential, stop_after_attempt, retry_if_exception_type

from .base import BaseSourceAdapter
from .classification import classify_topics, is_relevant, matches_topic_filter

from ...core.config import Settings, get_settings
from ...models.normalized_update import ItemType, JurisdictionLevel, Severity
from ...schemas.legislation import (
    CfrReference,
    Jurisdiction,
    NormalizedLegislationItem,
    RegulationPayload,
    SourceFetchParams,
    SourceFetchResult,
)

logger = logging.getLogger(__name__)

HUD_AGENCY_SLUG = "housing-and-urban-development-department"

DOCUMENT_FIELDS = (
    "document_number",
    "title",
    "type",
    "abstract",
    "html_url",
    "pdf_url",
    "publication_date",
    "agencies",
    "agency_names",
    "action",
    "effective_on",
    "significant",
    "topics",
    "cfr_references",
)


def _parse_since(since: str | None) -> date | None:
    if not since:
        return None
    try:
        return datetime.fromisoformat(since).date()
    except ValueError:
        logger.warning(
            "Ignoring unparseable cursor %r",
            since,
            extra={"source": FederalRegisterAdapter.id},
        )
        return None


def _severity(doc: Dict[str, Any]) -> Severity:
    if doc.get("significant"):
        return Severity.HIGH
    doc_type = doc.get("type")
    if doc_type == "Rule":
        return Severity.HIGH
    if doc_type == "Proposed Rule":
        return Severity.MEDIUM
    return Severity.LOW


def _item_type(doc: Dict[str, Any]) -> ItemType:
    return ItemType.NOTICE if doc.get("type") == "Notice" else ItemType.REGULATION


def normalize_document(doc: Dict[str, Any]) -> NormalizedLegislationItem:
    cfr_refs = [
        CfrReference(title=ref["title"], part=ref["part"])
        for ref in (doc.get("cfr_references") or [])
        if ref.get("title") is not None and ref.get("part") is not None
    ]
    agencies = doc.get("agencies") or []
    search_text = " ".join(
        [
            doc.get("title") or "",
            doc.get("abstract") or "",
            " ".join(doc.get("topics") or []),
        ]
    )
    topics = classify_topics(
        search_text,
        tribal_signal=any(ref.title == 24 and ref.part == 1000 for ref in cfr_refs),
        hud_document=any(
            a.get("slug") == HUD_AGENCY_SLUG or "hud" in (a.get("name") or "").lower()
            for a in agencies
        ),
    )
    document_number = doc["document_number"]

    return NormalizedLegislationItem(
        source=FederalRegisterAdapter.id,
        source_key=document_number,
        type=_item_type(doc),
        jurisdiction=Jurisdiction(level=JurisdictionLevel.FEDERAL),
        title=doc.get("title") or document_number,
        summary=doc.get("abstract"),
        status=doc.get("type"),
        published_at=doc.get("publication_date"),
        effective_date=doc.get("effective_on"),
        url=doc.get("html_url"),
        pdf_url=doc.get("pdf_url"),
        topics=topics,
        severity=_severity(doc),
        cfr_references=cfr_refs or None,
        cross_ref_key=f"FR-{document_number}",
        raw=RegulationPayload(
            document_number=document_number,
            document_type=doc.get("type"),
            agencies=list(doc.get("agency_names") or []),
            significant=bool(doc.get("significant")),
            data=doc,
        ),
    )


class FederalRegisterAdapter(BaseSourceAdapter):
    id = "federal_register"
    name = "Federal Register"
    type = "api"
    default_poll_interval_minutes = 720

    def __init__(
        self,
        settings: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        settings = settings or get_settings()
        self.base_url: str = settings.FEDERAL_REGISTER_BASE_URL.rstrip("/")
        self.api_key: Optional[str] = settings.FEDERAL_REGISTER_API_KEY
        self.timeout: int = int(settings.HTTP_TIMEOUT_SECONDS or 30)
        self.lookback_days: int = int(settings.FEDERAL_REGISTER_LOOKBACK_DAYS or 30)
        self.page_size: int = int(settings.FEDERAL_REGISTER_PAGE_SIZE or 50)
        self._transport = transport

    async def is_available(self) -> bool:
        # Public API; the key only raises rate limits
        return True

    def _build_params(self, from_date: date, to_date: date) -> List[tuple[str, Any]]:
        params: List[tuple[str, Any]] = [
            ("conditions[agencies][]", HUD_AGENCY_SLUG),
            ("conditions[publication_date][gte]", from_date.isoformat()),
            ("conditions[publication_date][lte]", to_date.isoformat()),
            ("conditions[type][]", "RULE"),
            ("conditions[type][]", "PRORULE"),
            ("conditions[type][]", "NOTICE"),
            ("per_page", self.page_size),
            ("order", "newest"),
        ]
        params.extend(("fields[]", field) for field in DOCUMENT_FIELDS)
        return params

    @retry(
        wait=wait_exponential(multiplier=1, min=1, max=10),
        stop=stop_after_attempt(3),
        retry=retry_if_exception_type(httpx.HTTPError),
        reraise=True,
    )
    async def _get_documents(
        self,
        client: httpx.AsyncClient,
        params: List[tuple[str, Any]],
    ) -> httpx.Response:
        """
        Returns the response for 2xx/4xx; raises for transport errors and 5xx
        so Tenacity can retry.
        """
        resp = await client.get(f"{self.base_url}/documents.json", params=params)
        if resp.status_code >= 500:
            resp.raise_for_status()
        return resp

    async def fetch(self, params: SourceFetchParams) -> SourceFetchResult:
        items: List[NormalizedLegislationItem] = []
        errors: List[str] = []

        to_date = datetime.utcnow().date()
        from_date = _parse_since(params.since) or (to_date - timedelta(days=self.lookback_days))

        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["X-Api-Key"] = self.api_key

        async with httpx.AsyncClient(
            timeout=self.timeout, headers=headers, transport=self._transport
        ) as client:
            resp = await self._get_documents(client, self._build_params(from_date, to_date))

        if resp.status_code >= 400:
            errors.append(f"Federal Register API error: {resp.status_code}")
            return SourceFetchResult(items=items, errors=errors)

        data = resp.json() or {}
        for doc in data.get("results") or []:
            if not doc.get("document_number"):
                continue
            try:
                normalized = normalize_document(doc)
            except ValueError as e:
                errors.append(
                    f"Federal Register document {doc.get('document_number')} skipped: {e}"
                )
                continue

            if not matches_topic_filter(normalized.topics, params.topics):
                continue
            if is_relevant(normalized.topics):
                items.append(normalized)

        logger.info(
            "Federal Register returned %d relevant documents",
            len(items),
            extra={"source": self.id},
        )

        return SourceFetchResult(
            items=items,
            cursor=to_date.isoformat(),
            has_more=bool(data.get("next_page_url")),
            errors=errors,
        )
