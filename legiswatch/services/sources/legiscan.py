from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

import logging

import httpx
from tenacity import retry, wait_exponential, stop_after_attempt, retry_if_exception_type

from .base import BaseSourceAdapter
from .classification import classify_topics, is_relevant, matches_topic_filter
from ...core.config import Settings, get_settings
from ...models.normalized_update import ItemType, JurisdictionLevel, Severity
from ...schemas.legislation import (
    BillPayload,
    Jurisdiction,
    NormalizedLegislationItem,
    SourceFetchParams,
    SourceFetchResult,
)

logger = logging.getLogger(__name__)

STATUS_MAP = {
    1: "Introduced",
    2: "Engrossed",
    3: "Enrolled",
    4: "Passed",
    5: "Vetoed",
    6: "Failed",
}

SEARCH_KEYWORDS = ("landlord", "tenant", "rental", "eviction", "lease", "housing")


def normalize_bill(bill: Dict[str, Any], state: str, year: int) -> NormalizedLegislationItem:
    subjects = [s.get("subject_name", "") for s in (bill.get("subjects") or [])]
    search_text = " ".join(
        [bill.get("title") or "", bill.get("description") or "", " ".join(subjects)]
    )
    status_code = bill.get("status")
    session = bill.get("session") or {}
    session_year = session.get("year_start") or year
    bill_number = bill.get("bill_number") or str(bill["bill_id"])

    return NormalizedLegislationItem(
        source=LegiScanAdapter.id,
        source_key=str(bill["bill_id"]),
        type=ItemType.BILL,
        jurisdiction=Jurisdiction(level=JurisdictionLevel.STATE, state=state),
        title=bill.get("title") or bill_number,
        summary=bill.get("description"),
        status=STATUS_MAP.get(status_code, "Unknown"),
        updated_at=bill.get("status_date") or bill.get("last_action_date"),
        url=bill.get("url") or bill.get("text_url"),
        topics=classify_topics(search_text),
        severity=Severity.HIGH if (status_code or 0) >= 3 else Severity.MEDIUM,
        # Same bill seen through another tracker must collapse onto this key
        cross_ref_key=f"{state}-{bill_number}-{session_year}",
        raw=BillPayload(
            bill_id=str(bill["bill_id"]),
            bill_number=bill_number,
            session=session.get("session_name"),
            status_code=status_code,
            subjects=subjects,
            data=bill,
        ),
    )


class LegiScanAdapter(BaseSourceAdapter):
    id = "legiscan"
    name = "LegiScan"
    type = "api"
    default_poll_interval_minutes = 1440

    def __init__(
        self,
        settings: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        settings = settings or get_settings()
        self.base_url: str = settings.LEGISCAN_BASE_URL.rstrip("/")
        self.api_key: Optional[str] = settings.LEGISCAN_API_KEY
        self.timeout: int = int(settings.HTTP_TIMEOUT_SECONDS or 30)
        self._transport = transport

    async def is_available(self) -> bool:
        return bool(self.api_key)

    @retry(
        wait=wait_exponential(multiplier=1, min=1, max=10),
        stop=stop_after_attempt(3),
        retry=retry_if_exception_type(httpx.HTTPError),
        reraise=True,
    )
    async def _search(
        self, client: httpx.AsyncClient, state: str, year: int
    ) -> httpx.Response:
        resp = await client.get(
            f"{self.base_url}/",
            params={
                "key": self.api_key,
                "op": "getSearch",
                "state": state,
                "query": " OR ".join(SEARCH_KEYWORDS),
                "year": year,
            },
        )
        if resp.status_code >= 500:
            resp.raise_for_status()
        return resp

    async def fetch(self, params: SourceFetchParams) -> SourceFetchResult:
        if not self.api_key:
            raise RuntimeError("LEGISCAN_API_KEY not configured")
        if not params.states:
            raise ValueError("LegiScan requires a state filter; none configured for this source")

        items: List[NormalizedLegislationItem] = []
        errors: List[str] = []
        year = datetime.utcnow().year

        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            for state in params.states:
                try:
                    resp = await self._search(client, state, year)
                except httpx.HTTPError as e:
                    errors.append(f"LegiScan fetch error for {state}: {e}")
                    continue

                if resp.status_code >= 400:
                    errors.append(f"LegiScan error for {state}: {resp.status_code}")
                    continue

                data = resp.json() or {}
                if data.get("status") == "ERROR":
                    errors.append(f"LegiScan error for {state}: {data.get('alert') or data}")
                    continue

                results = data.get("searchresult") or {}
                found = 0
                for key, bill in results.items():
                    if key == "summary" or not isinstance(bill, dict) or not bill.get("bill_id"):
                        continue
                    found += 1
                    normalized = normalize_bill(bill, state, year)
                    if not matches_topic_filter(normalized.topics, params.topics):
                        continue
                    if is_relevant(normalized.topics):
                        items.append(normalized)

                logger.info(
                    "LegiScan %s returned %d bills",
                    state,
                    found,
                    extra={"source": self.id},
                )

        return SourceFetchResult(
            items=items,
            cursor=datetime.utcnow().isoformat(),
            errors=errors,
        )
