# legiswatch/schemas/legislation.py
"""
Source adapter contract.

Every adapter returns NormalizedLegislationItem objects so the downstream
pipeline (dedup, routing, review queue, publish) is the same no matter how
many providers are registered.
"""
from __future__ import annotations

import hashlib
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, field_validator

from ..models.normalized_update import ItemType, JurisdictionLevel, Severity, TopicTag


class Jurisdiction(BaseModel):
    country: Literal["US"] = "US"
    level: JurisdictionLevel
    state: str | None = None
    locality: str | None = None
    tribe: str | None = None

    @field_validator("state", mode="before")
    @classmethod
    def _upper_state(cls, v):
        if isinstance(v, str):
            stripped = v.strip().upper()
            return stripped or None
        return v


class CfrReference(BaseModel):
    title: int
    part: int
    section: str | None = None


# ---------------------------------------------------------------------------
# Raw provider payloads (discriminated on ``kind``)
# ---------------------------------------------------------------------------

class BillPayload(BaseModel):
    kind: Literal["bill"] = "bill"
    bill_id: str
    bill_number: str | None = None
    session: str | None = None
    status_code: int | None = None
    subjects: list[str] = []
    data: dict[str, Any] = {}


class RegulationPayload(BaseModel):
    kind: Literal["regulation"] = "regulation"
    document_number: str
    document_type: str | None = None
    agencies: list[str] = []
    significant: bool = False
    data: dict[str, Any] = {}


class CasePayload(BaseModel):
    kind: Literal["case"] = "case"
    docket_number: str
    court: str | None = None
    data: dict[str, Any] = {}


class NoticePayload(BaseModel):
    kind: Literal["notice"] = "notice"
    notice_id: str
    issuer: str | None = None
    data: dict[str, Any] = {}


class CfrChangePayload(BaseModel):
    kind: Literal["cfr_change"] = "cfr_change"
    title: int
    part: int
    amendment_date: str | None = None
    data: dict[str, Any] = {}


class OpaquePayload(BaseModel):
    """Fallback for provider payloads with no known structure."""
    kind: Literal["opaque"] = "opaque"
    data: dict[str, Any] = {}


RawPayload = Annotated[
    Union[
        BillPayload,
        RegulationPayload,
        CasePayload,
        NoticePayload,
        CfrChangePayload,
        OpaquePayload,
    ],
    Field(discriminator="kind"),
]


class NormalizedLegislationItem(BaseModel):
    source: str
    source_key: str
    type: ItemType = ItemType.BILL
    jurisdiction: Jurisdiction

    title: str
    summary: str | None = None
    status: str | None = None

    introduced_date: str | None = None
    effective_date: str | None = None
    updated_at: str | None = None
    published_at: str | None = None

    url: str | None = None
    pdf_url: str | None = None

    topics: list[TopicTag] = []
    severity: Severity | None = None
    cfr_references: list[CfrReference] | None = None

    # Provider-independent id used for dedup across sources when available
    cross_ref_key: str | None = None

    raw: RawPayload = Field(default_factory=OpaquePayload)
    text: str | None = None

    @field_validator("source_key", "title")
    @classmethod
    def _not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be empty")
        return v

    @field_validator("cross_ref_key", mode="before")
    @classmethod
    def _blank_to_none(cls, v):
        if isinstance(v, str):
            stripped = v.strip()
            return stripped or None
        return v

    def dedup_key(self, source_id: str) -> str:
        """Adapter-supplied cross-reference key, else a per-source key."""
        return self.cross_ref_key or f"{source_id}:{self.source_key}"

    def content_hash(self) -> str:
        content = f"{self.title}|{self.summary or ''}|{self.status or ''}"
        return hashlib.sha256(content.encode("utf-8")).hexdigest()[:32]


class SourceFetchParams(BaseModel):
    states: list[str] | None = None
    topics: list[TopicTag] | None = None
    since: str | None = None
    include_tribal: bool = False


class SourceFetchResult(BaseModel):
    items: list[NormalizedLegislationItem] = []
    cursor: str | None = None
    has_more: bool = False
    errors: list[str] = []
