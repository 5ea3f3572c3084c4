"""Keyword topic classification shared by the bundled adapters."""
from __future__ import annotations

from typing import Iterable, List

from ...models.normalized_update import TopicTag

NAHASDA_KEYWORDS = (
    "nahasda",
    "native american housing",
    "indian housing block grant",
    "ihbg",
    "tribal housing",
    "24 cfr 1000",
    "indian housing plan",
    "tdhe",
    "tribally designated housing entity",
)

LANDLORD_TENANT_KEYWORDS = (
    "landlord",
    "tenant",
    "eviction",
    "rental",
    "fair housing",
    "lease",
    "security deposit",
    "housing discrimination",
    "section 8",
    "public housing",
    "residential tenancy",
)


def _contains_any(text: str, keywords: Iterable[str]) -> bool:
    return any(kw in text for kw in keywords)


def classify_topics(
    text: str,
    *,
    tribal_signal: bool = False,
    hud_document: bool = False,
) -> List[TopicTag]:
    """
    Map free text onto the topic vocabulary.

    ``tribal_signal`` lets a caller force the NAHASDA branch on structured
    evidence (e.g. a 24 CFR part 1000 reference). ``hud_document`` adds
    ``hud_general`` when nothing more specific matched.
    Returns ``[not_relevant]`` rather than an empty list.
    """
    search_text = (text or "").lower()
    topics: List[TopicTag] = []

    if tribal_signal or _contains_any(search_text, NAHASDA_KEYWORDS):
        topics.append(TopicTag.NAHASDA_CORE)
        if "ihbg" in search_text or "block grant" in search_text:
            topics.append(TopicTag.IHBG)
        if "environmental" in search_text:
            topics.append(TopicTag.ENVIRONMENTAL)
        if "procurement" in search_text:
            topics.append(TopicTag.PROCUREMENT)
        if "income" in search_text and "limit" in search_text:
            topics.append(TopicTag.INCOME_LIMITS)

    if _contains_any(search_text, LANDLORD_TENANT_KEYWORDS):
        topics.append(TopicTag.LANDLORD_TENANT)
        if "fair housing" in search_text:
            topics.append(TopicTag.FAIR_HOUSING)
        if "security deposit" in search_text:
            topics.append(TopicTag.SECURITY_DEPOSIT)
        if "eviction" in search_text:
            topics.append(TopicTag.EVICTION)

    if hud_document and not topics:
        topics.append(TopicTag.HUD_GENERAL)

    if not topics:
        topics.append(TopicTag.NOT_RELEVANT)

    return topics


def is_relevant(topics: Iterable[TopicTag]) -> bool:
    return TopicTag.NOT_RELEVANT not in set(topics)


def matches_topic_filter(
    topics: Iterable[TopicTag], topic_filter: Iterable[TopicTag] | None
) -> bool:
    if not topic_filter:
        return True
    wanted = set(topic_filter)
    return any(t in wanted for t in topics)
