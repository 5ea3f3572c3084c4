"""
Topic-to-template routing.

A static, versioned rule table decides which templates a topic can touch.
``seed_routings`` materializes the table into TemplateTopicRouting edges;
``get_affected_templates`` walks those edges for one update. Tribal content is
isolated in both directions: tribal-scoped edges only fire for tribal updates,
and tribal updates only reach tribal- or federal-scoped edges.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Optional, Pattern, Sequence, Set
from uuid import UUID
import logging
import re

from sqlalchemy.orm import Session

from ..models.normalized_update import JurisdictionLevel, TopicTag
from ..models.template import Template
from ..models.template_topic_routing import TemplateTopicRouting

logger = logging.getLogger(__name__)

# Bump whenever TOPIC_MAPPING_RULES changes meaning
ROUTING_RULES_VERSION = "2025.1"


@dataclass(frozen=True)
class TopicMappingRule:
    topic: TopicTag
    description: str
    template_categories: Sequence[str] = ()
    title_patterns: Sequence[Pattern[str]] = ()
    jurisdiction_level: Optional[JurisdictionLevel] = None
    jurisdiction_states: Optional[frozenset[str]] = None

    def matches_template(self, category: Optional[str], title: str) -> bool:
        cat = (category or "").lower()
        if cat and any(c.lower() in cat for c in self.template_categories):
            return True
        return any(p.search(title or "") for p in self.title_patterns)


def _patterns(*raw: str) -> tuple[Pattern[str], ...]:
    return tuple(re.compile(r, re.IGNORECASE) for r in raw)


TOPIC_MAPPING_RULES: tuple[TopicMappingRule, ...] = (
    TopicMappingRule(
        topic=TopicTag.NAHASDA_CORE,
        description="NAHASDA core requirements - tribal housing templates only",
        template_categories=("tribal", "nahasda"),
        title_patterns=_patterns(r"tribal", r"nahasda", r"indian housing", r"ihbg"),
        jurisdiction_level=JurisdictionLevel.TRIBAL,
    ),
    TopicMappingRule(
        topic=TopicTag.IHBG,
        description="Indian Housing Block Grant - tribal funding templates",
        template_categories=("tribal", "nahasda"),
        title_patterns=_patterns(r"ihbg", r"indian housing block grant", r"tribal"),
        jurisdiction_level=JurisdictionLevel.TRIBAL,
    ),
    TopicMappingRule(
        topic=TopicTag.TRIBAL_ADJACENT,
        description="Tribal-adjacent updates - general tribal templates",
        template_categories=("tribal",),
        title_patterns=_patterns(r"tribal", r"native", r"indian"),
        jurisdiction_level=JurisdictionLevel.TRIBAL,
    ),
    TopicMappingRule(
        topic=TopicTag.LANDLORD_TENANT,
        description="Landlord-tenant law - state-specific lease templates",
        template_categories=("lease", "rental", "landlord", "tenant", "notice", "eviction"),
        title_patterns=_patterns(
            r"lease", r"rental", r"landlord", r"tenant", r"notice", r"eviction"
        ),
        jurisdiction_level=JurisdictionLevel.STATE,
    ),
    TopicMappingRule(
        topic=TopicTag.FAIR_HOUSING,
        description="Fair Housing Act - screening and lease templates",
        template_categories=("lease", "rental", "compliance", "screening"),
        title_patterns=_patterns(
            r"fair housing", r"discrimination", r"screening", r"application"
        ),
    ),
    TopicMappingRule(
        topic=TopicTag.SECURITY_DEPOSIT,
        description="Security deposit laws - state-specific deposit templates",
        template_categories=("lease", "move-in", "move-out"),
        title_patterns=_patterns(r"security deposit", r"deposit", r"move.?in", r"move.?out"),
        jurisdiction_level=JurisdictionLevel.STATE,
    ),
    TopicMappingRule(
        topic=TopicTag.EVICTION,
        description="Eviction procedures - state-specific eviction templates",
        template_categories=("eviction", "notice", "court"),
        title_patterns=_patterns(
            r"eviction", r"notice to quit", r"unlawful detainer", r"pay or quit"
        ),
        jurisdiction_level=JurisdictionLevel.STATE,
    ),
    TopicMappingRule(
        topic=TopicTag.HUD_GENERAL,
        description="HUD general regulations - federal compliance templates",
        template_categories=("compliance", "federal", "hud"),
        title_patterns=_patterns(r"\bhud\b", r"federal", r"section 8", r"voucher"),
        jurisdiction_level=JurisdictionLevel.FEDERAL,
    ),
    TopicMappingRule(
        topic=TopicTag.ENVIRONMENTAL,
        description="Environmental requirements - disclosure templates",
        template_categories=("environmental", "disclosure", "tribal"),
        title_patterns=_patterns(r"environmental", r"\blead\b", r"asbestos", r"mold", r"radon"),
    ),
    TopicMappingRule(
        topic=TopicTag.INCOME_LIMITS,
        description="Income limit updates - affordable housing templates",
        template_categories=("affordable", "income", "tribal"),
        title_patterns=_patterns(r"income", r"affordable", r"low.?income"),
    ),
    TopicMappingRule(
        topic=TopicTag.PROCUREMENT,
        description="Procurement rules - tribal contractor templates",
        template_categories=("tribal", "procurement", "contractor"),
        title_patterns=_patterns(r"procurement", r"contractor", r"\bbid\b"),
        jurisdiction_level=JurisdictionLevel.TRIBAL,
    ),
)


# ---------------------------------------------------------------------------
# Matching
# ---------------------------------------------------------------------------

def jurisdiction_matches(
    edge_level: Optional[JurisdictionLevel],
    edge_state: Optional[str],
    update_level: Optional[JurisdictionLevel],
    update_state: Optional[str],
) -> bool:
    if edge_level is JurisdictionLevel.TRIBAL and update_level is not JurisdictionLevel.TRIBAL:
        return False
    if update_level is JurisdictionLevel.TRIBAL and edge_level not in (
        JurisdictionLevel.TRIBAL,
        JurisdictionLevel.FEDERAL,
    ):
        return False
    if edge_state and update_state and edge_state != update_state:
        return False
    return True


def get_affected_templates(
    db: Session,
    topics: Iterable[str],
    jurisdiction_state: Optional[str] = None,
    jurisdiction_level: Optional[JurisdictionLevel | str] = None,
) -> List[UUID]:
    """
    Template ids (deduplicated, first-seen order) whose active routing edges
    accept an update with these topics and this jurisdiction.
    """
    wanted = {t.value if isinstance(t, TopicTag) else str(t) for t in topics}
    if not wanted:
        return []

    level = JurisdictionLevel(jurisdiction_level) if jurisdiction_level else None
    state = jurisdiction_state.upper() if jurisdiction_state else None

    edges = (
        db.query(TemplateTopicRouting)
        .join(Template, TemplateTopicRouting.template_id == Template.id)
        .filter(
            TemplateTopicRouting.is_active.is_(True),
            Template.is_active.is_(True),
            TemplateTopicRouting.topic.in_(wanted),
        )
        .order_by(TemplateTopicRouting.created_at, TemplateTopicRouting.id)
        .all()
    )

    seen: Set[UUID] = set()
    result: List[UUID] = []
    for edge in edges:
        if not jurisdiction_matches(edge.jurisdiction_level, edge.jurisdiction_state, level, state):
            continue
        if edge.template_id in seen:
            continue
        seen.add(edge.template_id)
        result.append(edge.template_id)
    return result


# ---------------------------------------------------------------------------
# Edge management
# ---------------------------------------------------------------------------

def _find_edge(
    db: Session,
    template_id: UUID,
    topic: str,
    level: Optional[JurisdictionLevel],
    state: Optional[str],
) -> Optional[TemplateTopicRouting]:
    query = db.query(TemplateTopicRouting).filter(
        TemplateTopicRouting.template_id == template_id,
        TemplateTopicRouting.topic == topic,
    )
    if level is None:
        query = query.filter(TemplateTopicRouting.jurisdiction_level.is_(None))
    else:
        query = query.filter(TemplateTopicRouting.jurisdiction_level == level)
    if state is None:
        query = query.filter(TemplateTopicRouting.jurisdiction_state.is_(None))
    else:
        query = query.filter(TemplateTopicRouting.jurisdiction_state == state)
    return query.first()


def _edge_state_for(rule: TopicMappingRule, template: Template) -> tuple[bool, Optional[str]]:
    """(eligible, edge state) for a rule/template pair that already matched."""
    template_state = template.state_code.upper() if template.state_code else None
    if rule.jurisdiction_states and template_state and template_state not in rule.jurisdiction_states:
        return False, None
    if rule.jurisdiction_level is JurisdictionLevel.STATE:
        return True, template_state
    return True, None


def seed_routings(db: Session, rules: Sequence[TopicMappingRule] = TOPIC_MAPPING_RULES) -> int:
    """
    Materialize the rule table into routing edges.

    No-op once any edge exists, so re-running never duplicates or resurrects
    edges an admin deactivated.
    """
    existing = db.query(TemplateTopicRouting.id).first()
    if existing is not None:
        logger.info("Routing edges already present; skipping seed", extra={"step": "seed_routings"})
        return 0

    templates = db.query(Template).order_by(Template.created_at, Template.id).all()
    created = 0

    for rule in rules:
        for template in templates:
            if not rule.matches_template(template.category, template.title):
                continue
            eligible, state = _edge_state_for(rule, template)
            if not eligible:
                continue
            if _find_edge(db, template.id, rule.topic.value, rule.jurisdiction_level, state):
                continue

            db.add(
                TemplateTopicRouting(
                    template_id=template.id,
                    topic=rule.topic.value,
                    jurisdiction_level=rule.jurisdiction_level,
                    jurisdiction_state=state,
                    is_active=True,
                )
            )
            db.flush()
            created += 1

    db.commit()
    logger.info(
        "Seeded %d routing edges from rules version %s",
        created,
        ROUTING_RULES_VERSION,
        extra={"step": "seed_routings"},
    )
    return created


def add_routing(
    db: Session,
    template_id: UUID,
    topic: TopicTag | str,
    jurisdiction_level: Optional[JurisdictionLevel] = None,
    jurisdiction_state: Optional[str] = None,
) -> TemplateTopicRouting:
    """Create a manual edge, or reactivate the matching one."""
    topic_value = topic.value if isinstance(topic, TopicTag) else TopicTag(topic).value
    state = jurisdiction_state.upper() if jurisdiction_state else None

    edge = _find_edge(db, template_id, topic_value, jurisdiction_level, state)
    if edge is not None:
        if not edge.is_active:
            edge.is_active = True
            db.commit()
        return edge

    edge = TemplateTopicRouting(
        template_id=template_id,
        topic=topic_value,
        jurisdiction_level=jurisdiction_level,
        jurisdiction_state=state,
        is_active=True,
    )
    db.add(edge)
    db.commit()
    db.refresh(edge)
    return edge


def deactivate_routing(db: Session, routing_id: UUID) -> Optional[TemplateTopicRouting]:
    edge = db.get(TemplateTopicRouting, routing_id)
    if edge is None:
        return None
    edge.is_active = False
    db.commit()
    return edge
