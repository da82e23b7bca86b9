"""Merge and cap helpers for categorized fact stores."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from context_engine.facts.models import ExtractedFact
from context_engine.models import count_facts

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

    from context_engine.models import FactGroups

LOGGER = logging.getLogger(__name__)

DEFAULT_CATEGORY = "other"

CATEGORY_FOR_KEY: dict[str, str] = {
    "user_name": "identity",
    "company": "identity",
    "role": "identity",
    "contact": "identity",
    "name": "project",
    "description": "project",
    "scope": "project",
    "features": "requirements",
    "integrations": "requirements",
    "platforms": "requirements",
    "sso": "requirements",
    "compliance": "requirements",
    "access_roles": "requirements",
    "reports": "requirements",
    "budget": "constraints",
    "timeline": "constraints",
    "team_size": "constraints",
    "resources": "constraints",
    "offices": "constraints",
    "language": "preferences",
    "timezone": "preferences",
    "locale": "preferences",
    "locales": "preferences",
    "stack": "technical",
    "architecture": "technical",
    "api": "technical",
    "sla": "business",
    "audit": "business",
    "security": "business",
    "mvp_timeline": "business",
    "deadlines": "timeline",
    "milestones": "timeline",
}


def category_for_key(key: str) -> str:
    """Return the category a heuristic key belongs to."""
    return CATEGORY_FOR_KEY.get(key, DEFAULT_CATEGORY)


def merge_facts(facts: Iterable[ExtractedFact], existing: Mapping[str, Mapping[str, str]]) -> FactGroups:
    """Upsert ``facts`` into a copy of ``existing``.

    Blank keys or values are skipped, a blank category becomes ``other``, and
    a key that already exists keeps its position but takes the new value.
    Categories left empty are dropped. ``existing`` is never mutated.
    """
    result: FactGroups = {}
    for category, group in existing.items():
        target = result.setdefault(category.strip() or DEFAULT_CATEGORY, {})
        for key, value in group.items():
            k, v = key.strip(), value.strip()
            if k and v:
                target[k] = v

    for fact in facts:
        key, value = fact.key.strip(), fact.value.strip()
        if not key or not value:
            continue
        category = fact.category.strip() or DEFAULT_CATEGORY
        result.setdefault(category, {})[key] = value

    return {category: group for category, group in result.items() if group}


def merge_flat_updates(updates: Mapping[str, str], existing: Mapping[str, Mapping[str, str]]) -> FactGroups:
    """Merge ``key -> value`` updates, categorizing each key with the static table."""
    facts = [
        ExtractedFact(category=category_for_key(key), key=key, value=value)
        for key, value in updates.items()
    ]
    return merge_facts(facts, existing)


def trim_facts(facts: FactGroups, max_facts: int) -> FactGroups:
    """Drop oldest-inserted entries until at most ``max_facts`` remain.

    Returns a new store; empty categories are removed.
    """
    trimmed: FactGroups = {category: dict(group) for category, group in facts.items() if group}
    total = count_facts(trimmed)
    limit = max(max_facts, 0)
    removed = 0
    while total > limit and trimmed:
        category = next(iter(trimmed))
        group = trimmed[category]
        del group[next(iter(group))]
        if not group:
            del trimmed[category]
        total -= 1
        removed += 1
    if removed:
        LOGGER.info("Trimmed %d fact(s) to stay within max_facts=%d", removed, max_facts)
    return trimmed
