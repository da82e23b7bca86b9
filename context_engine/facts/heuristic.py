"""Keyword and regex based fact extraction.

Each trigger in the catalogue below inspects one user utterance and yields a
flat ``key -> value`` update. Keys are then placed in a category through
:data:`context_engine.facts.groups.CATEGORY_FOR_KEY`.
"""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING

from context_engine.facts.groups import merge_flat_updates

if TYPE_CHECKING:
    from collections.abc import Mapping

    from context_engine.models import FactGroups

LOGGER = logging.getLogger(__name__)

_NAME_MARKERS = ("my name is", "call me", "i'm called", "i am called")
_NAME_STOPWORDS = frozenset(
    {"and", "but", "or", "i", "i'm", "im", "we", "from", "at", "who", "here", "by", "the", "a"},
)
_STRIP_CHARS = " .,!?:;\"'()«»-—–"
_SENTENCE_END = ".,!?;:"
_MAX_NAME_TOKENS = 3

_GOAL_RE = re.compile(r"\b(need|needs|want|wants|looking for)\b")
_TEAM_SIZE_RE = re.compile(
    r"(\d{2,5})\s*(?:people|persons|employees|users|members|engineers)\b",
    re.IGNORECASE,
)
_OFFICES_RE = re.compile(r"(\d{1,2})\s*offices?\b", re.IGNORECASE)
_SSO_RE = re.compile(r"\bsso\b")
_ACCESS_RE = re.compile(r"\b(access|roles?|permissions?)\b")
_SLA_RE = re.compile(r"sla\D{0,12}?(\d{2}(?:\.\d{1,3})?)\s*%", re.IGNORECASE)
_AUDIT_RE = re.compile(r"\baudit")
_LOCALE_HINT_RE = re.compile(r"locali[sz]|translat|\blocales?\b")
_LOCALE_ANY_CASE_RE = re.compile(r"\b(en|ru|de|fr|es)\b", re.IGNORECASE)
_LOCALE_UPPER_RE = re.compile(r"\b(EN|RU|DE|FR|ES)\b")
_DEADLINE_RE = re.compile(r"\bdeadlines?\b|\bdue (?:by|on)\b")
_RETENTION_RE = re.compile(r"personal data|\bretention\b|\bretain\b")
_REPORTS_RE = re.compile(r"\breports?\b|\breporting\b|\bworkload\b")
_COMPANY_RE = re.compile(
    r"\b[Ii](?: work| am working|'m working) (?:at|for)\s+([A-Z][\w&.-]*(?:\s+[A-Z][\w&.-]*){0,2})",
)
_TIMEZONE_RE = re.compile(r"\b(?:UTC|GMT)\s*[+-]\s*\d{1,2}(?::\d{2})?", re.IGNORECASE)
_LANGUAGE_RE = re.compile(
    r"\b(?:respond|reply|answer|write|speak|talk)\s+(?:to me\s+)?in\s+([A-Z][a-z]+)",
    re.IGNORECASE,
)

_INTEGRATIONS = {
    "google calendar": "Google Calendar",
    "outlook": "Outlook",
    "slack": "Slack",
    "jira": "Jira",
    "salesforce": "Salesforce",
}
_PLATFORMS = {"mobile": "mobile", "web": "web", "desktop": "desktop"}
_STACK = {
    "python": "Python",
    "kotlin": "Kotlin",
    "java": "Java",
    "typescript": "TypeScript",
    "javascript": "JavaScript",
    "react": "React",
    "django": "Django",
    "fastapi": "FastAPI",
    "postgres": "PostgreSQL",
    "postgresql": "PostgreSQL",
    "mysql": "MySQL",
    "mongodb": "MongoDB",
    "redis": "Redis",
    "kubernetes": "Kubernetes",
    "docker": "Docker",
    "aws": "AWS",
    "gcp": "GCP",
    "azure": "Azure",
}


def _extract_name(text: str, lower: str) -> str | None:
    for marker in _NAME_MARKERS:
        idx = lower.find(marker)
        if idx < 0:
            continue
        tokens: list[str] = []
        for raw in text[idx + len(marker) :].split():
            word = raw.strip(_STRIP_CHARS)
            if not word or not any(ch.isalpha() for ch in word):
                if tokens:
                    break
                continue
            if word.lower() in _NAME_STOPWORDS:
                break
            tokens.append(word)
            if len(tokens) == _MAX_NAME_TOKENS or raw[-1] in _SENTENCE_END:
                break
        if tokens:
            return " ".join(tokens)
    return None


def _keywords_present(lower: str, table: Mapping[str, str]) -> list[str]:
    found: list[str] = []
    for needle, label in table.items():
        if re.search(rf"\b{re.escape(needle)}\b", lower) and label not in found:
            found.append(label)
    return found


def _extract_locales(text: str, lower: str) -> list[str]:
    pattern = _LOCALE_ANY_CASE_RE if _LOCALE_HINT_RE.search(lower) else _LOCALE_UPPER_RE
    locales: list[str] = []
    for code in pattern.findall(text):
        upper = code.upper()
        if upper not in locales:
            locales.append(upper)
    return locales


def extract_updates(user_message: str) -> dict[str, str]:  # noqa: C901, PLR0912
    """Return ``key -> value`` updates found in a single user utterance."""
    text = user_message.strip()
    if not text:
        return {}
    lower = text.lower()
    updates: dict[str, str] = {}

    if name := _extract_name(text, lower):
        updates["user_name"] = name

    if company := _COMPANY_RE.search(text):
        updates["company"] = company.group(1).rstrip(".")

    if _GOAL_RE.search(lower):
        updates["goal"] = text

    if team := _TEAM_SIZE_RE.search(text):
        updates["team_size"] = team.group(1)
    if offices := _OFFICES_RE.search(text):
        updates["offices"] = offices.group(1)

    if _SSO_RE.search(lower):
        updates["sso"] = "required"

    if integrations := _keywords_present(lower, _INTEGRATIONS):
        updates["integrations"] = ", ".join(integrations)

    if _ACCESS_RE.search(lower):
        updates["access_roles"] = text

    if "sla" in lower:
        sla = _SLA_RE.search(text)
        updates["sla"] = f"{sla.group(1)}%" if sla else text

    if _AUDIT_RE.search(lower):
        updates["audit"] = "required"

    if "budget" in lower or "usd" in lower or "$" in lower:
        updates["budget"] = text

    if platforms := _keywords_present(lower, _PLATFORMS):
        updates["platforms"] = ", ".join(platforms)

    if locales := _extract_locales(text, lower):
        updates["locales"] = ", ".join(locales)

    if "mvp" in lower:
        updates["mvp_timeline"] = text

    if _DEADLINE_RE.search(lower):
        updates["deadlines"] = text

    if _RETENTION_RE.search(lower):
        updates["data_retention"] = text

    if _REPORTS_RE.search(lower):
        updates["reports"] = text

    if timezone := _TIMEZONE_RE.search(text):
        updates["timezone"] = re.sub(r"\s+", "", timezone.group(0)).upper()

    if language := _LANGUAGE_RE.search(text):
        updates["language"] = language.group(1).capitalize()

    if stack := _keywords_present(lower, _STACK):
        updates["stack"] = ", ".join(stack)

    return updates


class HeuristicFactsExtractor:
    """Deterministic, network-free fact extractor."""

    def update_facts(self, user_message: str, existing: FactGroups) -> FactGroups:
        """Return ``existing`` with updates from ``user_message`` merged in."""
        updates = extract_updates(user_message)
        if not updates:
            return existing
        LOGGER.debug("Heuristic fact updates: %s", updates)
        return merge_flat_updates(updates, existing)

    async def extract(self, user_message: str, existing: FactGroups) -> FactGroups:
        """Async entry point shared with the LLM-assisted extractor."""
        return self.update_facts(user_message, existing)
