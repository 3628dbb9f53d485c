from __future__ import annotations

import re
from dataclasses import dataclass, replace

from .models import TopicAssignment
from .taxonomy import ALIAS_LOOKUP, CURATED_TAXONOMY, normalize_topic_key, slugify_topic

MAX_TOPICS = 24
NER_TEXT_LIMIT = 12000

STOP_PHRASES = frozenset(
    normalize_topic_key(value)
    for value in (
        "The",
        "A",
        "An",
        "This",
        "That",
        "These",
        "Those",
        "Breaking News",
        "Defense News",
        "Field Brief",
        "Read More",
        "United States",
    )
)

_ORGANIZATION_HINTS = ("department", "command", "agency", "force", "ministry", "office", "corps", "navy", "army")
_PROGRAM_HINTS = ("initiative", "program", "effort", "procurement", "contract", "project")
_COMPANY_HINTS = ("inc", "corp", "corporation", "llc", "technologies", "systems", "group", "defense")
_GEOGRAPHY_HINTS = ("sea", "ocean", "middle east", "europe", "pacific", "atlantic", "ukraine", "russia", "china")

_ACRONYM_RE = re.compile(r"\b[A-Z][A-Z0-9]{1,7}\b")
_PHRASE_RE = re.compile(r"\b([A-Z][A-Za-z0-9'&.-]+(?:\s+[A-Z][A-Za-z0-9'&.-]+){0,4})\b")
_LABEL_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9\s'&.-]*$")
_PURE_ACRONYM_RE = re.compile(r"^[A-Z0-9]{2,8}$")
_PERSON_RE = re.compile(r"^[A-Z][a-z]+\s+[A-Z][a-z]+(?:\s+[A-Z][a-z]+)?$")
_TECHNOLOGY_RE = re.compile(r"\b(ai|radar|satellite|hypersonic|cyber|autonomy|missile|drone)", re.IGNORECASE)


@dataclass(frozen=True)
class _Candidate:
    slug: str
    label: str
    topic_type: str
    occurrences: int
    confidence: float
    is_primary: bool
    matched_by: str


@dataclass(frozen=True)
class _Corpora:
    title: str
    summary: str
    full_text: str
    corpus: str
    normalized_title: str


def _build_corpora(title: str | None, summary: str | None, full_text: str | None) -> _Corpora:
    title = (title or "").strip()
    summary = (summary or "").strip()
    full_text = (full_text or "").strip()
    corpus = re.sub(r"\s+", " ", " ".join(part for part in (title, summary, full_text) if part))
    return _Corpora(
        title=title,
        summary=summary,
        full_text=full_text,
        corpus=corpus,
        normalized_title=title.lower(),
    )


def count_occurrences(corpus: str, value: str) -> int:
    value = value.strip()
    if not value:
        return 0
    return len(re.findall(rf"\b{re.escape(value)}\b", corpus, flags=re.IGNORECASE))


def detect_topic_type(candidate: str) -> str:
    lowered = normalize_topic_key(candidate)
    if _PURE_ACRONYM_RE.match(candidate):
        return "acronym"
    if any(hint in lowered for hint in _COMPANY_HINTS):
        return "company"
    if any(hint in lowered for hint in _ORGANIZATION_HINTS):
        return "organization"
    if any(hint in lowered for hint in _PROGRAM_HINTS):
        return "program"
    if any(hint in lowered for hint in _GEOGRAPHY_HINTS):
        return "geography"
    if _TECHNOLOGY_RE.search(candidate):
        return "technology"
    if _PERSON_RE.match(candidate):
        return "person"
    return "organization"


def _from_taxonomy(corpora: _Corpora) -> list[_Candidate]:
    extracted: list[_Candidate] = []
    for topic in CURATED_TAXONOMY:
        occurrences = 0
        in_title = False
        for alias in dict.fromkeys((topic.label, *topic.aliases)):
            hits = count_occurrences(corpora.corpus, alias)
            if hits <= 0:
                continue
            occurrences += hits
            in_title = in_title or alias.lower() in corpora.normalized_title
        if occurrences <= 0:
            continue
        confidence = min(0.99, 0.82 + (0.1 if in_title else 0.0) + min(occurrences, 8) * 0.01)
        extracted.append(
            _Candidate(
                slug=topic.slug,
                label=topic.label,
                topic_type=topic.topic_type,
                occurrences=occurrences,
                confidence=confidence,
                is_primary=in_title or occurrences >= 3,
                matched_by="taxonomy",
            )
        )
    return extracted


def _candidate_entities(source: str) -> dict[str, int]:
    matches: dict[str, int] = {}
    for token in _ACRONYM_RE.findall(source):
        value = token.strip()
        if len(value) < 2:
            continue
        matches[value] = matches.get(value, 0) + 1
    for raw in _PHRASE_RE.findall(source):
        value = raw.strip()
        if len(value) < 3:
            continue
        matches[value] = matches.get(value, 0) + 1
    return matches


def _from_heuristic_ner(corpora: _Corpora) -> list[_Candidate]:
    source = " ".join(
        part for part in (corpora.title, corpora.summary, corpora.full_text[:NER_TEXT_LIMIT]) if part
    )
    extracted: list[_Candidate] = []
    for label, base_hits in _candidate_entities(source).items():
        normalized = normalize_topic_key(label)
        if normalized in STOP_PHRASES:
            continue
        if not _LABEL_RE.match(label):
            continue
        if len(label.split(" ")) > 5:
            continue
        occurrences = max(base_hits, count_occurrences(corpora.corpus, label))
        if occurrences <= 0:
            continue
        slug = slugify_topic(label)
        if not slug:
            continue
        in_title = normalized in corpora.normalized_title
        confidence = min(0.84, 0.5 + (0.14 if in_title else 0.0) + min(occurrences, 6) * 0.03)
        extracted.append(
            _Candidate(
                slug=slug,
                label=label,
                topic_type=detect_topic_type(label),
                occurrences=occurrences,
                confidence=confidence,
                is_primary=in_title or occurrences >= 4,
                matched_by="ner",
            )
        )
    return extracted


def _merge(candidates: list[_Candidate]) -> list[_Candidate]:
    merged: dict[str, _Candidate] = {}
    for candidate in candidates:
        canonical = ALIAS_LOOKUP.get(normalize_topic_key(candidate.label))
        if canonical is not None:
            candidate = replace(
                candidate,
                slug=canonical.slug,
                label=canonical.label,
                topic_type=canonical.topic_type,
                confidence=max(candidate.confidence, 0.86),
            )
        existing = merged.get(candidate.slug)
        if existing is None:
            merged[candidate.slug] = candidate
            continue
        merged[candidate.slug] = replace(
            existing,
            label=existing.label if len(existing.label) >= len(candidate.label) else candidate.label,
            occurrences=existing.occurrences + candidate.occurrences,
            confidence=min(0.99, max(existing.confidence, candidate.confidence) + 0.01),
            is_primary=existing.is_primary or candidate.is_primary,
            matched_by="taxonomy" if "taxonomy" in (existing.matched_by, candidate.matched_by) else "ner",
        )
    return list(merged.values())


def extract_topics(
    title: str | None, summary: str | None = None, full_text: str | None = None
) -> list[TopicAssignment]:
    """Label an article with curated taxonomy topics and named entities.

    Taxonomy aliases and heuristically extracted capitalised phrases are merged
    by canonical slug. Results are ordered primary first, then by confidence,
    occurrences and label, and capped at MAX_TOPICS.
    """
    corpora = _build_corpora(title, summary, full_text)
    if not corpora.corpus:
        return []
    merged = _merge(_from_taxonomy(corpora) + _from_heuristic_ner(corpora))
    ranked = sorted(
        (candidate for candidate in merged if candidate.slug and candidate.label),
        key=lambda c: (not c.is_primary, -c.confidence, -c.occurrences, c.label.lower()),
    )
    return [
        TopicAssignment(
            slug=candidate.slug,
            label=candidate.label,
            is_primary=candidate.is_primary,
            confidence=round(candidate.confidence, 3),
            topic_type=candidate.topic_type,
            occurrences=candidate.occurrences,
        )
        for candidate in ranked[:MAX_TOPICS]
    ]
