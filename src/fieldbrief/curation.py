from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable, Sequence

from .config import ClusterPolicy
from .models import (
    ROLE_ANALYSIS,
    ROLE_OFFICIAL,
    ROLE_OPINION,
    ROLE_REPORTING,
    ArticleRecord,
    Citation,
)
from .utils import collapse_whitespace, epoch_seconds

MIN_CITATIONS = 3
MAX_CITATIONS = 16

ROLE_PRIORITY = {
    ROLE_REPORTING: 4,
    ROLE_OFFICIAL: 3,
    ROLE_ANALYSIS: 2,
    ROLE_OPINION: 1,
}


@dataclass(frozen=True)
class RoleCounts:
    reporting: int = 0
    analysis: int = 0
    official: int = 0
    opinion: int = 0

    @property
    def total(self) -> int:
        return self.reporting + self.analysis + self.official + self.opinion


@dataclass(frozen=True)
class CurationSummary:
    reporting_count: int
    analysis_count: int
    official_count: int
    opinion_count: int
    has_official_source: bool
    source_diversity: int


def count_roles(roles: Iterable[str]) -> RoleCounts:
    tally = {ROLE_REPORTING: 0, ROLE_ANALYSIS: 0, ROLE_OFFICIAL: 0, ROLE_OPINION: 0}
    for role in roles:
        tally[role if role in tally else ROLE_REPORTING] += 1
    return RoleCounts(
        reporting=tally[ROLE_REPORTING],
        analysis=tally[ROLE_ANALYSIS],
        official=tally[ROLE_OFFICIAL],
        opinion=tally[ROLE_OPINION],
    )


def role_flags(counts: RoleCounts, policy: ClusterPolicy) -> tuple[bool, bool]:
    """Return (press_release_driven, opinion_limited) for a role mix."""
    total = counts.total
    if total == 0:
        return False, False
    press_release_driven = counts.official / total > policy.official_majority
    opinion_limited = counts.opinion / total > policy.opinion_ceiling
    return press_release_driven, opinion_limited


def clamp_max_citations(value: int) -> int:
    return max(MIN_CITATIONS, min(int(value), MAX_CITATIONS))


def opinion_allowance(non_opinion: int, ceiling: float) -> int:
    """Largest opinion count that keeps the opinion share at or under ceiling."""
    if non_opinion == 0:
        return 1
    if ceiling >= 1:
        return MAX_CITATIONS
    if ceiling <= 0:
        return 0
    return math.floor(ceiling * non_opinion / (1 - ceiling) + 1e-9)


def _source_key(article: ArticleRecord) -> str:
    return collapse_whitespace(article.source_name).lower() or article.source_id


def _candidate_order(representative_id: int | None):
    def key(article: ArticleRecord) -> tuple:
        return (
            -ROLE_PRIORITY.get(article.source_role, 0),
            -article.source_weight,
            0 if article.id == representative_id else 1,
            -epoch_seconds(article.reference_time),
            article.id,
        )

    return key


def _append_unique_by_source(
    target: list[ArticleRecord],
    candidates: Sequence[ArticleRecord],
    used_sources: set[str],
    max_add: int,
) -> None:
    for article in candidates:
        if max_add <= 0:
            return
        if article in target:
            continue
        source_key = _source_key(article)
        if source_key in used_sources:
            continue
        target.append(article)
        used_sources.add(source_key)
        max_add -= 1


def _append_remaining(target: list[ArticleRecord], candidates: Sequence[ArticleRecord], max_add: int) -> None:
    for article in candidates:
        if max_add <= 0:
            return
        if article in target:
            continue
        target.append(article)
        max_add -= 1


def to_citation(article: ArticleRecord) -> Citation:
    return Citation(
        article_id=article.id,
        headline=article.title,
        source_name=article.source_name,
        url=article.url,
        source_role=article.source_role,
    )


def curate_citations(
    articles: Sequence[ArticleRecord],
    policy: ClusterPolicy,
    press_release_driven: bool,
    representative_id: int | None = None,
) -> tuple[list[Citation], CurationSummary]:
    """Pick the citation list for a cluster from its own member articles.

    Reporting leads (two distinct outlets), then one official source when the
    cluster is press-release driven, then one analysis piece, then the rest of
    the non-opinion coverage one per outlet. Remaining members top the list up
    to the cap. Opinion pieces come last and never push the opinion share of
    the list past the configured ceiling.
    """
    max_citations = clamp_max_citations(policy.max_citations)
    candidates = sorted(articles, key=_candidate_order(representative_id))
    if not candidates:
        return [], CurationSummary(0, 0, 0, 0, False, 0)

    reporting = [a for a in candidates if a.source_role == ROLE_REPORTING]
    official = [a for a in candidates if a.source_role == ROLE_OFFICIAL]
    analysis = [a for a in candidates if a.source_role == ROLE_ANALYSIS]
    opinion = [a for a in candidates if a.source_role == ROLE_OPINION]
    non_opinion = [a for a in candidates if a.source_role != ROLE_OPINION]

    selected: list[ArticleRecord] = []
    used_sources: set[str] = set()
    opinion_budget = 1 if opinion and policy.opinion_ceiling > 0 else 0

    _append_unique_by_source(selected, reporting, used_sources, 2)
    if press_release_driven:
        _append_unique_by_source(selected, official, used_sources, 1)
    _append_unique_by_source(selected, analysis, used_sources, 1)
    _append_unique_by_source(
        selected, non_opinion, used_sources, max(0, max_citations - len(selected) - opinion_budget)
    )
    _append_remaining(selected, non_opinion, max(0, max_citations - len(selected) - opinion_budget))

    allowance = opinion_allowance(len(selected), policy.opinion_ceiling)
    opinion_slots = min(allowance, max(0, max_citations - len(selected)))
    picked_opinion: list[ArticleRecord] = []
    _append_unique_by_source(picked_opinion, opinion, used_sources, opinion_slots)
    _append_remaining(picked_opinion, opinion, opinion_slots - len(picked_opinion))
    selected.extend(picked_opinion)
    _append_remaining(selected, non_opinion, max(0, max_citations - len(selected)))

    cited = selected[:max_citations]
    citations = [to_citation(article) for article in cited]
    counts = count_roles(citation.source_role for citation in citations)
    summary = CurationSummary(
        reporting_count=counts.reporting,
        analysis_count=counts.analysis,
        official_count=counts.official,
        opinion_count=counts.opinion,
        has_official_source=counts.official > 0,
        source_diversity=len({collapse_whitespace(c.source_name).lower() for c in citations}),
    )
    return citations, summary
