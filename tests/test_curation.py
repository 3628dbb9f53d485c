from conftest import make_article

from fieldbrief.config import ClusterPolicy
from fieldbrief.curation import (
    RoleCounts,
    clamp_max_citations,
    curate_citations,
    opinion_allowance,
    role_flags,
)


def test_role_flags_use_strict_thresholds():
    policy = ClusterPolicy()
    assert role_flags(RoleCounts(reporting=2, official=2), policy) == (False, False)
    assert role_flags(RoleCounts(reporting=1, official=3), policy) == (True, False)
    assert role_flags(RoleCounts(reporting=4, opinion=1), policy) == (False, False)
    assert role_flags(RoleCounts(reporting=3, opinion=2), policy) == (False, True)
    assert role_flags(RoleCounts(), policy) == (False, False)


def test_opinion_allowance():
    assert opinion_allowance(0, 0.2) == 1
    assert opinion_allowance(3, 0.2) == 0
    assert opinion_allowance(4, 0.2) == 1
    assert opinion_allowance(9, 0.2) == 2
    assert opinion_allowance(5, 0.0) == 0


def test_clamp_max_citations():
    assert clamp_max_citations(1) == 3
    assert clamp_max_citations(10) == 10
    assert clamp_max_citations(50) == 16


def test_curate_orders_reporting_then_analysis_and_caps_opinion():
    articles = [
        make_article(1, source_id="alpha", role="reporting", weight=5),
        make_article(2, source_id="alpha", role="reporting", weight=5, hours_ago=2),
        make_article(3, source_id="bravo", role="reporting", weight=4),
        make_article(4, source_id="gov", role="official", weight=5),
        make_article(5, source_id="think", role="analysis", weight=4),
        make_article(6, source_id="pundit", role="opinion", weight=3),
        make_article(7, source_id="column", role="opinion", weight=2),
    ]
    citations, summary = curate_citations(articles, ClusterPolicy(), press_release_driven=False)

    ids = [citation.article_id for citation in citations]
    assert ids[:3] == [1, 3, 5]
    assert set(ids) == {1, 2, 3, 4, 5, 6}
    assert summary.opinion_count == 1
    assert summary.opinion_count / len(citations) <= 0.2
    assert summary.has_official_source is True
    assert summary.source_diversity == 5


def test_curate_puts_official_second_when_press_release_driven():
    articles = [
        make_article(1, source_id="alpha", role="reporting"),
        make_article(2, source_id="gov", role="official", weight=5),
        make_article(3, source_id="mil", role="official", weight=3),
        make_article(4, source_id="dod", role="official", weight=4),
    ]
    citations, _ = curate_citations(articles, ClusterPolicy(), press_release_driven=True)
    assert [citation.article_id for citation in citations] == [1, 2, 4, 3]


def test_curate_respects_max_citations():
    articles = [make_article(index, source_id=f"src{index}") for index in range(1, 16)]
    citations, summary = curate_citations(articles, ClusterPolicy(max_citations=10), press_release_driven=False)
    assert len(citations) == 10
    assert summary.source_diversity == 10


def test_curate_single_opinion_when_no_other_roles():
    articles = [
        make_article(1, source_id="pundit", role="opinion"),
        make_article(2, source_id="column", role="opinion"),
    ]
    citations, summary = curate_citations(articles, ClusterPolicy(), press_release_driven=False)
    assert len(citations) == 1
    assert summary.opinion_count == 1


def test_curate_empty():
    citations, summary = curate_citations([], ClusterPolicy(), press_release_driven=False)
    assert citations == []
    assert summary.source_diversity == 0
