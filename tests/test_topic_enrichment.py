from dataclasses import replace

from conftest import make_article

from fieldbrief.enrichment.topics import classify_article, enrich_topics
from fieldbrief.models import TopicAssignment


class RecordingAdapter:
    def __init__(self):
        self.topics = {}
        self.statuses = {}

    def replace_article_topics(self, article_id, topics):
        self.topics[article_id] = list(topics)
        self.statuses[article_id] = "tagged"

    def mark_topic_status(self, article_id, status):
        self.statuses[article_id] = status


def _pending(article_id, **kwargs):
    return replace(make_article(article_id, **kwargs), topic_status="pending", topics=[])


def test_enrich_topics_counts_every_outcome():
    articles = [
        _pending(1),
        _pending(2),
        _pending(3),
        replace(_pending(4), content_fetch_status="pending"),
        make_article(5),
    ]

    def classifier(article):
        if article.id == 2:
            return []
        if article.id == 3:
            raise ValueError("classifier offline")
        return [TopicAssignment(slug="navy", label="Navy", is_primary=True, confidence=0.9)]

    adapter = RecordingAdapter()
    result = enrich_topics(adapter, articles, concurrency=2, classifier=classifier)

    assert result.processed == 3
    assert result.with_topics == 1
    assert result.failed == 2
    assert adapter.statuses == {1: "tagged", 2: "empty", 3: "failed"}
    assert [topic.slug for topic in adapter.topics[1]] == ["navy"]


def test_classify_article_uses_title_summary_and_text():
    article = replace(
        _pending(1, title="Hypersonic glide vehicle completes flight test"),
        summary="The hypersonic glide vehicle reached its planned speed.",
        full_text="Engineers reviewed telemetry from the hypersonic flight.",
    )
    topics = classify_article(article)
    assert topics[0].slug == "hypersonics"
    assert topics[0].is_primary is True
