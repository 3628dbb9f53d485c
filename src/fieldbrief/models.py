from __future__ import annotations

from dataclasses import dataclass, field

ROLE_OFFICIAL = "official"
ROLE_REPORTING = "reporting"
ROLE_ANALYSIS = "analysis"
ROLE_OPINION = "opinion"
SOURCE_ROLES = (ROLE_OFFICIAL, ROLE_REPORTING, ROLE_ANALYSIS, ROLE_OPINION)

CONTENT_PENDING = "pending"
CONTENT_FETCHED = "fetched"
CONTENT_FAILED = "failed"

TOPIC_PENDING = "pending"
TOPIC_TAGGED = "tagged"
TOPIC_EMPTY = "empty"
TOPIC_FAILED = "failed"

REVIEW_NEEDS_REVIEW = "needs_review"


@dataclass(frozen=True)
class SourceRecord:
    id: str
    name: str
    feed_url: str
    badge: str = "Reporting"
    category: str = "journalism"
    role: str = ROLE_REPORTING
    weight: int = 3
    quality_tier: str = "medium"
    cadence: str = "daily"
    homepage_url: str | None = None
    enabled: bool = True
    last_fetched_at: str | None = None


@dataclass(frozen=True)
class RawItem:
    source_id: str
    title: str | None
    link: str | None
    summary: str | None = None
    published_at: str | None = None
    published_at_source: str | None = None
    author: str | None = None
    guid: str | None = None
    categories: tuple[str, ...] = ()


@dataclass(frozen=True)
class SourceError:
    source_id: str
    source_name: str
    message: str


@dataclass(frozen=True)
class FetchResult:
    items: list[RawItem]
    source_count: int
    article_count: int
    errors: list[SourceError]
    fetched_at: str


@dataclass(frozen=True)
class NormalizedArticle:
    dedup_key: str
    title: str
    summary: str | None
    url: str | None
    canonical_url: str | None
    source_id: str
    published_at: str | None
    published_precision: int
    fetched_at: str
    source_role: str = ROLE_REPORTING
    author: str | None = None
    guid: str | None = None


@dataclass(frozen=True)
class TopicAssignment:
    slug: str
    label: str
    is_primary: bool
    confidence: float = 0.0
    topic_id: int | None = None
    topic_type: str = "organization"
    occurrences: int = 1


@dataclass(frozen=True)
class ArticleRecord:
    id: int
    dedup_key: str
    title: str
    summary: str | None
    url: str | None
    canonical_url: str | None
    source_id: str
    source_name: str
    source_role: str
    source_weight: int
    published_at: str | None
    fetched_at: str | None
    full_text: str | None
    excerpt: str | None
    word_count: int
    content_fetch_status: str
    topic_status: str
    topics: list[TopicAssignment] = field(default_factory=list)
    reading_minutes: int = 0
    lead_image_url: str | None = None
    content_fetch_error: str | None = None
    author: str | None = None

    def primary_topic(self) -> TopicAssignment | None:
        if not self.topics:
            return None
        ranked = sorted(self.topics, key=lambda t: (not t.is_primary, -t.confidence, t.slug))
        return ranked[0]

    @property
    def reference_time(self) -> str | None:
        return self.published_at or self.fetched_at


@dataclass(frozen=True)
class ContentExtraction:
    full_text: str | None
    excerpt: str | None
    lead_image_url: str | None
    word_count: int
    reading_minutes: int
    status: str
    error: str | None
    fetched_at: str


@dataclass(frozen=True)
class ClusterMember:
    article_id: int
    dedup_key: str
    source_role: str
    is_representative: bool = False
    similarity: float = 0.0


@dataclass(frozen=True)
class StoryCluster:
    cluster_key: str
    topic_slug: str
    topic_label: str
    representative_article_id: int
    members: list[ClusterMember]
    article_count_24h: int = 0
    unique_sources_24h: int = 0
    congestion_score: float = 0.0
    is_congested: bool = False
    reporting_count: int = 0
    analysis_count: int = 0
    official_count: int = 0
    opinion_count: int = 0
    press_release_driven: bool = False
    opinion_limited: bool = False
    signature: str = ""
    needs_digest: bool = True
    last_member_at: str | None = None

    @property
    def member_ids(self) -> set[int]:
        return {member.article_id for member in self.members}


@dataclass(frozen=True)
class Citation:
    article_id: int
    headline: str
    source_name: str
    url: str | None
    source_role: str


@dataclass(frozen=True)
class StoryDigest:
    cluster_key: str
    headline: str
    dek: str
    key_points: list[str]
    why_it_matters: str
    risk_level: str
    citations: list[Citation]
    citation_count: int
    generation_mode: str
    review_status: str
    generated_at: str
    signature: str
    source_diversity: int = 0
    has_official_source: bool = False


@dataclass(frozen=True)
class ContractLink:
    article_id: int
    award_id: str
    match_type: str
    confidence: float


@dataclass(frozen=True)
class UpsertResult:
    upserted_source_count: int
    upserted_article_count: int
    used_legacy_schema: bool


@dataclass(frozen=True)
class ContentEnrichmentResult:
    processed: int
    fetched: int
    failed: int


@dataclass(frozen=True)
class TopicEnrichmentResult:
    processed: int
    with_topics: int
    failed: int


@dataclass(frozen=True)
class ClusterPassResult:
    clusters: list[StoryCluster]
    digests_generated: int
    digests_failed: int
    digests_skipped: int
