from __future__ import annotations

import json
import math
import re
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Sequence

from .config import ClusterPolicy, CongestionRules
from .curation import count_roles, role_flags
from .models import ROLE_OFFICIAL, ArticleRecord, ClusterMember, StoryCluster
from .utils import epoch_seconds, parse_iso, sha256_hex, utc_now

_TOKEN_RE = re.compile(r"[a-z0-9]+")


@dataclass(frozen=True)
class Congestion:
    article_count_24h: int
    unique_sources_24h: int
    congestion_score: float
    is_congested: bool


@dataclass
class _Group:
    topic_slug: str
    member_ids: list[int]
    last_time: float
    existing: StoryCluster | None = None
    order: int = 0
    extra_members: dict[int, ClusterMember] = field(default_factory=dict)

    @property
    def sort_key(self) -> str:
        if self.existing is not None:
            return self.existing.cluster_key
        return f"~{self.order:08d}"


def _time_of(article: ArticleRecord) -> float | None:
    parsed = parse_iso(article.reference_time)
    return parsed.timestamp() if parsed else None


def evaluate_congestion(
    articles: Sequence[ArticleRecord], now: datetime, rules: CongestionRules | None = None
) -> Congestion:
    rules = rules or CongestionRules()
    cutoff = (now - timedelta(hours=rules.window_hours)).timestamp()
    recent = [a for a in articles if (_time_of(a) or 0.0) >= cutoff]
    article_count = len(recent)
    source_count = len({a.source_id for a in recent})
    article_component = min(1.0, article_count / max(1, rules.min_articles))
    source_component = min(1.0, source_count / max(1, rules.min_sources))
    return Congestion(
        article_count_24h=article_count,
        unique_sources_24h=source_count,
        congestion_score=round(article_component * 0.6 + source_component * 0.4, 3),
        is_congested=article_count >= rules.min_articles and source_count >= rules.min_sources,
    )


def congestion_bucket(score: float) -> int:
    return int(math.floor(score * 4))


def representative_key(article: ArticleRecord) -> tuple:
    published = _time_of(article)
    return (
        0 if article.source_role == ROLE_OFFICIAL else 1,
        -article.source_weight,
        published if published is not None else math.inf,
        article.dedup_key,
    )


def choose_representative(articles: Sequence[ArticleRecord]) -> ArticleRecord:
    return min(articles, key=representative_key)


def derive_cluster_key(topic_slug: str, members: Sequence[ArticleRecord], representative: ArticleRecord) -> str:
    published = parse_iso(representative.reference_time)
    day = published.strftime("%Y%m%d") if published else "undated"
    material = "|".join(sorted(member.dedup_key for member in members)) + "#" + representative.dedup_key
    return f"{topic_slug}-{day}-{sha256_hex(material)[:12]}"


def cluster_signature(
    member_ids: Sequence[int], bucket: int, press_release_driven: bool, opinion_limited: bool
) -> str:
    payload = {
        "members": sorted(int(value) for value in member_ids),
        "congestion_bucket": bucket,
        "press_release_driven": press_release_driven,
        "opinion_limited": opinion_limited,
    }
    return sha256_hex(json.dumps(payload, sort_keys=True))


def title_similarity(left: str, right: str) -> float:
    left_tokens = set(_TOKEN_RE.findall((left or "").lower()))
    right_tokens = set(_TOKEN_RE.findall((right or "").lower()))
    if not left_tokens or not right_tokens:
        return 0.0
    return round(len(left_tokens & right_tokens) / len(left_tokens | right_tokens), 3)


def _topic_label(topic_slug: str, articles: Sequence[ArticleRecord]) -> str:
    weights: Counter[str] = Counter()
    for article in articles:
        for topic in article.topics:
            if topic.slug == topic_slug:
                weights[topic.label] += 2 if topic.is_primary else 1
    if not weights:
        return topic_slug
    return sorted(weights.items(), key=lambda item: (-item[1], item[0]))[0][0]


def _pick_group(groups: Sequence[_Group], slug: str, moment: float, window_seconds: float) -> _Group | None:
    matches = [
        group
        for group in groups
        if group.topic_slug == slug and abs(moment - group.last_time) <= window_seconds
    ]
    if not matches:
        return None
    return sorted(matches, key=lambda group: (-group.last_time, group.sort_key))[0]


def cluster(
    articles: Sequence[ArticleRecord],
    existing_clusters: Sequence[StoryCluster] = (),
    window_hours: int = 48,
    policy: ClusterPolicy | None = None,
    now: datetime | None = None,
) -> list[StoryCluster]:
    """Group topic-labelled articles into story clusters.

    Membership in an existing cluster is kept. Every other article with a
    primary topic joins the same-topic cluster whose latest member is within
    window_hours of it, or starts a new cluster. Signals and signatures are
    recomputed for every cluster returned, so the output depends only on the
    inputs and `now`.
    """
    policy = policy or ClusterPolicy()
    now = now or utc_now()
    window_seconds = window_hours * 3600
    by_id = {article.id: article for article in articles}

    groups: list[_Group] = []
    assigned: set[int] = set()
    for existing in sorted(existing_clusters, key=lambda c: c.cluster_key):
        member_ids = [member.article_id for member in existing.members]
        times = [t for t in (_time_of(by_id[i]) for i in member_ids if i in by_id) if t is not None]
        groups.append(
            _Group(
                topic_slug=existing.topic_slug,
                member_ids=member_ids,
                last_time=max(times) if times else (epoch_seconds(existing.last_member_at) or -math.inf),
                existing=existing,
                extra_members={m.article_id: m for m in existing.members if m.article_id not in by_id},
            )
        )
        assigned.update(member_ids)

    unclustered = [
        article for article in articles if article.id not in assigned and article.primary_topic() is not None
    ]
    unclustered.sort(
        key=lambda a: (_time_of(a) if _time_of(a) is not None else math.inf, a.dedup_key)
    )
    next_order = 0
    for article in unclustered:
        topic = article.primary_topic()
        moment = _time_of(article)
        if moment is None:
            moment = now.timestamp()
        group = _pick_group(groups, topic.slug, moment, window_seconds)
        if group is None:
            groups.append(_Group(topic_slug=topic.slug, member_ids=[article.id], last_time=moment, order=next_order))
            next_order += 1
        else:
            group.member_ids.append(article.id)
            group.last_time = max(group.last_time, moment)

    clusters = [_build_cluster(group, by_id, policy, now) for group in groups]
    return sorted(clusters, key=lambda c: c.cluster_key)


def _build_cluster(group: _Group, by_id: dict[int, ArticleRecord], policy: ClusterPolicy, now: datetime) -> StoryCluster:
    members = [by_id[i] for i in group.member_ids if i in by_id]
    representative = choose_representative(members) if members else None
    if group.existing is not None:
        cluster_key = group.existing.cluster_key
    else:
        cluster_key = derive_cluster_key(group.topic_slug, members, representative)

    cluster_members = [
        ClusterMember(
            article_id=article.id,
            dedup_key=article.dedup_key,
            source_role=article.source_role,
            is_representative=representative is not None and article.id == representative.id,
            similarity=1.0
            if representative is not None and article.id == representative.id
            else title_similarity(article.title, representative.title if representative else ""),
        )
        for article in members
    ]
    cluster_members.extend(group.extra_members.values())
    cluster_members.sort(key=lambda member: member.article_id)

    counts = count_roles(member.source_role for member in cluster_members)
    press_release_driven, opinion_limited = role_flags(counts, policy)
    congestion = evaluate_congestion(members, now, policy.congestion)
    signature = cluster_signature(
        [member.article_id for member in cluster_members],
        congestion_bucket(congestion.congestion_score),
        press_release_driven,
        opinion_limited,
    )
    member_times = [article.reference_time for article in members if _time_of(article) is not None]
    last_member_at = max(member_times, key=epoch_seconds) if member_times else None
    if last_member_at is None and group.existing is not None:
        last_member_at = group.existing.last_member_at

    if representative is not None:
        representative_id = representative.id
    elif group.existing is not None:
        representative_id = group.existing.representative_article_id
    else:
        representative_id = group.member_ids[0]

    return StoryCluster(
        cluster_key=cluster_key,
        topic_slug=group.topic_slug,
        topic_label=_topic_label(group.topic_slug, members)
        if members
        else (group.existing.topic_label if group.existing else group.topic_slug),
        representative_article_id=representative_id,
        members=cluster_members,
        article_count_24h=congestion.article_count_24h,
        unique_sources_24h=congestion.unique_sources_24h,
        congestion_score=congestion.congestion_score,
        is_congested=congestion.is_congested,
        reporting_count=counts.reporting,
        analysis_count=counts.analysis,
        official_count=counts.official,
        opinion_count=counts.opinion,
        press_release_driven=press_release_driven,
        opinion_limited=opinion_limited,
        signature=signature,
        needs_digest=group.existing.needs_digest if group.existing is not None else True,
        last_member_at=last_member_at,
    )
