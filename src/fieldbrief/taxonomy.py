from __future__ import annotations

import re
from dataclasses import dataclass

TOPIC_TYPES = (
    "organization",
    "program",
    "technology",
    "company",
    "geography",
    "acronym",
    "person",
)


@dataclass(frozen=True)
class TaxonomyTopic:
    label: str
    slug: str
    topic_type: str
    aliases: tuple[str, ...]


_SEED: list[tuple[str, str, tuple[str, ...]]] = [
    ("Department of Defense", "organization", ("DoD", "U.S. Department of Defense", "US Department of Defense")),
    ("Small Business Innovation Research", "program", ("SBIR", "SBIR program")),
    ("Defense Advanced Research Projects Agency", "organization", ("DARPA",)),
    ("Defense Innovation Unit", "organization", ("DIU",)),
    ("U.S. Air Force", "organization", ("USAF", "Air Force")),
    ("U.S. Navy", "organization", ("US Navy", "Navy")),
    ("U.S. Army", "organization", ("US Army", "Army")),
    ("U.S. Marine Corps", "organization", ("USMC", "Marines", "Marine Corps")),
    ("U.S. Space Force", "organization", ("USSF", "Space Force")),
    ("North Atlantic Treaty Organization", "organization", ("NATO",)),
    ("U.S. Indo-Pacific Command", "organization", ("INDOPACOM",)),
    ("U.S. Central Command", "organization", ("CENTCOM",)),
    ("Joint All-Domain Command and Control", "program", ("JADC2", "Joint C2")),
    ("Replicator Initiative", "program", ("Replicator",)),
    ("Foreign Military Sales", "program", ("FMS",)),
    ("AUKUS", "program", ("AUKUS partnership",)),
    ("Golden Dome", "program", ("Golden Dome missile shield",)),
    ("Hypersonics", "technology", ("hypersonic", "hypersonic weapons")),
    ("Counter-UAS", "technology", ("counter drone", "counter-UAS", "C-UAS")),
    ("Artificial Intelligence", "technology", ("AI", "AI/ML", "machine learning")),
    ("Satellite Communications", "technology", ("SATCOM",)),
    ("Missile Defense", "technology", ("air and missile defense",)),
    ("Cybersecurity", "technology", ("cyber", "zero trust")),
    ("Anduril Industries", "company", ("Anduril",)),
    ("Palantir Technologies", "company", ("Palantir",)),
    ("Lockheed Martin", "company", ("Lockheed",)),
    ("RTX", "company", ("Raytheon", "RTX Corp")),
    ("Northrop Grumman", "company", ("Northrop",)),
    ("Boeing Defense", "company", ("Boeing",)),
    ("General Dynamics", "company", ("GD", "GDIT")),
    ("L3Harris", "company", ("L3 Harris", "L3Harris Technologies")),
    ("Leidos", "company", ("Leidos Holdings",)),
    ("Huntington Ingalls Industries", "company", ("HII", "Huntington Ingalls")),
    ("AeroVironment", "company", ("AeroVironment Inc",)),
    ("Kratos Defense & Security Solutions", "company", ("Kratos Defense", "Kratos")),
    ("CACI International", "company", ("CACI",)),
    ("Middle East", "geography", ("Gulf region",)),
    ("Indo-Pacific", "geography", ("Indopacific", "Asia-Pacific")),
    ("Ukraine", "geography", ("Ukrainian",)),
    ("Russia", "geography", ("Russian",)),
    ("China", "geography", ("PRC",)),
]


def slugify_topic(value: str) -> str:
    slug = value.lower().replace("&", " and ")
    slug = re.sub(r"[^a-z0-9]+", "-", slug).strip("-")
    return slug[:96]


def normalize_topic_key(value: str) -> str:
    return value.strip().lower()


CURATED_TAXONOMY: tuple[TaxonomyTopic, ...] = tuple(
    TaxonomyTopic(label=label, slug=slugify_topic(label), topic_type=topic_type, aliases=aliases)
    for label, topic_type, aliases in _SEED
)

ALIAS_LOOKUP: dict[str, TaxonomyTopic] = {
    normalize_topic_key(alias): topic
    for topic in CURATED_TAXONOMY
    for alias in (topic.label, *topic.aliases)
}
