from __future__ import annotations

import logging
import math
import re
import time
import urllib.request
from urllib.parse import urljoin

from bs4 import BeautifulSoup

from ..models import CONTENT_FAILED, CONTENT_FETCHED, ContentExtraction
from ..utils import log_event, read_with_deadline, truncate, utc_now_iso

CONTENT_SELECTORS = (
    "article",
    "main",
    "[role=main]",
    ".article-body",
    ".post-content",
    ".entry-content",
    ".story-body",
    ".content-body",
)
MIN_SELECTOR_WORDS = 80
EXCERPT_MAX_LENGTH = 460
WORDS_PER_MINUTE = 220

_LEAD_IMAGE_META = (
    {"property": "og:image"},
    {"name": "og:image"},
    {"property": "twitter:image"},
    {"name": "twitter:image"},
)


def fetch_article_content(
    url: str,
    *,
    timeout_seconds: float,
    user_agent: str,
    logger: logging.Logger,
) -> ContentExtraction:
    deadline = time.monotonic() + timeout_seconds
    request = urllib.request.Request(url, headers={"User-Agent": user_agent})
    try:
        with urllib.request.urlopen(request, timeout=timeout_seconds) as response:
            charset = response.headers.get_content_charset() or "utf-8"
            raw = read_with_deadline(response, deadline)
    except Exception as exc:  # noqa: BLE001
        log_event(logger, logging.WARNING, "content_fetch_failed", url=url, error=str(exc))
        raise
    html = raw.decode(charset, errors="replace")
    return extract_article_content(html, url)


def extract_article_content(html: str, url: str, fetched_at: str | None = None) -> ContentExtraction:
    fetched_at = fetched_at or utc_now_iso()
    soup = BeautifulSoup(html or "", "html.parser")
    lead_image_url = extract_lead_image(soup, url)
    text = _readable_text(soup)
    if not text:
        return ContentExtraction(
            full_text=None,
            excerpt=None,
            lead_image_url=lead_image_url,
            word_count=0,
            reading_minutes=0,
            status=CONTENT_FAILED,
            error="No readable text extracted",
            fetched_at=fetched_at,
        )
    word_count = len(text.split())
    return ContentExtraction(
        full_text=text,
        excerpt=truncate(text, EXCERPT_MAX_LENGTH),
        lead_image_url=lead_image_url,
        word_count=word_count,
        reading_minutes=max(1, math.ceil(word_count / WORDS_PER_MINUTE)),
        status=CONTENT_FETCHED,
        error=None,
        fetched_at=fetched_at,
    )


def extract_readable_text(html: str) -> str:
    return _readable_text(BeautifulSoup(html or "", "html.parser"))


def _readable_text(soup: BeautifulSoup) -> str:
    for tag in soup(["script", "style", "nav", "footer", "header", "aside", "noscript", "form"]):
        tag.decompose()
    first_match = ""
    for selector in CONTENT_SELECTORS:
        node = soup.select_one(selector)
        if node is None:
            continue
        text = _normalize_text(node.get_text(" ", strip=True))
        if len(text.split()) >= MIN_SELECTOR_WORDS:
            return text
        if text and not first_match:
            first_match = text
    if first_match:
        return first_match
    best = None
    best_len = 0
    for div in soup.find_all("div"):
        text = div.get_text(" ", strip=True)
        if len(text) > best_len:
            best_len = len(text)
            best = text
    if best:
        return _normalize_text(best)
    return _normalize_text(soup.get_text(" ", strip=True))


def extract_lead_image(soup: BeautifulSoup, base_url: str) -> str | None:
    for attrs in _LEAD_IMAGE_META:
        node = soup.find("meta", attrs=attrs)
        if node is None:
            continue
        url = _safe_url(node.get("content"), base_url)
        if url:
            return url
    for node in soup.find_all("img"):
        src = node.get("src") or node.get("data-src") or node.get("data-original")
        url = _safe_url(src, base_url)
        if not url:
            continue
        lowered = url.lower()
        if lowered.endswith(".svg") or "logo" in lowered:
            continue
        return url
    return None


def _safe_url(value: str | None, base_url: str) -> str | None:
    if not value:
        return None
    trimmed = value.strip()
    if not trimmed or trimmed.startswith(("data:", "javascript:")):
        return None
    resolved = urljoin(base_url, trimmed)
    if not resolved.startswith(("http://", "https://")):
        return None
    return resolved


def _normalize_text(text: str) -> str:
    return re.sub(r"\s+", " ", text).strip()
