import time

from fieldbrief.utils import (
    epoch_seconds,
    extract_published_at,
    normalize_url,
    parse_iso,
    read_with_deadline,
    strip_html,
    truncate,
)


def test_normalize_url_strips_tracking_and_sorts():
    url = "https://Example.com/Path/?utm_source=news&b=2&a=1&fbclid=xyz#section"
    assert normalize_url(url) == "https://example.com/path?a=1&b=2"


def test_normalize_url_keeps_tracking_when_disabled():
    url = "https://example.com/path?utm_source=news&b=2"
    assert normalize_url(url, strip_tracking_params=False) == "https://example.com/path?b=2&utm_source=news"


def test_normalize_url_drops_default_port():
    assert normalize_url("https://example.com:443/a") == "https://example.com/a"
    assert normalize_url("http://example.com:8080/a") == "http://example.com:8080/a"


def test_strip_html_removes_scripts_and_entities():
    value = "<p>Army&nbsp;&amp; Navy</p><script>alert(1)</script>  <b>update</b>"
    assert strip_html(value) == "Army & Navy update"


def test_truncate_adds_ellipsis():
    assert truncate("short", 10) == "short"
    result = truncate("a" * 30, 10)
    assert len(result) == 10
    assert result.endswith("…")


def test_extract_published_at_prefers_published_then_updated():
    published, source = extract_published_at({"published": "Mon, 19 Oct 2026 08:00:00 GMT"})
    assert published == "2026-10-19T08:00:00+00:00"
    assert source == "published"

    updated, source = extract_published_at({"updated": "2026-10-18T10:00:00Z"})
    assert updated == "2026-10-18T10:00:00+00:00"
    assert source == "modified"

    assert extract_published_at({}) == (None, None)


def test_parse_iso_and_epoch_seconds():
    assert parse_iso("not a date") is None
    assert epoch_seconds(None) == 0.0
    assert epoch_seconds("1970-01-01T00:01:00+00:00") == 60.0


class _TricklingResponse:
    def __init__(self):
        self.reads = 0

    def read1(self, size):
        self.reads += 1
        time.sleep(0.1)
        return b"x"


def test_read_with_deadline_stops_a_trickling_body():
    response = _TricklingResponse()
    try:
        read_with_deadline(response, time.monotonic() + 0.5)
    except TimeoutError:
        pass
    else:
        raise AssertionError("Expected TimeoutError")
    assert 3 <= response.reads <= 8
