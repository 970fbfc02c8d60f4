from evidence_research.collect.dedup import dedupe_evidence, merge_evidence
from evidence_research.models import Evidence


def test_duplicates_collapse_to_first_seen():
    items = [
        Evidence(url="https://example.com/a?utm_source=x", title="First", theme_id="t1"),
        Evidence(url="https://example.com/b", title="Other"),
        Evidence(url="https://EXAMPLE.com/a/", title="Second", snippet="filled later"),
    ]
    out = dedupe_evidence(items)
    assert [e.url for e in out] == ["https://example.com/a", "https://example.com/b"]
    assert out[0].title == "First"
    assert out[0].snippet == "filled later"
    assert out[0].theme_id == "t1"


def test_empty_urls_dropped():
    out = dedupe_evidence([Evidence(url=""), Evidence(url="https://example.com/x")])
    assert len(out) == 1


def test_answer_citation_upgraded_by_richer_search_hit():
    bare = Evidence(url="https://example.com/a", source="answer")
    hit = Evidence(url="https://example.com/a", title="T", snippet="S", source="search")
    merged = merge_evidence(bare, hit)
    assert merged.source == "search"
    assert merged.title == "T"


def test_dedup_is_idempotent():
    items = [
        Evidence(url="https://m.example.com/a#x", title="A"),
        Evidence(url="https://example.com/a", snippet="s"),
        Evidence(url="https://example.org/b?fbclid=1&k=v"),
    ]
    once = dedupe_evidence(items)
    assert dedupe_evidence(once) == once
