"""Test Markdown rendering and citation numbering."""

from evidence_research.models import Evidence, KeyFinding, Report, ReportSection
from evidence_research.report.composer import CitationIndex, render_markdown

A = Evidence(url="https://a.com/1", title="Alpha", published_at="2024-05-01")
B = Evidence(url="https://b.org/2", title="Beta")
C = Evidence(url="https://c.net/3")


def _report():
    return Report(
        query="solid-state batteries",
        executive_summary="Summary <b>text</b>.",
        key_findings=[
            KeyFinding(claim="First", citations=[B, A], confidence="high"),
            KeyFinding(claim="Second", citations=[A], confidence="low"),
        ],
        sections=[
            ReportSection(heading="Outlook", content="Para one.\n\nPara two.", citations=[C, B]),
            ReportSection(heading="Uncited", content="No sources here."),
        ],
        limitations=["Sparse data."],
    )


def test_citations_numbered_by_first_appearance():
    markdown, sources = render_markdown(_report())
    assert [s.url for s in sources] == ["https://b.org/2", "https://a.com/1", "https://c.net/3"]
    assert "- **First** — _high_ [1][2]" in markdown
    assert "- **Second** — _low_ [2]" in markdown
    assert "Sources: [3][1]" in markdown


def test_sources_listed_once_in_order():
    markdown, _ = render_markdown(_report())
    tail = markdown.split("## Sources", 1)[1]
    assert "1. Beta — <https://b.org/2>" in tail
    assert "2. Alpha — <https://a.com/1> (2024-05-01)" in tail
    assert "3. c.net — <https://c.net/3>" in tail
    assert tail.count("https://a.com/1") == 1


def test_layout_and_cleaning():
    markdown, _ = render_markdown(_report())
    for heading in ["# Research Brief", "## Executive Summary", "## Key Findings",
                    "## Detailed Analysis", "### Outlook", "## Sources", "## Limitations"]:
        assert heading in markdown
    assert "<b>" not in markdown
    assert "Para one.\n\nPara two." in markdown
    assert "- Sparse data." in markdown


def test_equivalent_urls_share_a_number_and_richest_metadata():
    bare = Evidence(url="https://www.example.com/x/?utm_source=feed", source="answer")
    rich = Evidence(url="https://www.example.com/x", title="Example story", snippet="s")
    idx = CitationIndex(enrich=[rich])
    assert idx.number(bare) == 1
    assert idx.number(rich) == 1
    assert idx.sources[0].title == "Example story"


def test_empty_report_renders_placeholders():
    markdown, sources = render_markdown(Report(query="q", executive_summary="s"))
    assert sources == []
    assert "_No sources cited._" in markdown
    assert "_No findings could be supported with citations._" in markdown
