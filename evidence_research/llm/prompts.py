"""Prompt templates and structured-output schemas for provider calls."""

import json
from typing import Any, Dict, List, Sequence

JSON_ONLY_ARRAY = "Return only a JSON array. No prose."
JSON_ONLY_OBJECT = "Return ONLY JSON strictly matching the provided schema."

_CITATION_SCHEMA = {
    "type": "object",
    "properties": {
        "url": {"type": "string"},
        "title": {"type": "string"},
        "snippet": {"type": "string"},
        "published_at": {"type": "string"},
    },
    "required": ["url"],
}

DECOMPOSE_SCHEMA: Dict[str, Any] = {
    "type": "array",
    "items": {
        "type": "object",
        "properties": {
            "question": {"type": "string"},
            "type": {"type": "string", "enum": ["factual", "knowledge", "reasoning"]},
            "rationale": {"type": "string"},
        },
        "required": ["question", "type"],
    },
}

CLUSTER_SCHEMA: Dict[str, Any] = {
    "type": "array",
    "items": {
        "type": "object",
        "properties": {
            "theme": {"type": "string"},
            "strength": {"type": "number"},
            "evidence_statements": {"type": "array", "items": {"type": "string"}},
            "contradictions": {"type": "array", "items": {"type": "string"}},
        },
        "required": ["theme", "evidence_statements"],
    },
}

REPORT_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "executive_summary": {"type": "string"},
        "key_findings": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "claim": {"type": "string"},
                    "citations": {"type": "array", "items": _CITATION_SCHEMA},
                    "confidence": {"type": "string", "enum": ["high", "medium", "low"]},
                },
                "required": ["claim", "citations", "confidence"],
            },
        },
        "sections": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "heading": {"type": "string"},
                    "content": {"type": "string"},
                    "citations": {"type": "array", "items": _CITATION_SCHEMA},
                },
                "required": ["heading", "content", "citations"],
            },
        },
        "limitations": {"type": "array", "items": {"type": "string"}},
    },
    "required": ["executive_summary", "key_findings", "sections", "limitations"],
}

DEEP_DIVE_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "theme": {"type": "string"},
        "content": {"type": "string"},
        "findings": REPORT_SCHEMA["properties"]["key_findings"],
        "metrics_table": {"type": "string"},
    },
    "required": ["theme", "content", "findings"],
}


def decompose_prompt(query: str, min_themes: int, max_themes: int) -> str:
    return f"""
Decompose the user question into {min_themes}-{max_themes} non-overlapping sub-questions.
Use fewer sub-questions for narrow topics and more for broad ones.
For each, label it as one of:
- factual (requires up-to-date sources or numbers/dates),
- knowledge (general synthesis),
- reasoning (multi-step inference or ambiguous).
Return JSON array with objects: {{ "question": "...", "type": "factual|knowledge|reasoning", "rationale": "..." }}.
User question: {query}
"""


def cluster_prompt(items: Sequence[Dict[str, Any]]) -> str:
    return f"""
You are a research analyst. Cluster the evidence items below into 4-6 thematic groups.

For each cluster, provide:
- Theme name (concise, descriptive)
- Evidence strength score (1-10 based on citation count and source quality)
- Key evidence statements (short phrases taken from the items, at most 40 tokens each)
- Any contradictions within the cluster

Return JSON array with objects: {{
  "theme": "...",
  "strength": 8,
  "evidence_statements": ["statement1", "statement2"],
  "contradictions": ["contradiction1"]
}}

Evidence items: {json.dumps(list(items), indent=2)}
"""


def contrast_prompt(first: Dict[str, Any], second: Dict[str, Any]) -> str:
    return f"""
You are analyzing two evidence clusters. Identify where they contradict, conflict or differ,
and give a balanced explanation for each conflict in one or two sentences.

Cluster 1: {json.dumps(first, indent=2)}
Cluster 2: {json.dumps(second, indent=2)}
"""


def gap_fill_prompt(query: str, conflict: str) -> str:
    return f"""
We have conflicting or missing information about: {conflict}.
Provide a concise resolution or the most likely explanation, and list all the URLs that best support it.
Return a short paragraph answer followed by a JSON array of URLs on a new line.
User question: {query}
"""


def narrative_prompt(query: str, clusters: Sequence[Dict[str, Any]], window: str = "") -> str:
    scope = f"\nLimit the analysis to the period {window}." if window else ""
    return f"""
You are writing a comprehensive research brief on: {query}{scope}

Write a long-form narrative organized in paragraphs separated by blank lines.
Open with an executive summary paragraph, then one paragraph per key finding,
then detailed analysis of each theme below. Cite sources inline as [n] and
mention uncertainty where sources disagree.

Themes and sources: {json.dumps(list(clusters), indent=2)}
"""


def structure_prompt(query: str, narrative: str, evidence: List[Dict[str, Any]]) -> str:
    return f"""
You are restructuring a research narrative into a report.
Rules:
- Use ONLY the provided Evidence list (URLs/titles/snippets/dates) as citations.
- Every finding must cite at least one provided URL.
- Produce an executive summary, at least 10 key findings and at least 3 sections.
- If something is uncertain or conflicting, include it under "limitations".

Evidence:
{json.dumps(evidence, indent=2)}

Narrative:
{narrative}

User question: {query}
"""


def deep_dive_prompt(query: str, cluster: Dict[str, Any]) -> str:
    return f"""
You are conducting a deep-dive analysis on a specific research theme.
Write a detailed analysis of the theme, five additional findings specific to it, and a
markdown table of at least 8 relevant metrics or data points.
Use ONLY the evidence cluster provided below and cite its URLs.

Return JSON: {{
  "theme": "...",
  "content": "analysis...",
  "findings": [{{"claim": "...", "citations": [{{"url": "..."}}], "confidence": "high|medium|low"}}],
  "metrics_table": "markdown table"
}}

Original query: {query}
Evidence cluster: {json.dumps(cluster, indent=2)}
"""
