from .composer import render_markdown, CitationIndex

__all__ = ["render_markdown", "CitationIndex"]
