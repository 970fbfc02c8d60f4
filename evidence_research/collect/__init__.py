from .dedup import dedupe_evidence, merge_evidence

__all__ = ["dedupe_evidence", "merge_evidence"]
