from .budget import RunBudget, SEARCH, ANSWER, LLM, PROVIDER_CLASSES, SYNTHESIS_RESERVE

__all__ = ["RunBudget", "SEARCH", "ANSWER", "LLM", "PROVIDER_CLASSES", "SYNTHESIS_RESERVE"]
