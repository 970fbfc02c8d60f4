"""Custom exceptions for the evidence research pipeline."""

from typing import Optional


class EvidenceResearchError(Exception):
    """Base exception for the evidence research pipeline."""
    pass


class ConfigurationError(EvidenceResearchError):
    """Raised when configuration is invalid."""
    pass


class ProviderError(EvidenceResearchError):
    """Raised when a knowledge provider call fails."""

    def __init__(self, message: str, provider: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code


class ProviderTimeout(ProviderError):
    """Raised when a provider call exceeds its class timeout."""

    def __init__(self, provider: str, timeout: float):
        super().__init__(f"{provider} call timed out after {timeout:.1f}s", provider)
        self.timeout = timeout


class ParseFailure(EvidenceResearchError):
    """Raised when structured output cannot be recovered from a provider response."""

    def __init__(self, message: str, raw: Optional[str] = None):
        super().__init__(message)
        self.raw = raw


class SynthesisError(EvidenceResearchError):
    """Raised when a synthesis strategy cannot produce a report."""
    pass


class CacheError(EvidenceResearchError):
    """Raised by cache backends on storage failures."""
    pass
