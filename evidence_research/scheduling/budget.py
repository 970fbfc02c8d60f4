"""Per-run call budgets and wall-clock deadline."""
import threading
import time
from typing import Callable, Dict, Optional

from evidence_research.config.settings import BudgetProfile

SEARCH = "search"
ANSWER = "answer"
LLM = "llm"
PROVIDER_CLASSES = (SEARCH, ANSWER, LLM)

# Units held back per class for the synthesis narrative
SYNTHESIS_RESERVE = {ANSWER: 1}


class RunBudget:
    """Call-count ceilings per provider class plus a wall-clock deadline.

    One instance belongs to exactly one run. Exceeding a ceiling is a routing
    signal for the caller, never an error.
    """

    def __init__(
        self,
        ceilings: Dict[str, int],
        deadline_seconds: float,
        clock: Callable[[], float] = time.monotonic,
        reserved: Optional[Dict[str, int]] = None,
    ):
        """Initialize budget.

        Args:
            ceilings: Maximum calls per provider class (search, answer, llm)
            deadline_seconds: Total wall-clock seconds for the run
            clock: Monotonic time source
            reserved: Calls per class that only reserve-holding callers may spend
        """
        unknown = set(ceilings) - set(PROVIDER_CLASSES)
        if unknown:
            raise ValueError(f"Unknown provider classes: {sorted(unknown)}")
        self._ceilings = {cls: max(0, int(ceilings.get(cls, 0))) for cls in PROVIDER_CLASSES}
        self._counts = {cls: 0 for cls in PROVIDER_CLASSES}
        self._reserved = {
            cls: min(self._ceilings[cls], max(0, int((reserved or {}).get(cls, 0)))) for cls in PROVIDER_CLASSES
        }
        self._lock = threading.Lock()
        self._clock = clock
        self.t0 = clock()
        self.total_seconds = deadline_seconds
        self.deadline = self.t0 + deadline_seconds

    @classmethod
    def from_profile(cls, profile: BudgetProfile, clock: Callable[[], float] = time.monotonic) -> "RunBudget":
        return cls(profile.ceilings(), profile.deadline_seconds, clock=clock, reserved=SYNTHESIS_RESERVE)

    def _limit(self, provider_class: str, use_reserve: bool) -> int:
        ceiling = self._ceilings[provider_class]
        return ceiling if use_reserve else ceiling - self._reserved[provider_class]

    def try_consume(self, provider_class: str, use_reserve: bool = False) -> bool:
        """Atomically reserve one call of the given class.

        Args:
            provider_class: search, answer or llm
            use_reserve: Allow spending the units held back for synthesis

        Returns:
            True if the call fits under the ceiling and was counted
        """
        with self._lock:
            if self._counts[provider_class] >= self._limit(provider_class, use_reserve):
                return False
            self._counts[provider_class] += 1
            return True

    def available(self, provider_class: str, use_reserve: bool = False) -> int:
        with self._lock:
            return max(0, self._limit(provider_class, use_reserve) - self._counts[provider_class])

    def used(self, provider_class: str) -> int:
        with self._lock:
            return self._counts[provider_class]

    def deadline_exceeded(self) -> bool:
        return self._clock() >= self.deadline

    def remaining(self) -> float:
        """Remaining seconds (minimum 0.1 to avoid 0 timeouts)."""
        return max(0.1, self.deadline - self._clock())

    def elapsed(self) -> float:
        return self._clock() - self.t0

    def timeout_for(self, max_timeout: Optional[float] = None) -> float:
        """Get timeout value respecting both the run deadline and a class cap.

        Args:
            max_timeout: Provider-class timeout in seconds

        Returns:
            Minimum of remaining run time and max_timeout
        """
        remaining = self.remaining()
        if max_timeout:
            return min(remaining, max_timeout)
        return remaining

    def snapshot(self) -> Dict[str, int]:
        with self._lock:
            return dict(self._counts)

    def ceilings(self) -> Dict[str, int]:
        return dict(self._ceilings)
