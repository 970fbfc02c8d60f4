import logging
from typing import Any, Dict, List

from .base import HTTPProvider
from .contracts import AnswerRequest, AnswerResponse

logger = logging.getLogger(__name__)

# mode -> (model, system prompt)
MODE_MODELS = {
    "default": ("sonar", "Be concise. Cite sources when possible."),
    "pro": ("sonar-pro", "Be precise and thorough. Cite sources for every factual statement."),
    "reasoning": (
        "sonar-reasoning",
        "You are a reasoning assistant. Think step-by-step and provide logical analysis. Cite sources when possible.",
    ),
    "deep-research": (
        "sonar-deep-research",
        "You are a deep research assistant. Conduct thorough analysis with multiple sources "
        "and provide comprehensive insights with detailed citations.",
    ),
}


def _citations(data: Dict[str, Any]) -> List[str]:
    message = ((data.get("choices") or [{}])[0] or {}).get("message") or {}
    urls = message.get("citations") or data.get("citations") or []
    if not urls:
        urls = [r.get("url") for r in data.get("search_results") or [] if isinstance(r, dict)]
    return [u for u in urls if isinstance(u, str) and u]


class PerplexityAnswer(HTTPProvider):
    """Answer provider backed by the Perplexity chat completions API"""

    name = "perplexity"

    def timeout_for(self, mode: str) -> float:
        if mode == "deep-research":
            return self.settings.DEEP_ANSWER_TIMEOUT_SEC
        return self.settings.ANSWER_TIMEOUT_SEC

    async def ask(self, request: AnswerRequest) -> AnswerResponse:
        api_key = self._require_key(self.settings.PERPLEXITY_API_KEY, "PERPLEXITY_API_KEY")
        model, system_prompt = MODE_MODELS.get(request.mode, MODE_MODELS["default"])
        payload = {
            "model": model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": request.prompt},
            ],
            "temperature": request.temperature,
            "return_citations": True,
        }
        data = await self._post_json(
            f"{self.settings.PERPLEXITY_BASE_URL}/chat/completions",
            payload,
            timeout=self.timeout_for(request.mode),
            headers={"Authorization": f"Bearer {api_key}"},
        )
        message = ((data.get("choices") or [{}])[0] or {}).get("message") or {}
        return AnswerResponse(text=message.get("content") or "", citations=_citations(data))
