import json
import logging

from .base import HTTPProvider
from .contracts import CompletionRequest, CompletionResponse

logger = logging.getLogger(__name__)


class OpenRouterLLM(HTTPProvider):
    """Generic language-model provider via OpenRouter chat completions"""

    name = "openrouter"

    async def complete(self, request: CompletionRequest) -> CompletionResponse:
        api_key = self._require_key(self.settings.OPENROUTER_API_KEY, "OPENROUTER_API_KEY")
        model = request.model or self.settings.LLM_MODEL
        body = {
            "model": model,
            "messages": [m.model_dump() for m in request.messages],
            "temperature": request.temperature,
        }
        if request.json_schema:
            body["response_format"] = {
                "type": "json_schema",
                "json_schema": {"name": "response", "schema": request.json_schema, "strict": True},
            }

        headers = {"Authorization": f"Bearer {api_key}"}
        if self.settings.OPENROUTER_REFERER:
            headers["HTTP-Referer"] = self.settings.OPENROUTER_REFERER
        if self.settings.OPENROUTER_APP_TITLE:
            headers["X-Title"] = self.settings.OPENROUTER_APP_TITLE

        data = await self._post_json(
            f"{self.settings.OPENROUTER_BASE_URL}/chat/completions",
            body,
            timeout=self.settings.LLM_TIMEOUT_SEC,
            headers=headers,
        )
        message = ((data.get("choices") or [{}])[0] or {}).get("message") or {}
        text = message.get("content")
        obj = None
        if request.json_schema and text:
            try:
                obj = json.loads(text)
            except json.JSONDecodeError:
                # Callers recover payloads from prose themselves
                logger.debug("OpenRouter %s returned non-JSON content for a schema request", model)
        if obj is None and message.get("parsed") is not None:
            obj = message["parsed"]
        return CompletionResponse(text=text, object=obj)
