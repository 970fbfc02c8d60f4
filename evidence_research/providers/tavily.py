import logging
from typing import Any, Dict, List

from .base import HTTPProvider
from .contracts import SearchHit, SearchRequest, SearchResponse

logger = logging.getLogger(__name__)


def _parse_tavily_response(data: Dict[str, Any]) -> List[SearchHit]:
    """Parse Tavily API response into SearchHit objects"""
    if "results" not in data:
        logger.warning("No results field in Tavily response")
        return []

    hits = []
    for item in data.get("results") or []:
        url = (item or {}).get("url")
        if not url:
            continue
        hits.append(SearchHit(
            url=url,
            title=item.get("title") or None,
            snippet=item.get("content") or None,
            published_at=item.get("published_date") or None,
        ))
    return hits


class TavilySearch(HTTPProvider):
    """Web-search provider backed by the Tavily search API"""

    name = "tavily"

    async def search(self, request: SearchRequest) -> SearchResponse:
        api_key = self._require_key(self.settings.TAVILY_API_KEY, "TAVILY_API_KEY")
        payload = {
            "api_key": api_key,
            "query": request.query,
            "max_results": request.max_results,
            "search_depth": request.search_depth,
            "include_answer": False,
        }
        if request.time_range:
            payload["time_range"] = request.time_range
        if request.include_domains:
            payload["include_domains"] = request.include_domains
        if request.exclude_domains:
            payload["exclude_domains"] = request.exclude_domains

        data = await self._post_json(
            f"{self.settings.TAVILY_BASE_URL}/search", payload, timeout=self.settings.SEARCH_TIMEOUT_SEC
        )
        hits = _parse_tavily_response(data)
        logger.info("Tavily search returned %d results for query: %s", len(hits), request.query[:80])
        return SearchResponse(items=hits)
