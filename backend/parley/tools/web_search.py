"""
Web Search Tool - Lets the model look up real-time information.
Backed by the Tavily search API.
"""

import logging
from typing import List, Dict, Any, Optional

import httpx

from .base import ChatTool, ToolOutput

logger = logging.getLogger(__name__)

TAVILY_URL = "https://api.tavily.com/search"
MAX_RESULTS = 10


class WebSearchTool(ChatTool):
    """
    Searches the web and hands the model a markdown digest of the hits.
    """

    name = "web_search"
    display_name = "Web Search"
    description = "Search the web for up-to-date information. Returns titles, URLs and snippets."
    parameters = {
        "type": "object",
        "properties": {
            "query": {"type": "string", "description": "The search query"},
            "max_results": {
                "type": "integer",
                "description": "Number of results to return",
                "minimum": 1,
                "maximum": MAX_RESULTS,
            },
            "search_depth": {"type": "string", "enum": ["basic", "advanced"]},
        },
        "required": ["query"],
    }

    def __init__(
        self,
        api_key: str,
        provider: str = "tavily",
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Args:
            api_key: API key for the search provider
            provider: Search provider ("tavily")
            timeout: Request timeout in seconds
            transport: Optional httpx transport
        """
        self.api_key = api_key
        self.provider = provider
        self.timeout = timeout
        self.transport = transport

    async def process(self, arguments: Dict[str, Any]) -> ToolOutput:
        query = str(arguments.get("query", "")).strip()
        if not query:
            raise ValueError("Missing required argument: query")
        max_results = max(1, min(int(arguments.get("max_results", 5)), MAX_RESULTS))

        kwargs: Dict[str, Any] = {"max_results": max_results}
        if arguments.get("search_depth") in ("basic", "advanced"):
            kwargs["search_depth"] = arguments["search_depth"]
        results = await self.search(query, **kwargs)
        return ToolOutput(string=self.format_results(results))

    async def search(
        self,
        query: str,
        max_results: int = 5,
        search_depth: str = "basic",
    ) -> List[Dict[str, Any]]:
        """
        Returns:
            List of search results, each containing 'title', 'url', 'content'
        """
        if self.provider != "tavily":
            raise ValueError(f"Unsupported search provider: {self.provider}")
        if not self.api_key:
            raise RuntimeError("Web search API key not configured. Set WEB_SEARCH_API_KEY.")

        payload = {
            "api_key": self.api_key,
            "query": query,
            "max_results": max_results,
            "search_depth": search_depth,
        }
        logger.debug(f"Web search: provider=tavily, depth={search_depth}, query={query[:100]}")

        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            resp = await client.post(TAVILY_URL, json=payload)
            resp.raise_for_status()
            data = resp.json()

        hits = [item for item in data.get("results", []) if isinstance(item, dict)]
        logger.info(
            "Web search completed",
            extra={"extra_fields": {"provider": self.provider, "results": len(hits)}},
        )
        return [
            {
                "title": item.get("title", ""),
                "url": item.get("url", ""),
                "content": item.get("content", ""),
            }
            for item in hits
        ]

    def format_results(self, results: List[Dict[str, Any]]) -> str:
        """Render results as a numbered markdown list for the model."""
        if not results:
            return "No search results found."

        sections = ["## Web Search Results"]
        for i, result in enumerate(results, 1):
            sections.append(
                f"### {i}. {result['title'] or result['url']}\n"
                f"**URL**: {result['url']}\n"
                f"{result['content']}"
            )
        return "\n\n".join(sections) + "\n"
