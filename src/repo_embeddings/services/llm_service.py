"""
Optional LLM analysis of search results through an OpenRouter-compatible API.

Analysis is enrichment only: a missing key or a failed call yields an
explanatory string, never an exception.
"""

import logging
from typing import List, Optional

import httpx

from ..constants import LLM_SNIPPET_MAX_CHARS
from ..models import CodeEmbedding

logger = logging.getLogger(__name__)

NOT_AVAILABLE_MESSAGE = "LLM analysis is not available. OPENROUTER_API_KEY is not set."

SYSTEM_PROMPT = "You are a helpful code analysis assistant."

PROMPT_TEMPLATE = """You are a code analysis assistant. I'm searching for code related to the following query:

Query: {query}

I've found the following code snippets that might be relevant:

{snippets}

Please analyze these code snippets and provide a comprehensive review that:
1. Explains how the code relates to my query
2. Summarizes the key functionality and purpose of each snippet
3. Highlights any important patterns, algorithms, or techniques used
4. Identifies any potential issues, bugs, or areas for improvement
5. Suggests how I might use or adapt this code for my needs

Focus on being thorough but concise, and prioritize the most relevant aspects of the code to my query.
"""


def format_snippet(index: int, snippet: CodeEmbedding, max_chars: int = LLM_SNIPPET_MAX_CHARS) -> str:
    content = snippet.content[:max_chars]
    if len(snippet.content) > max_chars:
        content += "..."
    return (
        f"Code Snippet {index} ({snippet.file_path}, Language: {snippet.language}):\n"
        f"```{snippet.language}\n{content}\n```\n"
    )


def build_prompt(query: str, snippets: List[CodeEmbedding]) -> str:
    formatted = "\n".join(format_snippet(i, s) for i, s in enumerate(snippets, 1))
    return PROMPT_TEMPLATE.format(query=query, snippets=formatted)


class LLMService:
    """Code analysis via chat completions."""

    def __init__(
        self,
        api_url: str,
        api_key: Optional[str],
        model: str,
        app_url: str = "http://localhost:3000",
        timeout: float = 120.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_url = api_url.rstrip("/")
        self.api_key = api_key
        self.model = model

        if not self.api_key:
            logger.warning("OPENROUTER_API_KEY is not set. LLM analysis will not be available.")

        self._client = client or httpx.AsyncClient(
            base_url=self.api_url,
            headers={
                "Content-Type": "application/json",
                "Authorization": f"Bearer {self.api_key or ''}",
                "HTTP-Referer": app_url,
            },
            timeout=timeout,
        )

    @property
    def available(self) -> bool:
        return bool(self.api_key)

    async def analyze_code(self, query: str, snippets: List[CodeEmbedding]) -> str:
        """Return a review of the snippets in the context of the query."""
        if not self.available:
            return NOT_AVAILABLE_MESSAGE

        try:
            response = await self._client.post(
                "/chat/completions",
                json={
                    "model": self.model,
                    "messages": [
                        {"role": "system", "content": SYSTEM_PROMPT},
                        {"role": "user", "content": build_prompt(query, snippets)},
                    ],
                    "temperature": 0.1,
                    "max_tokens": 2000,
                },
            )
            response.raise_for_status()
            return response.json()["choices"][0]["message"]["content"]
        except (httpx.HTTPError, ValueError, KeyError, IndexError, TypeError) as e:
            logger.error(f"[SEARCH] Error analyzing code with LLM: {e}")
            return f"Error analyzing code: {e}"

    async def close(self) -> None:
        await self._client.aclose()
