"""
Application services: background jobs, search and LLM analysis.
"""

from .llm_service import LLMService
from .search_service import SearchResponse, SearchService
from .task_runner import BackgroundTaskRunner, JobStatus

__all__ = [
    "BackgroundTaskRunner",
    "JobStatus",
    "LLMService",
    "SearchResponse",
    "SearchService",
]
