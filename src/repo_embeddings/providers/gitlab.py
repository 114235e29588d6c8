"""
GitLab REST API (v4) repository provider.

Authenticates with a PRIVATE-TOKEN header. Tree listings are paginated
(per_page=100) and followed through the X-Next-Page response header.
"""

import logging
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import httpx

from ..constants import TREE_PAGE_SIZE
from .base import ProjectRef, ProviderError, RepositoryProvider

logger = logging.getLogger(__name__)


class GitLabProvider(RepositoryProvider):
    """
    Repository provider backed by the GitLab API.

    Usage:
        provider = GitLabProvider("https://gitlab.com/api/v4", token="glpat-...")
        files = await provider.get_all_files(42, "main")
        await provider.close()
    """

    def __init__(
        self,
        api_url: str,
        token: Optional[str],
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Initialize the provider.

        Args:
            api_url: API base URL (e.g., https://gitlab.com/api/v4)
            token: Personal/project access token
            timeout: Per-request transport timeout in seconds
            client: Preconfigured client (tests inject one with a mock transport)
        """
        if not token:
            logger.warning("GITLAB_API_TOKEN is not set; provider requests will be unauthenticated")

        headers = {"Content-Type": "application/json"}
        if token:
            headers["PRIVATE-TOKEN"] = token

        self.api_url = api_url.rstrip("/")
        self._client = client or httpx.AsyncClient(base_url=self.api_url, timeout=timeout)
        self._client.headers.update(headers)

    @staticmethod
    def _project_path(project_id: ProjectRef) -> str:
        return f"/projects/{quote(str(project_id), safe='')}"

    async def _get(self, url: str, params: Optional[Dict[str, Any]] = None) -> httpx.Response:
        try:
            response = await self._client.get(url, params=params)
            response.raise_for_status()
            return response
        except httpx.HTTPStatusError as e:
            raise ProviderError(
                f"GitLab API returned {e.response.status_code} for {url}"
            ) from e
        except httpx.HTTPError as e:
            raise ProviderError(f"GitLab API request failed for {url}: {e}") from e

    async def list_files(self, project_id: ProjectRef, ref: str) -> List[Dict[str, Any]]:
        url = f"{self._project_path(project_id)}/repository/tree"
        entries: List[Dict[str, Any]] = []
        page: Optional[str] = "1"

        while page:
            response = await self._get(
                url,
                params={"ref": ref, "recursive": "true", "per_page": TREE_PAGE_SIZE, "page": page},
            )
            entries.extend(item for item in response.json() if item.get("type") == "blob")
            page = response.headers.get("X-Next-Page") or None

        logger.debug(f"Listed {len(entries)} blobs for project {project_id} at {ref}")
        return entries

    async def fetch_file_content(self, project_id: ProjectRef, path: str, ref: str) -> str:
        url = f"{self._project_path(project_id)}/repository/files/{quote(path, safe='')}/raw"
        response = await self._get(url, params={"ref": ref})
        return response.text

    async def get_project(self, project_id: ProjectRef) -> Dict[str, Any]:
        response = await self._get(self._project_path(project_id))
        return response.json()

    async def get_commit(self, project_id: ProjectRef, commit_sha: str) -> Dict[str, Any]:
        response = await self._get(
            f"{self._project_path(project_id)}/repository/commits/{commit_sha}"
        )
        return response.json()

    async def get_merge_request(
        self, project_id: ProjectRef, merge_request_iid: int
    ) -> Dict[str, Any]:
        response = await self._get(
            f"{self._project_path(project_id)}/merge_requests/{merge_request_iid}"
        )
        return response.json()

    async def close(self) -> None:
        await self._client.aclose()
