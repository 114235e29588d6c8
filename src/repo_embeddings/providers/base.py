"""
Repository provider interface.

A provider lists a repository tree and reads blobs at a given reference
(branch name or commit SHA), independent of transport.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Union

from ..constants import FILE_FETCH_BATCH_SIZE
from ..models import CodeFile
from ..utils.language import detect_language

logger = logging.getLogger(__name__)

ProjectRef = Union[int, str]


class ProviderError(Exception):
    """Transport or authorization failure talking to the repository host."""

    pass


class RepositoryProvider(ABC):
    """
    Abstract repository provider.

    Failure semantics:
    - list_files / get_project propagate ProviderError (fatal for a run)
    - read_file never raises; an unreadable blob yields ""
    - get_all_files drops unreadable files and keeps going
    """

    fetch_batch_size: int = FILE_FETCH_BATCH_SIZE

    @abstractmethod
    async def list_files(self, project_id: ProjectRef, ref: str) -> List[Dict[str, Any]]:
        """
        List blob entries of the repository tree at ref, in provider order.

        Each descriptor carries at least 'path'.

        Raises:
            ProviderError: If the tree cannot be listed
        """
        pass

    @abstractmethod
    async def fetch_file_content(self, project_id: ProjectRef, path: str, ref: str) -> str:
        """
        Read a blob's raw content.

        Raises:
            ProviderError: If the blob cannot be read
        """
        pass

    @abstractmethod
    async def get_project(self, project_id: ProjectRef) -> Dict[str, Any]:
        """
        Fetch project details (name, description, web_url, default_branch).

        Raises:
            ProviderError: If the project cannot be fetched
        """
        pass

    async def close(self) -> None:
        """Release transport resources."""
        return None

    async def read_file(self, project_id: ProjectRef, path: str, ref: str) -> str:
        """Read a blob, returning "" on error."""
        try:
            return await self.fetch_file_content(project_id, path, ref)
        except ProviderError as e:
            logger.error(f"Error fetching file content for {path}: {e}")
            return ""

    async def _fetch_code_file(self, project_id: ProjectRef, path: str, ref: str) -> CodeFile:
        content = await self.fetch_file_content(project_id, path, ref)
        return CodeFile(path=path, content=content, language=detect_language(path))

    async def get_all_files(self, project_id: ProjectRef, ref: str) -> List[CodeFile]:
        """
        Fetch every file of the tree at ref.

        Contents are fetched concurrently in groups of fetch_batch_size; groups
        run one after another. Files whose content cannot be read are logged
        and left out of the result.

        Raises:
            ProviderError: If the tree listing fails
        """
        entries = await self.list_files(project_id, ref)
        files: List[CodeFile] = []

        for i in range(0, len(entries), self.fetch_batch_size):
            batch = entries[i:i + self.fetch_batch_size]
            results = await asyncio.gather(
                *(self._fetch_code_file(project_id, entry["path"], ref) for entry in batch),
                return_exceptions=True,
            )

            for entry, result in zip(batch, results):
                if isinstance(result, BaseException):
                    if not isinstance(result, Exception):
                        raise result
                    logger.error(f"Error processing file {entry['path']}: {result}")
                    continue
                files.append(result)

        logger.info(f"Fetched {len(files)}/{len(entries)} files for project {project_id} at {ref}")
        return files

    @abstractmethod
    async def get_commit(self, project_id: ProjectRef, commit_sha: str) -> Dict[str, Any]:
        """
        Fetch commit details.

        Raises:
            ProviderError: If the commit cannot be fetched
        """
        pass

    @abstractmethod
    async def get_merge_request(self, project_id: ProjectRef, merge_request_iid: int) -> Dict[str, Any]:
        """
        Fetch merge request details.

        Raises:
            ProviderError: If the merge request cannot be fetched
        """
        pass
