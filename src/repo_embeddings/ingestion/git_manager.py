"""
Clone-based repository ingestion.

Materializes a repository locally with git instead of reading it through the
provider API:
- Clone into TEMP_DIR/<uuid> (authenticated with an oauth2 token)
- Walk the checkout, skipping .git, node_modules and files over 1 MB
- Derive a stable integer project id from the URL path
- Run the shared ingestion pipeline
- Remove the checkout

Usage:
    manager = GitRepositoryManager(temp_dir=Path("./temp"), auth_token="glpat-...")
    ingestor = RepositoryIngestor(manager, pipeline)
    stats = await ingestor.process("https://gitlab.com/group/project", processing_id)
"""

import asyncio
import hashlib
import logging
import os
import shutil
import subprocess
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Tuple
from urllib.parse import urlparse, urlunparse

from ..models import CodeFile, ProjectMetadata
from ..utils.file_filter import FileFilter
from ..utils.language import detect_language
from .pipeline import IngestionPipeline, IngestionStats

logger = logging.getLogger(__name__)

GIT_TIMEOUT_SECONDS = 300
MAX_PROJECT_ID = 2147483647


class GitManagerError(Exception):
    """Base exception for Git manager errors."""

    pass


def extract_project_path(repository_url: str) -> str:
    """
    Extract the namespaced project path from a repository URL.

    https://gitlab.com/group/sub/project -> group/sub/project

    Raises:
        GitManagerError: If the URL has no path
    """
    parsed = urlparse(repository_url.strip())
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise GitManagerError(f"Unsupported repository URL: {repository_url}")

    path = parsed.path.strip("/")
    if not path:
        raise GitManagerError(f"Could not extract project path from repository URL: {repository_url}")
    return path


def project_id_from_path(project_path: str) -> int:
    """
    Stable integer project id for a project path.

    First 8 hex digits of the path's MD5, reduced into the positive 32-bit range.
    """
    digest = hashlib.md5(project_path.encode("utf-8")).hexdigest()
    return int(digest[:8], 16) % MAX_PROJECT_ID


class GitRepositoryManager:
    """
    Clone repositories into a scratch directory and read their files.

    Features:
    - Token authentication (oauth2:<token>@host)
    - Shallow clones (--depth 1)
    - Token redaction in error messages
    - Cleanup of each checkout after use
    """

    def __init__(
        self,
        temp_dir: Path,
        auth_token: Optional[str] = None,
        file_filter: Optional[FileFilter] = None,
    ):
        """
        Initialize Git repository manager.

        Args:
            temp_dir: Directory under which checkouts are created
            auth_token: Provider token for private repositories
            file_filter: Directory/size filter for the checkout walk
        """
        self.temp_dir = Path(temp_dir)
        self.auth_token = auth_token
        self.file_filter = file_filter or FileFilter()

        if not self.auth_token:
            logger.warning("[CLONE] No provider token configured; only public repositories can be cloned")

    def _inject_auth_token(self, git_url: str, auth_token: str) -> str:
        """
        Inject authentication token into Git URL.

        Converts:
            https://gitlab.com/group/repo
        To:
            https://oauth2:<token>@gitlab.com/group/repo
        """
        parsed = urlparse(git_url)
        netloc_with_auth = f"oauth2:{auth_token}@{parsed.netloc}"

        return urlunparse(
            (
                parsed.scheme,
                netloc_with_auth,
                parsed.path,
                parsed.params,
                parsed.query,
                parsed.fragment,
            )
        )

    def _redact(self, text: str) -> str:
        if self.auth_token:
            return text.replace(self.auth_token, "***")
        return text

    def _run_git_command(
        self, args: List[str], cwd: Optional[Path] = None, env: Optional[Dict[str, str]] = None
    ) -> Tuple[str, str]:
        """
        Run a git command and return output.

        Args:
            args: Git command arguments (e.g., ['clone', 'https://...'])
            cwd: Working directory for command
            env: Environment variables

        Returns:
            Tuple of (stdout, stderr)

        Raises:
            GitManagerError: If command fails
        """
        cmd = ["git"] + args
        git_env = env or os.environ.copy()
        git_env.setdefault("GIT_TERMINAL_PROMPT", "0")

        try:
            result = subprocess.run(
                cmd,
                cwd=cwd,
                env=git_env,
                capture_output=True,
                text=True,
                timeout=GIT_TIMEOUT_SECONDS,
            )
        except subprocess.TimeoutExpired:
            raise GitManagerError("Git command timed out after 5 minutes")
        except OSError as e:
            raise GitManagerError(f"Git command error: {e}")

        if result.returncode != 0:
            stderr = self._redact(result.stderr or result.stdout)
            logger.error(f"[CLONE] Git command failed: git {args[0]}")
            logger.error(f"[CLONE] stderr: {stderr}")
            raise GitManagerError(f"Git command failed: {stderr}")

        return result.stdout, result.stderr

    def clone_repository(self, repository_url: str) -> Tuple[Path, str]:
        """
        Clone a repository into a fresh directory under temp_dir (blocking).

        Returns:
            (checkout path, project path)

        Raises:
            GitManagerError: If the URL is invalid or git fails
        """
        project_path = extract_project_path(repository_url)
        repo_path = self.temp_dir / str(uuid.uuid4())
        repo_path.parent.mkdir(parents=True, exist_ok=True)

        clone_url = repository_url
        if self.auth_token:
            clone_url = self._inject_auth_token(repository_url, self.auth_token)

        logger.info(f"[CLONE] Cloning repository {repository_url} to {repo_path}")
        try:
            self._run_git_command(["clone", "--depth", "1", clone_url, str(repo_path)])
        except GitManagerError:
            self.cleanup(repo_path)
            raise

        return repo_path, project_path

    def read_files(self, repo_path: Path) -> List[CodeFile]:
        """
        Read every text file of a checkout (blocking).

        Excluded directories are not descended into; oversized and
        non-UTF-8 files are skipped.
        """
        repo_path = Path(repo_path)
        files: List[CodeFile] = []

        for root, dirs, filenames in os.walk(repo_path):
            dirs[:] = sorted(d for d in dirs if not self.file_filter.should_exclude_directory(d))

            for filename in sorted(filenames):
                full_path = Path(root) / filename
                if self.file_filter.should_exclude_file(full_path):
                    continue

                relative_path = full_path.relative_to(repo_path).as_posix()
                try:
                    content = full_path.read_text(encoding="utf-8")
                    mtime = full_path.stat().st_mtime
                except (OSError, UnicodeDecodeError) as e:
                    logger.debug(f"[CLONE] Skipping {relative_path}: {e}")
                    continue

                files.append(
                    CodeFile(
                        path=relative_path,
                        content=content,
                        language=detect_language(relative_path),
                        last_modified=datetime.fromtimestamp(mtime, tz=timezone.utc),
                    )
                )

        logger.info(f"[CLONE] Read {len(files)} files from {repo_path}")
        return files

    def cleanup(self, repo_path: Path) -> None:
        """Remove a checkout; failures are logged."""
        try:
            if Path(repo_path).exists():
                shutil.rmtree(repo_path)
        except OSError as e:
            logger.error(f"[CLONE] Error cleaning up {repo_path}: {e}")


class RepositoryIngestor:
    """Runs clone → read → embed → store for one repository URL."""

    def __init__(self, git_manager: GitRepositoryManager, pipeline: IngestionPipeline):
        self.git_manager = git_manager
        self.pipeline = pipeline

    async def process(self, repository_url: str, processing_id: str) -> Optional[IngestionStats]:
        """
        Ingest a repository from a local clone.

        The commit identifier is a fresh random id, so repeated requests for
        an unchanged repository are never short-circuited by the
        idempotency gate.

        Returns:
            IngestionStats, or None if the checkout had no readable files

        Raises:
            GitManagerError: If cloning fails
            StorageError: If a storage write fails
        """
        logger.info(f"[CLONE] Processing repository {repository_url} (ID: {processing_id})")
        repo_path, project_path = await asyncio.to_thread(
            self.git_manager.clone_repository, repository_url
        )

        try:
            files = await asyncio.to_thread(self.git_manager.read_files, repo_path)
            if not files:
                logger.info(f"[CLONE] No files found in {repository_url}, skipping")
                return None

            project_id = project_id_from_path(project_path)
            logger.info(f"[CLONE] Project id {project_id} from path {project_path}")

            project = await self.pipeline.get_project(project_id)
            if project is None:
                project = ProjectMetadata(
                    project_id=project_id,
                    name=repository_url.rstrip("/").split("/")[-1] or "Unknown",
                    url=repository_url,
                    default_branch="main",
                )
                await self.pipeline.save_project(project)

            commit_id = str(uuid.uuid4())
            stats = await self.pipeline.ingest(
                project, files, commit_id=commit_id, branch="main", repository_url=repository_url
            )
            logger.info(f"[CLONE] Successfully processed {repository_url} (ID: {processing_id})")
            return stats
        finally:
            await asyncio.to_thread(self.git_manager.cleanup, repo_path)
