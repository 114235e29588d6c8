"""
Repository providers.

Providers list a repository tree and read blobs at a branch or commit.
"""

from .base import ProviderError, RepositoryProvider
from .gitlab import GitLabProvider

__all__ = ["RepositoryProvider", "ProviderError", "GitLabProvider"]
