"""
File filtering used by the ingestion paths.

ContentFilter decides whether fetched content may be sent to the embedding
model; FileFilter decides which entries of a local checkout are read at all.
"""

from pathlib import Path
from typing import Iterable, Optional

from ..constants import (
    ALLOWED_CONTROL_CHARS,
    BINARY_CONTROL_CHAR_RATIO,
    EXCLUDED_DIRECTORIES,
    MAX_EMBED_CONTENT_SIZE,
    MAX_LOCAL_FILE_SIZE,
)


def is_binary_content(content: str) -> bool:
    """
    Heuristic binary detection.

    Content containing a null byte is binary. Otherwise it is binary when more
    than 10% of its characters are control characters (code < 32, other than
    tab, newline and carriage return).
    """
    if "\0" in content:
        return True
    if not content:
        return False

    control_count = sum(
        1 for char in content if ord(char) < 32 and char not in ALLOWED_CONTROL_CHARS
    )
    return control_count > len(content) * BINARY_CONTROL_CHAR_RATIO


class ContentFilter:
    """Eligibility check for embedding."""

    def __init__(self, max_size: int = MAX_EMBED_CONTENT_SIZE):
        self.max_size = max_size

    def is_eligible(self, content: Optional[str]) -> bool:
        """True when content is non-empty, within the size ceiling and not binary."""
        if not content:
            return False
        if len(content) > self.max_size:
            return False
        return not is_binary_content(content)

    def rejection_reason(self, content: Optional[str]) -> Optional[str]:
        """Short reason for logging, or None when the content is eligible."""
        if not content:
            return "empty"
        if len(content) > self.max_size:
            return f"too large ({len(content)} > {self.max_size} chars)"
        if is_binary_content(content):
            return "binary"
        return None


class FileFilter:
    """Path filtering for local checkouts."""

    def __init__(
        self,
        additional_excludes: Optional[Iterable[str]] = None,
        max_file_size: int = MAX_LOCAL_FILE_SIZE,
    ):
        """
        Initialize the file filter.

        Args:
            additional_excludes: Additional directory names to skip
            max_file_size: Files larger than this many bytes are skipped
        """
        self.exclude_dirs = set(EXCLUDED_DIRECTORIES)
        if additional_excludes:
            self.exclude_dirs.update(additional_excludes)
        self.max_file_size = max_file_size

    def should_exclude_directory(self, dir_name: str) -> bool:
        return dir_name in self.exclude_dirs

    def should_exclude_file(self, file_path: Path) -> bool:
        """Skip files over the size limit (and anything that is not a regular file)."""
        try:
            return not file_path.is_file() or file_path.stat().st_size > self.max_file_size
        except OSError:
            return True
