"""
Line-boundary chunking of oversized files.

A file whose content exceeds the chunk size is split into contiguous chunks,
each an independently embeddable pseudo-file whose path carries a chunk index
(e.g. "src/big.py#chunk0"). Concatenating the chunks in order reproduces the
original content.
"""

import logging
from dataclasses import replace
from typing import Iterable, List, Optional, Set

from ..constants import CHUNK_PATH_SEPARATOR, DEFAULT_MAX_CHUNK_SIZE
from ..models import CodeFile

logger = logging.getLogger(__name__)


def chunk_path(path: str, index: int) -> str:
    return f"{path}{CHUNK_PATH_SEPARATOR}{index}"


def split_content(content: str, max_chunk_size: int = DEFAULT_MAX_CHUNK_SIZE) -> List[str]:
    """
    Split content at line boundaries into chunks of at most max_chunk_size characters.

    Lines keep their terminators. A single line longer than max_chunk_size is
    cut into max_chunk_size pieces.
    """
    if max_chunk_size <= 0:
        raise ValueError("max_chunk_size must be positive")
    if len(content) <= max_chunk_size:
        return [content]

    chunks: List[str] = []
    current: List[str] = []
    current_size = 0

    for line in content.splitlines(keepends=True):
        if current_size + len(line) > max_chunk_size and current:
            chunks.append("".join(current))
            current, current_size = [], 0

        while len(line) > max_chunk_size:
            chunks.append(line[:max_chunk_size])
            line = line[max_chunk_size:]

        if line:
            current.append(line)
            current_size += len(line)

    if current:
        chunks.append("".join(current))

    return chunks


class CodeChunker:
    """
    Splits oversized files into chunk pseudo-files.

    Effective paths are unique across everything passed through one
    chunk_files() call: a chunk path that collides with a real path (or
    another chunk) gets a "~N" suffix.
    """

    def __init__(self, max_chunk_size: int = DEFAULT_MAX_CHUNK_SIZE):
        """
        Initialize code chunker.

        Args:
            max_chunk_size: Files longer than this (in characters) are split
        """
        if max_chunk_size <= 0:
            raise ValueError("max_chunk_size must be positive")
        self.max_chunk_size = max_chunk_size

    def chunk_file(self, file: CodeFile, taken: Optional[Set[str]] = None) -> List[CodeFile]:
        """
        Chunk a single file.

        Args:
            file: File to chunk
            taken: Effective paths already in use; updated in place

        Returns:
            [file] when it fits, otherwise one CodeFile per chunk
        """
        taken = taken if taken is not None else set()

        if not file.content or len(file.content) <= self.max_chunk_size:
            taken.add(file.path)
            return [file]

        pieces = split_content(file.content, self.max_chunk_size)
        chunks = []
        for index, piece in enumerate(pieces):
            path = self._unique_path(chunk_path(file.path, index), taken)
            chunks.append(replace(file, path=path, content=piece))

        logger.debug(f"Split {file.path} into {len(chunks)} chunks")
        return chunks

    def chunk_files(self, files: Iterable[CodeFile]) -> List[CodeFile]:
        """Chunk every file, keeping effective paths unique."""
        files = list(files)
        # Real paths are reserved first so a chunk never shadows one of them
        taken: Set[str] = {f.path for f in files}
        result: List[CodeFile] = []

        for file in files:
            if not file.content or len(file.content) <= self.max_chunk_size:
                result.append(file)
                continue
            result.extend(self.chunk_file(file, taken))

        return result

    @staticmethod
    def _unique_path(path: str, taken: Set[str]) -> str:
        candidate = path
        suffix = 1
        while candidate in taken:
            candidate = f"{path}~{suffix}"
            suffix += 1
        taken.add(candidate)
        return candidate
