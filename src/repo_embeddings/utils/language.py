"""Extension-based language detection."""

import posixpath

from ..constants import DEFAULT_LANGUAGE, LANGUAGE_MAP


def detect_language(file_path: str) -> str:
    """
    Map a file path to a language tag.

    Unknown or missing extensions map to DEFAULT_LANGUAGE. Paths are treated
    as POSIX paths, which is what repository providers return.
    """
    _, extension = posixpath.splitext(file_path or "")
    return LANGUAGE_MAP.get(extension.lower(), DEFAULT_LANGUAGE)
