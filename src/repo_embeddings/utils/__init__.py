"""
Utility modules shared across the service.

- error_handler: Decorator-based error handling for HTTP entry points
- file_filter: Content eligibility and local checkout filtering
- language: Extension-based language detection
"""

from .error_handler import handle_api_errors
from .file_filter import ContentFilter, FileFilter, is_binary_content
from .language import detect_language

__all__ = [
    "handle_api_errors",
    "ContentFilter",
    "FileFilter",
    "is_binary_content",
    "detect_language",
]
