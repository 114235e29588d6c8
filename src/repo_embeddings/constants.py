"""
Shared constants for the repository embedding service.
"""

# Push events carry this "after" SHA when a branch or tag is deleted
ZERO_SHA = "0" * 40

# Merge request actions that trigger a processing run
MERGE_REQUEST_ACTIONS = ("open", "update")

# Content filter limits
MAX_EMBED_CONTENT_SIZE = 100_000  # characters
BINARY_CONTROL_CHAR_RATIO = 0.1
ALLOWED_CONTROL_CHARS = frozenset({"\t", "\n", "\r"})

# Local checkouts (clone-based ingestion)
MAX_LOCAL_FILE_SIZE = 1_000_000  # bytes
EXCLUDED_DIRECTORIES = frozenset({".git", "node_modules"})

# Embedding generator
EMBEDDING_BATCH_SIZE = 5
EMBEDDING_BATCH_DELAY_SECONDS = 1.0
DEFAULT_MAX_CHUNK_SIZE = 8000
CHUNK_PATH_SEPARATOR = "#chunk"

# Per-provider embedding model defaults: (model, dimensions)
EMBEDDING_MODEL_DEFAULTS = {
    "http": ("qodo-embed-1", 1536),
    "vertex": ("text-embedding-004", 768),
    "mock": ("qodo-embed-1", 1536),
}

# Repository provider
FILE_FETCH_BATCH_SIZE = 10
TREE_PAGE_SIZE = 100

# Search
DEFAULT_SEARCH_LIMIT = 10
LLM_SNIPPET_MAX_CHARS = 2000

DEFAULT_LANGUAGE = "text"

# Extension -> language tag
LANGUAGE_MAP = {
    ".js": "javascript",
    ".jsx": "javascript",
    ".ts": "typescript",
    ".tsx": "typescript",
    ".py": "python",
    ".rb": "ruby",
    ".java": "java",
    ".go": "go",
    ".php": "php",
    ".cs": "csharp",
    ".cpp": "cpp",
    ".c": "c",
    ".h": "c",
    ".hpp": "cpp",
    ".html": "html",
    ".css": "css",
    ".scss": "scss",
    ".json": "json",
    ".md": "markdown",
    ".yml": "yaml",
    ".yaml": "yaml",
    ".xml": "xml",
    ".sh": "shell",
    ".bash": "shell",
    ".sql": "sql",
    ".swift": "swift",
    ".kt": "kotlin",
    ".rs": "rust",
}
