"""
Indexing Configuration - Centralized settings for the knowledge base.

Uses environment variables with sensible defaults. All paths are resolved
to absolute paths for reliability.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Set, List


def _home_folders(*names: str) -> List[Path]:
    return [Path.home() / name for name in names]


@dataclass
class IndexerConfig:
    """
    Configuration for the indexing and search system.

    Stores default to the ~/.deskindex directory.
    Concurrency limits are tuned for typical desktop hardware.
    """

    # --- Paths ---
    roots: List[Path] = field(default_factory=lambda: _home_folders(
        "Desktop", "Documents",
    ))
    # Indexing and watching are refused outside these folders
    safe_roots: List[Path] = field(default_factory=lambda: _home_folders(
        "Desktop", "Documents", "Downloads", "Projects",
        "Code", "Development", "Workspace",
    ))
    db_path: Path = field(default_factory=lambda: Path.home() / ".deskindex" / "metadata.sqlite")
    vector_db_path: Path = field(default_factory=lambda: Path.home() / ".deskindex" / "vectors.sqlite")
    backup_on_open: bool = False
    max_backups: int = 5

    # --- Concurrency Limits ---
    indexer_concurrency: int = 8    # Files indexed in parallel during a tree run
    scanner_concurrency: int = 60   # Parallel stat() calls
    search_concurrency: int = 8     # Parallel candidate re-reads
    vector_batch_size: int = 64

    # --- Traversal ---
    max_depth: int = 10
    max_file_size: int = 10 * 1024 * 1024
    min_content_length: int = 10

    # OS, driver and program installation locations (prefix match)
    system_prefixes: Set[str] = field(default_factory=lambda: {
        "c:\\windows", "c:\\program files", "c:\\program files (x86)",
        "c:\\programdata", "c:\\system", "c:\\users\\all users",
        "c:\\users\\default", "c:\\users\\public", "c:\\$",
        "/bin", "/sbin", "/boot", "/dev", "/etc", "/proc", "/sys",
        "/usr", "/lib", "/lib64", "/system", "/library", "/applications",
    })

    system_dirs: Set[str] = field(default_factory=lambda: {
        "windows", "system32", "syswow64", "drivers", "driver",
        "program files", "program files (x86)", "programdata",
        "windows.old", "recovery", "system volume information",
        "msocache", "intel", "amd", "nvidia", "realtek",
    })

    ephemeral_names: Set[str] = field(default_factory=lambda: {
        "temp", "tmp", ".tmp", ".temp", "temporary internet files",
        "$recycle.bin", ".trash", ".trashes",
        "pagefile.sys", "hiberfil.sys", "swapfile.sys",
    })

    # --- Skip Patterns ---
    skip_dirs: Set[str] = field(default_factory=lambda: {
        # Dependencies
        "node_modules", "bower_components", "vendor", "packages",
        ".npm", ".yarn", ".pnpm", "npm-cache", "yarn-cache",
        # Version control
        ".git", ".svn", ".hg", ".bzr",
        # Build outputs
        "build", "dist", "out", "target", "bin", "obj",
        "debug", "release", ".next", ".nuxt", ".gatsby",
        # IDE/Editor
        ".vs", ".vscode", ".idea", ".eclipse", ".sublime",
        # Language specific
        "__pycache__", ".venv", "venv", "env", ".gradle", ".maven",
        # Cache
        "cache", ".cache", "logs", ".logs",
        # Backups
        "backup", "backups", ".backup", ".bak",
    })

    skip_files: Set[str] = field(default_factory=lambda: {
        ".ds_store", "thumbs.db", "desktop.ini",
    })

    allowed_hidden_dirs: Set[str] = field(default_factory=lambda: {
        ".github", ".vscode",
    })

    # --- Chunking ---
    chunk_size: int = 1000

    # --- Change detection ---
    freshness_hours: float = 24.0

    # --- Embedding ---
    embedding_backend: str = "ollama"   # "ollama", "sentence-transformers" or "hash"
    embedding_dim: int = 768
    embed_model: str = "nomic-embed-text"
    local_embed_model: str = "all-mpnet-base-v2"

    # --- Responder ---
    ollama_url: str = "http://localhost:11434"
    model: str = "llama3:8b"
    probe_timeout: float = 2.0
    generate_timeout: float = 30.0
    responder_files: int = 3
    max_results: int = 10

    # --- Commands ---
    folder_prefixes: List[str] = field(default_factory=lambda: [
        "folder", "klasör", "klasor", "index", "project", "proje",
    ])
    file_prefixes: List[str] = field(default_factory=lambda: [
        "file", "dosya",
    ])

    # --- Watcher ---
    debounce_ms: int = 500

    def __post_init__(self):
        """Ensure all paths are absolute and parent directories exist."""
        self.db_path = Path(self.db_path).expanduser().resolve()
        self.vector_db_path = Path(self.vector_db_path).expanduser().resolve()
        self.roots = [Path(p).expanduser().resolve() for p in self.roots]
        self.safe_roots = [Path(p).expanduser().resolve() for p in self.safe_roots]

        # Create directories if they don't exist
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.vector_db_path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def backup_dir(self) -> Path:
        return self.db_path.parent / "backups"

    @classmethod
    def from_env(cls) -> "IndexerConfig":
        """
        Create config from environment variables.

        Supported env vars:
            DESKINDEX_ROOTS: Comma-separated list of paths
            DESKINDEX_SAFE_ROOTS: Comma-separated list of allowed indexing roots
            DESKINDEX_DB_PATH: Path to the SQLite metadata database
            DESKINDEX_VECTOR_DB_PATH: Path to the vector database
            DESKINDEX_OLLAMA_URL: Base URL of the Ollama server
            DESKINDEX_MODEL: Generation model name
            DESKINDEX_EMBED_MODEL: Embedding model name
            DESKINDEX_EMBEDDING_BACKEND: ollama, sentence-transformers or hash
            DESKINDEX_MAX_DEPTH: Maximum traversal depth
            DESKINDEX_INDEXER_CONCURRENCY: Files indexed in parallel
        """
        config = cls()

        if roots := os.environ.get("DESKINDEX_ROOTS"):
            config.roots = [Path(p.strip()) for p in roots.split(",")]

        if safe_roots := os.environ.get("DESKINDEX_SAFE_ROOTS"):
            config.safe_roots = [Path(p.strip()) for p in safe_roots.split(",")]

        if db_path := os.environ.get("DESKINDEX_DB_PATH"):
            config.db_path = Path(db_path)

        if vector_db_path := os.environ.get("DESKINDEX_VECTOR_DB_PATH"):
            config.vector_db_path = Path(vector_db_path)

        if url := os.environ.get("DESKINDEX_OLLAMA_URL"):
            config.ollama_url = url.rstrip("/")

        if model := os.environ.get("DESKINDEX_MODEL"):
            config.model = model

        if embed_model := os.environ.get("DESKINDEX_EMBED_MODEL"):
            config.embed_model = embed_model

        if backend := os.environ.get("DESKINDEX_EMBEDDING_BACKEND"):
            config.embedding_backend = backend.strip().lower()

        if max_depth := os.environ.get("DESKINDEX_MAX_DEPTH"):
            config.max_depth = int(max_depth)

        if concurrency := os.environ.get("DESKINDEX_INDEXER_CONCURRENCY"):
            config.indexer_concurrency = int(concurrency)

        config.__post_init__()
        return config


# Default config, created on first use
_default_config: IndexerConfig | None = None


def get_config() -> IndexerConfig:
    """Get the default configuration (singleton)."""
    global _default_config
    if _default_config is None:
        _default_config = IndexerConfig.from_env()
    return _default_config


def set_config(config: IndexerConfig) -> None:
    """Override the default configuration (for testing)."""
    global _default_config
    _default_config = config
