"""
File Types - Static classification of files into {type, language}.

Only recognised text files are indexed; everything else is skipped
before any content is read.
"""

from pathlib import Path
from typing import Dict

from .models import FileKind


UNKNOWN = FileKind("unknown", "unknown")

TYPE_MAP: Dict[str, FileKind] = {
    # Code
    ".js": FileKind("code", "javascript"),
    ".ts": FileKind("code", "typescript"),
    ".jsx": FileKind("code", "react"),
    ".tsx": FileKind("code", "react-typescript"),
    ".py": FileKind("code", "python"),
    ".java": FileKind("code", "java"),
    ".cpp": FileKind("code", "cpp"),
    ".c": FileKind("code", "c"),
    ".h": FileKind("code", "c"),
    ".hpp": FileKind("code", "cpp"),
    ".cs": FileKind("code", "csharp"),
    ".php": FileKind("code", "php"),
    ".rb": FileKind("code", "ruby"),
    ".go": FileKind("code", "go"),
    ".rs": FileKind("code", "rust"),
    ".swift": FileKind("code", "swift"),
    ".kt": FileKind("code", "kotlin"),
    ".scala": FileKind("code", "scala"),
    ".lua": FileKind("code", "lua"),
    ".sh": FileKind("code", "shell"),
    ".bash": FileKind("code", "shell"),
    # Data
    ".json": FileKind("data", "json"),
    ".jsonl": FileKind("data", "json"),
    ".xml": FileKind("data", "xml"),
    ".csv": FileKind("data", "csv"),
    ".tsv": FileKind("data", "csv"),
    # Config
    ".yaml": FileKind("config", "yaml"),
    ".yml": FileKind("config", "yaml"),
    ".toml": FileKind("config", "toml"),
    ".ini": FileKind("config", "ini"),
    ".cfg": FileKind("config", "ini"),
    ".conf": FileKind("config", "ini"),
    # Documentation
    ".md": FileKind("documentation", "markdown"),
    ".markdown": FileKind("documentation", "markdown"),
    ".rst": FileKind("documentation", "restructuredtext"),
    ".adoc": FileKind("documentation", "asciidoc"),
    ".txt": FileKind("text", "plain"),
    ".log": FileKind("text", "plain"),
    # Markup / style / database
    ".html": FileKind("markup", "html"),
    ".css": FileKind("style", "css"),
    ".scss": FileKind("style", "scss"),
    ".sql": FileKind("database", "sql"),
}

# Text formats we read but have no richer classification for
TEXT_EXTENSIONS = set(TYPE_MAP) | {
    ".bat", ".cmd", ".tex", ".pl", ".r", ".m", ".org", ".textile",
    ".rdoc", ".wiki", ".mediawiki", ".asciidoc", ".ndjson", ".psv",
}

# Extension-less text files, matched by lowercase basename
TEXT_FILENAMES = {
    "dockerfile", "makefile", "rakefile", "gemfile", "vagrantfile",
    "readme", "license", "changelog", "todo", "authors", "contributors",
}


def detect_file_type(path: str | Path) -> FileKind:
    """Classify a file by extension, then by well-known basenames."""
    path = Path(path)
    kind = TYPE_MAP.get(path.suffix.lower())
    if kind:
        return kind

    name = path.name.lower()
    if "dockerfile" in name:
        return FileKind("config", "docker")
    if "makefile" in name:
        return FileKind("build", "makefile")
    if "readme" in name:
        return FileKind("documentation", "markdown")

    return UNKNOWN


def is_text_file(path: str | Path) -> bool:
    """Check whether a file is a recognised text type."""
    path = Path(path)
    if path.suffix.lower() in TEXT_EXTENSIONS:
        return True
    return path.name.lower() in TEXT_FILENAMES
