"""
Test Configuration - Shared fixtures for deskindex tests.

Uses pytest fixtures to create isolated test environments.
"""

import shutil
import tempfile
from pathlib import Path
from typing import Generator

import pytest

from deskindex.config import IndexerConfig, set_config
from deskindex.embedder import HashEmbedder
from deskindex.responder import Responder
from deskindex.store import Stores, open_stores


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    tmp = tempfile.mkdtemp(prefix="deskindex_test_")
    # Resolve to handle macOS /var -> /private/var symlink
    resolved = Path(tmp).resolve()
    yield resolved
    shutil.rmtree(str(resolved), ignore_errors=True)


@pytest.fixture
def test_config(temp_dir: Path) -> IndexerConfig:
    """
    Create an isolated test configuration.

    The temp directory is the only safe root, and "tmp"/"temp" are not
    treated as ephemeral so paths under the system temp dir stay eligible.
    Stores live in a hidden folder the scanner never descends into.
    """
    config = IndexerConfig(
        roots=[temp_dir],
        safe_roots=[temp_dir],
        db_path=temp_dir / ".deskindex" / "metadata.sqlite",
        vector_db_path=temp_dir / ".deskindex" / "vectors.sqlite",
        ephemeral_names={
            "temporary internet files", "$recycle.bin", ".trash", ".trashes",
            "pagefile.sys", "hiberfil.sys", "swapfile.sys",
        },
        embedding_backend="hash",
        indexer_concurrency=4,
        scanner_concurrency=5,
        search_concurrency=4,
        debounce_ms=50,
    )
    set_config(config)
    return config


@pytest.fixture
def stores(test_config: IndexerConfig) -> Generator[Stores, None, None]:
    """Open metadata and vector stores in the temp directory."""
    s = open_stores(test_config)
    yield s
    s.close()


@pytest.fixture
def embedder(test_config: IndexerConfig) -> HashEmbedder:
    """Deterministic embedder, no model or network needed."""
    return HashEmbedder(test_config)


@pytest.fixture
def sample_files(temp_dir: Path) -> dict[str, Path]:
    """Create sample files for testing."""
    files = {}

    # Text file
    txt = temp_dir / "sample.txt"
    txt.write_text("This is a sample text file.\nIt has multiple lines.\nFor testing purposes.")
    files["txt"] = txt

    # Markdown file
    md = temp_dir / "readme.md"
    md.write_text("# Test Readme\n\nThis is a markdown file for testing.\n\n## Section 1\n\nSome content here.")
    files["md"] = md

    # Python file
    py = temp_dir / "script.py"
    py.write_text('"""A sample Python script."""\n\ndef hello():\n    print("Hello, world!")\n\nif __name__ == "__main__":\n    hello()')
    files["py"] = py

    # Nested file
    nested_dir = temp_dir / "subdir" / "nested"
    nested_dir.mkdir(parents=True)
    nested = nested_dir / "deep.txt"
    nested.write_text("A deeply nested file with enough text.")
    files["nested"] = nested

    # Hidden file (should be skipped)
    hidden = temp_dir / ".hidden"
    hidden.write_text("This should be skipped.")
    files["hidden"] = hidden

    # Node modules dir (should be skipped)
    node_modules = temp_dir / "node_modules"
    node_modules.mkdir()
    (node_modules / "package.json").write_text('{"name": "test", "version": "1.0.0"}')
    files["node_modules"] = node_modules / "package.json"

    return files


@pytest.fixture
def corpus(temp_dir: Path) -> dict[str, Path]:
    """A small JSON config (50 bytes) next to 2,000 bytes of markdown prose."""
    config_json = temp_dir / "config.json"
    config_json.write_text('{"name": "demo", "debug": true, "port": 808000000}')
    assert config_json.stat().st_size == 50

    sentence = "The quarterly planning notes describe goals and owners. "
    prose = (sentence * (2000 // len(sentence) + 1))[:2000]
    notes = temp_dir / "notes.md"
    notes.write_text(prose)
    assert notes.stat().st_size == 2000

    return {"config": config_json, "notes": notes}


class StubResponder(Responder):
    """Records calls and returns canned text; set fail to raise instead."""

    def __init__(self, config: IndexerConfig):
        super().__init__(config)
        self.fail = False
        self.calls = []

    async def respond(self, intent, query, files):
        self.calls.append(("respond", intent, query, list(files)))
        if self.fail:
            raise RuntimeError("model crashed")
        return f"stub answer ({intent.value})"

    async def answer_general(self, query):
        self.calls.append(("general", None, query, []))
        if self.fail:
            raise RuntimeError("model crashed")
        return "stub general answer"


@pytest.fixture
def responder(test_config: IndexerConfig) -> StubResponder:
    """Responder that never touches the network."""
    return StubResponder(test_config)
