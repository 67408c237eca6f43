"""
Orchestrator Tests - Verify query routing end to end.

Tests:
- help and stats commands
- folder: and file: commands
- Hybrid answers (responder entry followed by file results)
- Responder failures become an error entry
- Sentinel-only searches return an answer plus guidance
- Watching through the orchestrator
"""

import shutil
import tempfile
from dataclasses import replace
from pathlib import Path
from unittest.mock import patch

import pytest

from deskindex.errors import StoreInitError
from deskindex.models import (
    DatabaseStats, Intent, ResultType,
    ANSWER_PATH, GUIDANCE_PATH, HELP_PATH, INDEX_RESULT_PATH, STATS_PATH,
)
from deskindex.orchestrator import Orchestrator, classify_intent, format_stats
from deskindex.store import Stores


@pytest.fixture
def orchestrator(stores, test_config, embedder, responder):
    orch = Orchestrator(stores, test_config, responder=responder, embedder=embedder)
    yield orch
    orch.close()


class TestCommands:
    """help, stats and index commands."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("query", ["help", "?"])
    async def test_help(self, orchestrator, query):
        results = await orchestrator.answer(query)

        assert len(results) == 1
        assert results[0].path == HELP_PATH
        assert results[0].result_type == ResultType.HELP
        assert "folder:" in results[0].text

    @pytest.mark.asyncio
    async def test_stats_on_empty_store(self, orchestrator):
        results = await orchestrator.answer("stats")

        assert [r.path for r in results] == [STATS_PATH]
        assert "Total files: 0" in results[0].text

        stats = orchestrator.get_stats()
        assert stats.total_files == 0
        assert stats.total_vectors == 0
        assert stats.vectors_available

    @pytest.mark.asyncio
    async def test_folder_command_absolute(self, orchestrator, stores, sample_files, temp_dir):
        results = await orchestrator.answer(f"folder: {temp_dir}")

        assert [r.path for r in results] == [INDEX_RESULT_PATH]
        text = results[0].text
        assert text.startswith(f"Folder indexed: {temp_dir}")
        assert "4 files in the index" in text
        assert stores.metadata.get_file(str(sample_files["md"])) is not None

    @pytest.mark.asyncio
    async def test_folder_command_relative_to_safe_root(self, orchestrator, stores, temp_dir):
        project = temp_dir / "Projects"
        project.mkdir()
        (project / "plan.md").write_text("Project plan with milestones and owners.")

        results = await orchestrator.answer('folder: "Projects"')

        assert results[0].text.startswith(f"Folder indexed: {project}")
        assert stores.metadata.get_file(str(project / "plan.md")) is not None

    @pytest.mark.asyncio
    async def test_folder_command_through_symlinked_safe_root(
        self, stores, test_config, embedder, responder, temp_dir
    ):
        real = temp_dir / "data" / "Documents"
        real.mkdir(parents=True)
        (real / "letter.txt").write_text("A letter kept in a folder reached by a link.")
        link = temp_dir / "home" / "Documents"
        link.parent.mkdir()
        link.symlink_to(real, target_is_directory=True)

        config = replace(test_config, safe_roots=[link])
        orch = Orchestrator(stores, config, responder=responder, embedder=embedder)
        try:
            results = await orch.answer(f"folder: {link}")
        finally:
            orch.close()

        assert results[0].text.startswith(f"Folder indexed: {real}")
        assert "1 files in the index" in results[0].text
        assert stores.metadata.get_file(str(real / "letter.txt")) is not None

    @pytest.mark.asyncio
    async def test_folder_not_found(self, orchestrator):
        results = await orchestrator.answer("folder: no-such-folder-anywhere")
        assert results[0].text.startswith('Folder not found: "no-such-folder-anywhere"')

    @pytest.mark.asyncio
    async def test_folder_outside_safe_roots(self, orchestrator, stores, temp_dir):
        results = await orchestrator.answer(f"folder: {temp_dir.parent}")

        assert results[0].text.startswith("Indexing refused:")
        assert stores.metadata.count_files() == 0

    @pytest.mark.asyncio
    async def test_file_command(self, orchestrator, sample_files):
        path = sample_files["py"]

        first = await orchestrator.answer(f"file: {path}")
        second = await orchestrator.answer(f"file: {path}")

        assert first[0].text.startswith(f"File indexed: {path}")
        assert second[0].text.startswith("File unchanged since last index")

    @pytest.mark.asyncio
    async def test_file_command_skipped(self, orchestrator, temp_dir):
        tiny = temp_dir / "tiny.txt"
        tiny.write_text("hi")

        results = await orchestrator.answer(f"file: {tiny}")

        assert results[0].text == f"File skipped: {tiny} - content too short"

    @pytest.mark.asyncio
    async def test_file_outside_safe_roots(self, orchestrator):
        outside = Path(tempfile.mkdtemp(prefix="deskindex_outside_")).resolve()
        try:
            path = outside / "secret.txt"
            path.write_text("Outside the allowed folders entirely.")
            results = await orchestrator.answer(f"file: {path}")
        finally:
            shutil.rmtree(outside, ignore_errors=True)

        assert results[0].text.startswith("Indexing refused:")


class TestHybrid:
    """Search queries: answer entry plus file results."""

    @pytest.mark.asyncio
    async def test_answer_then_files(self, orchestrator, responder, corpus, temp_dir):
        await orchestrator.indexer.index_tree(temp_dir)

        results = await orchestrator.answer("config")

        assert results[0].path == ANSWER_PATH
        assert results[0].result_type == ResultType.ANSWER
        assert results[0].text == "stub answer (general)"
        assert results[1].path == str(corpus["config"])
        assert [r.path for r in results[1:]] == [str(corpus["config"]), str(corpus["notes"])]

        kind, intent, query, files = responder.calls[0]
        assert kind == "respond"
        assert intent == Intent.GENERAL
        assert query == "config"
        assert files[0].path == str(corpus["config"])

    @pytest.mark.asyncio
    async def test_intent_passed_to_responder(self, orchestrator, responder, corpus, temp_dir):
        await orchestrator.indexer.index_tree(temp_dir)

        await orchestrator.answer("why does the config crash")

        assert responder.calls[0][1] == Intent.ERROR_HELP

    @pytest.mark.asyncio
    async def test_respects_limits(self, orchestrator, responder, test_config, corpus, temp_dir):
        await orchestrator.indexer.index_tree(temp_dir)
        test_config.max_results = 1
        test_config.responder_files = 1

        results = await orchestrator.answer("config")

        assert len(results) == 2
        assert len(responder.calls[0][3]) == 1

    @pytest.mark.asyncio
    async def test_responder_failure_keeps_results(self, orchestrator, responder, corpus, temp_dir):
        await orchestrator.indexer.index_tree(temp_dir)
        responder.fail = True

        results = await orchestrator.answer("config")

        assert results[0].path == ANSWER_PATH
        assert results[0].result_type == ResultType.ERROR
        assert "model crashed" in results[0].text
        assert results[1].path == str(corpus["config"])

    @pytest.mark.asyncio
    async def test_empty_index_gives_answer_and_guidance(self, orchestrator, responder):
        results = await orchestrator.answer("anything at all")

        assert [r.path for r in results] == [ANSWER_PATH, GUIDANCE_PATH]
        assert results[0].text == "stub general answer"
        assert results[1].result_type == ResultType.GUIDANCE
        assert "No files indexed yet" in results[1].text
        assert responder.calls[0][0] == "general"

    @pytest.mark.asyncio
    async def test_without_metadata_store(self, stores, test_config, embedder, responder):
        degraded = Stores(metadata=None, vectors=stores.vectors)
        orch = Orchestrator(degraded, test_config, responder=responder, embedder=embedder)
        try:
            results = await orch.answer("config")
            stats = orch.get_stats()
        finally:
            orch.close()

        assert [r.path for r in results] == [ANSWER_PATH, GUIDANCE_PATH]
        assert "Metadata store not available" in results[1].text
        assert not stats.metadata_available


class TestWatching:
    """Watcher lifecycle through the orchestrator."""

    @pytest.mark.asyncio
    async def test_start_and_stop(self, orchestrator, temp_dir):
        assert not orchestrator.start_watching(temp_dir.parent)
        assert orchestrator.start_watching(temp_dir)
        assert orchestrator.watcher.is_running

        orchestrator.stop_watching()
        assert not orchestrator.watcher.is_running


class TestCreate:
    """Building the default component set."""

    @pytest.mark.asyncio
    async def test_create_and_close(self, test_config):
        async with Orchestrator.create(test_config) as orch:
            results = await orch.answer("help")
        assert results[0].path == HELP_PATH

    def test_create_without_stores_raises(self, test_config):
        with patch("deskindex.orchestrator.open_stores", side_effect=StoreInitError("no stores")):
            with pytest.raises(StoreInitError):
                Orchestrator.create(test_config)


class TestHelpers:
    """Intent classification and stats formatting."""

    @pytest.mark.parametrize("query,intent", [
        ("prefix matching only", Intent.GENERAL),
        ("fix the login error", Intent.ERROR_HELP),
        ("add a logout button", Intent.CODE_REQUEST),
        ("summarize the auth module", Intent.SUMMARY_REQUEST),
        ("where is the database config", Intent.GENERAL),
        ("explain how to fix this bug", Intent.ERROR_HELP),
    ])
    def test_classify_intent(self, query, intent):
        assert classify_intent(query) == intent

    def test_format_stats(self):
        text = format_stats(DatabaseStats(
            total_files=1234,
            total_chunks=5678,
            indexed_types=["code", "documentation"],
            metadata_available=True,
            healthy=True,
        ))

        assert "Total files: 1,234" in text
        assert "Total chunks: 5,678" in text
        assert "  - Code" in text
        assert "Health: ok" in text
