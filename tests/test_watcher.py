"""
Watcher Tests - Verify change detection, debouncing and safety.

Tests:
- Unsafe roots are refused
- Restarting replaces the previous observer
- Rapid changes to one path are coalesced
- At most one index run per path is in flight
- Deletes retract the file, folder deletes and moves retract the subtree
- Linked safe roots are watched through their real folder
- Live file system events reach the index
"""

import asyncio
import shutil
import tempfile
import time
from dataclasses import replace
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
from watchdog.events import DirModifiedEvent, DirMovedEvent, FileMovedEvent

from deskindex.indexer import Indexer
from deskindex.watcher import ChangeType, Watcher, _EventHandler


@pytest.fixture
def indexer(stores, test_config, embedder):
    idx = Indexer(stores, test_config, embedder=embedder)
    yield idx
    idx.close()


@pytest.fixture
def watcher(indexer, test_config):
    w = Watcher(indexer, test_config)
    yield w
    w.stop()


async def _wait_for(predicate, timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            return False
        await asyncio.sleep(0.05)
    return True


class TestStart:
    """Tests for Watcher.start and stop."""

    def test_watcher_creates(self, watcher):
        assert not watcher.is_running
        assert watcher.root is None

    @pytest.mark.asyncio
    async def test_refuses_unsafe_root(self, watcher, temp_dir):
        assert not watcher.start(temp_dir.parent)
        assert not watcher.is_running

    @pytest.mark.asyncio
    async def test_refuses_missing_root(self, watcher, temp_dir):
        assert not watcher.start(temp_dir / "missing")
        assert not watcher.is_running

    @pytest.mark.asyncio
    async def test_symlinked_safe_root(self, indexer, test_config, temp_dir):
        """Watching a linked safe root watches its real folder."""
        real = temp_dir / "data" / "Documents"
        real.mkdir(parents=True)
        link = temp_dir / "home" / "Documents"
        link.parent.mkdir()
        link.symlink_to(real, target_is_directory=True)

        watcher = Watcher(indexer, replace(test_config, safe_roots=[link]))
        try:
            assert watcher.start(link)
            assert watcher.root == real
        finally:
            watcher.stop()

    @pytest.mark.asyncio
    async def test_restart_replaces_observer(self, watcher, temp_dir):
        """Starting again switches roots instead of stacking observers."""
        other = temp_dir / "other"
        other.mkdir()

        assert watcher.start(temp_dir)
        first = watcher._observer

        assert watcher.start(other)

        assert watcher.root == other
        assert watcher._observer is not first
        assert not first.is_alive()
        watcher.stop()

    @pytest.mark.asyncio
    async def test_stop_drops_pending(self, watcher, sample_files, temp_dir):
        watcher.start(temp_dir)
        watcher._queue_change(sample_files["txt"], ChangeType.MODIFIED)
        assert watcher.get_pending_count() == 1

        watcher.stop()

        assert watcher.get_pending_count() == 0
        assert not watcher.is_running


class TestQueueing:
    """Debounce and in-flight behavior."""

    @pytest.mark.asyncio
    async def test_ignores_ineligible_paths(self, watcher, temp_dir):
        watcher.start(temp_dir)
        watcher._queue_change(temp_dir / "node_modules" / "pkg" / "index.js", ChangeType.ADDED)
        watcher._queue_change(temp_dir / ".git" / "HEAD", ChangeType.MODIFIED)

        assert watcher.get_pending_count() == 0
        watcher.stop()

    @pytest.mark.asyncio
    async def test_rapid_changes_coalesce(self, watcher, indexer, stores, sample_files, temp_dir):
        """Two changes inside the debounce window cause one index run."""
        path = sample_files["md"]
        watcher.start(temp_dir)

        with patch.object(indexer, "index_file", wraps=indexer.index_file) as index_file:
            watcher._queue_change(path, ChangeType.MODIFIED)
            watcher._queue_change(path, ChangeType.MODIFIED)
            assert watcher.get_pending_count() == 1
            assert await watcher.wait_idle()

        watcher.stop()
        assert index_file.await_count == 1
        assert watcher.indexed_count == 1
        record = stores.metadata.get_file(str(path))
        assert len(stores.metadata.get_chunks(str(path))) == record.chunk_count

    @pytest.mark.asyncio
    async def test_one_run_in_flight_per_path(self, watcher, indexer, stores, sample_files, temp_dir):
        """A change arriving mid-run waits for the current run to finish."""
        path = sample_files["txt"]
        real_index_file = indexer.index_file
        active = 0
        peak = 0

        async def slow_index(p, depth=0):
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            try:
                await asyncio.sleep(0.2)
                return await real_index_file(p, depth)
            finally:
                active -= 1

        watcher.start(temp_dir)
        with patch.object(indexer, "index_file", side_effect=slow_index) as index_file:
            watcher._queue_change(path, ChangeType.MODIFIED)
            assert await _wait_for(lambda: str(path) in watcher._in_flight)

            watcher._queue_change(path, ChangeType.MODIFIED)
            assert await watcher.wait_idle()

        watcher.stop()
        assert index_file.await_count == 2
        assert peak == 1
        record = stores.metadata.get_file(str(path))
        assert len(stores.metadata.get_chunks(str(path))) == record.chunk_count

    @pytest.mark.asyncio
    async def test_delete_retracts_file(self, watcher, indexer, stores, sample_files, temp_dir):
        path = sample_files["py"]
        await indexer.index_file(path)
        assert stores.metadata.get_file(str(path)) is not None

        watcher.start(temp_dir)
        path.unlink()
        watcher._queue_change(path, ChangeType.DELETED)
        assert await watcher.wait_idle()
        watcher.stop()

        assert stores.metadata.get_file(str(path)) is None
        assert stores.metadata.get_chunks(str(path)) == []
        assert watcher.removed_count == 1

    @pytest.mark.asyncio
    async def test_directory_delete_retracts_subtree(self, watcher, indexer, stores, temp_dir):
        sub = temp_dir / "sub"
        (sub / "deep").mkdir(parents=True)
        keep = sub / "keep.txt"
        keep.write_text("This file lives in a folder that goes away.")
        nested = sub / "deep" / "nested.md"
        nested.write_text("# Nested\n\nAnother file in the same folder.")
        sibling = temp_dir / "subway.txt"
        sibling.write_text("A neighbour whose name starts the same way.")
        await indexer.index_tree(temp_dir)

        watcher.start(temp_dir)
        shutil.rmtree(sub)
        watcher._queue_change(sub, ChangeType.DELETED, is_directory=True)
        assert await watcher.wait_idle()
        watcher.stop()

        assert stores.metadata.get_file(str(keep)) is None
        assert stores.metadata.get_file(str(nested)) is None
        assert stores.metadata.get_chunks(str(keep)) == []
        assert stores.metadata.get_file(str(sibling)) is not None
        assert stores.vectors.count() == stores.metadata.count_chunks()
        assert watcher.removed_count == 2

    @pytest.mark.asyncio
    async def test_directory_arrival_indexes_subtree(self, watcher, stores, temp_dir):
        arrived = temp_dir / "arrived"
        arrived.mkdir()
        doc = arrived / "doc.txt"
        doc.write_text("A folder moved in from elsewhere carries this file.")

        watcher.start(temp_dir)
        watcher._queue_change(arrived, ChangeType.ADDED, is_directory=True)
        assert await watcher.wait_idle()
        watcher.stop()

        assert stores.metadata.get_file(str(doc)) is not None
        assert watcher.indexed_count == 1


class TestEventHandler:
    """Translation of watchdog events."""

    def test_move_is_delete_plus_add(self):
        target = MagicMock()
        handler = _EventHandler(target, [])

        handler.on_moved(FileMovedEvent("/docs/old.txt", "/docs/new.txt"))

        target._on_event.assert_any_call(Path("/docs/old.txt"), ChangeType.DELETED, False)
        target._on_event.assert_any_call(Path("/docs/new.txt"), ChangeType.ADDED, False)

    def test_directory_move_keeps_directory_flag(self):
        target = MagicMock()
        handler = _EventHandler(target, [])

        handler.on_moved(DirMovedEvent("/docs/old", "/docs/new"))

        target._on_event.assert_any_call(Path("/docs/old"), ChangeType.DELETED, True)
        target._on_event.assert_any_call(Path("/docs/new"), ChangeType.ADDED, True)

    def test_directory_modification_is_ignored(self):
        target = MagicMock()
        handler = _EventHandler(target, [])

        handler.on_modified(DirModifiedEvent("/docs"))

        target._on_event.assert_not_called()


class TestLiveEvents:
    """End-to-end with a real observer."""

    @pytest.mark.asyncio
    async def test_new_file_is_indexed(self, watcher, stores, temp_dir):
        assert watcher.start(temp_dir)

        path = temp_dir / "fresh.txt"
        path.write_text("A brand new file written while the watcher runs.")

        assert await _wait_for(lambda: stores.metadata.get_file(str(path)) is not None)
        assert await watcher.wait_idle()
        watcher.stop()

    @pytest.mark.asyncio
    async def test_folder_moved_out_is_retracted(self, watcher, indexer, stores, temp_dir):
        sub = temp_dir / "sub"
        sub.mkdir()
        keep = sub / "keep.txt"
        keep.write_text("Indexed before its folder leaves the watched tree.")
        await indexer.index_tree(temp_dir)
        assert stores.metadata.get_file(str(keep)) is not None

        outside = Path(tempfile.mkdtemp(prefix="deskindex_outside_")).resolve()
        try:
            assert watcher.start(temp_dir)
            shutil.move(str(sub), str(outside / "sub"))

            assert await _wait_for(lambda: stores.metadata.get_file(str(keep)) is None)
            assert await watcher.wait_idle()
            watcher.stop()
        finally:
            shutil.rmtree(str(outside), ignore_errors=True)

        assert stores.metadata.get_chunks(str(keep)) == []
        assert stores.vectors.count() == 0
