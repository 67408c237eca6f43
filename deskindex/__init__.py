"""
deskindex - Local file knowledge base with hybrid search.

Modules:
    - config: Centralized configuration
    - pathfilter: Which paths may be traversed, indexed or watched
    - filetypes: Extension/basename to {type, language} table
    - hasher: SHA-256 fingerprints and change detection
    - chunker: Sentence-aligned text chunks
    - embedder: Ollama / sentence-transformers / hash embeddings
    - store: SQLite metadata store and store lifecycle
    - vectors: Vector store (SQLite blobs + numpy cosine)
    - scanner: Depth-first file system traversal
    - indexer: Single-file and tree indexing
    - watcher: Real-time incremental indexing
    - router: Command classification
    - search: Multi-phase ranked search
    - responder: Generative answers (Ollama, offline fallback)
    - orchestrator: Main entry point and CLI

Flow:
    Write: Watcher/CLI → Indexer → {MetadataStore, VectorStore}
    Read:  QueryRouter → SearchEngine → Orchestrator (+ Responder)

Usage:
    from deskindex import Orchestrator

    async with Orchestrator.create() as orchestrator:
        results = await orchestrator.answer("folder: Projects")
        results = await orchestrator.answer("config")
"""

from .orchestrator import Orchestrator

__all__ = ["Orchestrator"]
