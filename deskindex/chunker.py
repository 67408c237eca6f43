"""
Chunker - Splits file text into bounded, sentence-aligned chunks.

Chunks are the unit of embedding and retrieval. Empty or whitespace-only
input is rejected by the Indexer before it gets here.
"""

import re
from typing import List

from .config import get_config, IndexerConfig


SENTENCE_BOUNDARY = re.compile(r"[.!?]+")


def split(text: str, max_chunk_size: int = 1000) -> List[str]:
    """
    Split text on sentence-terminal punctuation and pack greedily.

    A chunk is emitted when the next sentence would push it past
    max_chunk_size; a single sentence longer than the limit becomes its
    own chunk. Never returns an empty list for non-empty input.
    """
    sentences = [s.strip() for s in SENTENCE_BOUNDARY.split(text) if s.strip()]

    chunks: List[str] = []
    current = ""

    for sentence in sentences:
        if len(current) + len(sentence) > max_chunk_size and current:
            chunks.append(current.strip())
            current = sentence
        else:
            current += (". " if current else "") + sentence

    if current.strip():
        chunks.append(current.strip())

    return chunks if chunks else [text]


class Chunker:
    """Chunker bound to the configured chunk size."""

    def __init__(self, config: IndexerConfig | None = None):
        self.config = config or get_config()

    def split(self, text: str) -> List[str]:
        return split(text, self.config.chunk_size)
