"""
Chunker Tests - Verify sentence-aligned chunking.

Tests:
- Never empty for non-empty input
- Greedy packing under the size limit
- Oversized single sentences
- No sentence content lost
"""

import pytest

from deskindex.chunker import Chunker, split


class TestSplit:
    """Tests for the split function."""

    def test_short_text_single_chunk(self):
        assert split("Hello world. How are you?") == ["Hello world. How are you"]

    def test_text_without_boundaries_is_one_chunk(self):
        text = "no punctuation here at all"
        assert split(text) == [text]

    @pytest.mark.parametrize("text", ["...", "!?!", ". . ."])
    def test_punctuation_only_returns_input(self, text):
        """Input with no sentence content falls back to the whole text."""
        assert split(text) == [text]

    @pytest.mark.parametrize("text", [
        "a",
        "One. Two. Three.",
        "x" * 5000,
        "Sentence number one! Sentence two? " * 200,
    ])
    def test_never_empty(self, text):
        assert len(split(text, 100)) >= 1

    def test_packs_until_limit(self):
        """A chunk is emitted when the next sentence would exceed the limit."""
        sentence = "a" * 40
        text = ". ".join([sentence] * 5) + "."
        chunks = split(text, max_chunk_size=100)

        assert len(chunks) == 3
        assert all(len(c) <= 100 for c in chunks)

    def test_long_sentence_becomes_own_chunk(self):
        long_sentence = "b" * 300
        chunks = split(f"Short one. {long_sentence}. Tail", max_chunk_size=100)

        assert chunks[0] == "Short one"
        assert long_sentence in chunks[1]

    def test_preserves_sentence_content(self):
        """Every sentence appears in some chunk."""
        sentences = [f"Sentence {i} has some words" for i in range(50)]
        text = ". ".join(sentences) + "."
        joined = " ".join(split(text, max_chunk_size=120))

        for sentence in sentences:
            assert sentence in joined


class TestChunker:
    """Tests for the config-bound Chunker."""

    def test_uses_configured_size(self, test_config):
        test_config.chunk_size = 50
        chunker = Chunker(test_config)
        chunks = chunker.split("First sentence here. " * 20)

        assert len(chunks) > 1
        assert all(len(c) <= 50 for c in chunks)
