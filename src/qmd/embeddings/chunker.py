"""Document chunking for embedding generation.

Splits document text into overlapping, token-bounded chunks with stable
character offsets. Token counts are estimated heuristically since no real
tokenizer is available.
"""

from __future__ import annotations

import math
import re
from collections.abc import Iterable
from dataclasses import dataclass

from qmd.constants.chunking import (
    ABBREVIATIONS,
    CJK_RANGES,
    DEFAULT_MAX_TOKENS,
    DEFAULT_OVERLAP_PERCENT,
    TOKENS_PER_PUNCTUATION,
    TOKENS_PER_WORD,
)

_WORD_PATTERN = re.compile(rf"[\w{CJK_RANGES}]+")
_PUNCTUATION_PATTERN = re.compile(rf"[^\w\s{CJK_RANGES}]")
_CJK_PATTERN = re.compile(rf"[{CJK_RANGES}]")
_NON_SPACE_PATTERN = re.compile(r"\S+")
_PARAGRAPH_BREAK_PATTERN = re.compile(r"\n\s*\n")
# Whitespace after terminal punctuation, followed by something that can start a sentence
_SENTENCE_BREAK_PATTERN = re.compile(
    r'(?<=[.!?])\s+(?=[A-Z0-9"\u4E00-\u9FAF\uAC00-\uD7AF])'
)
_TRAILING_TERMINATORS = re.compile(r"[.!?]+$")


@dataclass
class Chunk:
    """A contiguous slice of a document sized for embedding.

    Attributes:
        hash: Hash of the parent document.
        seq: Zero-based sequence number within the document.
        pos: Character offset in the trimmed document where the chunk starts.
        text: Chunk text.
        token_count: Estimated token count of ``text``.
    """

    hash: str
    seq: int
    pos: int
    text: str
    token_count: int

    @property
    def key(self) -> str:
        """Composite key used to address the chunk in the vector index."""
        return f"{self.hash}_{self.seq}"


@dataclass
class ChunkingStats:
    """Summary of a chunk list, for diagnostics."""

    total_chunks: int
    avg_tokens_per_chunk: int
    max_tokens_in_chunk: int
    min_tokens_in_chunk: int


@dataclass
class _Segment:
    """A unit of text accumulated into chunks.

    ``word_starts`` holds the absolute offset of every whitespace-separated
    word in ``text``, in order.
    """

    text: str
    tokens: int
    word_starts: list[int]

    @property
    def start(self) -> int:
        return self.word_starts[0]


def _count_units(text: str) -> tuple[int, int, int]:
    """Count (non-CJK words, CJK characters, punctuation marks) in text."""
    words = 0
    for match in _WORD_PATTERN.finditer(text):
        run = match.group()
        cjk_in_run = len(_CJK_PATTERN.findall(run))
        # Mostly-CJK runs are already charged per character
        if cjk_in_run * 2 <= len(run):
            words += 1
    cjk = len(_CJK_PATTERN.findall(text))
    punctuation = len(_PUNCTUATION_PATTERN.findall(text))
    return words, cjk, punctuation


def _tokens_from_units(words: int, cjk: int, punctuation: int) -> int:
    return (
        math.ceil(words * TOKENS_PER_WORD)
        + cjk
        + math.ceil(punctuation * TOKENS_PER_PUNCTUATION)
    )


def estimate_tokens(text: str) -> int:
    """Estimate token count for text.

    Approximates a sub-word tokenizer: each non-CJK word costs 1.3 tokens,
    each CJK character one token and each punctuation mark half a token.

    Args:
        text: Text to estimate tokens for.

    Returns:
        Estimated token count (0 for empty text).
    """
    if not text:
        return 0
    return _tokens_from_units(*_count_units(text))


def _word_spans(text: str, offset: int = 0) -> list[int]:
    return [offset + match.start() for match in _NON_SPACE_PATTERN.finditer(text)]


def split_sentences(text: str) -> list[tuple[int, str]]:
    """Split text into sentences, keeping their offsets.

    Paragraphs (blank-line separated) are split first, then each paragraph is
    split after terminal punctuation. A boundary is ignored when the word
    before it is a known abbreviation such as "Dr." or "e.g.".

    Args:
        text: Text to split.

    Returns:
        List of (offset, sentence) pairs. Each sentence is an exact slice of
        ``text``.
    """
    sentences: list[tuple[int, str]] = []

    paragraph_start = 0
    paragraph_bounds: list[tuple[int, int]] = []
    for match in _PARAGRAPH_BREAK_PATTERN.finditer(text):
        paragraph_bounds.append((paragraph_start, match.start()))
        paragraph_start = match.end()
    paragraph_bounds.append((paragraph_start, len(text)))

    for start, end in paragraph_bounds:
        paragraph = text[start:end]
        if not paragraph.strip():
            continue

        pieces: list[tuple[int, int]] = []
        piece_start = 0
        for match in _SENTENCE_BREAK_PATTERN.finditer(paragraph):
            pieces.append((piece_start, match.start()))
            piece_start = match.end()
        pieces.append((piece_start, len(paragraph)))

        sentence_start: int | None = None
        for i, (piece_begin, piece_end) in enumerate(pieces):
            if sentence_start is None:
                sentence_start = piece_begin
            words = paragraph[piece_begin:piece_end].split()
            last_word = _TRAILING_TERMINATORS.sub("", words[-1]) if words else ""
            if last_word in ABBREVIATIONS and i < len(pieces) - 1:
                continue

            raw = paragraph[sentence_start:piece_end]
            stripped = raw.strip()
            if stripped:
                leading = len(raw) - len(raw.lstrip())
                sentences.append((start + sentence_start + leading, stripped))
            sentence_start = None

    if not sentences and text.strip():
        stripped = text.strip()
        sentences.append((len(text) - len(text.lstrip()), stripped))

    return sentences


class DocumentChunker:
    """Splits documents into overlapping token-sized chunks.

    Sentences are accumulated greedily until the next one would push the
    chunk past ``max_tokens``. Each new chunk is seeded with the trailing
    words of the previous one, up to ``overlap_percent`` of ``max_tokens``,
    so a chunk may exceed ``max_tokens`` by at most the overlap budget.
    """

    def __init__(
        self,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        overlap_percent: float = DEFAULT_OVERLAP_PERCENT,
    ) -> None:
        """Initialize the chunker.

        Args:
            max_tokens: Maximum estimated tokens per chunk.
            overlap_percent: Overlap between consecutive chunks as a fraction
                of ``max_tokens``.
        """
        self.max_tokens = max_tokens
        self.overlap_percent = overlap_percent
        self.overlap_tokens = math.floor(max_tokens * overlap_percent)

    def chunk_document(self, hash: str, content: str) -> list[Chunk]:
        """Chunk a single document.

        Args:
            hash: Hash identifying the document.
            content: Full document text.

        Returns:
            Chunks in increasing ``seq`` order. Empty for blank content.
        """
        if not content or not content.strip():
            return []

        trimmed = content.strip()
        total_tokens = estimate_tokens(trimmed)
        if total_tokens <= self.max_tokens:
            return [Chunk(hash=hash, seq=0, pos=0, text=trimmed, token_count=total_tokens)]

        chunks: list[Chunk] = []
        current: list[_Segment] = []
        current_tokens = 0

        for segment in self._build_segments(trimmed):
            if current and current_tokens + segment.tokens > self.max_tokens:
                closed = self._make_chunk(hash, len(chunks), current)
                chunks.append(closed)

                word_starts = [p for s in current for p in s.word_starts]
                current = []
                current_tokens = 0
                overlap = self._overlap_segment(closed.text, word_starts)
                if overlap:
                    current.append(overlap)
                    current_tokens = overlap.tokens

            current.append(segment)
            current_tokens += segment.tokens

        if current:
            chunks.append(self._make_chunk(hash, len(chunks), current))

        return chunks

    def chunk_documents(self, documents: Iterable[tuple[str, str]]) -> dict[str, list[Chunk]]:
        """Chunk several documents independently.

        Args:
            documents: (hash, content) pairs.

        Returns:
            Mapping of document hash to its chunks.
        """
        return {hash: self.chunk_document(hash, content) for hash, content in documents}

    def extract_overlap(self, text: str, target_tokens: int) -> tuple[str, int]:
        """Take trailing whole words from text within a token budget.

        Args:
            text: Text of the chunk being closed.
            target_tokens: Maximum tokens the overlap may hold.

        Returns:
            Tuple of (overlap text, offset in ``text`` where it begins). The
            overlap is empty when the budget is not positive or the last word
            alone exceeds it.
        """
        if target_tokens <= 0:
            return "", len(text)

        matches = list(_NON_SPACE_PATTERN.finditer(text))
        taken = 0
        used_tokens = 0
        for match in reversed(matches):
            word_tokens = estimate_tokens(match.group())
            if used_tokens + word_tokens > target_tokens:
                break
            used_tokens += word_tokens
            taken += 1

        if taken == 0:
            return "", len(text)

        selected = matches[-taken:]
        return " ".join(m.group() for m in selected), selected[0].start()

    def chunking_stats(self, chunks: list[Chunk]) -> ChunkingStats:
        """Summarize token counts across chunks."""
        if not chunks:
            return ChunkingStats(0, 0, 0, 0)

        counts = [c.token_count for c in chunks]
        return ChunkingStats(
            total_chunks=len(chunks),
            avg_tokens_per_chunk=round(sum(counts) / len(counts)),
            max_tokens_in_chunk=max(counts),
            min_tokens_in_chunk=min(counts),
        )

    def _build_segments(self, content: str) -> list[_Segment]:
        segments: list[_Segment] = []
        for offset, sentence in split_sentences(content):
            tokens = estimate_tokens(sentence)
            if tokens > self.max_tokens:
                segments.extend(self._split_long_sentence(offset, sentence))
            else:
                segments.append(_Segment(sentence, tokens, _word_spans(sentence, offset)))
        return segments

    def _split_long_sentence(self, offset: int, sentence: str) -> list[_Segment]:
        """Split an oversized sentence at whitespace into pieces under the limit.

        Unit counts are additive across whitespace-separated words, so the
        running estimate is kept incrementally.
        """
        pieces: list[_Segment] = []
        piece_start: int | None = None
        piece_end = 0
        units = (0, 0, 0)

        for match in _NON_SPACE_PATTERN.finditer(sentence):
            word_units = _count_units(match.group())
            if piece_start is not None:
                combined = tuple(a + b for a, b in zip(units, word_units))
                if _tokens_from_units(*combined) > self.max_tokens:
                    pieces.append(self._piece(sentence, offset, piece_start, piece_end))
                    piece_start = None

            if piece_start is None:
                piece_start = match.start()
                units = word_units
            else:
                units = combined
            piece_end = match.end()

        if piece_start is not None:
            pieces.append(self._piece(sentence, offset, piece_start, piece_end))

        return pieces

    def _piece(self, sentence: str, offset: int, start: int, end: int) -> _Segment:
        text = sentence[start:end]
        return _Segment(text, estimate_tokens(text), _word_spans(text, offset + start))

    def _make_chunk(self, hash: str, seq: int, segments: list[_Segment]) -> Chunk:
        text = " ".join(s.text for s in segments)
        return Chunk(
            hash=hash,
            seq=seq,
            pos=segments[0].start,
            text=text,
            token_count=estimate_tokens(text),
        )

    def _overlap_segment(self, text: str, word_starts: list[int]) -> _Segment | None:
        """Build the overlap seed for the next chunk.

        ``word_starts`` are the absolute offsets of the words of ``text``, so
        the seed keeps the document offset of its first word.
        """
        overlap_text, _ = self.extract_overlap(text, self.overlap_tokens)
        if not overlap_text:
            return None
        word_count = len(overlap_text.split())
        return _Segment(overlap_text, estimate_tokens(overlap_text), word_starts[-word_count:])
