"""
Structure-aware text chunking for document ingestion.

Chunks are exact slices of the text that was split, so their
[start_char, end_char) spans tile the whole text with overlap and no gaps.
Cuts prefer paragraph, then line, then sentence, clause and word
boundaries, falling back to a hard cut at ``chunk_size``.
"""

import logging
import re
from dataclasses import dataclass
from typing import List, Tuple

from ..common.schemas import Chunk, ContentType

logger = logging.getLogger("paperlm.ingest.chunker")

SEPARATORS = ["\n\n", "\n", ". ", "! ", "? ", "; ", ", ", " "]

SECTION_NAMES = (
    "Introduction|Summary|Conclusion|Abstract|Overview|Background"
    "|Methods|Results|Discussion|Executive Summary"
)

_HEADER_LINE = re.compile(r"^(#{1,6}\s+.+)$", re.MULTILINE)
_BULLET_LINE = re.compile(r"^(\s*[-*•]\s+.+)$", re.MULTILINE)
_NUMBERED_LINE = re.compile(r"^(\s*\d+\.\s+.+)$", re.MULTILINE)
_SECTION_LINE = re.compile(rf"^({SECTION_NAMES}):", re.MULTILINE | re.IGNORECASE)
_STRUCTURE_MARKER = re.compile(r"^(#{1,6}|\d+\.|[-*•])", re.MULTILINE)


@dataclass
class QualityHeuristic:
    """Tunable chunk quality scoring. Scores are clamped to [0, 1]."""
    base: float = 0.5
    good_length: Tuple[int, int] = (300, 2000)
    good_length_bonus: float = 0.2
    short_length: int = 100
    long_length: int = 3000
    bad_length_penalty: float = 0.2
    sentence_bonus: float = 0.1
    min_sentences: int = 2
    word_thresholds: Tuple[int, ...] = (10, 50)
    word_bonus: float = 0.1
    structure_bonus: float = 0.05

    def score(self, content: str) -> float:
        score = self.base

        length = len(content)
        low, high = self.good_length
        if low <= length <= high:
            score += self.good_length_bonus
        elif length < self.short_length or length > self.long_length:
            score -= self.bad_length_penalty

        sentences = len(re.split(r"[.!?]+", content)) - 1
        if sentences >= self.min_sentences:
            score += self.sentence_bonus

        words = sum(1 for w in content.split() if len(w) > 2 and not w.isdigit())
        for threshold in self.word_thresholds:
            if words >= threshold:
                score += self.word_bonus

        if _STRUCTURE_MARKER.search(content):
            score += self.structure_bonus

        return max(0.0, min(1.0, score))


def detect_content_type(content: str) -> ContentType:
    text = content.strip()
    lower = text.lower()
    if re.match(r"#{1,6}\s", text):
        return ContentType.HEADER
    if re.match(r"\d+\.\s", text):
        return ContentType.NUMBERED_LIST
    if re.match(r"[-*•]\s", text):
        return ContentType.BULLET_LIST
    if re.search(r"\b(table|column|row)\b", lower) and "|" in text:
        return ContentType.TABLE
    if re.search(r"\b(figure|chart|graph|image)\b", lower):
        return ContentType.FIGURE_REFERENCE
    if re.search(r"\b(abstract|summary|conclusion)\b", lower):
        return ContentType.SUMMARY
    if re.search(r"\b(introduction|overview|background)\b", lower):
        return ContentType.INTRODUCTION
    return ContentType.PARAGRAPH


def normalize_structure(text: str) -> str:
    """
    Surround headers and named sections with blank lines, start list items
    on their own line, then collapse newline runs to one blank line and
    space/tab runs to one space.
    """
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = _HEADER_LINE.sub(r"\n\n\1\n\n", text)
    text = _BULLET_LINE.sub(r"\n\1", text)
    text = _NUMBERED_LINE.sub(r"\n\1", text)
    text = _SECTION_LINE.sub(r"\n\n\1:\n", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    text = re.sub(r"[ \t]{2,}", " ", text)
    return text


class TextChunker:
    """
    Split document text into overlapping, structure-aware chunks.

    Args:
        chunk_size: Maximum characters per chunk
        chunk_overlap: Characters shared between consecutive chunks
        preserve_structure: Normalize headers, lists and sections before splitting
        quality: Quality scoring heuristic
    """

    def __init__(
        self,
        chunk_size: int = 1200,
        chunk_overlap: int = 250,
        preserve_structure: bool = True,
        quality: QualityHeuristic = None,
    ):
        if chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive, got {chunk_size}")
        if not 0 <= chunk_overlap < chunk_size:
            raise ValueError(
                f"chunk_overlap must be in [0, chunk_size), got {chunk_overlap} with chunk_size {chunk_size}"
            )
        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap
        self.preserve_structure = preserve_structure
        self.quality = quality or QualityHeuristic()

    def chunk(self, document_id: str, content: str) -> List[Chunk]:
        """
        Chunk a document.

        Returns:
            Chunks in document order; empty for blank content
        """
        if not content or not content.strip():
            return []

        if len(content) <= self.chunk_size:
            return [self._make_chunk(document_id, 0, content, 0, len(content))]

        text = normalize_structure(content) if self.preserve_structure else content

        chunks = [
            self._make_chunk(document_id, i, text[start:end], start, end)
            for i, (start, end) in enumerate(self.split_spans(text))
        ]
        logger.debug("Chunked document %s: %d chars -> %d chunks", document_id, len(text), len(chunks))
        return chunks

    def split_spans(self, text: str) -> List[Tuple[int, int]]:
        """[start, end) spans covering ``text``; consecutive spans overlap."""
        spans = []
        length = len(text)
        pos = 0
        while pos < length:
            ideal_end = pos + self.chunk_size
            end = length if ideal_end >= length else self._find_cut(text, pos, ideal_end)
            spans.append((pos, end))
            if end >= length:
                break
            pos = max(pos + 1, end - self.chunk_overlap)
        return spans

    def _find_cut(self, text: str, start: int, ideal_end: int) -> int:
        for sep in SEPARATORS:
            idx = text.rfind(sep, start + 1, ideal_end)
            if idx != -1:
                return idx + len(sep)
        return ideal_end

    def _make_chunk(self, document_id: str, index: int, content: str, start: int, end: int) -> Chunk:
        return Chunk(
            id=f"{document_id}-chunk-{index}",
            document_id=document_id,
            content=content,
            chunk_index=index,
            start_char=start,
            end_char=end,
            content_type=detect_content_type(content),
            quality_score=self.quality.score(content),
            word_count=len(content.split()),
            has_structure=bool(_STRUCTURE_MARKER.search(content)),
        )
