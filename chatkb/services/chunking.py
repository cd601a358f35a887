"""Token-aware chunking of extracted text.

Chunks are produced in two steps: a boundary-aware splitter cuts the text into
"core" segments of at most ``chunk_size - chunk_overlap`` tokens, then every
segment after the first is prefixed with the trailing ``chunk_overlap`` tokens
of its predecessor. Both steps measure length with the same TokenCounter.
"""
import logging
from typing import Callable, List, Optional

from langchain_text_splitters import RecursiveCharacterTextSplitter

from ..config import settings
from ..utils.text import hard_cut, simple_chunk_text
from .tokens import TokenCounter

logger = logging.getLogger(__name__)

# Priority order: paragraph, line, sentence, clause, word, character.
SEPARATORS = [
    "\n\n",
    "\n",
    ". ", "! ", "? ", "؟ ", "。",
    "; ", ", ", "، ", "؛ ",
    " ",
    "",
]


class ChunkingFailure(Exception):
    """The boundary-aware splitter failed; recovered with the sentence splitter."""
    pass


class Chunker:
    def __init__(
        self,
        chunk_size: Optional[int] = None,
        chunk_overlap: Optional[int] = None,
        counter: Optional[TokenCounter] = None,
        splitter_factory: Optional[Callable[[], RecursiveCharacterTextSplitter]] = None,
    ):
        self.chunk_size = settings.CHUNK_SIZE if chunk_size is None else chunk_size
        self.chunk_overlap = settings.CHUNK_OVERLAP if chunk_overlap is None else chunk_overlap
        if self.chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        if not 0 <= self.chunk_overlap < self.chunk_size:
            raise ValueError("chunk_overlap must be >= 0 and smaller than chunk_size")
        self.counter = counter or TokenCounter()
        self._splitter_factory = splitter_factory or self._build_splitter

    @property
    def core_size(self) -> int:
        return self.chunk_size - self.chunk_overlap

    def _build_splitter(self) -> RecursiveCharacterTextSplitter:
        return RecursiveCharacterTextSplitter(
            chunk_size=self.core_size,
            chunk_overlap=0,
            separators=SEPARATORS,
            keep_separator="end",
            length_function=self.counter.count,
        )

    def split(self, text: str) -> List[str]:
        """Split text into ordered, non-empty chunks of at most chunk_size tokens."""
        if not text or not text.strip():
            return []
        if self.counter.count(text) <= self.chunk_size:
            return [text.strip()]

        try:
            cores = self._splitter_factory().split_text(text)
        except Exception as e:
            failure = ChunkingFailure(f"Boundary splitter failed: {e}")
            logger.warning("%s; falling back to sentence splitter", failure)
            return simple_chunk_text(text, self.chunk_size, self.chunk_overlap, self.counter.count)

        segments: List[str] = []
        for core in cores:
            segments.extend(self._fit(core.strip()))
        segments = [s for s in segments if s.strip()]
        return self._with_overlap(segments)

    def split_with_counts(self, text: str) -> List[tuple[str, int]]:
        return [(chunk, self.counter.count(chunk)) for chunk in self.split(text)]

    def _fit(self, segment: str) -> List[str]:
        # The splitter can leave a segment over budget when token counts are not additive.
        if self.counter.count(segment) <= self.core_size:
            return [segment]
        return simple_chunk_text(segment, self.core_size, 0, self.counter.count)

    def _with_overlap(self, segments: List[str]) -> List[str]:
        if self.chunk_overlap == 0 or len(segments) < 2:
            return segments
        chunks = [segments[0]]
        for prev, core in zip(segments, segments[1:]):
            chunk = core
            budget = self.chunk_overlap
            while budget > 0:
                tail = self._tail(prev, budget)
                cand = f"{tail} {core}" if tail else core
                if self.counter.count(cand) <= self.chunk_size:
                    chunk = cand
                    break
                budget -= 1
            chunks.append(chunk)
        return chunks

    def _tail(self, text: str, budget: int) -> str:
        """Trailing words of text fitting in budget tokens; characters for unspaced scripts."""
        words = text.split()
        tail: List[str] = []
        for word in reversed(words):
            if self.counter.count(" ".join([word] + tail)) > budget:
                break
            tail.insert(0, word)
        if tail:
            return " ".join(tail)
        if not words:
            return ""
        last = words[-1]
        reversed_cut = hard_cut(last[::-1], budget, lambda s: self.counter.count(s[::-1]))
        suffix = last[-reversed_cut:]
        return suffix if self.counter.count(suffix) <= budget else ""
