import logging
import math

import tiktoken

from ..config import settings

logger = logging.getLogger(__name__)

# Heuristic ratios (characters per token)
CHARS_PER_TOKEN = 4
ESTIMATE_CHARS_PER_TOKEN = 3  # pre-flight checks; closer to Arabic/multilingual text


class TokenCounter:
    """Counts model tokens with tiktoken, or ~4 chars/token if the encoder is unavailable.

    The mode is fixed at construction so a chunking run never mixes counters.
    """

    def __init__(self, model: str | None = None):
        self.model = model or settings.TOKENIZER_MODEL
        self._encoder = None
        try:
            self._encoder = tiktoken.encoding_for_model(self.model)
        except Exception as e:  # unknown model, offline BPE download, ...
            logger.warning("Token encoder for %s unavailable, using %d chars/token heuristic: %s",
                           self.model, CHARS_PER_TOKEN, e)

    @property
    def is_exact(self) -> bool:
        return self._encoder is not None

    def count(self, text: str) -> int:
        if not text:
            return 0
        if self._encoder is None:
            return math.ceil(len(text) / CHARS_PER_TOKEN)
        return len(self._encoder.encode(text, disallowed_special=()))

    __call__ = count


class HeuristicTokenCounter(TokenCounter):
    """TokenCounter pinned to the character heuristic."""

    def __init__(self):
        self.model = "heuristic"
        self._encoder = None


def estimate_tokens(text: str) -> int:
    """Cheap estimate used before calling the embedding backend."""
    return math.ceil(len(text) / ESTIMATE_CHARS_PER_TOKEN)
