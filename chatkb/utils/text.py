
import re
from typing import Callable, Iterator, List

# Sentence ends for Latin, Arabic and CJK punctuation
SENTENCE_END = re.compile(r'(?<=[.!?؟。])\s+')
SECRET = re.compile(r'(sk-[A-Za-z0-9_\-]{8,}|Bearer\s+\S+)')

def clean_pdf_text(text: str, preserve_paragraphs: bool = True) -> str:
    text = re.sub(r'[ \t]+', ' ', text)
    if preserve_paragraphs:
        text = re.sub(r'\n{3,}', '\n\n', text)
        text = re.sub(r'([^\n])\n([^\n])', r'\1 \2', text)
    else:
        text = re.sub(r'\n+', ' ', text)
    return text.strip()

def sanitize_error(message: str, limit: int = 500) -> str:
    """Make an exception message safe to store on a document row."""
    message = SECRET.sub("[redacted]", message or "")
    message = re.sub(r'\s+', ' ', message).strip()
    if len(message) > limit:
        message = message[:limit - 3].rstrip() + "..."
    return message or "Unknown error"

def hard_cut(text: str, budget: int, count: Callable[[str], int]) -> int:
    """Length of the longest prefix of text that fits in budget tokens (at least 1)."""
    lo, hi = 1, len(text)
    while lo < hi:
        mid = (lo + hi + 1) // 2
        if count(text[:mid]) <= budget:
            lo = mid
        else:
            hi = mid - 1
    return lo

def _pieces(text: str, chunk_size: int, count: Callable[[str], int]) -> Iterator[str]:
    for sentence in SENTENCE_END.split(text):
        sentence = sentence.strip()
        if not sentence:
            continue
        if count(sentence) <= chunk_size:
            yield sentence
            continue
        buf = ""
        for word in sentence.split():
            cand = f"{buf} {word}" if buf else word
            if count(cand) <= chunk_size:
                buf = cand
                continue
            if buf:
                yield buf
            buf = word
            while count(buf) > chunk_size:
                cut = hard_cut(buf, chunk_size, count)
                yield buf[:cut]
                buf = buf[cut:]
        if buf:
            yield buf

def _tail(chunk: str, overlap: int, count: Callable[[str], int]) -> str:
    if overlap <= 0:
        return ""
    tail: List[str] = []
    for word in reversed(chunk.split()):
        if count(" ".join([word] + tail)) > overlap:
            break
        tail.insert(0, word)
    return " ".join(tail)

def simple_chunk_text(text: str, chunk_size: int, overlap: int, count: Callable[[str], int]) -> List[str]:
    """Sentence-based splitter: packs whole sentences up to chunk_size tokens and
    starts each new chunk with up to `overlap` tokens of the previous one."""
    chunks: List[str] = []
    buf = ""
    for piece in _pieces(text, chunk_size, count):
        cand = f"{buf} {piece}" if buf else piece
        if count(cand) <= chunk_size:
            buf = cand
            continue
        chunks.append(buf)
        tail = _tail(buf, overlap, count)
        joined = f"{tail} {piece}" if tail else piece
        buf = joined if count(joined) <= chunk_size else piece
    if buf:
        chunks.append(buf)
    return [c.strip() for c in chunks if c.strip()]
