import logging
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from ..config import settings
from ..schemas import RetrievalQuery, RetrievalResult
from .embedding import (
    DimensionMismatch,
    EmbeddingBackendFailure,
    EmbeddingConfig,
    EmbeddingConfigurationError,
    EmbeddingGenerator,
)
from .vector_store import RetrievalBackendFailure, VectorStore

logger = logging.getLogger(__name__)

NO_CONTEXT = "no context"


class KnowledgeBaseRetriever:
    """Query side of the knowledge base: embed the question, rank stored chunks."""

    def __init__(self, session: AsyncSession, embedder: EmbeddingGenerator, store: Optional[VectorStore] = None):
        self.embedder = embedder
        self.store = store or VectorStore(session)

    async def search(self, query: RetrievalQuery, config: Optional[EmbeddingConfig] = None) -> List[RetrievalResult]:
        if not query.query.strip():
            return []
        try:
            vector = await self.embedder.create_embedding(query.query, config)
        except (EmbeddingBackendFailure, EmbeddingConfigurationError, DimensionMismatch, ValueError) as e:
            # ValueError: unknown model in a chatbot's config or EMBED_MODEL
            raise RetrievalBackendFailure(f"Query embedding failed: {e}") from e

        results = await self.store.search(query.chatbot_id, vector, query.threshold, query.limit)
        logger.info(
            "KB search chatbot=%s threshold=%.2f limit=%d -> %d result(s)",
            query.chatbot_id, query.threshold, query.limit, len(results),
        )
        return results

    async def search_for_chat(
        self,
        chatbot_id: str,
        text: str,
        threshold: Optional[float] = None,
        limit: Optional[int] = None,
        config: Optional[EmbeddingConfig] = None,
    ) -> List[RetrievalResult]:
        """Like search(), but a failing backend yields no grounding instead of an error."""
        query = RetrievalQuery(
            chatbot_id=chatbot_id,
            query=text,
            threshold=settings.MATCH_THRESHOLD if threshold is None else threshold,
            limit=limit or settings.MATCH_COUNT,
        )
        try:
            return await self.search(query, config)
        except RetrievalBackendFailure as e:
            logger.warning("Knowledge base search failed, answering ungrounded: %s", e)
            return []


def build_context(results: List[RetrievalResult], max_chars: int = 800) -> Tuple[str, List[Dict[str, Any]]]:
    """Render results as numbered context blocks plus citations for the chat layer."""
    contexts: List[str] = []
    citations: List[Dict[str, Any]] = []
    for n, r in enumerate(results, start=1):
        contexts.append(f"[{n}] ({r.filename}) {r.text[:max_chars]}")
        citations.append({
            "ref": n,
            "filename": r.filename,
            "document_id": r.document_id,
            "chunk_id": r.chunk_id,
            "similarity": round(r.similarity, 4),
            "preview": r.text[:200],
        })
    ctx = "\n\n".join(contexts) if contexts else NO_CONTEXT
    return ctx, citations
