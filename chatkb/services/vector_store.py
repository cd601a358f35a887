import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, NamedTuple, Optional, Sequence

import numpy as np
from sqlalchemy import Select, and_, case, delete, func, null, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import Chunk, Document
from ..schemas import RetrievalResult
from ..utils.vectors import cosine_similarity, to_vec

logger = logging.getLogger(__name__)

SELF_SIMILARITY_TOLERANCE = 0.01


class RetrievalBackendFailure(Exception):
    """Similarity search against the backing store failed"""
    pass


class ChunkInput(NamedTuple):
    text: str
    token_count: int
    embedding: Sequence[float]


class VectorStore:
    """Chunk vectors scoped by chatbot, searched by cosine similarity.

    PostgreSQL runs the search as one pgvector query; other dialects (SQLite in
    tests) or force_manual=True compute cosine in-process with numpy.
    """

    def __init__(self, session: AsyncSession, force_manual: bool = False):
        self.session = session
        self.force_manual = force_manual

    @property
    def uses_pgvector(self) -> bool:
        return not self.force_manual and self.session.get_bind().dialect.name == "postgresql"

    def add_chunks(self, document: Document, chunks: Sequence[ChunkInput], metadata: Optional[Dict[str, Any]] = None) -> List[Chunk]:
        """Stage chunk rows for one document; the caller owns the transaction."""
        base = {
            "filename": document.filename,
            "content_type": document.content_type,
            "extracted_at": datetime.now(timezone.utc).isoformat(),
            **(metadata or {}),
        }
        rows = [
            Chunk(
                document_id=document.id,
                chatbot_id=document.chatbot_id,
                chunk_index=index,
                text=item.text,
                token_count=item.token_count,
                embedding=list(item.embedding),
                meta=dict(base),
            )
            for index, item in enumerate(chunks)
        ]
        self.session.add_all(rows)
        return rows

    async def delete_document_chunks(self, document_id: uuid.UUID) -> None:
        await self.session.execute(delete(Chunk).where(Chunk.document_id == document_id))

    async def search(
        self,
        chatbot_id: str,
        query_vector: Sequence[float],
        threshold: float,
        limit: int,
    ) -> List[RetrievalResult]:
        """Top `limit` chunks of the chatbot with similarity >= threshold, best first.

        Rows whose vector is zero or has another dimensionality than the query
        are never returned, on either search path.
        """
        if limit <= 0:
            return []
        try:
            q = to_vec(query_vector)
            if q.size == 0 or not np.any(q):
                # zero vectors (degraded embeddings) have no direction to compare
                logger.info("Empty or zero query vector for chatbot %s; no results", chatbot_id)
                return []
            if self.uses_pgvector:
                return await self._search_pgvector(chatbot_id, q, threshold, limit)
            return await self._search_manual(chatbot_id, q, threshold, limit)
        except (SQLAlchemyError, ValueError) as e:
            raise RetrievalBackendFailure(f"Vector search failed for chatbot {chatbot_id}: {e}") from e

    def _scope(self, stmt, chatbot_id: str):
        return (
            stmt.join(Document, Chunk.document_id == Document.id)
            .where(
                Chunk.chatbot_id == chatbot_id,
                Chunk.embedding.is_not(None),
                Document.status == "ready",
            )
        )

    def pgvector_statement(self, chatbot_id: str, q: np.ndarray, threshold: float, limit: int) -> Select:
        # CASE keeps `<=>` away from rows it would reject (other dims) or score NaN (zero norm)
        comparable = and_(
            func.vector_dims(Chunk.embedding) == int(q.size),
            func.vector_norm(Chunk.embedding) > 0,
        )
        distance = case((comparable, Chunk.embedding.cosine_distance(q.tolist())), else_=null())
        similarity = (1 - distance).label("similarity")
        stmt = self._scope(select(Chunk, Document.filename, similarity), chatbot_id)
        return stmt.where(1 - distance >= threshold).order_by(distance, Chunk.id).limit(limit)

    async def _search_pgvector(self, chatbot_id: str, q: np.ndarray, threshold: float, limit: int) -> List[RetrievalResult]:
        rows = (await self.session.execute(self.pgvector_statement(chatbot_id, q, threshold, limit))).all()
        return [self._result(chunk, filename, float(score)) for chunk, filename, score in rows]

    async def _search_manual(self, chatbot_id: str, q: np.ndarray, threshold: float, limit: int) -> List[RetrievalResult]:
        stmt = self._scope(select(Chunk, Document.filename), chatbot_id).order_by(Chunk.id)
        rows = (await self.session.execute(stmt)).all()
        scored = []
        for chunk, filename in rows:
            vec = to_vec(chunk.embedding)
            if vec.size != q.size or not np.any(vec):
                continue
            score = cosine_similarity(q, vec)
            if score >= threshold:
                scored.append((score, chunk, filename))
        # stable sort: equal scores keep chunk id (insertion) order
        scored.sort(key=lambda item: -item[0])
        return [self._result(chunk, filename, score) for score, chunk, filename in scored[:limit]]

    @staticmethod
    def _result(chunk: Chunk, filename: str, score: float) -> RetrievalResult:
        return RetrievalResult(
            text=chunk.text,
            similarity=score,
            filename=filename,
            metadata=chunk.meta or {},
            chunk_id=chunk.id,
            document_id=chunk.document_id,
            chunk_index=chunk.chunk_index,
        )


def self_check(vector: Sequence[float]) -> bool:
    """A non-zero vector compared with itself must score ~1.0."""
    return abs(cosine_similarity(vector, vector) - 1.0) <= SELF_SIMILARITY_TOLERANCE
