"""Ingestion orchestrator.

Document state machine::

    pending -> processing -> ready
                          -> error

Chunks are written in the same transaction that flips a document to ``ready``,
so retrieval never sees a partially embedded document.
"""
import asyncio
import logging
import uuid
from dataclasses import dataclass
from typing import List, Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..config import settings
from ..db import get_session_local
from ..models import Chunk, Document
from ..utils.text import sanitize_error
from .checksum import calculate_checksum, find_duplicate, find_previous_version
from .chunking import Chunker
from .embedding import (
    DimensionMismatch,
    EmbeddingBackendFailure,
    EmbeddingConfig,
    EmbeddingConfigurationError,
    EmbeddingGenerator,
)
from .extract import SUPPORTED_TYPES, ExtractionFailure, UnsupportedType, extract_text, is_legacy_doc
from .vector_store import ChunkInput, VectorStore

logger = logging.getLogger(__name__)

KNOWN_FAILURES = (
    UnsupportedType,
    ExtractionFailure,
    EmbeddingBackendFailure,
    EmbeddingConfigurationError,
    DimensionMismatch,
)


class DocumentNotFound(Exception):
    def __init__(self, document_id):
        self.document_id = document_id
        super().__init__(f"Document not found: {document_id}")


class FileTooLarge(Exception):
    pass


@dataclass
class UploadOutcome:
    document: Document
    duplicate: bool = False


class IngestionService:
    def __init__(
        self,
        session_factory: Optional[async_sessionmaker] = None,
        embedder: Optional[EmbeddingGenerator] = None,
        chunker: Optional[Chunker] = None,
        max_upload_mb: Optional[int] = None,
    ):
        # sessions must be created with expire_on_commit=False
        self.session_factory = session_factory or get_session_local()
        self.embedder = embedder or EmbeddingGenerator()
        self.chunker = chunker or Chunker()
        self.max_upload_mb = max_upload_mb or settings.MAX_UPLOAD_MB

    def validate_file(self, content: bytes, content_type: str) -> str:
        max_bytes = self.max_upload_mb * 1024 * 1024
        if len(content) > max_bytes:
            raise FileTooLarge(f"File size exceeds {self.max_upload_mb}MB limit")
        content_type = (content_type or "").split(";")[0].strip().lower()
        if content_type not in SUPPORTED_TYPES:
            raise UnsupportedType(content_type)
        if is_legacy_doc(content, content_type):
            raise UnsupportedType(content_type, "legacy binary .doc files cannot be read; save the document as .docx")
        return content_type

    async def upload_document(
        self,
        chatbot_id: str,
        filename: str,
        content_type: str,
        content: bytes,
        storage_path: Optional[str] = None,
    ) -> UploadOutcome:
        """Register an upload as a pending document, or return the ready duplicate."""
        content_type = self.validate_file(content, content_type)
        checksum = calculate_checksum(content)

        async with self.session_factory() as session:
            existing = await find_duplicate(session, chatbot_id, checksum)
            if existing is not None:
                return UploadOutcome(existing, duplicate=True)

            previous = await find_previous_version(session, chatbot_id, filename)
            doc = Document(
                chatbot_id=chatbot_id,
                filename=filename,
                content_type=content_type,
                size=len(content),
                storage_path=storage_path or f"{chatbot_id}/{checksum}/{filename}",
                checksum=checksum,
                status="pending",
                version=previous.version + 1 if previous else 1,
            )
            session.add(doc)
            await session.commit()
            logger.info("Registered %s v%d for chatbot %s as %s", filename, doc.version, chatbot_id, doc.id)
            return UploadOutcome(doc)

    async def process_document(
        self,
        document_id: uuid.UUID,
        content: bytes,
        config: Optional[EmbeddingConfig] = None,
    ) -> Document:
        """Run extraction, chunking, embedding and storage for a pending document.

        Returns the document as stored. When a newer version of the same file
        became ready while this one was processing, this one is discarded and
        the newer document is returned instead.
        """
        async with self.session_factory() as session:
            doc = await session.get(Document, document_id)
            if doc is None:
                raise DocumentNotFound(document_id)
            filename = doc.filename
            doc.status = "processing"
            doc.error_message = None
            await session.commit()

            try:
                text = await extract_text(content, doc.content_type, filename)
                chunks = await asyncio.to_thread(self.chunker.split_with_counts, text)
                doc.total_chunks = len(chunks)
                doc.processing_progress = 30
                await session.commit()

                config = config or self.embedder.default_config
                vectors = await self.embedder.create_embeddings([t for t, _ in chunks], config)

                newer = await self._newer_ready_version(session, doc)
                if newer is not None:
                    await session.delete(doc)
                    await session.commit()
                    logger.info("%s v%d replaced by v%d during processing; discarded", filename, doc.version, newer.version)
                    return newer

                doc.processed_chunks = len(vectors)
                VectorStore(session).add_chunks(
                    doc,
                    [ChunkInput(t, n, v) for (t, n), v in zip(chunks, vectors)],
                    metadata={"version": doc.version, "embedding_model": config.model},
                )
                doc.status = "ready"
                doc.processing_progress = 100
                await session.commit()
            except KNOWN_FAILURES as e:
                await session.rollback()
                logger.warning("Ingestion of %s (%s) failed: %s", filename, document_id, e)
                return await self._mark_error(session, document_id, e)
            except Exception as e:
                await session.rollback()
                logger.exception("Unexpected error while ingesting %s (%s)", filename, document_id)
                return await self._mark_error(session, document_id, e)

            logger.info("Document %s ready with %d chunks", document_id, len(chunks))
            await self._drop_superseded(session, doc)
            return doc

    async def ingest(
        self,
        chatbot_id: str,
        filename: str,
        content_type: str,
        content: bytes,
        config: Optional[EmbeddingConfig] = None,
    ) -> UploadOutcome:
        outcome = await self.upload_document(chatbot_id, filename, content_type, content)
        if outcome.duplicate:
            return outcome
        doc = await self.process_document(outcome.document.id, content, config)
        return UploadOutcome(doc)

    async def _mark_error(self, session: AsyncSession, document_id: uuid.UUID, error: Exception) -> Document:
        # caller has rolled back; reload the row rather than trusting the expired instance
        doc = await session.get(Document, document_id, populate_existing=True)
        if doc is None:
            raise DocumentNotFound(document_id) from error
        doc.status = "error"
        doc.error_message = sanitize_error(str(error))
        doc.processing_progress = 0
        await session.commit()
        return doc

    async def _newer_ready_version(self, session: AsyncSession, doc: Document) -> Optional[Document]:
        res = await session.execute(
            select(Document)
            .where(
                Document.chatbot_id == doc.chatbot_id,
                Document.filename == doc.filename,
                Document.version > doc.version,
                Document.status == "ready",
            )
            .order_by(Document.version.desc())
            .limit(1)
        )
        return res.scalars().first()

    async def _drop_superseded(self, session: AsyncSession, doc: Document) -> None:
        # versions still processing settle themselves against this one when they finish
        res = await session.execute(
            select(Document.id).where(
                Document.chatbot_id == doc.chatbot_id,
                Document.filename == doc.filename,
                Document.version < doc.version,
                Document.status != "processing",
            )
        )
        old_ids = list(res.scalars().all())
        if not old_ids:
            return
        await session.execute(delete(Chunk).where(Chunk.document_id.in_(old_ids)))
        await session.execute(delete(Document).where(Document.id.in_(old_ids)))
        await session.commit()
        logger.info("Removed %d superseded version(s) of %s", len(old_ids), doc.filename)

    async def list_documents(self, chatbot_id: str) -> List[Document]:
        async with self.session_factory() as session:
            res = await session.execute(
                select(Document).where(Document.chatbot_id == chatbot_id).order_by(Document.created_at.desc())
            )
            return list(res.scalars().all())

    async def get_document(self, chatbot_id: str, document_id: uuid.UUID) -> Document:
        async with self.session_factory() as session:
            doc = await session.get(Document, document_id)
            if doc is None or doc.chatbot_id != chatbot_id:
                raise DocumentNotFound(document_id)
            return doc

    async def delete_document(self, chatbot_id: str, document_id: uuid.UUID) -> None:
        async with self.session_factory() as session:
            doc = await session.get(Document, document_id)
            if doc is None or doc.chatbot_id != chatbot_id:
                raise DocumentNotFound(document_id)
            await VectorStore(session).delete_document_chunks(doc.id)
            await session.delete(doc)
            await session.commit()
            logger.info("Deleted document %s from chatbot %s", document_id, chatbot_id)
