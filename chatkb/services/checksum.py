import hashlib
import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import Document

logger = logging.getLogger(__name__)


def calculate_checksum(content: bytes) -> str:
    return hashlib.sha256(content).hexdigest()


async def find_duplicate(session: AsyncSession, chatbot_id: str, checksum: str) -> Optional[Document]:
    """Return the ready document in this chatbot whose content hash matches, if any."""
    res = await session.execute(
        select(Document)
        .where(
            Document.chatbot_id == chatbot_id,
            Document.checksum == checksum,
            Document.status == "ready",
        )
        .order_by(Document.version.desc())
        .limit(1)
    )
    doc = res.scalars().first()
    if doc is not None:
        logger.info("Checksum %s already ingested for chatbot %s (document %s)", checksum[:12], chatbot_id, doc.id)
    return doc


async def find_previous_version(session: AsyncSession, chatbot_id: str, filename: str) -> Optional[Document]:
    res = await session.execute(
        select(Document)
        .where(Document.chatbot_id == chatbot_id, Document.filename == filename)
        .order_by(Document.version.desc())
        .limit(1)
    )
    return res.scalars().first()
