
from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Dict, List, Optional
from uuid import UUID

from .config import settings

class UploadResponse(BaseModel):
    id: UUID
    filename: str
    size: int
    status: str
    version: int
    duplicate: bool = False
    message: str

class DocumentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    chatbot_id: str
    filename: str
    content_type: str
    size: int
    checksum: str
    status: str
    version: int
    error_message: Optional[str] = None
    total_chunks: int = 0
    processed_chunks: int = 0
    processing_progress: int = 0
    created_at: datetime
    updated_at: datetime

class RetrievalQuery(BaseModel):
    chatbot_id: str
    query: str
    threshold: float = Field(default_factory=lambda: settings.MATCH_THRESHOLD, ge=0.0, le=1.0)
    limit: int = Field(default_factory=lambda: settings.MATCH_COUNT, ge=1)

class SearchRequest(BaseModel):
    query: str
    threshold: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    limit: Optional[int] = Field(default=None, ge=1, le=50)

class RetrievalResult(BaseModel):
    text: str
    similarity: float
    filename: str
    metadata: Dict[str, Any] = Field(default_factory=dict)
    chunk_id: Optional[int] = None
    document_id: Optional[UUID] = None
    chunk_index: Optional[int] = None

class SearchResponse(BaseModel):
    results: List[RetrievalResult]
    grounded: bool
