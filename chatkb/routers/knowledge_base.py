from functools import lru_cache
from typing import List
from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Depends, File, HTTPException, UploadFile

from ..schemas import DocumentOut, SearchRequest, SearchResponse, UploadResponse
from ..services.embedding import EmbeddingGenerator
from ..services.extract import UnsupportedType
from ..services.ingestion import DocumentNotFound, FileTooLarge, IngestionService
from ..services.retrieval import KnowledgeBaseRetriever

router = APIRouter(prefix="/chatbots/{chatbot_id}/kb", tags=["knowledge-base"])

@lru_cache
def get_embedder() -> EmbeddingGenerator:
    return EmbeddingGenerator()

def get_ingestion_service(embedder: EmbeddingGenerator = Depends(get_embedder)) -> IngestionService:
    return IngestionService(embedder=embedder)

@router.post("/upload", response_model=UploadResponse)
async def upload_document(
    chatbot_id: str,
    background_tasks: BackgroundTasks,
    file: UploadFile = File(...),
    service: IngestionService = Depends(get_ingestion_service),
):
    content = await file.read()
    if not content:
        raise HTTPException(400, "Empty file")
    try:
        outcome = await service.upload_document(
            chatbot_id, file.filename or "upload", file.content_type or "", content
        )
    except FileTooLarge as e:
        raise HTTPException(413, str(e))
    except UnsupportedType as e:
        raise HTTPException(415, str(e))

    doc = outcome.document
    if outcome.duplicate:
        message = "Identical document already in the knowledge base"
    else:
        # runs after the response is sent
        background_tasks.add_task(service.process_document, doc.id, content)
        message = "Document uploaded successfully and is being processed"
    return UploadResponse(
        id=doc.id, filename=doc.filename, size=doc.size, status=doc.status,
        version=doc.version, duplicate=outcome.duplicate, message=message,
    )

@router.get("/documents", response_model=List[DocumentOut])
async def list_documents(chatbot_id: str, service: IngestionService = Depends(get_ingestion_service)):
    return await service.list_documents(chatbot_id)

@router.get("/documents/{document_id}", response_model=DocumentOut)
async def get_document(chatbot_id: str, document_id: UUID, service: IngestionService = Depends(get_ingestion_service)):
    try:
        return await service.get_document(chatbot_id, document_id)
    except DocumentNotFound as e:
        raise HTTPException(404, str(e))

@router.delete("/documents/{document_id}")
async def delete_document(chatbot_id: str, document_id: UUID, service: IngestionService = Depends(get_ingestion_service)):
    try:
        await service.delete_document(chatbot_id, document_id)
    except DocumentNotFound as e:
        raise HTTPException(404, str(e))
    return {"message": "Document deleted successfully"}

@router.post("/search", response_model=SearchResponse)
async def search(chatbot_id: str, req: SearchRequest, service: IngestionService = Depends(get_ingestion_service)):
    async with service.session_factory() as session:
        retriever = KnowledgeBaseRetriever(session, service.embedder)
        results = await retriever.search_for_chat(chatbot_id, req.query, req.threshold, req.limit)
    return SearchResponse(results=results, grounded=bool(results))
