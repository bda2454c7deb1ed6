"""
Knowledge training routes - proxy to the remote training service, plus the
local knowledge cache controls.
"""

import logging
import re
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, Query, Request, UploadFile
from fastapi.responses import JSONResponse

from agentchat.api.deps import get_container, get_training
from agentchat.api.envelopes import error, ok
from agentchat.errors import ValidationError
from agentchat.schemas import TrainingSearchRequest
from agentchat.services.training_client import TrainingServiceClient

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/train", tags=["Training"])

MAX_UPLOAD_SIZE = 50 * 1024 * 1024  # 50 MB
ALLOWED_EXTENSIONS = re.compile(r"^(pdf|txt|doc|docx|mp3|mp4|wav|m4a|avi|mov)$")
ALLOWED_CONTENT_TYPES = {
    "application/pdf",
    "text/plain",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "audio/mpeg",
    "audio/mp4",
    "audio/wav",
    "audio/x-wav",
    "audio/x-m4a",
    "video/mp4",
    "video/x-msvideo",
    "video/quicktime",
}
# multipart boundaries and form fields around the file
MULTIPART_OVERHEAD = 64 * 1024
DEFAULT_CHUNK_SIZE = 1000
DEFAULT_OVERLAP = 200


def _pick_agent_id(*candidates: Optional[str]) -> str:
    for candidate in candidates:
        if candidate and candidate.strip():
            return candidate.strip()
    raise ValidationError("agent_id or agentId is required", field="agentId")


def is_allowed_upload(filename: Optional[str], content_type: Optional[str]) -> bool:
    """The extension decides; the content type only counts for files without one."""
    name = (filename or "").lower()
    if "." in name:
        return bool(ALLOWED_EXTENSIONS.match(name.rsplit(".", 1)[-1]))
    return (content_type or "").lower() in ALLOWED_CONTENT_TYPES


def declared_size_too_large(file: UploadFile, content_length: Optional[str]) -> bool:
    if file.size is not None and file.size > MAX_UPLOAD_SIZE:
        return True
    if content_length and content_length.isdigit():
        return int(content_length) > MAX_UPLOAD_SIZE + MULTIPART_OVERHEAD
    return False


@router.post("/upload", status_code=201)
async def upload_document(
    request: Request,
    file: Optional[UploadFile] = File(None),
    agent_id: Optional[str] = Form(None),
    agent_id_camel: Optional[str] = Form(None, alias="agentId"),
    chunk_size: Optional[int] = Form(None, alias="chunkSize"),
    overlap: Optional[int] = Form(None),
    training: TrainingServiceClient = Depends(get_training),
):
    """Upload a document into an agent's knowledge base."""
    final_agent_id = _pick_agent_id(agent_id, agent_id_camel)
    if file is None:
        raise ValidationError("No file uploaded", field="file")
    if not is_allowed_upload(file.filename, file.content_type):
        raise ValidationError(
            "Invalid file type. Only PDF, text, documents, audio, and video files are allowed.",
            field="file",
        )

    if declared_size_too_large(file, request.headers.get("content-length")):
        return error("File too large (maximum 50MB)", 413)

    content = await file.read()
    if len(content) > MAX_UPLOAD_SIZE:
        return error("File too large (maximum 50MB)", 413)

    chunk_size = chunk_size or DEFAULT_CHUNK_SIZE
    overlap = overlap or DEFAULT_OVERLAP
    logger.info(f"📄 File: {file.filename} (chunkSize={chunk_size}, overlap={overlap})")

    result = await training.upload_document(
        final_agent_id,
        content,
        file.filename,
        content_type=file.content_type,
        chunk_size=chunk_size,
        overlap=overlap,
    )
    if not result.get("success"):
        return error(result.get("error") or "Failed to upload document", 400, details=result.get("details"))

    return JSONResponse(
        status_code=201,
        content={
            "success": True,
            "message": "Document uploaded and processed successfully",
            "data": {"documentId": result.get("documentId"), "document": result.get("document")},
        },
    )


@router.post("/search")
async def search_knowledge(body: TrainingSearchRequest, training: TrainingServiceClient = Depends(get_training)):
    agent_id = _pick_agent_id(body.agent_id)
    if not body.query:
        raise ValidationError("query is required", field="query")

    logger.info(f"🔍 Searching knowledge base for agent: {agent_id}")
    result = await training.search(
        agent_id, body.query, limit=body.limit, threshold=body.threshold, document_types=body.document_types
    )
    if not result.get("success"):
        return JSONResponse(
            status_code=404,
            content={
                "success": False,
                "error": result.get("error") or "No results found",
                "query": body.query,
                "resultsCount": 0,
                "results": [],
            },
        )
    return {
        "success": True,
        "query": body.query,
        "resultsCount": result.get("resultsCount"),
        "results": result.get("results"),
    }


@router.get("/documents")
async def list_documents(
    agent_id: Optional[str] = Query(None, alias="agentId"),
    doc_type: Optional[str] = Query(None, alias="type"),
    search: Optional[str] = None,
    offset: Optional[int] = Query(None, ge=0),
    limit: Optional[int] = Query(None, ge=1, le=1000),
    training: TrainingServiceClient = Depends(get_training),
):
    agent_id = _pick_agent_id(agent_id)
    result = await training.list_documents(agent_id, doc_type=doc_type, search=search, offset=offset, limit=limit)
    if not result.get("success"):
        return error(result.get("error") or "Failed to list documents", 404)
    return ok({"documents": result.get("documents"), "pagination": result.get("pagination")})


@router.get("/stats")
async def document_stats(
    agent_id: Optional[str] = Query(None, alias="agentId"),
    training: TrainingServiceClient = Depends(get_training),
):
    agent_id = _pick_agent_id(agent_id)
    result = await training.get_statistics(agent_id)
    if not result.get("success"):
        return error(result.get("error") or "Failed to get statistics", 404)
    return ok({"agentId": result.get("agentId"), "stats": result.get("stats")})


@router.delete("/documents/{document_id}")
async def delete_document(
    document_id: str,
    agent_id: Optional[str] = Query(None, alias="agentId"),
    training: TrainingServiceClient = Depends(get_training),
):
    agent_id = _pick_agent_id(agent_id)
    result = await training.delete_document(agent_id, document_id)
    if not result.get("success"):
        return error(result.get("error") or "Failed to delete document", 404)
    return ok({"documentId": result.get("documentId") or document_id, "message": result.get("message")})


@router.get("/health")
async def training_health(training: TrainingServiceClient = Depends(get_training)):
    return {
        "success": True,
        "available": await training.is_available(),
        "service": "training-api",
        "endpoint": training.base_url,
    }


@router.get("/cache/stats")
async def knowledge_cache_stats(request: Request):
    return ok(get_container(request).knowledge_base.cache_stats())


@router.delete("/cache")
async def clear_knowledge_cache(request: Request):
    await get_container(request).knowledge_base.clear_cache()
    return ok({"cleared": True})
