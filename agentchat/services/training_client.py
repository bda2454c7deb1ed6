"""
Client for the remote training service, which stores and searches an
agent's uploaded documents.

Calls never raise for provider or network trouble; they return
``{"success": False, "error": ...}`` so routes can pass the reason through.
"""

import logging
from typing import Any, Dict, List, Optional

import httpx

from agentchat.config import Settings
from agentchat.services.knowledge_base import (
    ERROR_MESSAGE, NO_KNOWLEDGE_MESSAGE, KnowledgeResult,
)

logger = logging.getLogger(__name__)

AVAILABILITY_TIMEOUT = 5.0


def _error_details(exc: Exception) -> Optional[Any]:
    if isinstance(exc, httpx.HTTPStatusError):
        try:
            return exc.response.json()
        except ValueError:
            return exc.response.text
    return None


class TrainingServiceClient:
    def __init__(self, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = settings.train_api_url.rstrip("/")
        self.timeout = settings.training_timeout_seconds
        self._transport = transport

    def _client(self, timeout: Optional[float] = None) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=timeout or self.timeout, transport=self._transport)

    async def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        async with self._client() as client:
            response = await client.request(method, f"{self.base_url}{path}", **kwargs)
            response.raise_for_status()
            return response.json()

    async def upload_document(
        self,
        agent_id: str,
        content: bytes,
        filename: str,
        content_type: Optional[str] = None,
        chunk_size: Optional[int] = None,
        overlap: Optional[int] = None,
    ) -> Dict[str, Any]:
        logger.info(f"📤 Uploading document for agent: {agent_id}")
        data = {"agent_id": agent_id}
        if chunk_size:
            data["chunkSize"] = str(chunk_size)
        if overlap:
            data["overlap"] = str(overlap)
        files = {"file": (filename, content, content_type or "application/octet-stream")}

        try:
            body = await self._request("POST", "/train", data=data, files=files)
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"❌ Document upload error: {e}")
            return {"success": False, "error": str(e), "details": _error_details(e)}

        if body.get("success"):
            payload = body.get("data") or {}
            document = payload.get("document") or {}
            logger.info(f"✅ Document uploaded successfully: {document.get('name')}")
            return {
                "success": True,
                "documentId": payload.get("documentId"),
                "document": document,
                "message": body.get("message"),
            }
        return {"success": False, "error": body.get("error") or "Failed to upload document to training API"}

    async def search(
        self,
        agent_id: str,
        query: str,
        limit: int = 10,
        threshold: float = 0.7,
        document_types: Optional[List[str]] = None,
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "agent_id": agent_id,
            "query": query,
            "limit": limit or 10,
            "threshold": threshold or 0.7,
        }
        if isinstance(document_types, list):
            payload["documentTypes"] = document_types

        try:
            body = await self._request("POST", "/train/search", json=payload)
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"❌ Knowledge base search error: {e}")
            return {"success": False, "results": [], "resultsCount": 0, "error": str(e), "details": _error_details(e)}

        if body.get("success"):
            logger.info(f"✅ Found {body.get('resultsCount') or 0} results for agent {agent_id}")
            return {
                "success": True,
                "results": body.get("results") or [],
                "resultsCount": body.get("resultsCount") or 0,
                "query": body.get("query"),
            }
        return {
            "success": False,
            "results": [],
            "resultsCount": 0,
            "error": body.get("error") or "No results found",
        }

    async def list_documents(
        self,
        agent_id: str,
        doc_type: Optional[str] = None,
        search: Optional[str] = None,
        offset: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> Dict[str, Any]:
        params: Dict[str, Any] = {"agent_id": agent_id}
        if doc_type:
            params["type"] = doc_type
        if search:
            params["search"] = search
        if offset:
            params["offset"] = str(offset)
        if limit:
            params["limit"] = str(limit)

        try:
            body = await self._request("GET", "/train/documents", params=params)
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"❌ List documents error: {e}")
            return {"success": False, "documents": [], "error": str(e), "details": _error_details(e)}

        if body.get("success"):
            return {
                "success": True,
                "documents": body.get("documents") or [],
                "pagination": body.get("pagination"),
            }
        return {"success": False, "documents": [], "error": body.get("error") or "Failed to list documents"}

    async def get_statistics(self, agent_id: str) -> Dict[str, Any]:
        try:
            body = await self._request("GET", "/train/stats", params={"agent_id": agent_id})
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"❌ Get statistics error: {e}")
            return {"success": False, "error": str(e), "details": _error_details(e)}

        if body.get("success"):
            return {"success": True, "agentId": body.get("agentId"), "stats": body.get("stats")}
        return {"success": False, "error": body.get("error") or "Failed to get statistics"}

    async def delete_document(self, agent_id: str, document_id: str) -> Dict[str, Any]:
        logger.info(f"🗑️ Deleting document {document_id} for agent: {agent_id}")
        try:
            body = await self._request(
                "DELETE", f"/train/documents/{document_id}", params={"agent_id": agent_id}
            )
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"❌ Delete document error: {e}")
            return {"success": False, "error": str(e), "details": _error_details(e)}

        if body.get("success"):
            return {"success": True, "message": body.get("message"), "documentId": body.get("documentId")}
        return {"success": False, "error": body.get("error") or "Failed to delete document"}

    async def is_available(self) -> bool:
        try:
            async with self._client(timeout=AVAILABILITY_TIMEOUT) as client:
                response = await client.get(self.base_url)
                return response.status_code == 200
        except httpx.HTTPError as e:
            logger.error(f"Training service unavailable: {e}")
            return False

    @staticmethod
    def format_results_for_ai(results: List[Dict[str, Any]]) -> str:
        if not results:
            return ""

        lines = [f"Found {len(results)} relevant document(s) from knowledge base:\n\n"]
        for index, result in enumerate(results, start=1):
            document = result.get("document") or {}
            score = float(result.get("score") or 0) * 100
            lines.append(f"📄 Document {index}: {document.get('name') or 'Unknown document'}\n")
            lines.append(f"📊 Relevance: {score:.1f}%\n")
            lines.append(f"📁 Type: {document.get('type') or 'unknown'}\n")
            lines.append(f"📝 Content: {result.get('chunk') or ''}\n")
            lines.append(f"{'=' * 50}\n\n")
        return "".join(lines)


class RemoteKnowledgeSource:
    """Knowledge lookup served by the training service instead of storage."""

    source_name = "training service"

    def __init__(self, client: TrainingServiceClient, threshold: float = 0.7):
        self.client = client
        self.threshold = threshold

    async def get_knowledge_for_query(
        self, query: str, scope_id: Optional[str] = None, max_results: int = 3
    ) -> KnowledgeResult:
        if not scope_id:
            return KnowledgeResult(found=False, message=NO_KNOWLEDGE_MESSAGE)

        response = await self.client.search(scope_id, query, limit=max_results, threshold=self.threshold)
        if not response.get("success"):
            if response.get("error") and response.get("error") != "No results found":
                return KnowledgeResult(found=False, message=ERROR_MESSAGE, error=response.get("error"))
            return KnowledgeResult(found=False, message=NO_KNOWLEDGE_MESSAGE)

        results = response.get("results") or []
        if not results:
            return KnowledgeResult(found=False, message=NO_KNOWLEDGE_MESSAGE)

        sources = []
        for result in results[:max_results]:
            document = result.get("document") or {}
            name = document.get("name") or "Unknown document"
            sources.append({"file": name, "url": document.get("url"), "size": document.get("size"), "modified": None})

        return KnowledgeResult(
            found=True,
            content=self.client.format_results_for_ai(results[:max_results]),
            sources=sources,
            file_count=len(sources),
            source=self.source_name,
        )
