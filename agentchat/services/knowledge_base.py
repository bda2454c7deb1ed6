"""
Knowledge base service - finds an agent's knowledge files in object storage
and turns the most relevant ones into prompt context.

Matching is a filename heuristic, not semantic search: a file is a candidate
when a query term (or a generic "about me" indicator such as resume/cv/bio)
appears in its key.
"""

import asyncio
import io
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from pypdf import PdfReader

from agentchat.services.content_cache import ContentCache
from agentchat.services.object_storage import ObjectStorage, StoredObject

logger = logging.getLogger(__name__)

INDICATOR_BONUSES = (
    ("resume", 5),
    ("cv", 5),
    ("profile", 3),
    ("bio", 3),
)
TEXT_EXTENSIONS = {"txt", "md", "json"}

NO_KNOWLEDGE_MESSAGE = "No relevant knowledge found in the knowledge base"
NO_CONTENT_MESSAGE = "Could not extract content from knowledge files"
ERROR_MESSAGE = "Error accessing knowledge base"


@dataclass
class KnowledgeChunk:
    source_document: str
    content: str
    relevance_score: float
    type: str = "file"

    def render(self) -> str:
        return f"=== From {self.source_document} ===\n{self.content}"


@dataclass
class KnowledgeResult:
    found: bool
    sources: List[Dict[str, Any]] = field(default_factory=list)
    content: Optional[str] = None
    file_count: Optional[int] = None
    message: Optional[str] = None
    error: Optional[str] = None
    chunks: List[KnowledgeChunk] = field(default_factory=list)
    source: str = ""


def query_terms(query: str) -> List[str]:
    return [term for term in query.lower().split(" ") if len(term) > 2]


def scope_prefix(scope_id: Optional[str]) -> str:
    """``asid_CR8_x`` -> ``CR8/``; no scope searches the whole bucket."""
    if not scope_id:
        return ""
    scope = str(scope_id).replace("asid_", "", 1)
    scope = re.sub(r"_.*", "", scope)
    return f"{scope}/"


def calculate_relevance(file_name: str, query: str) -> int:
    name = file_name.lower()
    query_lower = query.lower()

    score = 0
    if query_lower and query_lower in name:
        score += 10
    for term in query_terms(query):
        if term in name:
            score += 3
    for indicator, bonus in INDICATOR_BONUSES:
        if indicator in name:
            score += bonus
    return score


def _is_candidate(key: str, terms: List[str]) -> bool:
    key = key.lower()
    if not terms:
        return False
    if any(term in key for term in terms):
        return True
    return any(indicator in key for indicator, _ in INDICATOR_BONUSES)


def _modified_key(obj: StoredObject) -> float:
    return obj.last_modified.timestamp() if isinstance(obj.last_modified, datetime) else 0.0


class KnowledgeBaseService:
    """Storage-backed knowledge lookup with an extracted-content cache."""

    source_name = "knowledge files"

    def __init__(self, storage: ObjectStorage, cache: ContentCache, max_keys: int = 100):
        self.storage = storage
        self.cache = cache
        self.max_keys = max_keys

    async def search_knowledge_files(self, query: str, scope_id: Optional[str] = None) -> List[StoredObject]:
        prefix = scope_prefix(scope_id)
        try:
            objects = await self.storage.list_objects(prefix, self.max_keys)
        except Exception as e:
            logger.error(f"❌ Error listing knowledge files under '{prefix}': {e}")
            return []

        if not objects:
            logger.info(f"📭 No files found with prefix: {prefix}")
            return []

        terms = query_terms(query)
        relevant = [obj for obj in objects if _is_candidate(obj.key, terms)]
        logger.info(f"📚 Found {len(relevant)} relevant files")
        return relevant

    def rank(self, files: List[StoredObject], query: str) -> List[StoredObject]:
        """Relevance first, then larger files, then newer files."""
        return sorted(
            files,
            key=lambda obj: (calculate_relevance(obj.key, query), obj.size, _modified_key(obj)),
            reverse=True,
        )

    async def extract_file_content(self, key: str) -> Optional[str]:
        cache_key = f"content_{key}"
        cached = await self.cache.get(cache_key)
        if cached is not None:
            logger.debug(f"📄 Using cached content for: {key}")
            return cached

        try:
            body = await self.storage.get_object(key)
            extension = key.lower().rsplit(".", 1)[-1] if "." in key else ""

            if extension == "pdf":
                text = await asyncio.to_thread(self._extract_pdf, body)
            elif extension in TEXT_EXTENSIONS:
                text = body.decode("utf-8", errors="replace")
            else:
                try:
                    text = body.decode("utf-8")
                except UnicodeDecodeError:
                    text = f"[Content from {key} - {extension} file, {len(body)} bytes]"
        except Exception as e:
            logger.error(f"❌ Error extracting content from {key}: {e}")
            return None

        await self.cache.set(cache_key, text)
        logger.info(f"✅ Extracted {len(text)} characters from {key}")
        return text

    @staticmethod
    def _extract_pdf(body: bytes) -> str:
        reader = PdfReader(io.BytesIO(body))
        return "\n\n".join(page.extract_text() or "" for page in reader.pages)

    async def get_knowledge_for_query(
        self, query: str, scope_id: Optional[str] = None, max_results: int = 3
    ) -> KnowledgeResult:
        try:
            candidates = await self.search_knowledge_files(query, scope_id)
            if not candidates:
                return KnowledgeResult(found=False, message=NO_KNOWLEDGE_MESSAGE)

            top_files = self.rank(candidates, query)[:max_results]
            contents = await asyncio.gather(*(self.extract_file_content(f.key) for f in top_files))

            chunks: List[KnowledgeChunk] = []
            sources: List[Dict[str, Any]] = []
            for obj, content in zip(top_files, contents):
                if not content:
                    continue
                chunks.append(KnowledgeChunk(
                    source_document=obj.key,
                    content=content,
                    relevance_score=calculate_relevance(obj.key, query),
                ))
                sources.append({
                    "file": obj.key,
                    "url": self.storage.public_url(obj.key),
                    "size": obj.size,
                    "modified": obj.last_modified.isoformat() if obj.last_modified else None,
                })

            if not chunks:
                return KnowledgeResult(found=False, message=NO_CONTENT_MESSAGE, sources=sources)

            return KnowledgeResult(
                found=True,
                content="\n\n".join(chunk.render() for chunk in chunks),
                sources=sources,
                file_count=len(chunks),
                chunks=chunks,
                source=self.source_name,
            )
        except Exception as e:
            logger.error(f"❌ Error getting knowledge for query: {e}")
            return KnowledgeResult(found=False, message=ERROR_MESSAGE, error=str(e))

    async def clear_cache(self):
        await self.cache.clear()
        logger.info("🗑️ Knowledge base cache cleared")

    def cache_stats(self) -> Dict[str, Any]:
        return self.cache.stats()
