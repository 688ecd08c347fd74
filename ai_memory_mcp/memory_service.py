"""
Memory service for AI Memory MCP
Copyright 2025 Jurden Bruce

Composes the durable store, embedding generator and vector index into the
public operations. Every operation takes the owner explicitly and returns an
OperationResult; none of them raise.
"""

import asyncio
import logging
import time
import traceback
import uuid
import weakref
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Dict, List, Optional

from .cache import LRUCache
from .config import load_config
from .errors import (
    MemorySystemError,
    NotFoundError,
    OperationResult,
    PartialConsistencyWarning,
    StorageError,
    UpstreamError,
    ValidationError,
)
from .graph import RelationshipGraph
from .models import DEFAULT_STRENGTH, Memory, MemoryFilter
from .search import HybridSearchEngine, build_index_payload, embed_text
from .session import SessionManager
from .stats import StatsAggregator
from .storage import EmbeddingGenerator, QdrantStore, SQLiteStore

logger = logging.getLogger("ai-memory.service")


class MemoryService:
    def __init__(self, config: Optional[Dict[str, Any]] = None, sqlite_store=None,
                 embedder=None, vector_index=None, clock=None):
        self.config = load_config(config)
        self.error_log: List[Dict[str, Any]] = []
        self.embedding_cache = LRUCache(maxsize=self.config["cache_maxsize"])

        if sqlite_store is None:
            sqlite_store = SQLiteStore(self.config["db_path"], self.error_log,
                                       clock=clock or datetime.now)
            sqlite_store.initialize()
        self.sqlite_store = sqlite_store
        self.embedder = embedder or EmbeddingGenerator(self.config, self.embedding_cache, self.error_log)
        self.vector_index = vector_index or QdrantStore(self.config, self.error_log)

        self.graph = RelationshipGraph(self.sqlite_store, self.config["relationship_preview_chars"])
        self.sessions = SessionManager(self.sqlite_store, self.config["project_from_session"])
        self.search_engine = HybridSearchEngine(
            self.sqlite_store,
            self.embedder,
            self.vector_index,
            default_limit=self.config["search_default_limit"],
            overfetch_factor=self.config["search_overfetch_factor"],
            graph=self.graph,
        )
        self.stats = StatsAggregator(self.sqlite_store)

        # Entries live only while some operation holds or awaits the lock
        self._owner_locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()
        self._locks_loop = None

    def _log_error(self, operation: str, error: Exception):
        """Log detailed error information"""
        error_entry = {
            "timestamp": datetime.now().isoformat(),
            "operation": operation,
            "error_type": type(error).__name__,
            "error_msg": str(error),
            "traceback": traceback.format_exc(),
        }
        self.error_log.append(error_entry)
        if len(self.error_log) > 100:
            del self.error_log[:-100]

    @asynccontextmanager
    async def _serialized(self, owner: str):
        """One operation at a time per owner; different owners run in parallel"""
        if not isinstance(owner, str) or not owner.strip():
            # The operation reports the invalid owner itself
            yield
            return

        loop = asyncio.get_running_loop()
        if self._locks_loop is not loop:
            self._owner_locks = weakref.WeakValueDictionary()
            self._locks_loop = loop
        lock = self._owner_locks.get(owner)
        if lock is None:
            lock = asyncio.Lock()
            self._owner_locks[owner] = lock
        async with lock:
            yield

    def _unexpected(self, operation: str, error: Exception) -> OperationResult:
        logger.error(f"Unexpected error in {operation}: {error}", exc_info=True)
        self._log_error(operation, error)
        return OperationResult.failure(StorageError(f"Unexpected error during {operation}: {error}"))

    @staticmethod
    def _require_owner(owner: str):
        if not isinstance(owner, str) or not owner.strip():
            raise ValidationError("Owner identifier is required")

    async def _index_memory(self, memory: Memory, vector: List[float]):
        payload = build_index_payload(memory, self.config["index_content_max_chars"])
        try:
            await self.vector_index.upsert(memory.id, vector, payload)
        except UpstreamError:
            raise
        except Exception as e:
            raise UpstreamError(f"Vector index upsert failed: {e}", stage="index_upsert") from e

    # ===== PUBLIC OPERATIONS =====

    async def create_memory(
        self,
        owner: str,
        content: str,
        project: Optional[str] = None,
        memory_type: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> OperationResult:
        """Store a memory: id -> embedding -> durable record -> index entry"""
        async with self._serialized(owner):
            try:
                self._require_owner(owner)
                if not isinstance(content, str) or not content.strip():
                    raise ValidationError("Memory content must not be empty")
                project = await asyncio.to_thread(self.sessions.resolve_project, owner, project)

                memory_id = str(uuid.uuid4())
                vector = await embed_text(self.embedder, content)
                memory = await asyncio.to_thread(
                    self.sqlite_store.create_memory,
                    owner, content, project, memory_type, metadata, memory_id,
                )
            except MemorySystemError as e:
                logger.warning(f"create_memory failed at {e.stage}: {e.message}")
                return OperationResult.failure(e)
            except Exception as e:
                return self._unexpected("create_memory", e)

            data = {
                "id": memory.id,
                "project": memory.project,
                "type": memory.memory_type,
                "content_preview": memory.preview(self.config["preview_chars"]),
            }

            try:
                await self._index_memory(memory, vector)
            except UpstreamError as e:
                self._log_error("index_upsert", e)
                logger.warning(f"Memory {memory.id} stored but not indexed: {e.message}")
                warning = PartialConsistencyWarning(
                    stage="index_upsert",
                    message=f"Memory stored but not indexed for semantic search: {e.message}",
                )
                return OperationResult.ok("Memory stored without a search index entry.", data, [warning])

            logger.info(f"Stored memory {memory.id} in project {memory.project}")
            return OperationResult.ok("Memory stored successfully.", data)

    async def search_memories(
        self,
        owner: str,
        query: str,
        project: Optional[str] = None,
        memory_type: Optional[str] = None,
        limit: Optional[int] = None,
        include_relationships: bool = False,
    ) -> OperationResult:
        async with self._serialized(owner):
            try:
                self._require_owner(owner)
                memories = await self.search_engine.search(
                    owner, query, project, memory_type, limit, include_relationships
                )
                if memories:
                    await asyncio.to_thread(self.sqlite_store.touch_accessed, [m.id for m in memories])
            except MemorySystemError as e:
                logger.warning(f"search_memories failed at {e.stage}: {e.message}")
                return OperationResult.failure(e)
            except Exception as e:
                return self._unexpected("search_memories", e)

            if not memories:
                return OperationResult.no_results(f'No memories found for query: "{query}"', {"query": query})

            preview_chars = self.config["search_preview_chars"]
            return OperationResult.ok(
                f'Found {len(memories)} memories for "{query}"',
                {
                    "query": query,
                    "count": len(memories),
                    "results": [m.to_search_summary(preview_chars) for m in memories],
                },
            )

    async def create_relationship(
        self,
        owner: str,
        from_memory_id: str,
        to_memory_id: str,
        relationship_type: str,
        strength: float = DEFAULT_STRENGTH,
    ) -> OperationResult:
        async with self._serialized(owner):
            try:
                self._require_owner(owner)
                summary = await asyncio.to_thread(
                    self.graph.create_relationship,
                    owner, from_memory_id, to_memory_id, relationship_type, strength,
                )
            except MemorySystemError as e:
                logger.warning(f"create_relationship failed at {e.stage}: {e.message}")
                return OperationResult.failure(e)
            except Exception as e:
                return self._unexpected("create_relationship", e)
            return OperationResult.ok("Relationship created successfully.", summary)

    async def switch_project(self, owner: str, project: str) -> OperationResult:
        async with self._serialized(owner):
            try:
                self._require_owner(owner)
                session = await asyncio.to_thread(self.sessions.switch_project, owner, project)
            except MemorySystemError as e:
                return OperationResult.failure(e)
            except Exception as e:
                return self._unexpected("switch_project", e)

            message = f"Switched to project: {session.current_project}"
            if self.sessions.project_from_session:
                message += ". New memories without an explicit project will be stored here."
            return OperationResult.ok(message, session.to_dict())

    async def get_stats(self, owner: str, project: Optional[str] = None) -> OperationResult:
        async with self._serialized(owner):
            try:
                self._require_owner(owner)
                stats = await asyncio.to_thread(self.stats.get_stats, owner, project)
            except MemorySystemError as e:
                return OperationResult.failure(e)
            except Exception as e:
                return self._unexpected("get_stats", e)
            return OperationResult.ok("Memory statistics", stats)

    # ===== SUPPORTING OPERATIONS =====

    async def get_memory(self, owner: str, memory_id: str) -> OperationResult:
        async with self._serialized(owner):
            try:
                self._require_owner(owner)
                memory = await asyncio.to_thread(self.sqlite_store.get_memory, memory_id, owner)
            except MemorySystemError as e:
                return OperationResult.failure(e)
            except Exception as e:
                return self._unexpected("get_memory", e)
            if memory is None:
                return OperationResult.failure(NotFoundError(f"Memory not found: {memory_id}"))
            return OperationResult.ok("Memory retrieved", memory.to_dict())

    async def get_session(self, owner: str) -> OperationResult:
        async with self._serialized(owner):
            try:
                self._require_owner(owner)
                session = await asyncio.to_thread(self.sessions.current, owner)
            except MemorySystemError as e:
                return OperationResult.failure(e)
            except Exception as e:
                return self._unexpected("get_session", e)
            return OperationResult.ok("Current session", session.to_dict())

    async def reindex_memory(self, owner: str, memory_id: str) -> OperationResult:
        """Re-embed one durable record and upsert its index entry"""
        async with self._serialized(owner):
            try:
                self._require_owner(owner)
                memory = await asyncio.to_thread(self.sqlite_store.get_memory, memory_id, owner)
                if memory is None:
                    raise NotFoundError(f"Memory not found: {memory_id}")
                vector = await embed_text(self.embedder, memory.content)
                await self._index_memory(memory, vector)
            except MemorySystemError as e:
                return OperationResult.failure(e)
            except Exception as e:
                return self._unexpected("reindex_memory", e)
            return OperationResult.ok("Memory reindexed", {"id": memory.id})

    async def reconcile(self, owner: str, dry_run: bool = False) -> OperationResult:
        """Find the owner's durable records missing from the index and re-upsert them"""
        async with self._serialized(owner):
            try:
                self._require_owner(owner)
                memories = await asyncio.to_thread(self.sqlite_store.list_memories, MemoryFilter(owner=owner))
                indexed = await self.vector_index.existing_ids([m.id for m in memories])
            except MemorySystemError as e:
                return OperationResult.failure(e)
            except Exception as e:
                return self._unexpected("reconcile", e)

            missing = [m for m in memories if m.id not in indexed]
            repaired = 0
            failed_ids = []
            if not dry_run:
                for memory in missing:
                    try:
                        vector = await embed_text(self.embedder, memory.content)
                        await self._index_memory(memory, vector)
                        repaired += 1
                    except UpstreamError as e:
                        self._log_error("reconcile", e)
                        failed_ids.append(memory.id)

            report = {
                "checked": len(memories),
                "missing": len(missing),
                "missing_ids": [m.id for m in missing],
                "repaired": repaired,
                "failed_ids": failed_ids,
                "dry_run": dry_run,
            }
            logger.info(f"Reconcile for {owner}: {report['missing']} missing, {repaired} repaired")
            if failed_ids:
                warning = PartialConsistencyWarning(
                    stage="index_upsert",
                    message=f"{len(failed_ids)} memories could not be reindexed",
                )
                return OperationResult.ok("Reconcile finished with failures", report, [warning])
            return OperationResult.ok("Reconcile finished", report)

    def health(self) -> Dict[str, Any]:
        return {
            "status": "healthy" if self.sqlite_store.is_available() else "degraded",
            "timestamp": datetime.now().isoformat(),
            "backends": {
                "sqlite": "available" if self.sqlite_store.is_available() else "unavailable",
                "qdrant": "available" if self.vector_index.is_available() else "not loaded",
                "embeddings": "available" if self.embedder.is_available() else "not loaded",
            },
            "embedding_cache": self.embedding_cache.stats(),
            "recent_errors": len(self.error_log),
            "last_error": self.error_log[-1]["error_msg"] if self.error_log else None,
        }

    async def shutdown(self):
        """Gracefully shutdown the memory service"""
        logger.info("Shutting down MemoryService...")
        start = time.perf_counter()
        self.sqlite_store.close()
        if hasattr(self.vector_index, "close"):
            self.vector_index.close()
        logger.info(f"MemoryService shutdown complete in {(time.perf_counter() - start)*1000:.2f}ms")
