"""
Qdrant vector store for AI Memory MCP
Copyright 2025 Jurden Bruce
"""

import asyncio
import logging
import time
import traceback
from typing import List, Dict, Any, Set
from datetime import datetime

from ..errors import UpstreamError
from ..models import VectorMatch

logger = logging.getLogger("ai-memory.qdrant")


class QdrantStore:
    """Nearest-neighbour index over memory embeddings"""

    def __init__(self, config: Dict[str, Any], error_log: List[Dict[str, Any]], lazy_load: bool = True):
        """
        Initialize Qdrant store

        Args:
            config: Configuration dict with qdrant_path / qdrant_url / qdrant_location,
                collection_name and vector_size
            error_log: Shared error log list
            lazy_load: If True, delay initialization until first use
        """
        self.config = config
        self.collection_name = config["collection_name"]
        self.error_log = error_log
        self.client = None
        self._initialized = False

        if not lazy_load:
            self._init_client()

    def _ensure_initialized(self):
        """Ensure client is initialized (lazy loading support)"""
        if self._initialized:
            return

        start = time.perf_counter()
        self._init_client()
        logger.info(f"[LAZY] Qdrant loaded on-demand in {(time.perf_counter() - start)*1000:.2f}ms")

    def _init_client(self):
        """
        Initialize Qdrant client

        DEFAULT: Embedded mode (no server required, stores locally)
        OPTIONAL: External server mode via USE_EXTERNAL_QDRANT=true and QDRANT_URL
        TESTS: qdrant_location=":memory:"
        """
        # Import only when actually needed (lazy loading)
        from qdrant_client import QdrantClient
        from qdrant_client.models import Distance, VectorParams

        try:
            if self.config.get("qdrant_location"):
                client = QdrantClient(location=self.config["qdrant_location"])
                logger.info(f"Qdrant local mode: {self.config['qdrant_location']}")
            elif self.config.get("use_external_qdrant"):
                client = QdrantClient(url=self.config["qdrant_url"])
                logger.info(f"Qdrant external mode: connected to {self.config['qdrant_url']}")
            else:
                qdrant_path = self.config.get("qdrant_path", "./memory_data/qdrant")
                client = QdrantClient(path=qdrant_path)
                logger.info(f"Qdrant embedded mode (default): initialized at {qdrant_path}")

            # The collection fixes the vector dimension; mismatched vectors are rejected on upsert
            if not client.collection_exists(self.collection_name):
                client.create_collection(
                    collection_name=self.collection_name,
                    vectors_config=VectorParams(
                        size=self.config["vector_size"], distance=Distance.COSINE
                    ),
                )
                logger.info(f"Created Qdrant collection: {self.collection_name}")
            else:
                logger.info(f"Using existing Qdrant collection: {self.collection_name}")
        except Exception as e:
            logger.error(f"Qdrant initialization failed: {e}")
            self._log_error("qdrant_init", e)
            raise UpstreamError(f"Vector index unavailable: {e}", stage="index") from e

        self.client = client
        self._initialized = True

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

    @staticmethod
    def _build_filter(conditions: Dict[str, Any]):
        from qdrant_client.models import FieldCondition, Filter, MatchValue

        if not conditions:
            return None
        return Filter(must=[
            FieldCondition(key=key, match=MatchValue(value=value))
            for key, value in conditions.items()
        ])

    async def upsert(self, point_id: str, vector: List[float], payload: Dict[str, Any]):
        """Store a single point; raises UpstreamError on failure"""
        self._ensure_initialized()

        # Import models when needed (after initialization)
        from qdrant_client.models import PointStruct

        try:
            point = PointStruct(id=point_id, vector=vector, payload=payload)
            await asyncio.to_thread(
                self.client.upsert,
                collection_name=self.collection_name,
                points=[point],
            )
        except Exception as e:
            logger.error(f"Qdrant store failed for {point_id}: {e}")
            self._log_error("qdrant_upsert", e)
            raise UpstreamError(f"Vector index upsert failed: {e}", stage="index_upsert") from e
        logger.debug(f"Stored point {point_id} in Qdrant")

    async def query(self, vector: List[float], conditions: Dict[str, Any], top_k: int) -> List[VectorMatch]:
        """Search for similar vectors among points matching every condition

        Returns:
            VectorMatch list, most similar first
        """
        self._ensure_initialized()

        try:
            results = await asyncio.to_thread(
                self.client.query_points,
                collection_name=self.collection_name,
                query=vector,
                limit=top_k,
                query_filter=self._build_filter(conditions),
                with_payload=True,
            )
        except Exception as e:
            logger.error(f"Vector search failed: {e}")
            self._log_error("vector_search", e)
            raise UpstreamError(f"Vector index query failed: {e}", stage="index_query") from e

        return [
            VectorMatch(
                memory_id=(point.payload or {}).get("memory_id", str(point.id)),
                score=point.score,
                payload=point.payload or {},
            )
            for point in results.points
        ]

    async def existing_ids(self, point_ids: List[str]) -> Set[str]:
        """Subset of point_ids present in the collection"""
        self._ensure_initialized()

        if not point_ids:
            return set()
        try:
            points = await asyncio.to_thread(
                self.client.retrieve,
                collection_name=self.collection_name,
                ids=point_ids,
                with_vectors=False,
                with_payload=False,
            )
        except Exception as e:
            logger.error(f"Qdrant retrieve failed: {e}")
            self._log_error("qdrant_retrieve", e)
            raise UpstreamError(f"Vector index lookup failed: {e}", stage="index_query") from e
        return {str(point.id) for point in points}

    def is_available(self) -> bool:
        """Check if Qdrant client is available"""
        return self.client is not None

    def close(self):
        if self.client:
            try:
                self.client.close()
            except Exception as e:
                logger.error(f"Error closing Qdrant: {e}")
            finally:
                self.client = None
                self._initialized = False
