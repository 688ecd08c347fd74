"""
Hybrid semantic + structured search for AI Memory MCP
Copyright 2025 Jurden Bruce
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional

from .errors import MemorySystemError, UpstreamError, ValidationError
from .graph import RelationshipGraph
from .models import Memory, MemoryFilter
from .utils import is_json_scalar, to_epoch_ms

logger = logging.getLogger("ai-memory.search")

RESERVED_INDEX_KEYS = ("memory_id", "owner", "content", "project", "type", "timestamp")


def build_index_payload(memory: Memory, content_max_chars: int = 1000) -> Dict[str, Any]:
    """Flat attributes stored beside the vector, used only for filtering.

    Scalar metadata values are copied in; they never replace the reserved keys.
    """
    payload = {
        key: value for key, value in memory.metadata.items()
        if key not in RESERVED_INDEX_KEYS and is_json_scalar(value)
    }
    payload.update({
        "memory_id": memory.id,
        "owner": memory.owner,
        "content": memory.content[:content_max_chars],
        "project": memory.project,
        "type": memory.memory_type,
        "timestamp": to_epoch_ms(memory.created_at),
    })
    return payload


async def embed_text(embedder, text: str) -> List[float]:
    """Run the embedder off the event loop; any failure becomes UpstreamError"""
    try:
        return await asyncio.to_thread(embedder.embed, text)
    except UpstreamError:
        raise
    except Exception as e:
        raise UpstreamError(f"Embedding generation failed: {e}", stage="embedding") from e


def rank_memories(memories: List[Memory]) -> List[Memory]:
    """Score descending, then newest first, then id for a total order"""
    ranked = sorted(memories, key=lambda m: m.id)
    ranked.sort(key=lambda m: m.created_at, reverse=True)
    ranked.sort(key=lambda m: m.score or 0.0, reverse=True)
    return ranked


class HybridSearchEngine:
    """Vector similarity ranking combined with owner/project/type equality filters"""

    def __init__(self, sqlite_store, embedder, vector_index, default_limit: int = 10,
                 overfetch_factor: int = 2, graph: Optional[RelationshipGraph] = None):
        self.sqlite_store = sqlite_store
        self.graph = graph or RelationshipGraph(sqlite_store)
        self.embedder = embedder
        self.vector_index = vector_index
        self.default_limit = default_limit
        self.overfetch_factor = overfetch_factor

    async def search(
        self,
        owner: str,
        query: str,
        project: Optional[str] = None,
        memory_type: Optional[str] = None,
        limit: Optional[int] = None,
        include_relationships: bool = False,
    ) -> List[Memory]:
        """Ranked memories for query; an empty list means nothing matched"""
        if not isinstance(query, str) or not query.strip():
            raise ValidationError("Search query must not be empty")
        if limit is None:
            limit = self.default_limit
        if isinstance(limit, bool) or not isinstance(limit, int) or limit < 1:
            raise ValidationError(f"Search limit must be a positive integer, got {limit!r}")

        memory_filter = MemoryFilter(owner=owner, project=project, memory_type=memory_type)

        query_vector = await embed_text(self.embedder, query)

        # Over-fetch so candidates lost to drift or the secondary filter don't shrink the page
        top_k = limit * self.overfetch_factor
        try:
            matches = await self.vector_index.query(query_vector, memory_filter.conditions(), top_k)
        except MemorySystemError:
            raise
        except Exception as e:
            raise UpstreamError(f"Vector index query failed: {e}", stage="index_query") from e

        scores: Dict[str, float] = {}
        for match in matches:
            scores.setdefault(match.memory_id, match.score)
        if not scores:
            return []

        # The durable store is authoritative; ids it cannot resolve are index drift
        resolved = await asyncio.to_thread(
            self.sqlite_store.get_memories_by_ids, list(scores), owner
        )
        memories = [m for m in resolved if memory_filter.matches(m)]
        dropped = len(scores) - len(memories)
        if dropped:
            logger.debug(f"Dropped {dropped} index candidates not resolvable in the store")

        if include_relationships and memories:
            outgoing = await asyncio.to_thread(self.graph.outgoing, [m.id for m in memories])
            for memory in memories:
                memory.relationships = outgoing.get(memory.id, [])

        for memory in memories:
            memory.score = scores.get(memory.id, 0.0)

        return rank_memories(memories)[:limit]
