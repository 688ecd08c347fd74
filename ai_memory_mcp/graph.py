"""
Relationship graph operations for AI Memory MCP
Copyright 2025 Jurden Bruce
"""

import logging
from typing import List, Dict, Any

from .errors import NotFoundError
from .models import DEFAULT_STRENGTH, MemoryRelationship

logger = logging.getLogger("ai-memory.graph")


class RelationshipGraph:
    """Typed directed edges between memories: create and direct-neighbour lookup"""

    def __init__(self, sqlite_store, preview_chars: int = 100):
        self.sqlite_store = sqlite_store
        self.preview_chars = preview_chars

    def create_relationship(self, owner: str, from_id: str, to_id: str,
                            relationship_type: str, strength: float = DEFAULT_STRENGTH) -> Dict[str, Any]:
        """Link two of the owner's memories and return a summary with endpoint previews"""
        relationship = self.sqlite_store.create_relationship(
            from_id, to_id, relationship_type, strength, owner=owner
        )
        from_memory = self.sqlite_store.get_memory(from_id, owner=owner)
        to_memory = self.sqlite_store.get_memory(to_id, owner=owner)
        logger.info(f"Linked {from_id} -[{relationship.relationship_type}]-> {to_id}")

        summary = relationship.to_dict()
        summary["from_preview"] = from_memory.preview(self.preview_chars)
        summary["to_preview"] = to_memory.preview(self.preview_chars)
        return summary

    def neighbors(self, owner: str, memory_id: str) -> List[MemoryRelationship]:
        if self.sqlite_store.get_memory(memory_id, owner=owner) is None:
            raise NotFoundError(f"Memory not found: {memory_id}")
        return self.sqlite_store.get_relationships_from(memory_id)

    def outgoing(self, memory_ids: List[str]) -> Dict[str, List[MemoryRelationship]]:
        return self.sqlite_store.get_relationships_for(memory_ids)
