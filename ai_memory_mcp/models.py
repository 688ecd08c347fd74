"""
Data models for AI Memory MCP
Copyright 2025 Jurden Bruce
"""

import json
import math
from dataclasses import dataclass, asdict
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, NamedTuple, Optional

DEFAULT_PROJECT = "default"
DEFAULT_MEMORY_TYPE = "general"
DEFAULT_STRENGTH = 0.5


class RelationshipType(str, Enum):
    """Closed set of relationship kinds between memories"""
    INFLUENCES = "influences"
    DEPENDS_ON = "depends_on"
    RELATES_TO = "relates_to"
    CONTRADICTS = "contradicts"
    EXTENDS = "extends"

    @classmethod
    def values(cls) -> List[str]:
        return [kind.value for kind in cls]


def _parse_timestamp(value):
    if isinstance(value, str):
        return datetime.fromisoformat(value)
    return value


@dataclass
class MemoryRelationship:
    """Directed, typed, weighted edge between two memories"""
    id: str
    from_memory_id: str
    to_memory_id: str
    relationship_type: str
    strength: float
    created_at: datetime

    def __post_init__(self):
        self.created_at = _parse_timestamp(self.created_at)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "from_memory_id": self.from_memory_id,
            "to_memory_id": self.to_memory_id,
            "relationship_type": self.relationship_type,
            "strength": self.strength,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_row(cls, row) -> 'MemoryRelationship':
        return cls(
            id=row["id"],
            from_memory_id=row["from_memory_id"],
            to_memory_id=row["to_memory_id"],
            relationship_type=row["relationship_type"],
            strength=row["strength"],
            created_at=row["created_at"],
        )


@dataclass
class Memory:
    id: str
    owner: str
    content: str
    project: str
    memory_type: str
    metadata: Dict[str, Any]
    created_at: datetime
    updated_at: datetime
    accessed_at: Optional[datetime] = None
    embedding_id: Optional[str] = None
    # Similarity score from search (when applicable)
    score: Optional[float] = None
    # Outgoing relationships, attached on request by search
    relationships: Optional[List[MemoryRelationship]] = None

    def __post_init__(self):
        if self.metadata is None:
            self.metadata = {}
        if self.relationships is None:
            self.relationships = []
        self.created_at = _parse_timestamp(self.created_at)
        self.updated_at = _parse_timestamp(self.updated_at)
        if self.accessed_at:
            self.accessed_at = _parse_timestamp(self.accessed_at)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["created_at"] = self.created_at.isoformat()
        data["updated_at"] = self.updated_at.isoformat()
        data["accessed_at"] = self.accessed_at.isoformat() if self.accessed_at else None
        data["relationships"] = [r.to_dict() for r in self.relationships]
        return data

    def preview(self, limit: int) -> str:
        """Content truncated to limit characters, with an ellipsis when cut"""
        if len(self.content) > limit:
            return self.content[:limit] + "..."
        return self.content

    def to_search_summary(self, preview_chars: int = 300) -> Dict[str, Any]:
        """Ranked search result entry"""
        summary = {
            "id": self.id,
            "type": self.memory_type,
            "project": self.project,
            "score": self.score if self.score is not None else 0.0,
            "created_at": self.created_at.isoformat(),
            "content": self.preview(preview_chars),
            "metadata": self.metadata,
        }
        if self.relationships:
            summary["relationships"] = [
                {
                    "id": r.id,
                    "to_memory_id": r.to_memory_id,
                    "relationship_type": r.relationship_type,
                    "strength": r.strength,
                }
                for r in self.relationships
            ]
        return summary

    @classmethod
    def from_row(cls, row) -> 'Memory':
        """Convert SQLite row to Memory object

        Args:
            row: sqlite3.Row object with keys() method

        Returns:
            Memory instance
        """
        keys = row.keys()
        return cls(
            id=row["id"],
            owner=row["user_id"],
            content=row["content"],
            project=row["project"],
            memory_type=row["memory_type"],
            metadata=json.loads(row["metadata"]) if row["metadata"] else {},
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            accessed_at=row["accessed_at"] if "accessed_at" in keys else None,
            embedding_id=row["embedding_id"] if "embedding_id" in keys else None,
        )


@dataclass
class SessionContext:
    """Per-owner current project pointer"""
    owner: str
    current_project: str = DEFAULT_PROJECT
    last_active: Optional[datetime] = None

    def __post_init__(self):
        if self.last_active:
            self.last_active = _parse_timestamp(self.last_active)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "owner": self.owner,
            "current_project": self.current_project,
            "last_active": self.last_active.isoformat() if self.last_active else None,
        }


@dataclass(frozen=True)
class MemoryFilter:
    """Structured equality filter, decided once per call.

    Field names are the vector index payload keys; the SQLite store maps
    them onto its own columns when compiling a WHERE clause.
    """
    owner: str
    project: Optional[str] = None
    memory_type: Optional[str] = None

    def conditions(self) -> Dict[str, str]:
        conditions = {"owner": self.owner}
        if self.project:
            conditions["project"] = self.project
        if self.memory_type:
            conditions["type"] = self.memory_type
        return conditions

    def matches(self, memory: Memory) -> bool:
        if memory.owner != self.owner:
            return False
        if self.project and memory.project != self.project:
            return False
        if self.memory_type and memory.memory_type != self.memory_type:
            return False
        return True


class VectorMatch(NamedTuple):
    """One nearest-neighbour candidate returned by the vector index"""
    memory_id: str
    score: float
    payload: Dict[str, Any]


def is_valid_strength(strength: Any) -> bool:
    if isinstance(strength, bool) or not isinstance(strength, (int, float)):
        return False
    if math.isnan(strength):
        return False
    return 0.0 <= strength <= 1.0
