"""
AI Memory MCP - Hybrid Memory Store
Copyright 2025 Jurden Bruce
"""

__version__ = "1.0.0"

from .models import Memory, MemoryRelationship, SessionContext, RelationshipType
from .errors import (
    MemorySystemError,
    ValidationError,
    NotFoundError,
    UpstreamError,
    StorageError,
    PartialConsistencyWarning,
    OperationResult,
)
from .cache import LRUCache
from .memory_service import MemoryService

__all__ = [
    'Memory',
    'MemoryRelationship',
    'SessionContext',
    'RelationshipType',
    'MemorySystemError',
    'ValidationError',
    'NotFoundError',
    'UpstreamError',
    'StorageError',
    'PartialConsistencyWarning',
    'OperationResult',
    'LRUCache',
    'MemoryService',
]
