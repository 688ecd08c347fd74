"""
Storage backends for AI Memory MCP
Copyright 2025 Jurden Bruce
"""

from .embeddings import EmbeddingGenerator
from .qdrant_store import QdrantStore
from .sqlite_store import SQLiteStore

__all__ = ['EmbeddingGenerator', 'QdrantStore', 'SQLiteStore']
