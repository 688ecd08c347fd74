"""
Shared fixtures for AI Memory MCP tests
Copyright 2025 Jurden Bruce
"""

import math
import re
from datetime import datetime, timedelta

import pytest

from ai_memory_mcp.config import load_config
from ai_memory_mcp.errors import UpstreamError
from ai_memory_mcp.memory_service import MemoryService
from ai_memory_mcp.models import VectorMatch
from ai_memory_mcp.storage import QdrantStore, SQLiteStore

VECTOR_SIZE = 64


class TickingClock:
    """Each call is one second after the previous one"""

    def __init__(self, start=datetime(2026, 10, 1, 9, 0, 0)):
        self.current = start

    def __call__(self):
        now = self.current
        self.current = now + timedelta(seconds=1)
        return now

    def jump(self, **delta):
        self.current = self.current + timedelta(**delta)


class VocabularyEmbedder:
    """Bag-of-words vectors: one dimension per distinct lowercase token"""

    def __init__(self, size=VECTOR_SIZE):
        self.size = size
        self.vocabulary = {}
        self.calls = []

    def embed(self, text):
        self.calls.append(text)
        vector = [0.0] * self.size
        for token in re.findall(r"[a-z0-9]+", text.lower()):
            if token not in self.vocabulary:
                self.vocabulary[token] = len(self.vocabulary) % self.size
            vector[self.vocabulary[token]] += 1.0
        if not any(vector):
            vector[-1] = 1.0
        return vector

    def is_available(self):
        return True


class FailingEmbedder:
    def embed(self, text):
        raise RuntimeError("embedding service unreachable")

    def is_available(self):
        return False


def _cosine(a, b):
    dot = sum(x * y for x, y in zip(a, b))
    norm = math.sqrt(sum(x * x for x in a)) * math.sqrt(sum(y * y for y in b))
    return dot / norm if norm else 0.0


class FakeVectorIndex:
    """In-process nearest-neighbour index with failure injection.

    scores overrides the computed similarity for specific memory ids.
    """

    def __init__(self):
        self.points = {}
        self.scores = {}
        self.fail_upsert = False
        self.fail_query = False
        self.queries = []

    async def upsert(self, point_id, vector, payload):
        if self.fail_upsert:
            raise UpstreamError("index unavailable", stage="index_upsert")
        self.points[point_id] = (vector, dict(payload))

    async def query(self, vector, conditions, top_k):
        self.queries.append({"conditions": dict(conditions), "top_k": top_k})
        if self.fail_query:
            raise ConnectionError("index unreachable")
        matches = []
        for point_id, (stored, payload) in self.points.items():
            if all(payload.get(key) == value for key, value in conditions.items()):
                score = self.scores.get(point_id, _cosine(vector, stored))
                matches.append(VectorMatch(memory_id=payload["memory_id"], score=score, payload=payload))
        matches.sort(key=lambda m: m.score, reverse=True)
        return matches[:top_k]

    async def existing_ids(self, point_ids):
        return {point_id for point_id in point_ids if point_id in self.points}

    def is_available(self):
        return True


@pytest.fixture
def clock():
    return TickingClock()


@pytest.fixture
def error_log():
    return []


@pytest.fixture
def sqlite_store(tmp_path, error_log, clock):
    store = SQLiteStore(tmp_path / "memory.db", error_log, clock=clock)
    store.initialize()
    yield store
    store.close()


@pytest.fixture
def embedder():
    return VocabularyEmbedder()


@pytest.fixture
def vector_index():
    return FakeVectorIndex()


@pytest.fixture
def service_config(tmp_path):
    return {
        "db_path": str(tmp_path / "memory.db"),
        "qdrant_location": ":memory:",
        "collection_name": "test_memories",
        "vector_size": VECTOR_SIZE,
        "project_from_session": False,
    }


@pytest.fixture
def service(service_config, embedder, vector_index, clock):
    memory_service = MemoryService(service_config, embedder=embedder, vector_index=vector_index, clock=clock)
    yield memory_service
    memory_service.sqlite_store.close()


@pytest.fixture
def qdrant_service(service_config, embedder, clock):
    """Service backed by a real Qdrant collection in local in-memory mode"""
    index = QdrantStore(load_config(service_config), [], lazy_load=False)
    memory_service = MemoryService(service_config, embedder=embedder, vector_index=index, clock=clock)
    yield memory_service
    memory_service.sqlite_store.close()
    memory_service.vector_index.close()
