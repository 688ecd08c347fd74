"""
Tests for cache, config, session, graph and embedding components
Copyright 2025 Jurden Bruce
"""

import hashlib
import threading
import time

import pytest

from ai_memory_mcp.cache import LRUCache
from ai_memory_mcp.config import load_config
from ai_memory_mcp.errors import NotFoundError, UpstreamError, ValidationError
from ai_memory_mcp.graph import RelationshipGraph
from ai_memory_mcp.session import SessionManager
from ai_memory_mcp.storage import EmbeddingGenerator


class TestLRUCache:
    def test_evicts_least_recently_used(self) -> None:
        cache = LRUCache(maxsize=2)
        cache["a"] = 1
        cache["b"] = 2
        assert cache.lookup("a") == 1
        cache["c"] = 3
        assert list(cache) == ["a", "c"]

    def test_counts_hits_and_misses(self) -> None:
        cache = LRUCache(maxsize=5)
        cache["a"] = 1
        cache.lookup("a")
        cache.lookup("missing")
        assert cache.stats() == {"size": 1, "maxsize": 5, "hits": 1, "misses": 1}

    def test_shared_across_threads(self) -> None:
        cache = LRUCache(maxsize=4)
        errors = []

        def worker(offset):
            try:
                for i in range(2000):
                    key = (i + offset) % 8
                    if cache.lookup(key) is None:
                        cache[key] = key
            except Exception as e:
                errors.append(repr(e))

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert not errors
        assert len(cache) <= 4
        stats = cache.stats()
        assert stats["hits"] + stats["misses"] == 8 * 2000


class TestConfig:
    def test_defaults(self, monkeypatch) -> None:
        for name in ("AI_MEMORY_PROJECT_FROM_SESSION", "USE_EXTERNAL_QDRANT", "AI_MEMORY_DATA_DIR",
                     "AI_MEMORY_DB_PATH", "AI_MEMORY_LOG_LEVEL"):
            monkeypatch.delenv(name, raising=False)
        config = load_config()
        assert config["project_from_session"] is False
        assert config["use_external_qdrant"] is False
        assert config["qdrant_url"] is None
        assert config["collection_name"] == "memories"
        assert config["search_default_limit"] == 10
        assert config["log_level"] == "INFO"

    def test_environment(self, monkeypatch) -> None:
        monkeypatch.setenv("AI_MEMORY_PROJECT_FROM_SESSION", "true")
        monkeypatch.setenv("USE_EXTERNAL_QDRANT", "1")
        monkeypatch.setenv("QDRANT_URL", "http://qdrant:6333")
        monkeypatch.setenv("AI_MEMORY_VECTOR_SIZE", "384")
        config = load_config()
        assert config["project_from_session"] is True
        assert config["qdrant_url"] == "http://qdrant:6333"
        assert config["vector_size"] == 384

    def test_overrides_win(self, monkeypatch) -> None:
        monkeypatch.setenv("AI_MEMORY_COLLECTION", "from_env")
        assert load_config({"collection_name": "explicit"})["collection_name"] == "explicit"


class TestSessionManager:
    def test_switch_strips_name(self, sqlite_store) -> None:
        sessions = SessionManager(sqlite_store)
        assert sessions.switch_project("alice", "  dev  ").current_project == "dev"

    def test_resolve_literal_default(self, sqlite_store) -> None:
        sessions = SessionManager(sqlite_store, project_from_session=False)
        sessions.switch_project("alice", "dev")
        assert sessions.resolve_project("alice", None) == "default"
        assert sessions.resolve_project("alice", "ops") == "ops"

    def test_resolve_from_session(self, sqlite_store) -> None:
        sessions = SessionManager(sqlite_store, project_from_session=True)
        assert sessions.resolve_project("alice", None) == "default"
        sessions.switch_project("alice", "dev")
        assert sessions.resolve_project("alice", None) == "dev"
        assert sessions.resolve_project("alice", "") == "dev"

    def test_empty_rejected(self, sqlite_store) -> None:
        with pytest.raises(ValidationError):
            SessionManager(sqlite_store).switch_project("alice", "")


class TestRelationshipGraph:
    def test_summary_previews(self, sqlite_store) -> None:
        graph = RelationshipGraph(sqlite_store, preview_chars=5)
        a = sqlite_store.create_memory("alice", "abcdefgh")
        b = sqlite_store.create_memory("alice", "xyz")
        summary = graph.create_relationship("alice", a.id, b.id, "influences", 0.3)
        assert summary["from_preview"] == "abcde..."
        assert summary["to_preview"] == "xyz"
        assert summary["relationship_type"] == "influences"

    def test_neighbors(self, sqlite_store) -> None:
        graph = RelationshipGraph(sqlite_store)
        a = sqlite_store.create_memory("alice", "a")
        b = sqlite_store.create_memory("alice", "b")
        c = sqlite_store.create_memory("alice", "c")
        graph.create_relationship("alice", a.id, b.id, "depends_on")
        graph.create_relationship("alice", a.id, c.id, "contradicts")
        assert [r.to_memory_id for r in graph.neighbors("alice", a.id)] == [b.id, c.id]
        assert graph.neighbors("alice", b.id) == []

    def test_neighbors_of_unknown_memory(self, sqlite_store) -> None:
        with pytest.raises(NotFoundError):
            RelationshipGraph(sqlite_store).neighbors("alice", "missing-1")

    def test_neighbors_of_other_owner(self, sqlite_store) -> None:
        memory = sqlite_store.create_memory("bob", "b")
        with pytest.raises(NotFoundError):
            RelationshipGraph(sqlite_store).neighbors("alice", memory.id)


class _Vector(list):
    def tolist(self):
        return list(self)


class _StaticEncoder:
    def __init__(self):
        self.calls = 0

    def encode(self, text, normalize_embeddings=False):
        self.calls += 1
        return _Vector([1.0, 0.0, 0.0])


class _BrokenEncoder:
    def encode(self, text, normalize_embeddings=False):
        raise RuntimeError("model crashed")


class TestEmbeddingGenerator:
    def _generator(self, encoder):
        generator = EmbeddingGenerator({"embedding_model": "test", "vector_size": 3}, LRUCache(), [])
        generator.encoder = encoder
        generator._encoder_initialized = True
        return generator

    def test_cached_embeddings_skip_encoder(self) -> None:
        encoder = _StaticEncoder()
        generator = self._generator(encoder)
        assert generator.embed("hello") == [1.0, 0.0, 0.0]
        assert generator.embed("hello") == [1.0, 0.0, 0.0]
        assert encoder.calls == 1
        assert generator.embedding_cache.stats()["hits"] == 1

    def test_cache_hit_does_not_load_model(self) -> None:
        cache = LRUCache()
        cache[hashlib.md5(b"hello").hexdigest()] = [0.5, 0.5, 0.0]
        generator = EmbeddingGenerator({"embedding_model": "test", "vector_size": 3}, cache, [])
        assert generator.embed("hello") == [0.5, 0.5, 0.0]
        assert not generator.is_available()

    def test_encoder_failure_is_upstream(self) -> None:
        generator = self._generator(_BrokenEncoder())
        with pytest.raises(UpstreamError) as excinfo:
            generator.embed("hello")
        assert excinfo.value.stage == "embedding"
        assert generator.error_log[-1]["operation"] == "embed"

    def test_encoder_loaded_once_under_concurrency(self) -> None:
        loads = []

        class CountingGenerator(EmbeddingGenerator):
            def _init_encoder(self):
                loads.append(threading.get_ident())
                time.sleep(0.05)
                self.encoder = _StaticEncoder()
                self._encoder_initialized = True

        generator = CountingGenerator({"embedding_model": "test", "vector_size": 3}, LRUCache(), [])
        results = []
        threads = [
            threading.Thread(target=lambda n=n: results.append(generator.embed(f"text {n}")))
            for n in range(8)
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(loads) == 1
        assert results == [[1.0, 0.0, 0.0]] * 8
