"""
End-to-end scenario against a local in-memory Qdrant collection
Copyright 2025 Jurden Bruce
"""

import asyncio

from ai_memory_mcp.errors import STATUS_NO_RESULTS, STATUS_OK


def run(coro):
    return asyncio.run(coro)


def test_store_link_search_and_stats(qdrant_service) -> None:
    service = qdrant_service

    m1 = run(service.create_memory("alice", "User prefers TypeScript for AI projects", "dev", "preference"))
    m2 = run(service.create_memory("alice", "User dislikes verbose configs", "dev", "preference"))
    assert m1.status == STATUS_OK
    assert m2.status == STATUS_OK

    link = run(service.create_relationship("alice", m1.data["id"], m2.data["id"], "relates_to", 0.8))
    assert link.success
    assert link.data["strength"] == 0.8

    search = run(service.search_memories("alice", "typescript", project="dev", include_relationships=True))
    assert search.status == STATUS_OK
    ids = [r["id"] for r in search.data["results"]]
    assert ids == [m1.data["id"], m2.data["id"]]
    assert search.data["results"][0]["score"] > search.data["results"][1]["score"]
    assert search.data["results"][0]["relationships"][0]["to_memory_id"] == m2.data["id"]

    missing = run(service.create_relationship("alice", m1.data["id"], "missing-1", "relates_to"))
    assert missing.error_kind == "not_found"

    stats = run(service.get_stats("alice", project="dev"))
    assert stats.data["total_memories"] == 2
    assert stats.data["unique_type_count"] == 1
    assert stats.data["unique_project_count"] == 1


def test_owner_filter_is_applied_by_the_index(qdrant_service) -> None:
    service = qdrant_service
    run(service.create_memory("alice", "kubernetes rollout notes", "ops", "knowledge"))

    assert run(service.search_memories("bob", "kubernetes")).status == STATUS_NO_RESULTS
    assert run(service.search_memories("alice", "kubernetes", project="dev")).status == STATUS_NO_RESULTS
    assert run(service.search_memories("alice", "kubernetes", project="ops")).data["count"] == 1


def test_reconcile_sees_indexed_points(qdrant_service) -> None:
    service = qdrant_service
    run(service.create_memory("alice", "indexed note"))

    report = run(service.reconcile("alice", dry_run=True))
    assert report.data["checked"] == 1
    assert report.data["missing"] == 0
