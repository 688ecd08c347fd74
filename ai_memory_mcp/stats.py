"""
Memory statistics for AI Memory MCP
Copyright 2025 Jurden Bruce
"""

from typing import Any, Dict, Optional


class StatsAggregator:
    """Read-only aggregates over one owner's memories"""

    def __init__(self, sqlite_store):
        self.sqlite_store = sqlite_store

    def get_stats(self, owner: str, project: Optional[str] = None) -> Dict[str, Any]:
        stats = self.sqlite_store.aggregate_stats(owner, project)
        stats["project"] = project
        stats["avg_content_length"] = round(stats["avg_content_length"], 1)
        return stats
