"""
Configuration for AI Memory MCP
Copyright 2025 Jurden Bruce
"""

import os
from typing import Any, Dict, Optional


def _env_bool(name: str, default: str = "") -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


def load_config(overrides: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Build the configuration dict from environment variables.

    Explicit overrides win over the environment.
    """
    use_external = _env_bool("USE_EXTERNAL_QDRANT")
    data_dir = os.getenv("AI_MEMORY_DATA_DIR", "./memory_data")

    config = {
        "db_path": os.getenv("AI_MEMORY_DB_PATH", os.path.join(data_dir, "memory.db")),
        "use_external_qdrant": use_external,
        "qdrant_url": os.getenv("QDRANT_URL", "http://localhost:6333") if use_external else None,
        # Embedded mode by default, works like SQLite with no server process
        "qdrant_path": os.getenv("AI_MEMORY_QDRANT_PATH", os.path.join(data_dir, "qdrant")),
        "qdrant_location": None,
        "collection_name": os.getenv("AI_MEMORY_COLLECTION", "memories"),
        "vector_size": int(os.getenv("AI_MEMORY_VECTOR_SIZE", 768)),
        "embedding_model": os.getenv("AI_MEMORY_EMBEDDING_MODEL", "BAAI/bge-base-en-v1.5"),
        "cache_maxsize": int(os.getenv("CACHE_MAXSIZE", 1000)),
        "default_owner": os.getenv("AI_MEMORY_OWNER", "default-user"),
        "project_from_session": _env_bool("AI_MEMORY_PROJECT_FROM_SESSION"),
        "search_default_limit": 10,
        "search_overfetch_factor": 2,
        "index_content_max_chars": 1000,
        "preview_chars": 200,
        "search_preview_chars": 300,
        "relationship_preview_chars": 100,
        "log_level": os.getenv("AI_MEMORY_LOG_LEVEL", "INFO").upper(),
    }

    if overrides:
        config.update(overrides)
    return config
