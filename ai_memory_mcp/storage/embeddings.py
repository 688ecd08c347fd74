"""
Embedding generation for AI Memory MCP
Copyright 2025 Jurden Bruce
"""

import hashlib
import logging
import threading
import time
import traceback
from typing import List, Dict, Any
from datetime import datetime

from ..errors import UpstreamError

logger = logging.getLogger("ai-memory.embeddings")

# Check availability without importing the heavy library
try:
    import importlib.util
    EMBEDDINGS_AVAILABLE = importlib.util.find_spec("sentence_transformers") is not None
except (ImportError, ValueError):
    EMBEDDINGS_AVAILABLE = False


class EmbeddingGenerator:
    """Text -> fixed-dimension vector, with caching"""

    def __init__(self, config: Dict[str, Any], embedding_cache, error_log: List[Dict[str, Any]], lazy_load: bool = True):
        """
        Initialize embedding generator

        Args:
            config: Configuration dict with 'embedding_model' and 'vector_size' keys
            embedding_cache: LRUCache for caching embeddings
            error_log: Shared error log list
            lazy_load: If True, delay encoder initialization until first use
        """
        self.config = config
        self.embedding_cache = embedding_cache
        self.error_log = error_log
        self.lazy_load = lazy_load
        self.encoder = None
        self._encoder_initialized = False
        self._encoder_lock = threading.Lock()

        if not lazy_load:
            self._init_encoder()

    def _ensure_encoder(self):
        """Ensure encoder is initialized (lazy loading support)"""
        if self._encoder_initialized:
            return

        with self._encoder_lock:
            # Another thread may have finished loading while we waited
            if self._encoder_initialized:
                return
            start = time.perf_counter()
            self._init_encoder()
        logger.info(f"[LAZY] Encoder loaded on-demand in {(time.perf_counter() - start)*1000:.2f}ms")

    def _init_encoder(self):
        """Initialize sentence encoder and check its dimension against the index"""
        if not EMBEDDINGS_AVAILABLE:
            raise UpstreamError("sentence-transformers is not installed", stage="embedding")

        model_name = self.config["embedding_model"]
        try:
            # Import only when actually needed (lazy loading)
            from sentence_transformers import SentenceTransformer

            encoder = SentenceTransformer(model_name, device="cpu")
        except Exception as e:
            logger.error(f"Encoder initialization failed: {e}")
            self._log_error("encoder_init", e)
            raise UpstreamError(f"Failed to load embedding model {model_name}: {e}", stage="embedding") from e

        actual_size = encoder.get_sentence_embedding_dimension()
        if actual_size != self.config["vector_size"]:
            raise UpstreamError(
                f"Embedding model {model_name} produces {actual_size}-dim vectors, "
                f"index expects {self.config['vector_size']}",
                stage="embedding",
            )

        self.encoder = encoder
        self._encoder_initialized = True
        logger.info(f"Encoder {model_name} initialized with dimension {actual_size}")

    def _log_error(self, operation: str, error: Exception):
        """Log detailed error information"""
        error_entry = {
            "timestamp": datetime.now().isoformat(),
            "operation": operation,
            "error_type": type(error).__name__,
            "error_msg": str(error),
            "traceback": traceback.format_exc(),
        }
        self.error_log.append(error_entry)
        if len(self.error_log) > 100:
            del self.error_log[:-100]

    def embed(self, text: str) -> List[float]:
        """Generate embedding with caching"""
        text_hash = hashlib.md5(text.encode()).hexdigest()

        cached = self.embedding_cache.lookup(text_hash)
        if cached is not None:
            return cached

        self._ensure_encoder()
        try:
            embedding = self.encoder.encode(text, normalize_embeddings=True).tolist()
        except Exception as e:
            logger.error(f"Embedding failed: {e}")
            self._log_error("embed", e)
            raise UpstreamError(f"Embedding generation failed: {e}", stage="embedding") from e

        self.embedding_cache[text_hash] = embedding
        return embedding

    def is_available(self) -> bool:
        """Check if the encoder is loaded"""
        return self.encoder is not None
