"""
LRU cache for AI Memory MCP embeddings
Copyright 2025 Jurden Bruce
"""

import threading
from collections import OrderedDict


class LRUCache(OrderedDict):
    """LRU cache with max size and hit/miss counters, safe to share across threads"""
    def __init__(self, maxsize=1000):
        self.maxsize = maxsize
        self.hits = 0
        self.misses = 0
        self._lock = threading.RLock()
        super().__init__()

    def __setitem__(self, key, value):
        with self._lock:
            if key in self:
                self.move_to_end(key)
            super().__setitem__(key, value)
            while len(self) > self.maxsize:
                self.popitem(last=False)

    def lookup(self, key):
        """Return the cached value or None, counting the outcome"""
        with self._lock:
            if key not in self:
                self.misses += 1
                return None
            self.hits += 1
            self.move_to_end(key)
            return super().__getitem__(key)

    def stats(self):
        with self._lock:
            return {"size": len(self), "maxsize": self.maxsize, "hits": self.hits, "misses": self.misses}
