"""Core processors: sync, scheduling, retrieval, response generation, caching."""
