"""Adapter layer for external collaborators (Supabase, OpenAI, Anthropic)."""
from .completion import CompletionClient
from .embeddings import EmbeddingClient
from .supabase_adapter import MessageStore
from .vector_store import SyncStateStore, VectorStore, VectorTransaction

__all__ = [
    "CompletionClient",
    "EmbeddingClient",
    "MessageStore",
    "SyncStateStore",
    "VectorStore",
    "VectorTransaction",
]
