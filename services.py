"""Composition root: builds every component from one Settings object."""
from typing import Optional

from adapters import CompletionClient, EmbeddingClient, MessageStore, SyncStateStore, VectorStore
from config import Settings
from errors import VectorStoreError
from models import SyncState, User
from processors.message_sync import MessageSyncJob
from processors.request_cache import EMBEDDING_CACHE_TTL, USER_CACHE_TTL, TTLCache
from processors.response_generator import ResponseGenerator
from processors.retrieval import MessageRetriever, RankingConfig
from processors.scheduler import MessageSyncScheduler


class Services:
    """
    Owns the adapters, caches and core processors for one environment.

    Collaborators are injected so tests can pass in-memory fakes.
    """

    def __init__(
        self,
        settings: Settings,
        message_store,
        vector_store,
        embedding_client,
        completion_client,
        state_store=None,
        ranking_config: Optional[RankingConfig] = None,
        scheduler_backoff: float = 1.0,
    ):
        self.settings = settings
        self.message_store = message_store
        self.vector_store = vector_store
        self.embedding_client = embedding_client
        self.completion_client = completion_client
        self.state_store = state_store

        self.user_cache = TTLCache(USER_CACHE_TTL, name="users")
        self.embedding_cache = TTLCache(EMBEDDING_CACHE_TTL, name="query_embeddings")

        self.retriever = MessageRetriever(
            embedding_client,
            vector_store,
            message_store,
            embedding_cache=self.embedding_cache,
            config=ranking_config,
        )
        self.generator = ResponseGenerator(completion_client, timeout=settings.generation_timeout)
        self.sync_job = MessageSyncJob(
            message_store,
            vector_store,
            embedding_client,
            batch_size=settings.sync_batch_size,
        )
        self.scheduler = MessageSyncScheduler(
            self.sync_job,
            backoff_base=scheduler_backoff,
            on_success=state_store.save if state_store is not None else None,
        )

    async def lookup_user(self, username: str) -> Optional[User]:
        return await self.user_cache.get_or_load(
            username, lambda: self.message_store.get_user_by_name(username)
        )

    async def restore_sync_state(self) -> SyncState:
        """Load the persisted watermark into the sync job, if there is one."""
        if self.state_store is None:
            return self.sync_job.get_sync_state()
        try:
            state = await self.state_store.load()
        except VectorStoreError as e:
            print(f"[Startup] WARN: Could not load sync state, starting from current watermark: {e}")
            return self.sync_job.get_sync_state()

        if state is not None:
            self.sync_job.set_sync_state(state)
            print(f"[Startup] Restored sync watermark {state.last_synced_at.isoformat()}")
        return self.sync_job.get_sync_state()


def build_services(settings: Settings) -> Services:
    return Services(
        settings=settings,
        message_store=MessageStore(settings.default_store),
        vector_store=VectorStore(settings.vector_store, settings.vector_table_name),
        embedding_client=EmbeddingClient(settings.openai_api_key),
        completion_client=CompletionClient(settings.anthropic_api_key, settings.chat_model),
        state_store=SyncStateStore(settings.vector_store, job_name=f"message-sync-{settings.environment}"),
    )
