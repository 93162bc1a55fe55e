"""Shared test fixtures and in-memory collaborators for persona-rag tests."""
import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

import pytest

from config import ConnectionDescriptor, Settings
from errors import EmbeddingError, EmbeddingRetryExhaustedError, VectorStoreError
from models import LARGE_DIMENSIONS, SMALL_DIMENSIONS, CandidateMatch, Message, User

BASE_TIME = datetime(2024, 1, 1, tzinfo=timezone.utc)


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture(autouse=True)
def mock_env_vars(monkeypatch):
    """Mock environment variables for all tests."""
    monkeypatch.setenv("APP_ENV", "development")
    monkeypatch.setenv("SUPABASE_URL", "https://store.supabase.co")
    monkeypatch.setenv("SUPABASE_SERVICE_KEY", "test-service-key-12345")
    monkeypatch.setenv("VECTOR_SUPABASE_URL", "https://vector.supabase.co")
    monkeypatch.setenv("VECTOR_SUPABASE_SERVICE_KEY", "test-vector-key-12345")
    monkeypatch.setenv("OPENAI_API_KEY", "test-openai-key-12345")
    monkeypatch.setenv("ANTHROPIC_API_KEY", "test-anthropic-key-12345")
    monkeypatch.setenv("TENSAI_KEY", "test-key")
    monkeypatch.setenv("CRON_SECRET", "cron-secret")
    monkeypatch.delenv("VECTOR_TABLE_NAME", raising=False)
    monkeypatch.delenv("SUPABASE_URL_DEV", raising=False)
    monkeypatch.delenv("SUPABASE_URL_PROD", raising=False)
    monkeypatch.delenv("ANTHROPIC_BASE_URL", raising=False)


def make_message(message_id: str, content: str = "hello there", author_id: str = "user-1", minute: int = 0) -> Message:
    return Message(
        id=message_id,
        author_id=author_id,
        content=content,
        created_at=BASE_TIME + timedelta(minutes=minute),
    )


class FakeMessageStore:
    def __init__(self, messages=None, users=None):
        self.messages = list(messages or [])
        self.users = {user.name: user for user in users or []}
        self.calls = []

    async def get_messages_after(self, timestamp, limit=100):
        self.calls.append(("get_messages_after", timestamp, limit))
        newer = [m for m in self.messages if m.created_at > timestamp]
        return sorted(newer, key=lambda m: m.created_at)[:limit]

    async def get_message_by_id(self, message_id):
        self.calls.append(("get_message_by_id", message_id))
        return next((m for m in self.messages if m.id == message_id), None)

    async def get_messages_by_id(self, message_ids):
        self.calls.append(("get_messages_by_id", list(message_ids)))
        return [m for m in self.messages if m.id in set(message_ids)]

    async def get_messages_by_author(self, author_id, limit=100):
        self.calls.append(("get_messages_by_author", author_id, limit))
        own = [m for m in self.messages if m.author_id == author_id]
        return sorted(own, key=lambda m: m.created_at, reverse=True)[:limit]

    async def get_messages_by_author_in_channel(self, author_id, channel_id, limit=50):
        self.calls.append(("get_messages_by_author_in_channel", author_id, channel_id, limit))
        own = [m for m in self.messages if m.author_id == author_id and m.channel_id == channel_id]
        return sorted(own, key=lambda m: m.created_at, reverse=True)[:limit]

    async def get_user_by_name(self, name):
        self.calls.append(("get_user_by_name", name))
        return self.users.get(name)


class FakeVectorStore:
    def __init__(self, matches=None):
        self.rows = {}
        self.matches = list(matches or [])
        self.fail_inserts = 0
        self.insert_calls = []
        self.existing_calls = []
        self.query_calls = []
        self.transactions = []

    async def existing_ids(self, message_ids):
        self.existing_calls.append(list(message_ids))
        return {message_id for message_id in message_ids if message_id in self.rows}

    async def insert(self, rows):
        self.insert_calls.append(list(rows))
        if self.fail_inserts > 0:
            self.fail_inserts -= 1
            raise VectorStoreError("Failed to store embeddings: 500", operation="store embeddings", status_code=500)
        for row in rows:
            self.rows[row.message_id] = row

    @asynccontextmanager
    async def transaction(self):
        self.transactions.append("begin")
        try:
            yield
        except BaseException:
            self.transactions.append("rollback")
            raise
        self.transactions.append("commit")

    async def query(self, vector, threshold, limit, owner_id=None):
        self.query_calls.append({"threshold": threshold, "limit": limit, "owner_id": owner_id})
        found = [
            m for m in self.matches
            if m.similarity >= threshold and (owner_id is None or m.author_id == owner_id)
        ]
        return sorted(found, key=lambda m: m.similarity, reverse=True)[:limit]


class FakeEmbeddingClient:
    """
    failing_texts fail with exhausted retries (outage); poison_texts are
    rejected outright (bad content).
    """

    def __init__(self, failing_texts=(), poison_texts=()):
        self.failing_texts = set(failing_texts)
        self.poison_texts = set(poison_texts)
        self.calls = []

    async def embed_small(self, text):
        self.calls.append(("small", text))
        return [0.1] * SMALL_DIMENSIONS

    async def embed_large(self, text):
        self.calls.append(("large", text))
        return [0.2] * LARGE_DIMENSIONS

    async def embed_message(self, text):
        return await self.embed_small(text), await self.embed_large(text)

    async def embed_batch(self, texts, return_exceptions=False):
        results = []
        for text in texts:
            self.calls.append(("batch", text))
            error = None
            if text in self.failing_texts:
                error = EmbeddingRetryExhaustedError(f"Failed to embed {text!r}", text=text, attempts=4)
            elif text in self.poison_texts:
                error = EmbeddingError(f"Embedding request rejected: 400 - {text!r}", text=text, attempts=1)
            if error is not None:
                if not return_exceptions:
                    raise error
                results.append(error)
                continue
            results.append(([0.1] * SMALL_DIMENSIONS, [0.2] * LARGE_DIMENSIONS))
        return results


class FakeCompletionClient:
    def __init__(self, reply="AI response", delay=0.0, error=None):
        self.reply = reply
        self.delay = delay
        self.error = error
        self.prompts = []

    async def complete(self, prompt, temperature=0.7):
        self.prompts.append(prompt)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.reply


@pytest.fixture
def settings():
    return Settings(
        environment="development",
        default_store=ConnectionDescriptor(url="https://store.supabase.co", service_key="test-service-key-12345"),
        vector_store=ConnectionDescriptor(url="https://vector.supabase.co", service_key="test-vector-key-12345"),
        vector_table_name="message_embeddings_dev",
        openai_api_key="test-openai-key-12345",
        anthropic_api_key="test-anthropic-key-12345",
        api_key="test-key",
        cron_secret="cron-secret",
        sync_enabled=False,
        generation_timeout=1.0,
    )


@pytest.fixture
def sample_user():
    return User(id="user123", name="Test User", avatar_url="https://example.com/avatar.jpg")


@pytest.fixture
def sample_messages():
    return [
        make_message("msg1", "I love my baby girl so much", author_id="user123", minute=1),
        make_message("msg2", "weather is nice today", author_id="user123", minute=2),
        make_message("msg3", "lol same", author_id="user123", minute=3),
    ]


@pytest.fixture
def sample_matches():
    return [
        CandidateMatch(message_id="msg1", author_id="user123", similarity=0.72),
        CandidateMatch(message_id="msg2", author_id="user123", similarity=0.71),
    ]
