"""Unit tests for the embedding client."""
import json

import httpx
import pytest

from adapters.embeddings import LARGE_MODEL, OPENAI_EMBEDDINGS_URL, SMALL_MODEL, EmbeddingClient
from errors import EmbeddingError, EmbeddingRetryExhaustedError
from models import LARGE_DIMENSIONS, SMALL_DIMENSIONS


def embedding_response(dimensions, value=0.1):
    return {"data": [{"embedding": [value] * dimensions, "index": 0}], "model": "test"}


def add_small(httpx_mock, input_text, **kwargs):
    if "text" not in kwargs:
        kwargs.setdefault("json", embedding_response(SMALL_DIMENSIONS))
    httpx_mock.add_response(
        url=OPENAI_EMBEDDINGS_URL, match_json={"model": SMALL_MODEL, "input": input_text}, **kwargs
    )


def add_large(httpx_mock, input_text, **kwargs):
    if "text" not in kwargs:
        kwargs.setdefault("json", embedding_response(LARGE_DIMENSIONS, 0.2))
    httpx_mock.add_response(
        url=OPENAI_EMBEDDINGS_URL, match_json={"model": LARGE_MODEL, "input": input_text}, **kwargs
    )


@pytest.fixture
def client():
    return EmbeddingClient("test-openai-key-12345", retry_delay=0)


# ============================================================================
# Single embeddings
# ============================================================================


@pytest.mark.anyio
async def test_embed_small_success(httpx_mock, client):
    # Arrange
    add_small(httpx_mock, "hello")

    # Act
    vector = await client.embed_small("hello")

    # Assert
    assert len(vector) == SMALL_DIMENSIONS
    request = httpx_mock.get_request()
    assert request.headers["Authorization"] == "Bearer test-openai-key-12345"


@pytest.mark.anyio
async def test_embed_message_returns_both_forms(httpx_mock, client):
    add_small(httpx_mock, "hello")
    add_large(httpx_mock, "hello")

    small, large = await client.embed_message("hello")

    assert len(small) == SMALL_DIMENSIONS
    assert len(large) == LARGE_DIMENSIONS


@pytest.mark.anyio
async def test_embed_strips_null_bytes(httpx_mock, client):
    add_small(httpx_mock, "hi there")

    await client.embed_small("hi\x00 there ")

    assert json.loads(httpx_mock.get_request().content)["input"] == "hi there"


@pytest.mark.anyio
async def test_embed_empty_text_fails_without_request(httpx_mock, client):
    with pytest.raises(EmbeddingError, match="empty"):
        await client.embed_small("   ")

    assert httpx_mock.get_requests() == []


@pytest.mark.anyio
async def test_embed_wrong_dimensions(httpx_mock, client):
    add_small(httpx_mock, "hello", json=embedding_response(10))

    with pytest.raises(EmbeddingError, match="returned 10 dimensions, expected 1536"):
        await client.embed_small("hello")


# ============================================================================
# Retries
# ============================================================================


@pytest.mark.anyio
async def test_retry_then_success(httpx_mock, client):
    """Two transient failures, then a good response: three calls total."""
    add_small(httpx_mock, "hello", status_code=429, json={"error": "rate limited"})
    add_small(httpx_mock, "hello", status_code=503, json={"error": "unavailable"})
    add_small(httpx_mock, "hello")

    vector = await client.embed_small("hello")

    assert len(vector) == SMALL_DIMENSIONS
    assert len(httpx_mock.get_requests()) == 3


@pytest.mark.anyio
async def test_retry_on_network_error(httpx_mock, client):
    httpx_mock.add_exception(httpx.ConnectError("reset"), url=OPENAI_EMBEDDINGS_URL)
    add_small(httpx_mock, "hello")

    assert len(await client.embed_small("hello")) == SMALL_DIMENSIONS


@pytest.mark.anyio
async def test_retry_exhausted(httpx_mock):
    client = EmbeddingClient("key", retry_attempts=2, retry_delay=0)
    for _ in range(3):
        add_small(httpx_mock, "hello", status_code=500, text="down")

    with pytest.raises(EmbeddingRetryExhaustedError) as exc_info:
        await client.embed_small("hello")

    assert exc_info.value.attempts == 3
    assert exc_info.value.text == "hello"
    assert len(httpx_mock.get_requests()) == 3


@pytest.mark.anyio
async def test_client_error_is_not_retried(httpx_mock, client):
    add_small(httpx_mock, "hello", status_code=400, text="bad input")

    with pytest.raises(EmbeddingError, match="rejected: 400") as exc_info:
        await client.embed_small("hello")

    assert not isinstance(exc_info.value, EmbeddingRetryExhaustedError)
    assert len(httpx_mock.get_requests()) == 1


@pytest.mark.anyio
@pytest.mark.parametrize(
    "body",
    [
        {"json": {"error": "unexpected shape"}},
        {"json": {"data": []}},
        {"json": {"data": [{"embedding": None}]}},
        {"text": "<html>gateway</html>"},
    ],
)
async def test_malformed_success_response_is_retried_then_fails(httpx_mock, body):
    client = EmbeddingClient("key", retry_attempts=1, retry_delay=0)
    for _ in range(2):
        add_small(httpx_mock, "hello", **body)

    with pytest.raises(EmbeddingRetryExhaustedError, match="Malformed response"):
        await client.embed_small("hello")

    assert len(httpx_mock.get_requests()) == 2


@pytest.mark.anyio
async def test_malformed_response_recovers_on_retry(httpx_mock, client):
    add_small(httpx_mock, "hello", json={"object": "list"})
    add_small(httpx_mock, "hello")

    assert len(await client.embed_small("hello")) == SMALL_DIMENSIONS


# ============================================================================
# embed_batch
# ============================================================================


@pytest.mark.anyio
async def test_embed_batch_preserves_order(httpx_mock):
    client = EmbeddingClient("key", batch_size=2, retry_delay=0)
    for index, text in enumerate(["a", "b", "c"]):
        add_small(httpx_mock, text, json=embedding_response(SMALL_DIMENSIONS, float(index)))
        add_large(httpx_mock, text)

    results = await client.embed_batch(["a", "b", "c"])

    assert [small[0] for small, _ in results] == [0.0, 1.0, 2.0]


@pytest.mark.anyio
async def test_embed_batch_return_exceptions_isolates_failure(httpx_mock):
    client = EmbeddingClient("key", retry_attempts=0, retry_delay=0)
    add_small(httpx_mock, "good")
    add_large(httpx_mock, "good")
    add_small(httpx_mock, "bad", status_code=500)
    add_large(httpx_mock, "bad")

    results = await client.embed_batch(["good", "bad"], return_exceptions=True)

    assert isinstance(results[0], tuple)
    assert isinstance(results[1], EmbeddingRetryExhaustedError)


@pytest.mark.anyio
async def test_embed_batch_raises_by_default(httpx_mock):
    client = EmbeddingClient("key", retry_attempts=0, retry_delay=0)
    add_small(httpx_mock, "bad", status_code=500)
    add_large(httpx_mock, "bad")

    with pytest.raises(EmbeddingRetryExhaustedError):
        await client.embed_batch(["bad"])


@pytest.mark.anyio
async def test_embed_batch_empty(httpx_mock, client):
    assert await client.embed_batch([]) == []
