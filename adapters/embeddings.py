"""
Embedding client for OpenAI text-embedding-3 models.

Every message gets two vectors: text-embedding-3-small (1536-d, served by the
IVF index and used for query-time search) and text-embedding-3-large (3072-d,
slower but more accurate).
"""
import asyncio
from typing import List, Sequence, Tuple, Union

import httpx

from errors import EmbeddingError, EmbeddingRetryExhaustedError
from models import LARGE_DIMENSIONS, SMALL_DIMENSIONS

OPENAI_EMBEDDINGS_URL = "https://api.openai.com/v1/embeddings"
SMALL_MODEL = "text-embedding-3-small"
LARGE_MODEL = "text-embedding-3-large"

RETRYABLE_STATUS = {408, 409, 429, 500, 502, 503, 504}
MAX_INPUT_CHARS = 30000

EmbeddingPair = Tuple[List[float], List[float]]


class _RetryableEmbeddingError(Exception):
    pass


class EmbeddingClient:
    """
    Wraps the embedding service with a bounded retry loop.

    Args:
        api_key: OpenAI API key
        retry_attempts: Retries after the first attempt (so 3 means up to 4 calls)
        batch_size: Maximum texts embedded concurrently by embed_batch
        retry_delay: Seconds to wait before retry n, multiplied by n
    """

    def __init__(
        self,
        api_key: str,
        retry_attempts: int = 3,
        batch_size: int = 100,
        retry_delay: float = 0.5,
        timeout: float = 30.0,
        url: str = OPENAI_EMBEDDINGS_URL,
    ):
        self.api_key = api_key
        self.retry_attempts = retry_attempts
        self.batch_size = batch_size
        self.retry_delay = retry_delay
        self.timeout = timeout
        self.url = url

    async def _request(self, text: str, model: str) -> List[float]:
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    self.url,
                    headers={
                        "Authorization": f"Bearer {self.api_key}",
                        "Content-Type": "application/json",
                    },
                    json={"model": model, "input": text},
                )
        except httpx.HTTPError as e:
            raise _RetryableEmbeddingError(f"{type(e).__name__}: {e}") from e

        if response.status_code in RETRYABLE_STATUS:
            raise _RetryableEmbeddingError(f"{response.status_code} - {response.text[:200]}")
        if response.status_code != 200:
            raise EmbeddingError(
                f"Embedding request rejected: {response.status_code} - {response.text[:200]}",
                text=text,
                attempts=1,
            )

        try:
            embedding = response.json()["data"][0]["embedding"]
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise _RetryableEmbeddingError(f"Malformed response: {type(e).__name__}: {e}") from e
        if not isinstance(embedding, list):
            raise _RetryableEmbeddingError(f"Malformed response: embedding is {type(embedding).__name__}")
        return embedding

    async def _embed(self, text: str, model: str, dimensions: int) -> List[float]:
        if not text or not isinstance(text, str):
            raise EmbeddingError("Cannot embed empty text", text=text)

        # Null bytes are rejected by the API
        cleaned = text.replace("\x00", "").strip()[:MAX_INPUT_CHARS]
        if not cleaned:
            raise EmbeddingError("Cannot embed empty text", text=text)

        last_error = None
        max_attempts = self.retry_attempts + 1
        for attempt in range(1, max_attempts + 1):
            try:
                embedding = await self._request(cleaned, model)
            except _RetryableEmbeddingError as e:
                last_error = e
                print(f"[Embeddings] model={model} attempt={attempt}/{max_attempts} error={str(e)[:200]}")
                if attempt < max_attempts and self.retry_delay > 0:
                    await asyncio.sleep(self.retry_delay * attempt)
                continue

            if len(embedding) != dimensions:
                raise EmbeddingError(
                    f"{model} returned {len(embedding)} dimensions, expected {dimensions}",
                    text=text,
                    attempts=attempt,
                )
            return embedding

        raise EmbeddingRetryExhaustedError(
            f"Failed to generate {model} embedding after {max_attempts} attempts: {last_error}",
            text=text,
            attempts=max_attempts,
        )

    async def embed_small(self, text: str) -> List[float]:
        return await self._embed(text, SMALL_MODEL, SMALL_DIMENSIONS)

    async def embed_large(self, text: str) -> List[float]:
        return await self._embed(text, LARGE_MODEL, LARGE_DIMENSIONS)

    async def embed_message(self, text: str) -> EmbeddingPair:
        """Both forms for one text, generated concurrently. Returns (small, large)."""
        small, large = await asyncio.gather(
            self.embed_small(text), self.embed_large(text), return_exceptions=True
        )
        # Both calls have finished; surface the first failure
        for result in (small, large):
            if isinstance(result, BaseException):
                raise result
        return small, large

    async def embed_batch(
        self, texts: Sequence[str], return_exceptions: bool = False
    ) -> List[Union[EmbeddingPair, EmbeddingError]]:
        """
        Embed many texts, preserving input order.

        Texts are processed in groups of at most batch_size; groups run one
        after another, texts within a group run concurrently.

        Args:
            texts: Texts to embed
            return_exceptions: Put the EmbeddingError in place of a failed
                item instead of raising it

        Raises:
            EmbeddingError: First failed text (input order) when
                return_exceptions is False
        """
        results: List[Union[EmbeddingPair, EmbeddingError]] = []
        total_groups = (len(texts) + self.batch_size - 1) // self.batch_size

        for start in range(0, len(texts), self.batch_size):
            group = texts[start:start + self.batch_size]
            print(f"[Embeddings] step=embed_batch group={start // self.batch_size + 1}/{total_groups} size={len(group)}")
            group_results = await asyncio.gather(
                *(self.embed_message(text) for text in group),
                return_exceptions=True,
            )

            for result in group_results:
                if isinstance(result, EmbeddingError):
                    if not return_exceptions:
                        raise result
                elif isinstance(result, BaseException):
                    raise result
                results.append(result)

        return results
