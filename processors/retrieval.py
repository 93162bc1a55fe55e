"""
Retrieval & ranking for persona context.

Two-stage filtering: the vector query uses the caller's loose threshold and
an oversized limit (wide recall), then boosting, a stricter floor and
score-band deduplication narrow the pool to a small context window.
"""
import re
from typing import FrozenSet, Iterable, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict

from models import CandidateMatch, Message, RankedContextItem

# Self-referential and family words; messages using them tend to carry
# biographical facts worth keeping the persona consistent with.
DEFAULT_BOOST_KEYWORDS = frozenset({
    "i", "me", "my", "mine", "myself",
    "family", "baby", "partner", "wife", "husband",
    "son", "daughter", "kid", "kids", "mom", "dad",
    "brother", "sister",
})

DEFAULT_MATCH_THRESHOLD = 0.5


class RankingConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    candidate_limit: int = 30
    final_threshold: float = 0.7
    boost: float = 0.1
    boost_keywords: FrozenSet[str] = DEFAULT_BOOST_KEYWORDS
    dedupe_ratio: float = 0.95
    context_size: int = 15


def has_boost_keyword(content: str, keywords: Iterable[str]) -> bool:
    """Whole-word, case-insensitive match against the keyword set."""
    words = set(re.findall(r"\b\w+\b", content.lower()))
    return not words.isdisjoint(keywords)


def rank_candidates(
    candidates: Iterable[Tuple[CandidateMatch, Message]],
    config: RankingConfig,
    context_size: Optional[int] = None,
) -> List[RankedContextItem]:
    """
    Boost, filter, deduplicate and truncate joined candidates.

    Pure function: the same candidates and config always give the same
    ordered output.

    Args:
        candidates: (match, message) pairs in vector-store order
        config: Ranking constants
        context_size: Overrides config.context_size

    Returns:
        Ranked items, highest adjusted similarity first
    """
    limit = config.context_size if context_size is None else context_size

    boosted = []
    for match, message in candidates:
        is_boosted = has_boost_keyword(message.content, config.boost_keywords)
        score = match.similarity + config.boost if is_boosted else match.similarity
        if score < config.final_threshold:
            continue
        boosted.append(RankedContextItem(
            message=message,
            similarity=round(score, 6),
            raw_similarity=match.similarity,
            boosted=is_boosted,
        ))

    # Stable sort: equal scores keep vector-store order
    boosted.sort(key=lambda item: item.similarity, reverse=True)

    accepted: List[RankedContextItem] = []
    seen_ids = set()
    for item in boosted:
        if item.message.id in seen_ids:
            continue
        if any(item.similarity >= config.dedupe_ratio * kept.similarity for kept in accepted):
            continue
        accepted.append(item)
        seen_ids.add(item.message.id)
        if len(accepted) >= limit:
            break

    return accepted


class MessageRetriever:
    """
    Args:
        embedding_client: Provides embed_small for queries
        vector_store: Provides query
        message_store: Provides get_messages_by_id for the content join
        embedding_cache: Optional TTLCache of query text -> small embedding
        config: Ranking constants
    """

    def __init__(
        self,
        embedding_client,
        vector_store,
        message_store,
        embedding_cache=None,
        config: Optional[RankingConfig] = None,
    ):
        self.embedding_client = embedding_client
        self.vector_store = vector_store
        self.message_store = message_store
        self.embedding_cache = embedding_cache
        self.config = config or RankingConfig()

    async def embed_query(self, query: str) -> List[float]:
        if self.embedding_cache is None:
            return await self.embedding_client.embed_small(query)
        return await self.embedding_cache.get_or_load(
            query, lambda: self.embedding_client.embed_small(query)
        )

    async def retrieve(
        self,
        query: str,
        author_id: Optional[str] = None,
        match_threshold: float = DEFAULT_MATCH_THRESHOLD,
        context_size: Optional[int] = None,
    ) -> List[RankedContextItem]:
        """
        Most relevant historical messages for `query`.

        Args:
            query: Incoming message text
            author_id: Restrict to one author's messages
            match_threshold: Loose threshold for the candidate pool
            context_size: Number of items to return (default from config)

        Returns:
            Ranked context, possibly empty

        Raises:
            EmbeddingError: The query could not be embedded
            VectorStoreError / MessageStoreError: A store call failed
        """
        size = self.config.context_size if context_size is None else context_size
        query_embedding = await self.embed_query(query)

        candidates = await self.vector_store.query(
            query_embedding,
            threshold=match_threshold,
            limit=max(self.config.candidate_limit, size * 2),
            owner_id=author_id,
        )
        if not candidates:
            print(f"[Retrieval] author_id={author_id} threshold={match_threshold} candidates=0")
            return []

        joined = await self._join(candidates)
        ranked = rank_candidates(joined, self.config, context_size=size)

        print(
            f"[Retrieval] author_id={author_id} candidates={len(candidates)} joined={len(joined)} "
            f"ranked={len(ranked)} boosted={sum(1 for item in ranked if item.boosted)}"
        )
        return ranked

    async def _join(self, candidates: List[CandidateMatch]) -> List[Tuple[CandidateMatch, Message]]:
        messages = await self.message_store.get_messages_by_id([c.message_id for c in candidates])
        by_id = {message.id: message for message in messages}

        joined = []
        for candidate in candidates:
            message = by_id.get(candidate.message_id)
            if message is None:
                print(f"[Retrieval] WARN: message_id={candidate.message_id} has an embedding but no message row")
                continue
            joined.append((candidate, message))
        return joined
