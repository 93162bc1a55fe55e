"""
Chat flow: resolve the mentioned user, retrieve their most relevant messages
and answer as them.
"""
from typing import List, Optional

from pydantic import BaseModel

from errors import EmbeddingError, MessageStoreError, NoMessagesError, UserNotFoundError, VectorStoreError
from models import Message
from processors.retrieval import DEFAULT_MATCH_THRESHOLD

DEFAULT_PERSONA = "TENSAI BOT"
HISTORY_LIMIT = 100


class ChatReply(BaseModel):
    content: str
    username: str
    avatar_url: str = ""


async def respond(
    services,
    message: str,
    mentioned_username: Optional[str] = None,
    match_threshold: float = DEFAULT_MATCH_THRESHOLD,
    channel_id: Optional[str] = None,
) -> ChatReply:
    """
    Produce a reply to `message`.

    Without a mentioned user the default persona echoes the message and no
    store is touched. With a channel, the recent-message fallback prefers
    what the user wrote in that channel.

    Raises:
        UserNotFoundError: No user with that name
        NoMessagesError: The user has never written anything
        GenerationError / GenerationTimeoutError: The reply could not be generated
    """
    if not mentioned_username:
        return ChatReply(content=f"Echo: {message}", username=DEFAULT_PERSONA)

    user = await services.lookup_user(mentioned_username)
    if user is None:
        raise UserNotFoundError(mentioned_username)

    history = await services.message_store.get_messages_by_author(user.id, HISTORY_LIMIT)
    if not history:
        raise NoMessagesError(mentioned_username)

    try:
        context = await services.retriever.retrieve(
            message, author_id=user.id, match_threshold=match_threshold
        )
    except (EmbeddingError, VectorStoreError, MessageStoreError) as e:
        print(f"[Chat] user_id={user.id} step=retrieve status=failed error={e}, using recent messages")
        context = []

    if not context:
        # Recent history still shows how they write, if not what is relevant
        recent = history
        if channel_id:
            recent = await _channel_history(services, user.id, channel_id) or history
        context = recent[:services.retriever.config.context_size]
        print(f"[Chat] user_id={user.id} step=retrieve fallback=recent messages={len(context)}")

    content = await services.generator.generate(message, user.name, context)
    return ChatReply(content=content, username=user.name, avatar_url=user.avatar_url or "")


async def _channel_history(services, user_id: str, channel_id: str) -> List[Message]:
    try:
        return await services.message_store.get_messages_by_author_in_channel(user_id, channel_id, HISTORY_LIMIT)
    except MessageStoreError as e:
        print(f"[Chat] user_id={user_id} channel_id={channel_id} step=channel_history status=failed error={e}")
        return []
