"""Supabase REST adapter for the message store (users and messages tables)."""
from datetime import datetime
from typing import List, Optional

import httpx

from config import ConnectionDescriptor
from errors import MessageStoreError
from models import Message, User


class MessageStore:
    """
    Read-only access to the "default" Supabase project.

    Messages are append-only there; this service never writes to it.
    """

    def __init__(self, descriptor: ConnectionDescriptor, timeout: float = 30.0):
        self.descriptor = descriptor
        self.timeout = timeout

    async def _select(self, table: str, params: dict, operation: str) -> List[dict]:
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.get(
                    f"{self.descriptor.url}/rest/v1/{table}",
                    params=params,
                    headers=self.descriptor.headers,
                )
        except httpx.HTTPError as e:
            print(f"[MessageStore] operation={operation} error={e!r}")
            raise MessageStoreError(f"Failed to {operation}: {e}", operation=operation) from e

        if response.status_code != 200:
            print(f"[MessageStore] operation={operation} status={response.status_code} body={response.text[:200]}")
            raise MessageStoreError(
                f"Failed to {operation}: {response.status_code}",
                operation=operation,
                status_code=response.status_code,
            )

        return response.json()

    async def get_messages_after(self, timestamp: datetime, limit: int = 100) -> List[Message]:
        """
        Messages created strictly after `timestamp`, oldest first.

        Args:
            timestamp: Exclusive lower bound on created_at
            limit: Maximum number of rows

        Returns:
            Messages ascending by created_at
        """
        rows = await self._select(
            "messages",
            {
                "select": "*",
                "created_at": f"gt.{timestamp.isoformat()}",
                "order": "created_at.asc",
                "limit": str(limit),
            },
            "fetch messages",
        )
        return [Message.model_validate(row) for row in rows]

    async def get_message_by_id(self, message_id: str) -> Optional[Message]:
        rows = await self._select(
            "messages",
            {"select": "*", "id": f"eq.{message_id}", "limit": "1"},
            "fetch message",
        )
        return Message.model_validate(rows[0]) if rows else None

    async def get_messages_by_id(self, message_ids: List[str]) -> List[Message]:
        """Bulk lookup; ids with no row are simply absent from the result."""
        if not message_ids:
            return []
        rows = await self._select(
            "messages",
            {"select": "*", "id": f"in.({','.join(message_ids)})"},
            "fetch messages by id",
        )
        return [Message.model_validate(row) for row in rows]

    async def get_messages_by_author(self, author_id: str, limit: int = 100) -> List[Message]:
        """Most recent messages written by one user, newest first."""
        rows = await self._select(
            "messages",
            {
                "select": "*",
                "user_id": f"eq.{author_id}",
                "order": "created_at.desc",
                "limit": str(limit),
            },
            "fetch user messages",
        )
        return [Message.model_validate(row) for row in rows]

    async def get_messages_by_author_in_channel(
        self, author_id: str, channel_id: str, limit: int = 50
    ) -> List[Message]:
        rows = await self._select(
            "messages",
            {
                "select": "*",
                "user_id": f"eq.{author_id}",
                "channel_id": f"eq.{channel_id}",
                "order": "created_at.desc",
                "limit": str(limit),
            },
            "fetch user channel messages",
        )
        return [Message.model_validate(row) for row in rows]

    async def get_user_by_name(self, name: str) -> Optional[User]:
        """Newest user registered under `name`, or None."""
        rows = await self._select(
            "users",
            {
                "select": "*",
                "name": f"eq.{name}",
                "order": "created_at.desc",
                "limit": "1",
            },
            "look up user",
        )
        if not rows:
            print(f"[MessageStore] user_lookup name={name!r} found=False")
            return None
        user = User.model_validate(rows[0])
        print(f"[MessageStore] user_lookup name={name!r} found=True user_id={user.id}")
        return user
