"""
Supabase adapter for the "vector" project.

Embedding rows live in a per-environment table in the vector_store schema and
are reached only through RPC functions, so every write is a single statement
on the database side (all-or-nothing).
"""
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator, List, Optional, Sequence, Set

import httpx

from config import ConnectionDescriptor
from errors import VectorStoreError
from models import (
    LARGE_DIMENSIONS,
    SMALL_DIMENSIONS,
    CandidateMatch,
    EmbeddingRow,
    SyncState,
)


class VectorTransaction:
    """Handle for one begin/commit/rollback bracket. Handles never share state."""

    def __init__(self):
        self.id = str(uuid.uuid4())
        self.state = "open"

    def __repr__(self) -> str:
        return f"VectorTransaction(id={self.id!r}, state={self.state!r})"


class VectorStore:
    def __init__(self, descriptor: ConnectionDescriptor, table_name: str, timeout: float = 30.0):
        self.descriptor = descriptor
        self.table_name = table_name
        self.timeout = timeout

    async def _rpc(self, function: str, payload: dict, operation: str):
        headers = {**self.descriptor.headers, "Content-Type": "application/json"}
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    f"{self.descriptor.url}/rest/v1/rpc/{function}",
                    headers=headers,
                    json=payload,
                )
        except httpx.HTTPError as e:
            print(f"[VectorStore] operation={operation} table={self.table_name} error={e!r}")
            raise VectorStoreError(f"Failed to {operation}: {e}", operation=operation) from e

        if response.status_code not in (200, 201, 204):
            print(
                f"[VectorStore] operation={operation} table={self.table_name} "
                f"status={response.status_code} body={response.text[:200]}"
            )
            raise VectorStoreError(
                f"Failed to {operation}: {response.status_code}",
                operation=operation,
                status_code=response.status_code,
            )

        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    async def begin_transaction(self) -> VectorTransaction:
        transaction = VectorTransaction()
        await self._rpc("begin_transaction", {}, "begin transaction")
        return transaction

    async def commit(self, transaction: VectorTransaction) -> None:
        if transaction.state != "open":
            raise VectorStoreError(
                f"Cannot commit transaction {transaction.id} in state {transaction.state}",
                operation="commit transaction",
            )
        await self._rpc("commit_transaction", {}, "commit transaction")
        transaction.state = "committed"

    async def rollback(self, transaction: VectorTransaction) -> None:
        if transaction.state != "open":
            return
        await self._rpc("rollback_transaction", {}, "rollback transaction")
        transaction.state = "rolled_back"

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[VectorTransaction]:
        """Commit when the block finishes, roll back when it raises."""
        transaction = await self.begin_transaction()
        try:
            yield transaction
        except BaseException:
            try:
                await self.rollback(transaction)
            except VectorStoreError as rollback_error:
                # The original error is what the caller needs to see
                print(f"[VectorStore] rollback failed transaction={transaction.id} error={rollback_error}")
            raise
        await self.commit(transaction)

    # ------------------------------------------------------------------
    # Rows
    # ------------------------------------------------------------------

    async def insert(self, rows: Sequence[EmbeddingRow]) -> None:
        """Bulk write. Any rejected row rejects the whole call."""
        if not rows:
            return
        for row in rows:
            _check_dimensions(row.small_vector, SMALL_DIMENSIONS, "Small")
            _check_dimensions(row.large_vector, LARGE_DIMENSIONS, "Large")

        stats = await self._rpc(
            "insert_message_embeddings",
            {
                "embeddings": [row.to_payload() for row in rows],
                "target_table": self.table_name,
            },
            "store embeddings",
        )
        print(f"[VectorStore] step=insert table={self.table_name} rows={len(rows)} stats={stats}")

    async def existing_ids(self, message_ids: Sequence[str]) -> Set[str]:
        """Subset of `message_ids` that already have an embedding row."""
        if not message_ids:
            return set()
        data = await self._rpc(
            "check_message_embeddings",
            {"message_ids": list(message_ids), "target_table": self.table_name},
            "check existing embeddings",
        )
        existing = set()
        for item in data or []:
            # RPC may return bare ids or {"message_id": ...} rows
            existing.add(item["message_id"] if isinstance(item, dict) else item)
        return existing

    async def query(
        self,
        vector: List[float],
        threshold: float,
        limit: int,
        owner_id: Optional[str] = None,
    ) -> List[CandidateMatch]:
        """
        Nearest neighbours by the small (1536-d) embedding.

        Args:
            vector: Query embedding
            threshold: Minimum similarity (0-1)
            limit: Maximum number of matches
            owner_id: Restrict matches to one author

        Returns:
            Matches ordered by descending similarity
        """
        _check_dimensions(vector, SMALL_DIMENSIONS, "Small")
        return await self._match(
            "match_messages_small",
            {
                "query_embedding": vector,
                "match_threshold": threshold,
                "match_count": limit,
                "table_name": self.table_name,
                "filter_user_id": owner_id,
            },
            limit,
        )

    async def _match(self, function: str, payload: dict, limit: int) -> List[CandidateMatch]:
        data = await self._rpc(function, payload, "find similar messages")
        matches = [
            CandidateMatch(
                message_id=row["message_id"],
                author_id=row.get("user_id"),
                similarity=float(row["similarity"]),
            )
            for row in data or []
            if row.get("similarity") is not None and row["similarity"] >= payload["match_threshold"]
        ]
        # sorted() is stable, so equal scores keep the store's order
        matches = sorted(matches, key=lambda m: m.similarity, reverse=True)[:limit]
        print(
            f"[VectorStore] step=query function={function} table={self.table_name} "
            f"threshold={payload['match_threshold']} results={len(matches)}"
        )
        return matches


def _check_dimensions(vector: Sequence[float], expected: int, label: str) -> None:
    if len(vector) != expected:
        raise ValueError(f"{label} embedding must be {expected} dimensions, got {len(vector)}")


class SyncStateStore:
    """Persists the sync watermark in vector_store.message_sync_state."""

    def __init__(self, descriptor: ConnectionDescriptor, job_name: str, timeout: float = 30.0):
        self.descriptor = descriptor
        self.job_name = job_name
        self.timeout = timeout

    async def load(self) -> Optional[SyncState]:
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.get(
                    f"{self.descriptor.url}/rest/v1/message_sync_state",
                    params={"job_name": f"eq.{self.job_name}", "select": "last_synced_at", "limit": "1"},
                    headers=self.descriptor.headers,
                )
        except httpx.HTTPError as e:
            raise VectorStoreError(f"Failed to load sync state: {e}", operation="load sync state") from e

        if response.status_code != 200:
            raise VectorStoreError(
                f"Failed to load sync state: {response.status_code}",
                operation="load sync state",
                status_code=response.status_code,
            )
        rows = response.json()
        return SyncState.model_validate(rows[0]) if rows else None

    async def save(self, state: SyncState) -> None:
        headers = {
            **self.descriptor.headers,
            "Content-Type": "application/json",
            "Prefer": "resolution=merge-duplicates,return=minimal",
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    f"{self.descriptor.url}/rest/v1/message_sync_state",
                    params={"on_conflict": "job_name"},
                    headers=headers,
                    json={
                        "job_name": self.job_name,
                        "last_synced_at": state.last_synced_at.isoformat(),
                        "updated_at": datetime.now(timezone.utc).isoformat(),
                    },
                )
        except httpx.HTTPError as e:
            raise VectorStoreError(f"Failed to save sync state: {e}", operation="save sync state") from e

        if response.status_code not in (200, 201, 204):
            raise VectorStoreError(
                f"Failed to save sync state: {response.status_code}",
                operation="save sync state",
                status_code=response.status_code,
            )
