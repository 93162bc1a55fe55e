"""
Incremental message -> embedding sync.

Pulls messages created after the watermark in batches, skips the ones that
already have an embedding row, embeds the rest and stores them with one bulk
insert per batch. The watermark only moves after a batch is stored.

One job instance must be the only writer for its watermark; two instances
syncing against the same state store will duplicate work.
"""
from collections import defaultdict
from datetime import datetime
from typing import Dict, List, Optional

from errors import EmbeddingError, EmbeddingRetryExhaustedError, SyncBatchError, VectorStoreError
from models import EPOCH, EmbeddingRow, Message, SyncResult, SyncState, as_utc

DEFAULT_BATCH_SIZE = 100
DEFAULT_MAX_MESSAGE_FAILURES = 3


class BatchOutcome:
    def __init__(self):
        self.advance_to: Optional[datetime] = None
        self.rows_inserted = 0
        self.skipped_ids: List[str] = []
        self.abandoned_ids: List[str] = []
        self.halted = False


class MessageSyncJob:
    """
    Args:
        message_store: Source of messages (get_messages_after)
        vector_store: Target of embedding rows (existing_ids, insert, transaction)
        embedding_client: Produces (small, large) vectors per text
        batch_size: Messages fetched per batch
        max_message_failures: Runs in which the service may reject a
            message's content before the watermark is allowed past it.
            Exhausted retries (service outage) never count.
        state: Initial watermark; defaults to the epoch (sync everything)
    """

    def __init__(
        self,
        message_store,
        vector_store,
        embedding_client,
        batch_size: int = DEFAULT_BATCH_SIZE,
        max_message_failures: int = DEFAULT_MAX_MESSAGE_FAILURES,
        state: Optional[SyncState] = None,
    ):
        self.message_store = message_store
        self.vector_store = vector_store
        self.embedding_client = embedding_client
        self.batch_size = batch_size
        self.max_message_failures = max_message_failures
        self.last_synced_at = as_utc(state.last_synced_at) if state else EPOCH
        self.phase = "idle"
        self._failure_counts: Dict[str, int] = defaultdict(int)

    def get_sync_state(self) -> SyncState:
        return SyncState(last_synced_at=self.last_synced_at)

    def set_sync_state(self, state: SyncState) -> None:
        """Restore a checkpoint. Unlike sync(), this may move the watermark back."""
        self.last_synced_at = as_utc(state.last_synced_at)

    def _advance(self, timestamp: datetime) -> None:
        self.last_synced_at = max(self.last_synced_at, as_utc(timestamp))

    async def sync(self) -> SyncResult:
        """
        Sync every pending message.

        Returns:
            SyncResult with totals for this invocation (all zero when nothing
            was pending)

        Raises:
            SyncBatchError: A batch could not be stored; the watermark stays
                at the end of the last stored batch
            MessageStoreError: Messages could not be fetched
        """
        result = SyncResult()
        batch_number = 0

        try:
            while True:
                self.phase = "fetching"
                print(f"[Sync] step=fetch after={self.last_synced_at.isoformat()} limit={self.batch_size}")
                messages = await self.message_store.get_messages_after(self.last_synced_at, self.batch_size)
                if not messages:
                    break

                batch_number += 1
                outcome = await self._process_batch(messages, batch_number)

                self.phase = "advancing"
                if outcome.advance_to is not None:
                    self._advance(outcome.advance_to)

                result.messages_processed += len(messages)
                result.rows_inserted += outcome.rows_inserted
                result.total_batches += 1
                result.last_batch_size = len(messages)
                result.skipped_ids.extend(outcome.skipped_ids)
                result.abandoned_ids.extend(outcome.abandoned_ids)

                print(
                    f"[Sync] batch={batch_number} status=complete fetched={len(messages)} "
                    f"inserted={outcome.rows_inserted} skipped={len(outcome.skipped_ids)} "
                    f"watermark={self.last_synced_at.isoformat()} total={result.messages_processed}"
                )

                if outcome.halted:
                    print(f"[Sync] batch={batch_number} halted at skipped message, retrying next run")
                    break
                if len(messages) < self.batch_size:
                    break
        except Exception:
            self.phase = "failed"
            raise

        self.phase = "done"
        return result

    async def _process_batch(self, messages: List[Message], batch_number: int) -> BatchOutcome:
        outcome = BatchOutcome()
        message_ids = [m.id for m in messages]
        errors: Dict[str, EmbeddingError] = {}

        try:
            self.phase = "deduping"
            existing = await self.vector_store.existing_ids(message_ids)
            pending = [m for m in messages if m.id not in existing]
            if existing:
                print(f"[Sync] batch={batch_number} step=dedupe already_embedded={len(existing)} new={len(pending)}")

            self.phase = "embedding"
            rows: List[EmbeddingRow] = []
            if pending:
                embeddings = await self.embedding_client.embed_batch(
                    [m.content for m in pending], return_exceptions=True
                )
                for message, embedding in zip(pending, embeddings):
                    if isinstance(embedding, EmbeddingError):
                        errors[message.id] = embedding
                        outcome.skipped_ids.append(message.id)
                        print(
                            f"[Sync] batch={batch_number} step=embed message_id={message.id} "
                            f"status=skipped error={embedding}"
                        )
                        continue
                    small, large = embedding
                    rows.append(EmbeddingRow(
                        message_id=message.id,
                        author_id=message.author_id,
                        small_vector=small,
                        large_vector=large,
                        created_at=message.created_at,
                    ))

            if rows:
                self.phase = "storing"
                async with self.vector_store.transaction():
                    await self.vector_store.insert(rows)
                outcome.rows_inserted = len(rows)
                for row in rows:
                    self._failure_counts.pop(row.message_id, None)
        except VectorStoreError as e:
            print(f"[Sync] batch={batch_number} step={self.phase} status=failed error={e}")
            raise SyncBatchError(f"Failed to store batch {batch_number}: {e}", message_ids) from e

        # The watermark may only pass messages that are embedded, or whose
        # content has been rejected often enough to be given up on. Only the
        # message the watermark is stuck on accrues a failure.
        for message in messages:
            error = errors.get(message.id)
            if error is not None:
                if not self._should_abandon(message.id, error, batch_number):
                    outcome.halted = True
                    break
                outcome.abandoned_ids.append(message.id)
            outcome.advance_to = message.created_at

        return outcome

    def _should_abandon(self, message_id: str, error: EmbeddingError, batch_number: int) -> bool:
        if isinstance(error, EmbeddingRetryExhaustedError):
            # Service outage, not bad content: wait for it to recover
            return False

        self._failure_counts[message_id] += 1
        failures = self._failure_counts[message_id]
        if failures < self.max_message_failures:
            return False

        print(f"[Sync] batch={batch_number} message_id={message_id} status=abandoned failures={failures}")
        self._failure_counts.pop(message_id, None)
        return True
