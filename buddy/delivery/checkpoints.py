"""Conversation checkpoint persistence on Redis.

One checkpoint per subscriber under ``checkpoint:<thread_id>``, stored as a
JSON document ``{"checkpoint": state, "metadata": ..., "parent_ref": ...}``
with a single retention TTL. Intermediate step output is buffered separately
under ``partial-write:<thread_id>:<task_id>`` with a shorter TTL.

Writes stamp ``metadata.conversationStartedAt`` and each message's
``timestamp`` only when they are missing, so re-writing a checkpoint never
changes timestamps already recorded.
"""

import copy
import json
from typing import Any

import redis.asyncio as redis
from pydantic import ValidationError

from buddy.config import CheckpointConfig
from buddy.core.datetime_utils import to_iso, utc_now
from buddy.core.logging import get_logger
from buddy.schemas.checkpoint import CheckpointTuple, StoredCheckpoint

logger = get_logger(__name__)

CHECKPOINT_PREFIX = "checkpoint"
PARTIAL_WRITE_PREFIX = "partial-write"
STARTED_AT_FIELD = "conversationStartedAt"
SCAN_BATCH = 500


class ConversationCheckpointStore:
    """Persists and retrieves serialized conversation state per subscriber."""

    def __init__(self, redis_client: redis.Redis, config: CheckpointConfig) -> None:
        self._redis = redis_client
        self._retention_seconds = config.retention_seconds
        self._partial_write_ttl_seconds = config.partial_write_ttl_seconds

    @staticmethod
    def key(thread_id: str) -> str:
        return f"{CHECKPOINT_PREFIX}:{thread_id}"

    @staticmethod
    def partial_write_key(thread_id: str, task_id: str) -> str:
        return f"{PARTIAL_WRITE_PREFIX}:{thread_id}:{task_id}"

    async def get(self, thread_id: str) -> CheckpointTuple | None:
        """Return the stored checkpoint, or None if absent or unreadable."""
        raw = await self._redis.get(self.key(thread_id))
        if raw is None:
            return None

        try:
            stored = StoredCheckpoint.model_validate_json(raw)
        except ValidationError as e:
            logger.bind(thread_id=thread_id, error=str(e)).warning("checkpoint_malformed")
            return None

        return CheckpointTuple(
            thread_id=thread_id,
            state=stored.checkpoint,
            metadata=stored.metadata,
            parent_ref=stored.parent_ref,
        )

    async def put(
        self,
        thread_id: str,
        state: dict[str, Any],
        metadata: dict[str, Any] | None = None,
        parent_ref: str | None = None,
    ) -> CheckpointTuple:
        """Persist a checkpoint, stamping missing timestamps with the current instant.

        The caller's ``state`` and ``metadata`` are not mutated.

        Raises:
            ValueError: If thread_id is empty
        """
        if not thread_id:
            raise ValueError("thread_id is required to save a checkpoint")

        stamp = to_iso(utc_now())
        state = copy.deepcopy(state)
        metadata = copy.deepcopy(metadata) if metadata else {}

        if not metadata.get(STARTED_AT_FIELD):
            metadata[STARTED_AT_FIELD] = stamp

        messages = state.get("messages")
        if isinstance(messages, list):
            state["messages"] = [_stamp_message(message, stamp) for message in messages]

        document = StoredCheckpoint(checkpoint=state, metadata=metadata, parent_ref=parent_ref)
        await self._redis.set(
            self.key(thread_id),
            document.model_dump_json(),
            ex=self._retention_seconds,
        )

        logger.bind(thread_id=thread_id).debug("checkpoint_saved")
        return CheckpointTuple(
            thread_id=thread_id, state=state, metadata=metadata, parent_ref=parent_ref
        )

    async def delete(self, thread_id: str) -> None:
        """Delete the checkpoint. Deleting an absent checkpoint is a no-op."""
        await self._redis.delete(self.key(thread_id))
        logger.bind(thread_id=thread_id).debug("checkpoint_deleted")

    async def reset(self, thread_id: str) -> None:
        """Drop the checkpoint and any buffered partial writes before a new session."""
        keys = [self.key(thread_id)]
        async for key in self._redis.scan_iter(
            match=f"{PARTIAL_WRITE_PREFIX}:{thread_id}:*", count=SCAN_BATCH
        ):
            keys.append(key)
        await self._redis.delete(*keys)
        logger.bind(thread_id=thread_id, keys=len(keys)).debug("checkpoint_reset")

    async def delete_all(self) -> int:
        """Administrative bulk clear of every checkpoint and partial write.

        Returns:
            Number of keys removed
        """
        removed = 0
        for prefix in (CHECKPOINT_PREFIX, PARTIAL_WRITE_PREFIX):
            batch: list[str] = []
            async for key in self._redis.scan_iter(match=f"{prefix}:*", count=SCAN_BATCH):
                batch.append(key)
                if len(batch) >= SCAN_BATCH:
                    removed += await self._redis.delete(*batch)
                    batch = []
            if batch:
                removed += await self._redis.delete(*batch)

        logger.bind(count=removed).info("all_checkpoints_deleted")
        return removed

    async def append_partial_write(self, thread_id: str, task_id: str, payload: Any) -> None:
        """Buffer an intermediate step's output under a short TTL."""
        await self._redis.set(
            self.partial_write_key(thread_id, task_id),
            json.dumps(payload),
            ex=self._partial_write_ttl_seconds,
        )
        logger.bind(thread_id=thread_id, task_id=task_id).debug("partial_write_saved")

    async def list_partial_writes(self, thread_id: str) -> dict[str, Any]:
        """Buffered partial writes for a thread, keyed by task id."""
        prefix = f"{PARTIAL_WRITE_PREFIX}:{thread_id}:"
        writes: dict[str, Any] = {}
        async for key in self._redis.scan_iter(match=f"{prefix}*", count=SCAN_BATCH):
            raw = await self._redis.get(key)
            if raw is None:
                continue
            try:
                writes[key.removeprefix(prefix)] = json.loads(raw)
            except json.JSONDecodeError as e:
                logger.bind(key=key, error=str(e)).warning("partial_write_malformed")
        return writes

    async def clear_history(self, thread_id: str) -> bool:
        """Empty the message list while keeping metadata and parent reference.

        Returns:
            True if a checkpoint was found and rewritten
        """
        existing = await self.get(thread_id)
        if existing is None:
            logger.bind(thread_id=thread_id).debug("no_checkpoint_to_clear")
            return False

        state = dict(existing.state)
        state["messages"] = []
        await self.put(thread_id, state, existing.metadata, existing.parent_ref)
        logger.bind(thread_id=thread_id).info("conversation_history_cleared")
        return True


def _stamp_message(message: Any, stamp: str) -> Any:
    if isinstance(message, dict) and not message.get("timestamp"):
        return {**message, "timestamp": stamp}
    return message
