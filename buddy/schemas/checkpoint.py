from typing import Any

from pydantic import BaseModel, Field


class StoredCheckpoint(BaseModel):
    """JSON document stored under ``checkpoint:<thread_id>``."""

    checkpoint: dict[str, Any]
    metadata: dict[str, Any] = Field(default_factory=dict)
    parent_ref: str | None = None


class CheckpointTuple(BaseModel):
    """A retrieved conversation checkpoint."""

    thread_id: str
    state: dict[str, Any]
    metadata: dict[str, Any]
    parent_ref: str | None = None

    @property
    def messages(self) -> list[dict[str, Any]]:
        messages = self.state.get("messages")
        return messages if isinstance(messages, list) else []
