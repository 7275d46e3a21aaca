"""Conversational agent collaborator.

The real agent (dialogue semantics and message generation) lives outside this
package and is loaded through ``Settings.agent_factory``. ``TemplateAgent`` is
the built-in stand-in: it opens each session with a fixed opener and records
it as the conversation's checkpoint.
"""

from typing import Protocol

from buddy.core.logging import get_logger
from buddy.delivery.checkpoints import ConversationCheckpointStore
from buddy.schemas.subscriber import Subscriber

logger = get_logger(__name__)

DEFAULT_OPENER = "Good to see you again! What's been on your mind today?"


class Agent(Protocol):
    """Protocol for the agent that owns conversation content."""

    async def initiate_conversation(self, subscriber: Subscriber, prompt: str, seed: str) -> str:
        """Start a session and return the opening message text."""
        ...

    async def clear_conversation(self, subscriber_id: str) -> None: ...

    async def currently_in_active_conversation(self, subscriber_id: str) -> bool: ...


class TemplateAgent:
    """Agent that opens every session with the same configured text."""

    def __init__(
        self,
        checkpoints: ConversationCheckpointStore,
        opener: str = DEFAULT_OPENER,
    ) -> None:
        self._checkpoints = checkpoints
        self._opener = opener

    async def initiate_conversation(self, subscriber: Subscriber, prompt: str, seed: str) -> str:
        messages = [{"role": "system", "content": prompt}]
        if seed:
            messages.append({"role": "user", "content": seed})
        messages.append({"role": "assistant", "content": self._opener})

        await self._checkpoints.put(subscriber.id, {"messages": messages})
        logger.bind(subscriber_id=subscriber.id).debug("template_conversation_initiated")
        return self._opener

    async def clear_conversation(self, subscriber_id: str) -> None:
        await self._checkpoints.clear_history(subscriber_id)

    async def currently_in_active_conversation(self, subscriber_id: str) -> bool:
        return await self._checkpoints.get(subscriber_id) is not None
