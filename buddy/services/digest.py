"""Post-conversation digest collaborator."""

from typing import Protocol

from buddy.core.logging import get_logger
from buddy.schemas.subscriber import Subscriber

logger = get_logger(__name__)


class DigestCreator(Protocol):
    """Summarizes the finished conversation before it is reset."""

    async def create_digest(self, subscriber: Subscriber) -> None: ...


class NullDigestCreator:
    """Passthrough used when digests are disabled."""

    async def create_digest(self, subscriber: Subscriber) -> None:
        logger.bind(subscriber_id=subscriber.id).debug("digest_creation_disabled")
