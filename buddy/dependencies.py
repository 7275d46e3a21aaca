"""Explicit construction of the delivery core and its collaborators."""

import importlib
from collections.abc import Callable

import httpx
import redis.asyncio as redis

from buddy.config import AppConfig
from buddy.core.lease import SubscriberLease
from buddy.delivery.checkpoints import ConversationCheckpointStore
from buddy.delivery.scheduler import DeliveryScheduler
from buddy.delivery.throttle import ThrottleCounter
from buddy.services.agent import Agent
from buddy.services.digest import DigestCreator, NullDigestCreator
from buddy.services.messaging import MessagingGateway, WhatsAppGateway
from buddy.services.subscribers import RedisSubscriberRepository

AgentFactory = Callable[[ConversationCheckpointStore], Agent]


def load_agent_factory(path: str) -> AgentFactory:
    """Resolve a ``module:callable`` import path.

    Raises:
        ValueError: If the path is not of the form module:callable
        ImportError / AttributeError: If it cannot be resolved
    """
    module_name, sep, attr = path.partition(":")
    if not sep or not module_name or not attr:
        raise ValueError(f"agent factory must be 'module:callable', got {path!r}")
    module = importlib.import_module(module_name)
    factory: AgentFactory = getattr(module, attr)
    return factory


def build_delivery_scheduler(
    redis_client: redis.Redis,
    http_client: httpx.AsyncClient,
    config: AppConfig,
    *,
    agent: Agent | None = None,
    gateway: MessagingGateway | None = None,
    digest: DigestCreator | None = None,
) -> DeliveryScheduler:
    """Wire the scheduler against one Redis client."""
    settings = config.settings
    checkpoints = ConversationCheckpointStore(redis_client, config.checkpoints)

    if agent is None:
        agent = load_agent_factory(settings.agent_factory)(checkpoints)
    if gateway is None:
        gateway = WhatsAppGateway(
            http_client,
            access_token=settings.whatsapp_access_token,
            phone_number_id=settings.whatsapp_phone_number_id,
            api_base=settings.whatsapp_api_base,
        )

    return DeliveryScheduler(
        subscribers=RedisSubscriberRepository(redis_client),
        throttle=ThrottleCounter(redis_client, config.throttle),
        checkpoints=checkpoints,
        agent=agent,
        gateway=gateway,
        digest=digest or NullDigestCreator(),
        lease=SubscriberLease(redis_client, config.scheduler.lease_ttl_seconds),
        config=config,
    )
