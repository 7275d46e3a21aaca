"""Collaborators consumed by the delivery core, with thin concrete adapters."""

from buddy.services.agent import Agent, TemplateAgent
from buddy.services.digest import DigestCreator, NullDigestCreator
from buddy.services.messaging import MessagingGateway, SendResult, WhatsAppGateway
from buddy.services.subscribers import RedisSubscriberRepository, SubscriberRepository

__all__ = [
    "Agent",
    "DigestCreator",
    "MessagingGateway",
    "NullDigestCreator",
    "RedisSubscriberRepository",
    "SendResult",
    "SubscriberRepository",
    "TemplateAgent",
    "WhatsAppGateway",
]
