from buddy.schemas.checkpoint import CheckpointTuple, StoredCheckpoint
from buddy.schemas.subscriber import DeliveryPreference, PreferenceType, Subscriber

__all__ = [
    "CheckpointTuple",
    "DeliveryPreference",
    "PreferenceType",
    "StoredCheckpoint",
    "Subscriber",
]
