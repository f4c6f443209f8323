from .messaging import (
    ConditionOutcome,
    DeliveryRecord,
    DeliveryReport,
    Message,
    Payload,
    generate_random_messages,
)

__all__ = [
    "ConditionOutcome",
    "DeliveryRecord",
    "DeliveryReport",
    "Message",
    "Payload",
    "generate_random_messages",
]
