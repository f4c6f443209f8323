"""
Data plane models shared by the transport, the consumer pool and the
delivery harness.
"""

from __future__ import annotations

import random
import string
from dataclasses import dataclass, field
from typing import Any, Dict, List, NamedTuple, Optional, Union

Payload = Union[str, bytes]

_ALPHANUMERIC = string.ascii_letters + string.digits


class ConditionOutcome(NamedTuple):
    """Result of one poll attempt: whether the condition holds and what was seen"""
    satisfied: bool
    last_observation: Any = None


@dataclass(frozen=True)
class Message:
    """A message to produce; immutable once created"""
    value: Payload
    key: Optional[Payload] = None
    partition: Optional[int] = None


@dataclass(frozen=True)
class DeliveryRecord:
    """
    A record acknowledged by the broker (producer side) or observed by a
    consumer. ``consumer_id`` identifies the consumer instance that observed
    it and is ``None`` for producer acknowledgements.
    """
    topic: str
    value: Optional[Payload]
    key: Optional[Payload] = None
    partition: Optional[int] = None
    offset: Optional[int] = None
    consumer_id: Optional[str] = None


@dataclass
class DeliveryReport:
    """Outcome of a successful delivery verification run"""
    topic: str
    sent_count: int
    records: List[DeliveryRecord]
    elapsed: float
    records_per_consumer: Dict[str, int] = field(default_factory=dict)

    @property
    def received_count(self) -> int:
        return len(self.records)


def generate_random_messages(
    message_count: int,
    min_size: int,
    max_size: int,
    rng: Optional[random.Random] = None
) -> List[str]:
    """
    Generate random alphanumeric message bodies

    Args:
        message_count: Number of messages
        min_size: Minimum length (inclusive)
        max_size: Maximum length (inclusive)
        rng: Random source, ``random`` module state when omitted

    Returns:
        List of message bodies with lengths uniform in [min_size, max_size]
    """
    if message_count < 0:
        raise ValueError("message_count must not be negative")
    if min_size < 0 or min_size > max_size:
        raise ValueError(f"invalid message size range [{min_size}, {max_size}]")

    rng = rng or random.Random()
    return [
        "".join(rng.choices(_ALPHANUMERIC, k=rng.randint(min_size, max_size)))
        for _ in range(message_count)
    ]
