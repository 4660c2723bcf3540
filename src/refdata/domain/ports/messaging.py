"""Message bus port used by the outbox publisher."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Mapping


class MessageDeliveryError(RuntimeError):
    """Raised by bus adapters when the broker did not acknowledge a message."""


@runtime_checkable
class MessageBus(Protocol):
    def send(self, topic: str, *, key: str, value: Mapping[str, object]) -> None:
        """Deliver one message and return only after the broker acknowledged it."""
        ...
