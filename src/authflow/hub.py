"""Notification bus for authentication lifecycle events.

This module provides two core components:

* :class:`HubEvent` -- the payload delivered to listeners: channel, event
  name, optional data, and a human-readable message.
* :class:`Hub` -- a channel-keyed registry of listeners. :meth:`Hub.listen`
  returns a :class:`Subscription` handle; passing that handle to
  :meth:`Hub.remove` (or calling :meth:`Subscription.cancel`) unsubscribes.

Delivery is synchronous and reaches every listener registered on the
channel at dispatch time. A listener that raises is logged and skipped so
one faulty observer cannot starve the others.

All auth events are dispatched on :data:`AUTH_CHANNEL`.
"""

from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)

AUTH_CHANNEL = "auth"

Listener = Callable[["HubEvent"], None]


@dataclass(frozen=True)
class HubEvent:
    """One notification delivered to hub listeners.

    Attributes:
        channel: The channel the event was dispatched on.
        event: Event name, e.g. ``"signIn"`` or ``"tokenRefresh_failure"``.
        data: Event payload (user handle, error, decoded state ...).
        message: Human-readable description.
    """

    channel: str
    event: str
    data: Any = None
    message: str = ""


@dataclass
class Subscription:
    """Handle returned by :meth:`Hub.listen`."""

    channel: str
    listener: Listener
    hub: Optional["Hub"] = field(default=None, repr=False)
    id: int = 0

    def cancel(self) -> None:
        """Stop receiving events. Cancelling twice is a no-op."""
        if self.hub is not None:
            self.hub.remove(self)


class Hub:
    """Channel-based publish/subscribe bus."""

    def __init__(self) -> None:
        self._listeners: dict[str, dict[int, Subscription]] = {}
        self._ids = itertools.count(1)

    def listen(self, channel: str, listener: Listener) -> Subscription:
        """Register *listener* on *channel* and return its subscription handle."""
        subscription = Subscription(
            channel=channel, listener=listener, hub=self, id=next(self._ids)
        )
        self._listeners.setdefault(channel, {})[subscription.id] = subscription
        return subscription

    def remove(self, subscription: Subscription) -> None:
        """Unregister a subscription. Unknown handles are ignored."""
        listeners = self._listeners.get(subscription.channel)
        if listeners is not None:
            listeners.pop(subscription.id, None)

    def dispatch(
        self, channel: str, event: str, data: Any = None, message: str = ""
    ) -> None:
        """Deliver an event to every listener currently registered on *channel*."""
        payload = HubEvent(channel=channel, event=event, data=data, message=message)
        # Snapshot so listeners may unsubscribe while being notified.
        for subscription in list(self._listeners.get(channel, {}).values()):
            try:
                subscription.listener(payload)
            except Exception:
                logger.exception(
                    "Listener for '%s' on channel '%s' failed", event, channel
                )

    def listener_count(self, channel: str) -> int:
        """Return the number of listeners registered on *channel*."""
        return len(self._listeners.get(channel, {}))
