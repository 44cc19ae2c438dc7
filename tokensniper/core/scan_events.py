"""
Scan Event Bus
In-process publish/subscribe for scan and trade notifications
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from tokensniper.core.logger import get_logger
from tokensniper.core.models import TokenScanResult


logger = get_logger(__name__)


class EventTopic(Enum):
    """Topics carried by the bus"""
    SCAN_COMPLETE = "scan-complete"
    NEW_TOKEN = "new-token"
    TRADE_COMPLETE = "trade-complete"


@dataclass(frozen=True)
class ScanCompleteEvent:
    """Payload of scan-complete: every classified token of one cycle"""
    generation: int
    results: Tuple[TokenScanResult, ...]
    new_mints: Tuple[str, ...]
    completed_at: float


@dataclass(frozen=True)
class NewTokenEvent:
    """Payload of new-token: one mint seen for the first time this session"""
    generation: int
    token: TokenScanResult


Handler = Callable[[Any], None]


class Subscription:
    """
    Handle returned by subscribe()

    Calling it (or unsubscribe()) removes exactly this registration.
    Repeated calls are no-ops.
    """

    def __init__(self, bus: "ScanEventBus", topic: EventTopic, handler: Handler):
        self._bus = bus
        self.topic = topic
        self.handler = handler
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def unsubscribe(self) -> None:
        if not self._active:
            return
        self._active = False
        self._bus._remove(self)

    def __call__(self) -> None:
        self.unsubscribe()


class ScanEventBus:
    """
    Synchronous single-process event bus

    Features:
    - Typed topics (EventTopic)
    - Handlers per topic run in subscription order
    - A failing handler is logged and does not stop later handlers
    - Subscriptions are explicit tokens, so listeners never leak across restarts

    Usage:
        bus = ScanEventBus()
        sub = bus.subscribe(EventTopic.SCAN_COMPLETE, on_scan_complete)
        bus.publish(EventTopic.SCAN_COMPLETE, event)
        sub()  # unsubscribe
    """

    def __init__(self):
        self._subscriptions: Dict[EventTopic, List[Subscription]] = {topic: [] for topic in EventTopic}

    def subscribe(self, topic: EventTopic, handler: Handler) -> Subscription:
        """
        Register a handler for a topic

        Args:
            topic: Event topic
            handler: Callable receiving the event payload

        Returns:
            Subscription token; call it to unsubscribe
        """
        if not isinstance(topic, EventTopic):
            raise TypeError(f"Unknown event topic: {topic!r}")

        subscription = Subscription(self, topic, handler)
        self._subscriptions[topic].append(subscription)

        logger.debug("event_handler_subscribed", topic=topic.value, handlers=len(self._subscriptions[topic]))
        return subscription

    def publish(self, topic: EventTopic, payload: Any = None) -> int:
        """
        Deliver a payload to every handler of a topic

        Returns:
            Number of handlers invoked
        """
        # Snapshot so handlers may (un)subscribe while we iterate
        subscribers = list(self._subscriptions[topic])
        delivered = 0

        for subscription in subscribers:
            if not subscription.active:
                continue
            try:
                subscription.handler(payload)
                delivered += 1
            except Exception as e:
                logger.error(
                    "event_handler_failed",
                    topic=topic.value,
                    error=str(e),
                    exc_info=True
                )

        return delivered

    def subscriber_count(self, topic: Optional[EventTopic] = None) -> int:
        if topic is not None:
            return len(self._subscriptions[topic])
        return sum(len(subs) for subs in self._subscriptions.values())

    def clear(self) -> None:
        """Drop every registration"""
        for subs in self._subscriptions.values():
            for subscription in list(subs):
                subscription.unsubscribe()

    def _remove(self, subscription: Subscription) -> None:
        subs = self._subscriptions[subscription.topic]
        for i, existing in enumerate(subs):
            if existing is subscription:
                del subs[i]
                logger.debug("event_handler_unsubscribed", topic=subscription.topic.value)
                return
