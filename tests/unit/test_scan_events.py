"""
Unit tests for the scan event bus
"""

import pytest

from tokensniper.core.scan_events import EventTopic, ScanEventBus


def test_handlers_run_in_subscription_order(bus):
    calls = []
    bus.subscribe(EventTopic.SCAN_COMPLETE, lambda p: calls.append(("first", p)))
    bus.subscribe(EventTopic.SCAN_COMPLETE, lambda p: calls.append(("second", p)))

    delivered = bus.publish(EventTopic.SCAN_COMPLETE, 7)

    assert delivered == 2
    assert calls == [("first", 7), ("second", 7)]


def test_topics_are_isolated(bus):
    calls = []
    bus.subscribe(EventTopic.NEW_TOKEN, calls.append)

    bus.publish(EventTopic.SCAN_COMPLETE, "scan")

    assert calls == []


def test_failing_handler_does_not_stop_later_handlers(bus):
    calls = []

    def broken(_):
        raise RuntimeError("boom")

    bus.subscribe(EventTopic.SCAN_COMPLETE, broken)
    bus.subscribe(EventTopic.SCAN_COMPLETE, calls.append)

    delivered = bus.publish(EventTopic.SCAN_COMPLETE, "payload")

    assert calls == ["payload"]
    assert delivered == 1


def test_unsubscribe_is_idempotent(bus):
    calls = []
    subscription = bus.subscribe(EventTopic.NEW_TOKEN, calls.append)

    subscription()
    subscription()
    subscription.unsubscribe()

    bus.publish(EventTopic.NEW_TOKEN, "x")
    assert calls == []
    assert subscription.active is False
    assert bus.subscriber_count(EventTopic.NEW_TOKEN) == 0


def test_unsubscribe_removes_exactly_one_registration(bus):
    calls = []
    first = bus.subscribe(EventTopic.NEW_TOKEN, calls.append)
    bus.subscribe(EventTopic.NEW_TOKEN, calls.append)

    first()
    bus.publish(EventTopic.NEW_TOKEN, "x")

    assert calls == ["x"]
    assert bus.subscriber_count(EventTopic.NEW_TOKEN) == 1


def test_unsubscribe_during_publish(bus):
    calls = []
    subscriptions = []

    def one_shot(payload):
        calls.append(("one_shot", payload))
        subscriptions[0]()

    subscriptions.append(bus.subscribe(EventTopic.TRADE_COMPLETE, one_shot))
    bus.subscribe(EventTopic.TRADE_COMPLETE, lambda p: calls.append(("steady", p)))

    bus.publish(EventTopic.TRADE_COMPLETE, 1)
    bus.publish(EventTopic.TRADE_COMPLETE, 2)

    assert calls == [("one_shot", 1), ("steady", 1), ("steady", 2)]


def test_clear_drops_everything(bus):
    subscription = bus.subscribe(EventTopic.SCAN_COMPLETE, lambda p: None)
    bus.subscribe(EventTopic.NEW_TOKEN, lambda p: None)

    bus.clear()

    assert bus.subscriber_count() == 0
    assert subscription.active is False


def test_unknown_topic_rejected():
    bus = ScanEventBus()
    with pytest.raises(TypeError):
        bus.subscribe("scan-complete", lambda p: None)


def test_topic_names():
    assert EventTopic.SCAN_COMPLETE.value == "scan-complete"
    assert EventTopic.NEW_TOKEN.value == "new-token"
    assert EventTopic.TRADE_COMPLETE.value == "trade-complete"
