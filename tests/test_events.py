"""Tests for events.py -- publish/subscribe."""

from audiobook_organizer.events import EventBus
from audiobook_organizer.models import LibraryEvent


class TestEventBus:
    def test_delivers_in_subscription_order(self):
        bus = EventBus()
        seen = []
        bus.subscribe(lambda e, p: seen.append(("first", e, p)))
        bus.subscribe(lambda e, p: seen.append(("second", e, p)))

        bus.publish(LibraryEvent.FILES_CHANGED, "/lib")

        assert seen == [
            ("first", LibraryEvent.FILES_CHANGED, "/lib"),
            ("second", LibraryEvent.FILES_CHANGED, "/lib"),
        ]

    def test_unsubscribe(self):
        bus = EventBus()
        seen = []
        unsubscribe = bus.subscribe(lambda e, p: seen.append(e))
        unsubscribe()
        unsubscribe()
        bus.publish(LibraryEvent.LIBRARY_CLEARED)
        assert seen == []

    def test_failing_subscriber_isolated(self):
        bus = EventBus()
        seen = []

        def _broken(event, payload):
            raise RuntimeError("subscriber bug")

        bus.subscribe(_broken)
        bus.subscribe(lambda e, p: seen.append(e))

        bus.publish(LibraryEvent.METADATA_CHANGED)

        assert seen == [LibraryEvent.METADATA_CHANGED]

    def test_publish_without_subscribers(self):
        EventBus().publish(LibraryEvent.FILES_CHANGED)
