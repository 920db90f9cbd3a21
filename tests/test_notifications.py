import pytest
from pydantic import ValidationError

from marketindex.core.exceptions import NotFound
from marketindex.core.subscriptions import Subscription, SubscriptionScope
from marketindex.modules.notifications.schemas.events import (
    ContentReceived,
    FriendAccepted,
    FriendRequested,
    parse_event,
)
from marketindex.modules.notifications.services.dispatcher import EventDispatcher
from marketindex.modules.notifications.services.notification import get_user_notifications, mark_as_read
from marketindex.modules.notifications.services.notification_events import describe_event
from marketindex.modules.relationships.services.relationship import request_relationship


def test_events_parse_into_their_variant():
    event = parse_event({"kind": "friend_accepted", "relationship_id": "a_b", "accepter_id": "b", "requester_id": "a"})
    assert isinstance(event, FriendAccepted)
    with pytest.raises(ValidationError):
        parse_event({"kind": "poke", "relationship_id": "a_b"})


def test_describe_event_is_exhaustive(db, alice, bob):
    user_id, actor_id, related_id, text = describe_event(
        db, FriendRequested(relationship_id="r", requester_id=alice.id, recipient_id=bob.id)
    )
    assert (user_id, actor_id, related_id) == (bob.id, alice.id, "r")
    assert "friend request" in text

    user_id, _, _, text = describe_event(
        db, ContentReceived(item_id="i", content_kind="snap", sender_id=alice.id, recipient_id=bob.id)
    )
    assert user_id == bob.id
    assert text.endswith("sent you a snap")

    with pytest.raises(TypeError):
        describe_event(db, {"kind": "friend_requested"})


def test_friend_request_writes_one_notification(db, dispatcher, alice, bob):
    request_relationship(db, alice.id, bob.id, dispatcher=dispatcher)
    [notification] = get_user_notifications(db, bob.id)
    assert notification.type == "friend_requested"
    assert notification.actor_id == alice.id
    assert notification.is_read is False

    assert mark_as_read(db, notification.id, bob.id).is_read is True
    assert get_user_notifications(db, bob.id, unread_only=True) == []
    with pytest.raises(NotFound):
        mark_as_read(db, notification.id, alice.id)


def test_dispatcher_filters_by_kind_and_survives_broken_handlers():
    dispatcher = EventDispatcher()
    seen = []

    def broken(event):
        raise RuntimeError("boom")

    dispatcher.subscribe(broken)
    dispatcher.subscribe(seen.append, kinds=["friend_requested"])

    requested = FriendRequested(relationship_id="a_b", requester_id="a", recipient_id="b")
    accepted = FriendAccepted(relationship_id="a_b", accepter_id="b", requester_id="a")
    assert dispatcher.dispatch(requested) == 1
    assert dispatcher.dispatch(accepted) == 0
    assert seen == [requested]


def test_scope_disposes_subscriptions_in_reverse_order():
    dispatcher = EventDispatcher()
    cancelled = []

    with SubscriptionScope("session") as scope:
        scope.add(dispatcher.subscribe(lambda event: None))
        scope.add(Subscription(lambda: cancelled.append("first"), name="first"))
        scope.add(Subscription(lambda: cancelled.append("second"), name="second"))
        assert dispatcher.subscriber_count == 1
        assert len(scope) == 3

    assert cancelled == ["second", "first"]
    assert dispatcher.subscriber_count == 0
    assert scope.disposed

    late = Subscription(lambda: cancelled.append("late"))
    with pytest.raises(RuntimeError):
        scope.add(late)
    assert not late.active
    assert cancelled[-1] == "late"


def test_cancel_is_idempotent():
    calls = []
    subscription = Subscription(lambda: calls.append(1))
    subscription.cancel()
    subscription.cancel()
    assert calls == [1]
