import logging

import pytest
from sqlalchemy.exc import OperationalError

from marketindex.core.exceptions import PartialFailure, StorageError
from marketindex.core.storage import MediaCategory, MediaStorage
from marketindex.db.session import SessionLocal
from marketindex.modules.cleanup.models.cleanup_job import CleanupJob, CleanupState
from marketindex.modules.cleanup.services.orchestrator import (
    AccountCleanup,
    get_cleanup_job,
    job_report,
    retry_failed_cleanups,
    run_account_cleanup,
)
from marketindex.modules.cleanup.triggers import on_account_deleted
from marketindex.modules.content.models.broadcast import Broadcast, BroadcastRecipient
from marketindex.modules.content.models.content_item import ContentItem
from marketindex.modules.content.services.content import Addressing, ContentKind, create_content_item, list_inbox
from marketindex.modules.groups.models.group import Group, GroupMessage
from marketindex.modules.groups.services.group import create_group, get_group_member_ids, send_group_message
from marketindex.modules.notifications.models.notification import Notification
from marketindex.modules.relationships.models.relationship import Relationship
from marketindex.modules.relationships.services.relationship import list_friends, request_relationship
from marketindex.modules.user_management.models.user import User, UsernameReservation
from marketindex.modules.user_management.services.user import create_user_profile, get_user


@pytest.fixture
def populated_account(db, storage, dispatcher, make_friends, upload, alice, bob, carol):
    """alice has friends, pending requests, groups, sent and received content and media"""
    make_friends(alice, bob)
    make_friends(carol, alice)
    dave = create_user_profile(db, firebase_uid="uid-dave", email="dave@example.com")
    request_relationship(db, dave.id, alice.id, dispatcher=dispatcher)

    create_content_item(db, alice.id, Addressing.broadcast(), upload(alice, MediaCategory.STORIES),
                        kind=ContentKind.STORY, storage=storage, dispatcher=dispatcher)
    bob_ref = upload(bob)
    create_content_item(db, bob.id, Addressing.direct(alice.id), bob_ref, storage=storage, dispatcher=dispatcher)
    storage.bind_media(b"face", alice.id, MediaCategory.AVATARS)

    group = create_group(db, "desk", [bob.id], created_by=alice.id)
    send_group_message(db, group.id, alice.id, "out of TSLA")
    return {"bob_ref": bob_ref}


def _assert_nothing_left(db, storage, user_id, username):
    assert get_user(db, user_id) is None
    assert db.get(UsernameReservation, username) is None
    assert db.query(Relationship).filter(
        (Relationship.user_low == user_id) | (Relationship.user_high == user_id)
    ).count() == 0
    assert db.query(ContentItem).filter(
        (ContentItem.sender_id == user_id) | (ContentItem.recipient_id == user_id)
    ).count() == 0
    assert db.query(Notification).filter(Notification.user_id == user_id).count() == 0
    assert db.query(Broadcast).filter(Broadcast.sender_id == user_id).count() == 0
    assert db.query(BroadcastRecipient).filter(BroadcastRecipient.recipient_id == user_id).count() == 0
    assert db.query(GroupMessage).filter(GroupMessage.sender_id == user_id).count() == 0
    for category in MediaCategory:
        assert list(storage.list_objects(f"{category.value}/{user_id}/")) == []


def test_account_cleanup_reaches_done(db, storage, populated_account, alice, bob, carol):
    user_id, username = alice.id, alice.username

    report = run_account_cleanup(user_id, storage=storage)

    assert report.done
    assert sorted(report.completed_steps) == sorted(s.value for s in (
        CleanupState.PROFILE_REMOVING, CleanupState.GRAPH_CLEANING,
        CleanupState.CONTENT_PURGING, CleanupState.STORAGE_RECLAIMING,
    ))
    db.expire_all()
    _assert_nothing_left(db, storage, user_id, username)

    # Other users keep their own graph and their own blobs
    assert list_friends(db, bob.id) == set()
    assert list_inbox(db, carol.id) == []
    assert not storage.exists(populated_account["bob_ref"])

    # Two-member group with alice gone collapses to bob alone
    [group] = db.query(Group).all()
    assert get_group_member_ids(db, group.id) == [bob.id]

    job = get_cleanup_job(db, user_id)
    assert job.state == CleanupState.DONE.value
    assert job.username == username
    assert job.attempts == 1


def test_username_is_released_for_new_sign_ups(db, storage, alice):
    run_account_cleanup(alice.id, storage=storage)
    newcomer = create_user_profile(db, firebase_uid="uid-new", email="alice@example.org")
    assert newcomer.username == "alice"


def test_injected_storage_fault_gives_partial_failure_then_retry_completes(
    db, storage, populated_account, alice, monkeypatch
):
    user_id, username = alice.id, alice.username

    def _broken_delete_prefix(self, prefix):
        raise StorageError("bucket unavailable")

    with monkeypatch.context() as patched:
        patched.setattr(MediaStorage, "delete_prefix", _broken_delete_prefix)
        report = run_account_cleanup(user_id, storage=storage)

    assert report.state == CleanupState.PARTIAL_FAILURE
    assert report.failed_steps == [CleanupState.STORAGE_RECLAIMING.value]
    assert "bucket unavailable" in report.errors[CleanupState.STORAGE_RECLAIMING.value]
    with pytest.raises(PartialFailure) as excinfo:
        report.raise_for_failure()
    assert excinfo.value.user_id == user_id

    db.expire_all()
    job = get_cleanup_job(db, user_id)
    assert job_report(job).failed_steps == [CleanupState.STORAGE_RECLAIMING.value]
    # The database side already finished; only blobs remain
    assert get_user(db, user_id) is None
    assert list(storage.list_objects(f"avatars/{user_id}/"))

    [retried] = retry_failed_cleanups(storage=storage)
    assert retried.user_id == user_id
    assert retried.done

    db.expire_all()
    _assert_nothing_left(db, storage, user_id, username)
    job = get_cleanup_job(db, user_id)
    assert job.state == CleanupState.DONE.value
    assert job.attempts == 2
    assert job.username == username


def test_cleanup_is_idempotent(db, storage, populated_account, alice):
    first = on_account_deleted(alice.id, session_factory=SessionLocal, storage=storage)
    second = on_account_deleted(alice.id, session_factory=SessionLocal, storage=storage)
    assert first.done and second.done
    assert db.query(CleanupJob).count() == 1
    assert retry_failed_cleanups(storage=storage) == []


@pytest.mark.parametrize("step_method, step", [
    ("remove_profile", CleanupState.PROFILE_REMOVING),
    ("clean_graph", CleanupState.GRAPH_CLEANING),
    ("purge_content", CleanupState.CONTENT_PURGING),
])
def test_database_step_fault_gives_partial_failure_then_retry_completes(
    db, storage, populated_account, alice, monkeypatch, step_method, step
):
    user_id, username = alice.id, alice.username

    def _stage_then_fail(self, session):
        # Part of the writes are staged before the connection drops
        session.query(User).filter(User.id == self.user_id).delete(synchronize_session=False)
        raise OperationalError("DELETE FROM users", {}, Exception("connection reset"))

    with monkeypatch.context() as patched:
        patched.setattr(AccountCleanup, step_method, _stage_then_fail)
        report = run_account_cleanup(user_id, storage=storage)

    assert report.state == CleanupState.PARTIAL_FAILURE
    assert report.failed_steps == [step.value]
    with pytest.raises(PartialFailure):
        report.raise_for_failure()

    # Profile and username reservation are both present or both gone
    db.expire_all()
    profile_left = get_user(db, user_id) is not None
    reservation_left = db.get(UsernameReservation, username) is not None
    assert profile_left == reservation_left
    if step == CleanupState.PROFILE_REMOVING:
        assert profile_left

    [retried] = retry_failed_cleanups(storage=storage)
    assert retried.done
    db.expire_all()
    _assert_nothing_left(db, storage, user_id, username)
    assert get_cleanup_job(db, user_id).attempts == 2


def test_trigger_fault_is_recorded_as_partial_failure(db, storage, alice, monkeypatch, caplog):
    user_id, username = alice.id, alice.username

    def _failing_trigger(self):
        raise OperationalError("INSERT INTO cleanup_jobs", {}, Exception("connection reset"))

    with monkeypatch.context() as patched:
        patched.setattr(AccountCleanup, "trigger", _failing_trigger)
        with caplog.at_level(logging.ERROR):
            report = run_account_cleanup(user_id, storage=storage)

    assert report.state == CleanupState.PARTIAL_FAILURE
    assert report.failed_steps == [CleanupState.TRIGGERED.value]
    assert report.completed_steps == []
    assert any(user_id in record.getMessage() and "triggered" in record.getMessage() for record in caplog.records)
    with pytest.raises(PartialFailure):
        report.raise_for_failure()

    # No step ran, and the job is on record for the retry sweep
    db.expire_all()
    assert get_user(db, user_id) is not None
    assert get_cleanup_job(db, user_id).state == CleanupState.PARTIAL_FAILURE.value

    [retried] = retry_failed_cleanups(storage=storage)
    assert retried.done
    db.expire_all()
    _assert_nothing_left(db, storage, user_id, username)
