"""
Account deletion cleanup.

A job moves Triggered -> {ProfileRemoving, GraphCleaning, ContentPurging,
StorageReclaiming} -> Done, or lands in PartialFailure if any step (the
trigger included) raises.
The four steps touch disjoint tables and blob prefixes, so they run
concurrently, each on its own session. None of them is wrapped in a
cross-step transaction: every step is idempotent, and the recovery for any
failure is to run the whole job again.
"""
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from marketindex.core.config import settings
from marketindex.core.exceptions import PartialFailure
from marketindex.core.storage import MediaCategory, MediaStorage, media_storage
from marketindex.db.session import SessionLocal, session_scope
from marketindex.modules.cleanup.models.cleanup_job import CleanupJob, CleanupState
from marketindex.modules.cleanup.services.media_reclaim import reclaim_media_refs
from marketindex.modules.content.models.broadcast import Broadcast, BroadcastRecipient
from marketindex.modules.content.models.content_item import ContentItem
from marketindex.modules.groups.services.group import delete_user_group_messages, remove_user_from_all_groups
from marketindex.modules.notifications.services.notification import delete_user_notifications
from marketindex.modules.relationships.services.relationship import delete_user_relationships
from marketindex.modules.user_management.models.user import User, UsernameReservation

logger = logging.getLogger(__name__)

STEPS = (
    CleanupState.PROFILE_REMOVING,
    CleanupState.GRAPH_CLEANING,
    CleanupState.CONTENT_PURGING,
    CleanupState.STORAGE_RECLAIMING,
)


@dataclass
class CleanupReport:
    user_id: str
    state: CleanupState
    completed_steps: List[str] = field(default_factory=list)
    failed_steps: List[str] = field(default_factory=list)
    errors: Dict[str, str] = field(default_factory=dict)

    @property
    def done(self) -> bool:
        return self.state == CleanupState.DONE

    def raise_for_failure(self) -> None:
        if not self.done:
            raise PartialFailure(self.user_id, self.failed_steps, self.errors)


def _split(value: Optional[str]) -> List[str]:
    return [part for part in (value or "").split(",") if part]


class AccountCleanup:
    """Cascade cleanup for one deleted account. Safe to run any number of times."""

    def __init__(self, user_id: str, session_factory: Callable[[], Session] = SessionLocal,
                 storage: Optional[MediaStorage] = None, max_workers: Optional[int] = None):
        self.user_id = user_id
        self.session_factory = session_factory
        self.storage = storage or media_storage
        self.max_workers = max_workers or settings.CLEANUP_MAX_WORKERS
        self.username: Optional[str] = None

    def trigger(self) -> CleanupJob:
        """Record the job and capture the username while the profile still exists"""
        with session_scope(self.session_factory) as db:
            job = db.get(CleanupJob, self.user_id)
            user = db.get(User, self.user_id)
            if job is None:
                job = CleanupJob(user_id=self.user_id, attempts=0, completed_steps="", failed_steps="")
                db.add(job)
            if user is not None:
                job.username = user.username
            job.state = CleanupState.TRIGGERED.value
            job.attempts = (job.attempts or 0) + 1
            db.commit()
            db.refresh(job)
            db.expunge(job)

        self.username = job.username
        logger.info(f"Cleanup triggered for user {self.user_id} (username={self.username}, attempt {job.attempts})")
        return job

    # Steps

    def remove_profile(self, db: Session) -> None:
        """Profile and username reservation go in one transaction: both or neither"""
        db.query(User).filter(User.id == self.user_id).delete(synchronize_session=False)
        # Keyed by user id so a retry never releases a name someone else has since claimed
        released = db.query(UsernameReservation).filter(
            UsernameReservation.user_id == self.user_id
        ).delete(synchronize_session=False)
        db.commit()
        logger.info(f"Removed profile of {self.user_id}, released {released} username reservation(s)")

    def clean_graph(self, db: Session) -> None:
        relationships = delete_user_relationships(db, self.user_id)
        messages = delete_user_group_messages(db, self.user_id)
        groups_deleted = remove_user_from_all_groups(db, self.user_id)
        db.commit()
        logger.info(
            f"Deleted {relationships} relationships and {messages} group messages of {self.user_id}; "
            f"{groups_deleted} groups emptied and deleted"
        )

    def purge_content(self, db: Session) -> None:
        """Delete every item the user sent or received, re-querying until none are left"""
        media_refs = set()
        total = 0
        for _ in range(settings.CLEANUP_MAX_PASSES):
            # Point-in-time snapshot; fan-out writes may still be landing
            rows = db.query(ContentItem.id, ContentItem.media_ref).filter(
                (ContentItem.sender_id == self.user_id) | (ContentItem.recipient_id == self.user_id)
            ).all()
            if not rows:
                break
            item_ids = [item_id for item_id, _ in rows]
            media_refs.update(media_ref for _, media_ref in rows)
            total += db.query(ContentItem).filter(ContentItem.id.in_(item_ids)).delete(synchronize_session=False)
            db.commit()

        broadcast_ids = [row[0] for row in db.query(Broadcast.id).filter(Broadcast.sender_id == self.user_id).all()]
        db.query(BroadcastRecipient).filter(
            BroadcastRecipient.broadcast_id.in_(broadcast_ids) | (BroadcastRecipient.recipient_id == self.user_id)
        ).delete(synchronize_session=False)
        broadcasts = db.query(Broadcast).filter(Broadcast.id.in_(broadcast_ids)).delete(synchronize_session=False)

        notifications = delete_user_notifications(db, self.user_id)
        db.commit()

        # Blobs other users sent to this user; the user's own namespace is prefix-deleted
        reclaimed = reclaim_media_refs(db, media_refs, self.storage, skip_owner=self.user_id)
        logger.info(
            f"Purged {total} content items, {broadcasts} broadcasts and {notifications} notifications of {self.user_id}; "
            f"reclaimed {reclaimed} shared media"
        )

    def reclaim_storage(self, db: Session) -> None:
        deleted = 0
        for category in MediaCategory:
            deleted += self.storage.delete_prefix(f"{category.value}/{self.user_id}/")
        logger.info(f"Reclaimed {deleted} blobs from the namespaces of {self.user_id}")

    def _step_handlers(self) -> Dict[CleanupState, Callable[[Session], None]]:
        return {
            CleanupState.PROFILE_REMOVING: self.remove_profile,
            CleanupState.GRAPH_CLEANING: self.clean_graph,
            CleanupState.CONTENT_PURGING: self.purge_content,
            CleanupState.STORAGE_RECLAIMING: self.reclaim_storage,
        }

    def _run_step(self, step: CleanupState) -> None:
        handler = self._step_handlers()[step]
        with session_scope(self.session_factory) as db:
            handler(db)

    def run(self) -> CleanupReport:
        """Trigger, run every step concurrently and record the outcome"""
        try:
            self.trigger()
        except Exception as e:
            # Nothing ran; the report still carries the failure so the caller sees PartialFailure
            report = CleanupReport(
                user_id=self.user_id,
                state=CleanupState.PARTIAL_FAILURE,
                failed_steps=[CleanupState.TRIGGERED.value],
                errors={CleanupState.TRIGGERED.value: f"{type(e).__name__}: {e}"},
            )
            logger.error(f"Cleanup for user {self.user_id} failed at {CleanupState.TRIGGERED.value}: {type(e).__name__}: {e}")
            self._record_trigger_failure(report)
            return report

        report = CleanupReport(user_id=self.user_id, state=CleanupState.TRIGGERED)
        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="cleanup") as pool:
            futures = {step: pool.submit(self._run_step, step) for step in STEPS}
            for step, future in futures.items():
                try:
                    future.result()
                    report.completed_steps.append(step.value)
                except Exception as e:
                    # Recorded on the job and reported; retried by re-running the job
                    report.failed_steps.append(step.value)
                    report.errors[step.value] = f"{type(e).__name__}: {e}"

        report.state = CleanupState.PARTIAL_FAILURE if report.failed_steps else CleanupState.DONE
        self._record(report)

        if report.done:
            logger.info(f"Cleanup for user {self.user_id} done")
        else:
            logger.error(
                f"Cleanup for user {self.user_id} partially failed at {', '.join(report.failed_steps)}: "
                f"{report.errors}"
            )
        return report

    def _record(self, report: CleanupReport) -> None:
        with session_scope(self.session_factory) as db:
            job = db.get(CleanupJob, self.user_id)
            if job is None:
                job = CleanupJob(user_id=self.user_id, attempts=0)
                db.add(job)
            job.state = report.state.value
            job.completed_steps = ",".join(report.completed_steps)
            job.failed_steps = ",".join(report.failed_steps)
            job.last_error = "; ".join(f"{step}: {error}" for step, error in report.errors.items()) or None
            db.commit()

    def _record_trigger_failure(self, report: CleanupReport) -> None:
        """Persist a failed trigger so the retry sweep picks the job up, if the database allows it"""
        try:
            self._record(report)
        except SQLAlchemyError as e:
            logger.error(f"Could not record failed cleanup trigger for user {self.user_id}: {e}")


def run_account_cleanup(user_id: str, session_factory: Callable[[], Session] = SessionLocal,
                        storage: Optional[MediaStorage] = None) -> CleanupReport:
    return AccountCleanup(user_id, session_factory=session_factory, storage=storage).run()


def get_cleanup_job(db: Session, user_id: str) -> Optional[CleanupJob]:
    return db.get(CleanupJob, user_id)


def job_report(job: CleanupJob) -> CleanupReport:
    return CleanupReport(
        user_id=job.user_id,
        state=CleanupState(job.state),
        completed_steps=_split(job.completed_steps),
        failed_steps=_split(job.failed_steps),
    )


def retry_failed_cleanups(session_factory: Callable[[], Session] = SessionLocal,
                          storage: Optional[MediaStorage] = None) -> List[CleanupReport]:
    """Re-run every job left in PartialFailure"""
    with session_scope(session_factory) as db:
        user_ids = [
            row[0] for row in db.query(CleanupJob.user_id)
            .filter(CleanupJob.state == CleanupState.PARTIAL_FAILURE.value)
            .order_by(CleanupJob.updated_at)
            .all()
        ]

    if user_ids:
        logger.info(f"Retrying {len(user_ids)} partially failed cleanup jobs")
    return [run_account_cleanup(user_id, session_factory=session_factory, storage=storage) for user_id in user_ids]
