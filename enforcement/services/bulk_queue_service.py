"""
Bulk Queue Service

Durable, staggered dispatch of DMCA notices. A batch is a set of queue
items sharing a ``batch_id`` and creation timestamp.

Item state machine:
- pending -> processing -> sent | failed
- processing -> pending (retry while attempts remain)
- processing -> pending | failed (stale claim reclaimed after a timeout)
- web_form -> sent (manual confirmation only, never auto-sent)
- pending -> skipped (cancellation)

Email items are staggered ``queue_stagger_minutes`` apart in enqueue order;
web form and manual items are scheduled immediately.
"""

import asyncio
import logging
import math
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from uuid import UUID, uuid4

from sqlalchemy import case, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from enforcement.config import get_settings
from enforcement.models.database import (
    Communication,
    DMCAQueueItem,
    Infringement,
    Profile,
    Takedown,
)
from enforcement.services.email_sender import EmailSender
from enforcement.services.infringement_workflow import InfringementWorkflowService

logger = logging.getLogger(__name__)

DELIVERY_METHODS = ("email", "web_form", "manual")

QUEUE_TRANSITIONS: dict[str, list[str]] = {
    "pending": ["processing", "skipped"],
    "processing": ["sent", "failed", "pending"],
    "web_form": ["sent"],
    "sent": [],
    "failed": [],
    "skipped": [],
}

NO_RECIPIENT_ERROR = "No recipient email address"
PROCESSING_TIMEOUT_ERROR = "Processing timed out"
DEFAULT_SENDER_NAME = "Rights Holder"


class QueueValidationError(Exception):
    """Batch input rejected before anything was written."""

    def __init__(self, error: str, hint: str):
        self.error = error
        self.hint = hint
        super().__init__(error)


class RateLimitExceeded(Exception):
    """The user created a batch inside the rate limit window."""

    def __init__(self, retry_after_seconds: int):
        self.retry_after_seconds = retry_after_seconds
        super().__init__(f"Rate limited, retry in {retry_after_seconds}s")


class QueueInsertError(Exception):
    """The batch could not be persisted; nothing was queued."""


class QueueItemNotFound(Exception):
    pass


@dataclass
class BatchItemInput:
    infringement_id: UUID
    provider_name: str
    delivery_method: str
    notice_subject: str
    notice_body: str
    recipient_email: str | None = None
    recipient_name: str | None = None
    target_type: str = "platform"
    form_url: str | None = None
    cc_emails: list[str] = field(default_factory=list)


@dataclass
class BatchReceipt:
    batch_id: UUID
    total_queued: int
    email_count: int
    web_form_count: int
    estimated_completion_minutes: int
    created_at: datetime

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class BatchSummary:
    batch_id: UUID
    user_id: UUID
    total_items: int
    pending_count: int
    processing_count: int
    sent_count: int
    web_form_count: int
    failed_count: int
    skipped_count: int
    batch_created_at: datetime
    last_completed_at: datetime | None
    next_scheduled: datetime | None

    @property
    def in_progress(self) -> bool:
        """Whether clients should keep polling."""
        return self.pending_count + self.processing_count > 0

    def to_dict(self) -> dict:
        return {**asdict(self), "in_progress": self.in_progress}


@dataclass
class QueueRunResult:
    processed: int = 0
    sent: int = 0
    failed: int = 0
    items: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)


def can_transition_item(from_status: str, to_status: str) -> bool:
    return to_status in QUEUE_TRANSITIONS.get(from_status, [])


def sign_notice_body(body: str, signature_name: str, signed_at: datetime) -> str:
    """Append the electronic signature block to a notice body."""
    return f"{body}\n\n---\nElectronic Signature: /{signature_name}/\nSigned at: {signed_at.isoformat()}"


def compute_schedule(
    delivery_methods: list[str],
    now: datetime,
    stagger_minutes: int = 3,
) -> list[datetime]:
    """Scheduled send time per item.

    Only email items consume stagger slots: the i-th email item is sent at
    ``now + i * stagger_minutes``; every other item is due immediately.
    """
    schedule = []
    email_index = 0
    for method in delivery_methods:
        if method == "email":
            schedule.append(now + timedelta(minutes=email_index * stagger_minutes))
            email_index += 1
        else:
            schedule.append(now)
    return schedule


def user_lock_statement(user_id: UUID):
    """Row lock on the user's profile serializing batch creation for that user."""
    return select(Profile.id).where(Profile.id == user_id).with_for_update()


def _summary_columns():
    status = DMCAQueueItem.status

    def count_of(value: str):
        return func.sum(case((status == value, 1), else_=0))

    return (
        DMCAQueueItem.batch_id,
        DMCAQueueItem.user_id,
        func.count(DMCAQueueItem.id).label("total_items"),
        count_of("pending").label("pending_count"),
        count_of("processing").label("processing_count"),
        count_of("sent").label("sent_count"),
        count_of("web_form").label("web_form_count"),
        count_of("failed").label("failed_count"),
        count_of("skipped").label("skipped_count"),
        func.min(DMCAQueueItem.created_at).label("batch_created_at"),
        func.max(DMCAQueueItem.completed_at).label("last_completed_at"),
        func.min(case((status == "pending", DMCAQueueItem.scheduled_for))).label("next_scheduled"),
    )


def _summary_from_row(row) -> BatchSummary:
    data = dict(row._mapping)
    for key in ("pending_count", "processing_count", "sent_count", "web_form_count", "failed_count", "skipped_count"):
        data[key] = int(data[key] or 0)
    return BatchSummary(**data)


class BulkQueueService:
    """Creates, inspects, cancels and processes DMCA send batches."""

    def __init__(
        self,
        db: AsyncSession,
        stagger_minutes: int | None = None,
        max_batch_items: int | None = None,
        rate_limit_minutes: int | None = None,
        claim_limit: int | None = None,
        max_attempts: int | None = None,
        retry_delay_minutes: int | None = None,
        send_delay_ms: int | None = None,
        processing_timeout_minutes: int | None = None,
    ):
        settings = get_settings()
        self.db = db
        self.stagger_minutes = stagger_minutes if stagger_minutes is not None else settings.queue_stagger_minutes
        self.max_batch_items = max_batch_items if max_batch_items is not None else settings.queue_max_batch_items
        self.rate_limit_minutes = (
            rate_limit_minutes if rate_limit_minutes is not None else settings.queue_rate_limit_minutes
        )
        self.claim_limit = claim_limit if claim_limit is not None else settings.queue_claim_limit
        self.max_attempts = max_attempts if max_attempts is not None else settings.queue_max_attempts
        self.retry_delay_minutes = (
            retry_delay_minutes if retry_delay_minutes is not None else settings.queue_retry_delay_minutes
        )
        self.send_delay_ms = send_delay_ms if send_delay_ms is not None else settings.queue_send_delay_ms
        self.processing_timeout_minutes = (
            processing_timeout_minutes
            if processing_timeout_minutes is not None
            else settings.queue_processing_timeout_minutes
        )

    # ------------------------------------------------------------------
    # Batch creation
    # ------------------------------------------------------------------

    async def create_batch(
        self,
        user_id: UUID,
        items: list[BatchItemInput],
        signature_name: str,
        perjury_confirmed: bool,
        liability_confirmed: bool,
        now: datetime | None = None,
    ) -> BatchReceipt:
        """Validate and insert a batch. Either every item is queued or none is.

        Raises:
            QueueValidationError: invalid items or missing consent
            RateLimitExceeded: a batch was created inside the rate limit window
            QueueInsertError: the insert failed
        """
        self._validate_batch(items, signature_name, perjury_confirmed, liability_confirmed)
        now = now or datetime.utcnow()

        # The profile row lock is held until commit, so the rate limit check
        # and the insert below are atomic per user.
        await self.db.execute(user_lock_statement(user_id))
        try:
            await self._check_rate_limit(user_id, now)
            await self._check_ownership(user_id, items)
        except (RateLimitExceeded, QueueValidationError):
            await self.db.rollback()
            raise

        batch_id = uuid4()
        schedule = compute_schedule([item.delivery_method for item in items], now, self.stagger_minutes)

        records = []
        for item, scheduled_for in zip(items, schedule):
            records.append(DMCAQueueItem(
                user_id=user_id,
                batch_id=batch_id,
                infringement_id=item.infringement_id,
                recipient_email=item.recipient_email,
                recipient_name=item.recipient_name,
                provider_name=item.provider_name,
                target_type=item.target_type,
                delivery_method=item.delivery_method,
                form_url=item.form_url,
                notice_subject=item.notice_subject,
                notice_body=sign_notice_body(item.notice_body, signature_name, now),
                cc_emails=list(item.cc_emails),
                status="web_form" if item.delivery_method == "web_form" else "pending",
                priority=0,
                attempt_count=0,
                max_attempts=self.max_attempts,
                scheduled_for=scheduled_for,
                created_at=now,
            ))

        try:
            self.db.add_all(records)
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"Failed to queue batch {batch_id} ({len(records)} items): {e}")
            raise QueueInsertError("Failed to queue items") from e

        email_count = sum(1 for item in items if item.delivery_method == "email")
        web_form_count = sum(1 for item in items if item.delivery_method == "web_form")
        logger.info(
            f"Queued batch {batch_id} for user {user_id}: {len(items)} items "
            f"({email_count} email, {web_form_count} web form)"
        )

        return BatchReceipt(
            batch_id=batch_id,
            total_queued=len(items),
            email_count=email_count,
            web_form_count=web_form_count,
            estimated_completion_minutes=max(email_count - 1, 0) * self.stagger_minutes,
            created_at=now,
        )

    def _validate_batch(
        self,
        items: list[BatchItemInput],
        signature_name: str,
        perjury_confirmed: bool,
        liability_confirmed: bool,
    ) -> None:
        if not items:
            raise QueueValidationError("items is required", "Select at least one infringement to include")
        if not signature_name or not signature_name.strip():
            raise QueueValidationError(
                "signature_name is required", "Type your full legal name to sign the notices"
            )
        if not perjury_confirmed or not liability_confirmed:
            raise QueueValidationError(
                "You must confirm the perjury and liability statements",
                "Check both confirmation boxes before submitting",
            )
        if len(items) > self.max_batch_items:
            raise QueueValidationError(
                f"Maximum {self.max_batch_items} items per batch",
                f"Split the submission into batches of at most {self.max_batch_items} notices",
            )
        for item in items:
            if item.delivery_method not in DELIVERY_METHODS:
                raise QueueValidationError(
                    f"Invalid delivery method '{item.delivery_method}'",
                    "Use one of: email, web_form, manual",
                )
            if item.delivery_method == "email" and not item.recipient_email:
                raise QueueValidationError(
                    f"Email item for {item.provider_name} has no recipient address",
                    "Switch the item to manual delivery or choose another target",
                )

    async def _check_rate_limit(self, user_id: UUID, now: datetime) -> None:
        window_start = now - timedelta(minutes=self.rate_limit_minutes)
        result = await self.db.execute(
            select(func.max(DMCAQueueItem.created_at)).where(
                DMCAQueueItem.user_id == user_id,
                DMCAQueueItem.created_at >= window_start,
            )
        )
        last_created = result.scalar()
        if last_created is None:
            return
        retry_after = (last_created + timedelta(minutes=self.rate_limit_minutes) - now).total_seconds()
        raise RateLimitExceeded(max(1, math.ceil(retry_after)))

    async def _check_ownership(self, user_id: UUID, items: list[BatchItemInput]) -> None:
        requested = {item.infringement_id for item in items}
        result = await self.db.execute(
            select(Infringement.id).where(
                Infringement.id.in_(requested),
                Infringement.user_id == user_id,
            )
        )
        found = set(result.scalars().all())
        if found != requested:
            raise QueueValidationError(
                f"{len(requested - found)} infringement(s) not found",
                "Refresh your infringement list and rebuild the batch",
            )

    # ------------------------------------------------------------------
    # Batch inspection and cancellation
    # ------------------------------------------------------------------

    async def get_batch_summary(self, batch_id: UUID, user_id: UUID) -> BatchSummary | None:
        result = await self.db.execute(
            select(*_summary_columns())
            .where(DMCAQueueItem.batch_id == batch_id, DMCAQueueItem.user_id == user_id)
            .group_by(DMCAQueueItem.batch_id, DMCAQueueItem.user_id)
        )
        row = result.first()
        return _summary_from_row(row) if row else None

    async def get_batch_items(self, batch_id: UUID, user_id: UUID) -> list[DMCAQueueItem]:
        result = await self.db.execute(
            select(DMCAQueueItem)
            .where(DMCAQueueItem.batch_id == batch_id, DMCAQueueItem.user_id == user_id)
            .order_by(DMCAQueueItem.scheduled_for.asc())
        )
        return list(result.scalars().all())

    async def list_user_batches(self, user_id: UUID, limit: int = 10) -> list[BatchSummary]:
        result = await self.db.execute(
            select(*_summary_columns())
            .where(DMCAQueueItem.user_id == user_id)
            .group_by(DMCAQueueItem.batch_id, DMCAQueueItem.user_id)
            .order_by(func.min(DMCAQueueItem.created_at).desc())
            .limit(limit)
        )
        return [_summary_from_row(row) for row in result.all()]

    async def list_recent_items(self, user_id: UUID, limit: int = 50) -> list[DMCAQueueItem]:
        result = await self.db.execute(
            select(DMCAQueueItem)
            .where(DMCAQueueItem.user_id == user_id)
            .order_by(DMCAQueueItem.created_at.desc(), DMCAQueueItem.scheduled_for.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def cancel_batch(self, batch_id: UUID, user_id: UUID) -> int | None:
        """Skip every still-pending item. Returns None when the batch is unknown."""
        exists = await self.db.execute(
            select(DMCAQueueItem.id)
            .where(DMCAQueueItem.batch_id == batch_id, DMCAQueueItem.user_id == user_id)
            .limit(1)
        )
        if exists.scalar() is None:
            return None

        result = await self.db.execute(
            update(DMCAQueueItem)
            .where(
                DMCAQueueItem.batch_id == batch_id,
                DMCAQueueItem.user_id == user_id,
                DMCAQueueItem.status == "pending",
            )
            .values(status="skipped", completed_at=datetime.utcnow())
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()

        cancelled = result.rowcount or 0
        logger.info(f"Cancelled {cancelled} pending items in batch {batch_id}")
        return cancelled

    # ------------------------------------------------------------------
    # Processing
    # ------------------------------------------------------------------

    async def claim_due_items(self, now: datetime | None = None) -> list[DMCAQueueItem]:
        """Move due pending items to processing.

        Each row is claimed with an UPDATE conditioned on ``status='pending'``,
        so a row already taken by a concurrent processor is skipped.
        """
        now = now or datetime.utcnow()
        await self.reclaim_stale_items(now)

        candidates = await self.db.execute(
            select(DMCAQueueItem.id)
            .where(
                DMCAQueueItem.status == "pending",
                DMCAQueueItem.scheduled_for <= now,
                DMCAQueueItem.attempt_count < DMCAQueueItem.max_attempts,
            )
            .order_by(DMCAQueueItem.priority.asc(), DMCAQueueItem.scheduled_for.asc())
            .limit(self.claim_limit)
        )

        claimed_ids = []
        for item_id in candidates.scalars().all():
            result = await self.db.execute(
                update(DMCAQueueItem)
                .where(DMCAQueueItem.id == item_id, DMCAQueueItem.status == "pending")
                .values(status="processing", processing_started_at=now)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                claimed_ids.append(item_id)
        await self.db.commit()

        if not claimed_ids:
            return []

        result = await self.db.execute(
            select(DMCAQueueItem)
            .where(DMCAQueueItem.id.in_(claimed_ids))
            .order_by(DMCAQueueItem.priority.asc(), DMCAQueueItem.scheduled_for.asc())
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def reclaim_stale_items(self, now: datetime | None = None) -> int:
        """Return items stuck in processing past the timeout to the queue.

        Each stale claim counts as a spent attempt; items out of attempts
        are failed instead of requeued.
        """
        now = now or datetime.utcnow()
        cutoff = now - timedelta(minutes=self.processing_timeout_minutes)
        stale = (
            DMCAQueueItem.status == "processing",
            DMCAQueueItem.processing_started_at < cutoff,
        )

        exhausted = await self.db.execute(
            update(DMCAQueueItem)
            .where(*stale, DMCAQueueItem.attempt_count + 1 >= DMCAQueueItem.max_attempts)
            .values(
                status="failed",
                attempt_count=DMCAQueueItem.attempt_count + 1,
                error_message=PROCESSING_TIMEOUT_ERROR,
                processing_started_at=None,
                completed_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        requeued = await self.db.execute(
            update(DMCAQueueItem)
            .where(*stale)
            .values(
                status="pending",
                attempt_count=DMCAQueueItem.attempt_count + 1,
                error_message=PROCESSING_TIMEOUT_ERROR,
                processing_started_at=None,
                scheduled_for=now,
            )
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()

        reclaimed = (exhausted.rowcount or 0) + (requeued.rowcount or 0)
        if reclaimed:
            logger.warning(
                f"Reclaimed {reclaimed} stale processing items "
                f"({requeued.rowcount or 0} requeued, {exhausted.rowcount or 0} failed)"
            )
        return reclaimed

    async def process_queue(self, sender: EmailSender) -> QueueRunResult:
        """Claim due items and attempt delivery of each."""
        result = QueueRunResult()
        item_ids = [item.id for item in await self.claim_due_items()]
        if not item_ids:
            logger.debug("No pending queue items to process")
            return result

        logger.info(f"Processing {len(item_ids)} queue items")
        for index, item_id in enumerate(item_ids):
            # A rollback after an earlier failure expires every loaded row
            item = await self.db.get(DMCAQueueItem, item_id, populate_existing=True)
            if item is None or item.status != "processing":
                continue

            result.processed += 1
            try:
                outcome = await self._process_item(item, sender)
            except Exception as e:
                logger.error(f"Error processing queue item {item_id}: {e}", exc_info=True)
                await self.db.rollback()
                item = await self.db.get(DMCAQueueItem, item_id, populate_existing=True)
                outcome = {"id": str(item_id), "status": "failed", "error": str(e) or "Processing error"}
                if item is not None:
                    self._record_failure(item, outcome["error"])
                    await self.db.commit()

            if outcome["status"] == "sent":
                result.sent += 1
            else:
                result.failed += 1
            result.items.append(outcome)

            if self.send_delay_ms and index < len(item_ids) - 1:
                await asyncio.sleep(self.send_delay_ms / 1000)

        logger.info(f"Queue cycle complete: {result.sent} sent, {result.failed} failed")
        return result

    async def _process_item(self, item: DMCAQueueItem, sender: EmailSender) -> dict:
        if not item.recipient_email:
            item.status = "failed"
            item.error_message = NO_RECIPIENT_ERROR
            item.attempt_count += 1
            item.completed_at = datetime.utcnow()
            await self.db.commit()
            return {"id": str(item.id), "status": "failed", "error": NO_RECIPIENT_ERROR}

        profile = await self.db.get(Profile, item.user_id)
        reply_to = (profile.dmca_reply_email or profile.email) if profile else ""
        sender_name = (profile.full_name if profile else None) or DEFAULT_SENDER_NAME

        send_result = await sender.send_notice(
            to_email=item.recipient_email,
            subject=item.notice_subject,
            body=item.notice_body,
            reply_to=reply_to,
            sender_name=sender_name,
            cc_emails=item.cc_emails or None,
        )

        if not send_result.success:
            error = send_result.error or "Email delivery failed"
            self._record_failure(item, error)
            await self.db.commit()
            return {"id": str(item.id), "status": "failed", "error": error}

        sent_at = datetime.utcnow()
        takedown = await self._record_takedown(item, sent_at, reason=f"DMCA notice emailed to {item.provider_name}")
        self.db.add(Communication(
            user_id=item.user_id,
            infringement_id=item.infringement_id,
            takedown_id=takedown.id,
            channel="email",
            direction="outbound",
            recipient=item.recipient_email,
            subject=item.notice_subject,
            body=item.notice_body[:500],
            external_message_id=send_result.message_id,
            status="sent",
        ))

        item.status = "sent"
        item.takedown_id = takedown.id
        item.resend_message_id = send_result.message_id
        item.completed_at = sent_at
        item.attempt_count += 1
        item.error_message = None
        await self.db.commit()

        return {"id": str(item.id), "status": "sent", "message_id": send_result.message_id}

    def _record_failure(self, item: DMCAQueueItem, error: str) -> None:
        item.attempt_count += 1
        item.error_message = error
        item.processing_started_at = None
        if item.attempt_count >= item.max_attempts:
            item.status = "failed"
            item.completed_at = datetime.utcnow()
        else:
            item.status = "pending"
            item.scheduled_for = datetime.utcnow() + timedelta(minutes=self.retry_delay_minutes)
        logger.warning(
            f"Queue item {item.id} attempt {item.attempt_count}/{item.max_attempts} failed: {error}"
        )

    async def _record_takedown(self, item: DMCAQueueItem, sent_at: datetime, reason: str) -> Takedown:
        takedown = Takedown(
            infringement_id=item.infringement_id,
            user_id=item.user_id,
            type="dmca",
            status="sent",
            delivery_method=item.delivery_method,
            recipient_email=item.recipient_email or item.form_url or "",
            recipient_name=item.recipient_name,
            notice_subject=item.notice_subject,
            notice_content=item.notice_body,
            queue_item_id=item.id,
            sent_at=sent_at,
        )
        self.db.add(takedown)
        await self.db.flush()

        infringement = await self.db.get(Infringement, item.infringement_id)
        if infringement is not None and infringement.status == "active":
            await InfringementWorkflowService(self.db).transition(
                infringement, "takedown_sent", triggered_by=item.user_id, reason=reason
            )
        return takedown

    async def mark_submitted(self, item_id: UUID, user_id: UUID) -> Takedown:
        """Record a manually submitted web form notice.

        Raises:
            QueueItemNotFound: no such item for this user
            QueueValidationError: the item is not awaiting manual submission
        """
        result = await self.db.execute(
            select(DMCAQueueItem).where(DMCAQueueItem.id == item_id, DMCAQueueItem.user_id == user_id)
        )
        item = result.scalar_one_or_none()
        if item is None:
            raise QueueItemNotFound(str(item_id))
        if not can_transition_item(item.status, "sent"):
            raise QueueValidationError(
                f"Queue item is '{item.status}', not awaiting manual submission",
                "Only web form items can be marked as submitted",
            )

        submitted_at = datetime.utcnow()
        takedown = await self._record_takedown(
            item, submitted_at, reason=f"DMCA web form submitted to {item.provider_name}"
        )
        item.status = "sent"
        item.takedown_id = takedown.id
        item.completed_at = submitted_at
        await self.db.commit()

        logger.info(f"Queue item {item_id} marked as submitted (takedown {takedown.id})")
        return takedown


async def run_queue_cycle(
    session_factory: async_sessionmaker[AsyncSession],
    sender: EmailSender | None = None,
) -> QueueRunResult:
    """One processing cycle in its own session, for the task dispatcher."""
    async with session_factory() as session:
        service = BulkQueueService(session)
        return await service.process_queue(sender or EmailSender())
