"""
DMCA Router

Notice generation, bulk submission and the staggered send queue.
"""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from enforcement.database import get_db, get_session_factory
from enforcement.dependencies import (
    get_crm_tracker,
    get_current_user_id,
    get_dispatcher,
    get_system_log_writer,
    verify_cron_secret,
)
from enforcement.models.schemas import (
    BatchStatusResponse,
    GenerateNoticeRequest,
    GenerateNoticeResponse,
    QueueItemAction,
    QueueItemResponse,
    SubmitBulkRequest,
    SubmitBulkResponse,
)
from enforcement.services.bulk_queue_service import (
    BatchItemInput,
    BulkQueueService,
    QueueInsertError,
    QueueItemNotFound,
    QueueValidationError,
    RateLimitExceeded,
    run_queue_cycle,
)
from enforcement.services.crm_tracker import CRMTracker
from enforcement.services.notice_service import (
    InfringementAccessDenied,
    InfringementNotFound,
    NoticeService,
    NoticeValidationError,
)
from enforcement.services.system_log import SystemLogWriter
from enforcement.services.task_dispatcher import TaskDispatcher

logger = logging.getLogger(__name__)

router = APIRouter()

PROCESS_QUEUE_JOB = "process_queue"


# ==================== Notices ====================

@router.post("/generate", response_model=GenerateNoticeResponse)
async def generate_notice(
    request: GenerateNoticeRequest,
    user_id: UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    dispatcher: TaskDispatcher = Depends(get_dispatcher),
    crm: CRMTracker = Depends(get_crm_tracker),
    system_log: SystemLogWriter = Depends(get_system_log_writer),
):
    """Generate a DMCA notice for a confirmed infringement."""
    service = NoticeService(db)
    try:
        generated = await service.generate(
            request.infringement_id,
            user_id,
            contact_override=request.contact.model_dump() if request.contact else None,
            target_override=request.target.model_dump() if request.target else None,
            evidence_items=[item.model_dump() for item in request.evidence_items],
        )
    except InfringementNotFound:
        raise HTTPException(status_code=404, detail="Infringement not found")
    except InfringementAccessDenied:
        raise HTTPException(status_code=403, detail="Forbidden")
    except NoticeValidationError as e:
        raise HTTPException(status_code=400, detail={"error": e.error, "hint": e.hint})

    await system_log.info(
        "dmca",
        "generate_notice",
        f"Notice generated for infringement {request.infringement_id}",
        user_id=user_id,
        context={"quality_score": generated.quality.score, "strength": generated.quality.strength},
    )
    crm.track(dispatcher, CRMTracker.EVENT_NOTICE_GENERATED, {
        "user_id": str(user_id),
        "infringement_id": str(request.infringement_id),
        "quality_score": generated.quality.score,
    })
    return generated.to_dict()


@router.post("/submit-bulk", response_model=SubmitBulkResponse)
async def submit_bulk(
    request: SubmitBulkRequest,
    user_id: UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    dispatcher: TaskDispatcher = Depends(get_dispatcher),
    crm: CRMTracker = Depends(get_crm_tracker),
    system_log: SystemLogWriter = Depends(get_system_log_writer),
):
    """Queue a batch of notices for staggered delivery."""
    service = BulkQueueService(db)
    items = [
        BatchItemInput(
            infringement_id=item.infringement_id,
            provider_name=item.provider_name,
            delivery_method=item.delivery_method,
            notice_subject=item.notice_subject,
            notice_body=item.notice_body,
            recipient_email=item.recipient_email,
            recipient_name=item.recipient_name,
            target_type=item.target_type,
            form_url=item.form_url,
            cc_emails=item.cc_emails,
        )
        for item in request.items
    ]

    try:
        receipt = await service.create_batch(
            user_id,
            items,
            request.signature_name,
            request.perjury_confirmed,
            request.liability_confirmed,
        )
    except QueueValidationError as e:
        raise HTTPException(status_code=400, detail={"error": e.error, "hint": e.hint})
    except RateLimitExceeded as e:
        raise HTTPException(
            status_code=429,
            detail={
                "error": "Please wait before submitting another batch",
                "hint": f"Try again in {e.retry_after_seconds} seconds",
            },
            headers={"Retry-After": str(e.retry_after_seconds)},
        )
    except QueueInsertError as e:
        await system_log.error("dmca", "submit_bulk", "Failed to queue batch", user_id=user_id, error_message=str(e))
        raise HTTPException(status_code=500, detail="Failed to queue items")

    # Best effort: the periodic worker picks the batch up if this kick is dropped
    dispatcher.kick(PROCESS_QUEUE_JOB)

    await system_log.info(
        "dmca",
        "submit_bulk",
        f"Queued batch {receipt.batch_id} with {receipt.total_queued} items",
        user_id=user_id,
        context={"email_count": receipt.email_count, "web_form_count": receipt.web_form_count},
    )
    crm.track(dispatcher, CRMTracker.EVENT_BATCH_SUBMITTED, {
        "user_id": str(user_id),
        "batch_id": str(receipt.batch_id),
        "total_queued": receipt.total_queued,
    })
    return receipt.to_dict()


# ==================== Queue ====================

@router.post("/process-queue", dependencies=[Depends(verify_cron_secret)])
async def process_queue(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    system_log: SystemLogWriter = Depends(get_system_log_writer),
):
    """Process due queue items (internal trigger)."""
    result = await system_log.track(
        "process_queue", run_queue_cycle(session_factory), source="cron"
    )
    return result.to_dict()


@router.get("/process-queue")
async def get_queue_status(
    user_id: UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """List the caller's recent batches and queue items."""
    service = BulkQueueService(db)
    batches = await service.list_user_batches(user_id)
    items = await service.list_recent_items(user_id)
    return {
        "batches": [batch.to_dict() for batch in batches],
        "items": [QueueItemResponse.model_validate(item) for item in items],
    }


@router.patch("/process-queue")
async def update_queue_item(
    request: QueueItemAction,
    user_id: UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Confirm a manually submitted web form notice."""
    service = BulkQueueService(db)
    try:
        takedown = await service.mark_submitted(request.queue_item_id, user_id)
    except QueueItemNotFound:
        raise HTTPException(status_code=404, detail="Queue item not found")
    except QueueValidationError as e:
        raise HTTPException(status_code=400, detail={"error": e.error, "hint": e.hint})

    return {"success": True, "queue_item_id": request.queue_item_id, "takedown_id": takedown.id}


# ==================== Batches ====================

@router.get("/batch/{batch_id}", response_model=BatchStatusResponse)
async def get_batch(
    batch_id: UUID,
    user_id: UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Batch summary and items ordered by scheduled time."""
    service = BulkQueueService(db)
    summary = await service.get_batch_summary(batch_id, user_id)
    if summary is None:
        raise HTTPException(status_code=404, detail="Batch not found")

    items = await service.get_batch_items(batch_id, user_id)
    return {"summary": summary.to_dict(), "items": items}


@router.delete("/batch/{batch_id}")
async def cancel_batch(
    batch_id: UUID,
    user_id: UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Cancel every still-pending item in a batch."""
    service = BulkQueueService(db)
    cancelled = await service.cancel_batch(batch_id, user_id)
    if cancelled is None:
        raise HTTPException(status_code=404, detail="Batch not found")
    return {"success": True, "batch_id": batch_id, "cancelled_count": cancelled}
