"""
Infringements Router

Verification workflow, evidence collection, enforcement targets and
snapshot integrity checks for detected infringements.
"""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from enforcement.database import get_db, get_session_factory
from enforcement.dependencies import get_current_user_id, get_dispatcher, get_system_log_writer
from enforcement.models.database import EvidenceSnapshot, Infringement, Product
from enforcement.models.records import AIExtractedData, EvidencePacket, TimestampProof
from enforcement.models.schemas import (
    CollectEvidenceRequest,
    InfringementResponse,
    SnapshotIntegrityResponse,
    VerifyRequest,
    VerifyResponse,
)
from enforcement.services.evidence_collector import (
    EvidenceCollectionContext,
    EvidenceCollector,
    InfringementDetection,
    calculate_match_confidence,
)
from enforcement.services.evidence_snapshot import EvidenceSnapshotService, verify_snapshot_integrity
from enforcement.services.infringement_workflow import InfringementWorkflowService, InvalidTransitionError
from enforcement.services.intelligence_engine import process_feedback
from enforcement.services.notice_service import (
    InfringementAccessDenied,
    InfringementNotFound,
    load_owned_infringement,
    targets_for,
)
from enforcement.services.system_log import SystemLogWriter
from enforcement.services.task_dispatcher import TaskDispatcher
from enforcement.services.timestamp_service import format_timestamp_proof
from enforcement.services.whois_client import WhoisClient

logger = logging.getLogger(__name__)

router = APIRouter()

_whois_client: WhoisClient | None = None


def get_whois_client() -> WhoisClient:
    """Process-wide client so its lookup cache is shared between requests."""
    global _whois_client
    if _whois_client is None:
        _whois_client = WhoisClient()
    return _whois_client


def get_evidence_collector() -> EvidenceCollector:
    return EvidenceCollector()


def get_snapshot_service(
    db: AsyncSession = Depends(get_db),
    collector: EvidenceCollector = Depends(get_evidence_collector),
) -> EvidenceSnapshotService:
    return EvidenceSnapshotService(db, collector=collector)


async def _owned(db: AsyncSession, infringement_id: UUID, user_id: UUID) -> tuple[Infringement, Product]:
    try:
        return await load_owned_infringement(db, infringement_id, user_id)
    except InfringementNotFound:
        raise HTTPException(status_code=404, detail="Infringement not found")
    except InfringementAccessDenied:
        raise HTTPException(status_code=403, detail="Forbidden")


def _collection_context(product: Product) -> EvidenceCollectionContext:
    ai_data = AIExtractedData.from_stored(product.ai_extracted_data)
    keywords = [str(k) for k in product.keywords or []]
    keywords.extend(k for k in ai_data.keywords if k not in keywords)
    return EvidenceCollectionContext(product_name=product.name, product_url=product.url, keywords=keywords)


async def _collect(
    collector: EvidenceCollector,
    infringement: Infringement,
    product: Product,
    request: CollectEvidenceRequest | None = None,
) -> EvidencePacket:
    """Collect fresh evidence and store it with the updated confidence."""
    previous = EvidencePacket.from_stored(infringement.evidence)
    request = request or CollectEvidenceRequest(
        matched_terms=previous.detection_metadata.matched_terms,
        matched_hash=previous.hash_matches[0] if previous.hash_matches else None,
    )
    detection = InfringementDetection(
        url=infringement.source_url,
        platform=infringement.platform or "unknown",
        detection_method=request.detection_method,
        matched_terms=request.matched_terms,
        matched_hash=request.matched_hash,
    )
    packet = await collector.collect_evidence(detection, _collection_context(product))

    # Profile clues come from the scan, not from collection
    packet.page_title = packet.page_title or previous.page_title
    packet.has_price = previous.has_price
    packet.is_marketplace = previous.is_marketplace
    packet.image_matches = previous.image_matches

    infringement.evidence = packet.to_stored()
    infringement.match_confidence = calculate_match_confidence(packet)
    return packet


# ==================== Verification ====================

@router.post("/{infringement_id}/verify", response_model=VerifyResponse)
async def verify_infringement(
    infringement_id: UUID,
    body: VerifyRequest,
    request: Request,
    user_id: UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    snapshot_service: EvidenceSnapshotService = Depends(get_snapshot_service),
    dispatcher: TaskDispatcher = Depends(get_dispatcher),
    system_log: SystemLogWriter = Depends(get_system_log_writer),
):
    """Verify or reject a pending infringement.

    - verify: status becomes active, evidence is collected and frozen in a snapshot
    - reject: status becomes false_positive
    """
    infringement, product = await _owned(db, infringement_id, user_id)
    # Read before any rollback expires the instance
    product_id = product.id
    new_status = "active" if body.action == "verify" else "false_positive"
    reason = "User verified as real infringement" if body.action == "verify" else "User marked as false positive"

    try:
        await InfringementWorkflowService(db).transition(infringement, new_status, user_id, reason)
    except InvalidTransitionError as e:
        raise HTTPException(
            status_code=400,
            detail={"error": str(e), "hint": "Only pending infringements can be verified or rejected"},
        )

    snapshot = None
    if body.action == "verify":
        try:
            await _collect(snapshot_service.collector, infringement, product)
            snapshot = await snapshot_service.create_evidence_snapshot(
                infringement,
                product,
                user_id,
                ip_address=request.headers.get("x-forwarded-for")
                or (request.client.host if request.client else None),
                user_agent=request.headers.get("user-agent"),
            )
        except SQLAlchemyError as e:
            await db.rollback()
            await system_log.error(
                "api_call",
                "verify_infringement",
                f"Evidence snapshot failed for infringement {infringement_id}",
                user_id=user_id,
                product_id=product_id,
                error_message=str(e),
            )
            raise HTTPException(status_code=500, detail="Failed to create evidence snapshot")

    await db.commit()

    dispatcher.fire_and_forget(
        process_feedback(session_factory, infringement_id, product_id, user_id, body.action),
        f"feedback:{infringement_id}",
    )
    await system_log.info(
        "api_call",
        "verify_infringement",
        f"Infringement {infringement_id} marked {new_status}",
        user_id=user_id,
        product_id=product_id,
    )

    return VerifyResponse(
        success=True,
        action=body.action,
        new_status=new_status,
        evidence_snapshot_id=snapshot.id if snapshot is not None else None,
        message=(
            "Infringement verified and marked as active. Evidence snapshot created for legal defense."
            if body.action == "verify"
            else "Infringement marked as false positive"
        ),
    )


# ==================== Evidence ====================

@router.post("/{infringement_id}/evidence", response_model=InfringementResponse)
async def collect_evidence(
    infringement_id: UUID,
    body: CollectEvidenceRequest | None = None,
    user_id: UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    collector: EvidenceCollector = Depends(get_evidence_collector),
):
    """Collect a fresh evidence packet and update the match confidence."""
    infringement, product = await _owned(db, infringement_id, user_id)
    await _collect(collector, infringement, product, body)
    await db.commit()
    return infringement


@router.get("/{infringement_id}/enforcement-targets")
async def get_enforcement_targets(
    infringement_id: UUID,
    user_id: UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    whois: WhoisClient = Depends(get_whois_client),
):
    """Ordered enforcement targets: platform, hosting, registrar, then search engine."""
    infringement, _ = await _owned(db, infringement_id, user_id)

    if not infringement.whois_domain and whois.api_key:
        record = await whois.lookup(infringement.source_url)
        if record is not None:
            infringement.whois_domain = record.domain
            infringement.whois_registrant_org = record.registrant_organization
            infringement.whois_registrar_name = record.registrar_name
            infringement.whois_registrar_abuse_email = record.registrar_abuse_email
            await db.commit()

    return {"targets": [target.to_dict() for target in targets_for(infringement)]}


@router.get("/{infringement_id}/snapshot/verify", response_model=SnapshotIntegrityResponse)
async def verify_snapshot(
    infringement_id: UUID,
    user_id: UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Recompute the snapshot hash and report the timestamp proof."""
    infringement, _ = await _owned(db, infringement_id, user_id)
    snapshot = None
    if infringement.evidence_snapshot_id:
        snapshot = await db.get(EvidenceSnapshot, infringement.evidence_snapshot_id)
    if snapshot is None:
        raise HTTPException(status_code=404, detail="Evidence snapshot not found")

    proof = TimestampProof.model_validate(snapshot.timestamp_proof) if snapshot.timestamp_proof else None
    return SnapshotIntegrityResponse(
        snapshot_id=snapshot.id,
        content_hash=snapshot.content_hash,
        valid=verify_snapshot_integrity(snapshot),
        timestamp_status=proof.status if proof else None,
        timestamp_proof=format_timestamp_proof(proof) if proof else None,
        page_title=snapshot.page_title,
        wayback_url=snapshot.wayback_url,
    )
