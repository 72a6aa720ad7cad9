"""
Evidence Snapshot Service

Creates the immutable evidence package for a verified infringement:
- Page capture: stored HTML, title, text, links and a Wayback Machine archive
- Canonical SHA-256 content hash
- Blockchain timestamp anchoring
- Chain of custody
- Signed legal attestation

A snapshot's hashed fields are never modified. Integrity is checked by
recomputing the hash from the stored fields.
"""

import hashlib
import json
import logging
from datetime import datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy.ext.asyncio import AsyncSession

from enforcement.models.database import EvidenceSnapshot, Infringement, Product
from enforcement.models.records import Attestation, CustodyEntry, EvidencePacket
from enforcement.services.evidence_collector import EvidenceCollector
from enforcement.services.timestamp_service import TimestampService

logger = logging.getLogger(__name__)

SCANNER_USER_AGENT = "Enforcement Scanner"


def canonical_content_hash(
    page_url: str,
    screenshot_url: str | None,
    html_storage_path: str | None,
    infrastructure: dict[str, Any],
    evidence: dict[str, Any],
    captured_at: str,
) -> str:
    """SHA-256 over the sorted-key, compact JSON of the hashed fields."""
    payload = json.dumps(
        {
            "url": page_url,
            "screenshot": screenshot_url,
            "html": html_storage_path,
            "infrastructure": infrastructure,
            "evidence": evidence,
            "timestamp": captured_at,
        },
        sort_keys=True,
        separators=(",", ":"),
    )
    return hashlib.sha256(payload.encode()).hexdigest()


def build_attestation(
    url: str,
    product_name: str,
    user_id: str,
    timestamp: str,
    content_hash: str,
) -> Attestation:
    """Create the attestation statement and its signature hash."""
    reviewed_at = datetime.fromisoformat(timestamp).strftime("%B %d, %Y at %H:%M:%S UTC")
    statement = (
        f"I, the undersigned, hereby attest that on {reviewed_at}, I personally reviewed "
        f"the content located at {url} and determined it to be an unauthorized copy or "
        f'infringement of "{product_name}". This determination was made in good faith '
        "based on my knowledge of the copyrighted work and the content observed at the URL. "
        "The evidence captured herein is a true and accurate representation of the content "
        "as it appeared at the time of review."
    )
    signature = hashlib.sha256(
        f"{statement}{user_id}{timestamp}{content_hash}".encode()
    ).hexdigest()
    return Attestation(statement=statement, signature=signature, signed_by=user_id, signed_at=timestamp)


def append_custody_event(chain: list[dict], entry: CustodyEntry) -> list[dict]:
    """Return a new chain with ``entry`` appended. ``chain`` is not modified."""
    return [*chain, entry.model_dump(mode="json")]


def verify_snapshot_integrity(snapshot: EvidenceSnapshot) -> bool:
    """Recompute the content hash from the stored fields and compare."""
    computed = canonical_content_hash(
        snapshot.page_url,
        snapshot.screenshot_url,
        snapshot.html_storage_path,
        snapshot.infrastructure or {},
        snapshot.evidence or {},
        snapshot.captured_at,
    )
    return computed == snapshot.content_hash


class EvidenceSnapshotService:
    """Creates and persists evidence snapshots."""

    def __init__(
        self,
        db: AsyncSession,
        timestamp_service: TimestampService | None = None,
        collector: EvidenceCollector | None = None,
    ):
        self.db = db
        self.timestamp_service = timestamp_service or TimestampService()
        self.collector = collector or EvidenceCollector()

    async def create_evidence_snapshot(
        self,
        infringement: Infringement,
        product: Product,
        user_id: UUID,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> EvidenceSnapshot:
        """Freeze the infringement's evidence into a hashed, attested snapshot.

        The snapshot is added to the session and linked from the
        infringement. Persistence errors propagate to the caller.
        """
        snapshot_id = uuid4()
        now = datetime.utcnow().isoformat()
        packet = EvidencePacket.from_stored(infringement.evidence)
        evidence = packet.to_stored()
        infrastructure = dict(infringement.infrastructure or {})

        screenshot_url = packet.screenshots[0] if packet.screenshots else None
        capture = await self.collector.capture_page(infringement.source_url, str(snapshot_id))
        html_storage_path = capture.html_storage_path

        content_hash = canonical_content_hash(
            infringement.source_url,
            screenshot_url,
            html_storage_path,
            infrastructure,
            evidence,
            now,
        )

        timestamp_proof = await self.timestamp_service.create_timestamp(content_hash)
        attestation = build_attestation(
            infringement.source_url, product.name, str(user_id), now, content_hash
        )

        detected_at = infringement.created_at or infringement.first_seen_at
        chain: list[dict] = []
        chain = append_custody_event(chain, CustodyEntry(
            action="infringement_detected",
            actor="system",
            timestamp=detected_at.isoformat() if detected_at else now,
            ip_address="system",
            user_agent=SCANNER_USER_AGENT,
        ))
        chain = append_custody_event(chain, CustodyEntry(
            action="evidence_snapshot_created",
            actor=str(user_id),
            timestamp=now,
            ip_address=ip_address,
            user_agent=user_agent,
            details={
                "content_hash": content_hash,
                "timestamp_status": timestamp_proof.status,
                "wayback_url": capture.wayback_url,
            },
        ))

        snapshot = EvidenceSnapshot(
            id=snapshot_id,
            infringement_id=infringement.id,
            user_id=user_id,
            page_url=infringement.source_url,
            screenshot_url=screenshot_url,
            html_storage_path=html_storage_path,
            infrastructure=infrastructure,
            evidence=evidence,
            captured_at=now,
            content_hash=content_hash,
            page_title=capture.page_title or packet.page_title,
            page_text=capture.page_text or None,
            page_links=capture.page_links,
            page_html_hash=capture.page_html_hash or None,
            wayback_url=capture.wayback_url,
            evidence_matches=[
                {
                    "type": "text_match",
                    "matched_text": excerpt,
                    "context": f'Found on page: "{excerpt}"',
                    "severity": "high",
                }
                for excerpt in packet.matched_excerpts
            ],
            timestamp_proof=timestamp_proof.model_dump(mode="json"),
            chain_of_custody=chain,
            attestation=attestation.model_dump(mode="json"),
        )
        self.db.add(snapshot)
        infringement.evidence_snapshot_id = snapshot_id
        await self.db.flush()

        logger.info(
            f"Evidence snapshot {snapshot_id} created for infringement {infringement.id} "
            f"(timestamp {timestamp_proof.status})"
        )
        return snapshot
