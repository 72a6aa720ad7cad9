"""Pydantic schemas for API request/response validation."""

from datetime import datetime
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, Field


# ============================================================================
# Notice Schemas
# ============================================================================


class ContactOverride(BaseModel):
    """Rights holder contact supplied with a generate request."""

    full_name: str = Field(..., min_length=1)
    email: str = Field(..., min_length=3)
    company: str | None = None
    phone: str | None = None
    address: str | None = None
    is_copyright_owner: bool = True
    relationship_to_owner: str | None = None


class TargetOverride(BaseModel):
    """Recipient replacing the resolved enforcement target."""

    name: str
    dmca_email: str | None = None
    dmca_form_url: str | None = None
    agent_name: str | None = None
    target_type: str = "platform"


class EvidenceItem(BaseModel):
    """User-curated comparison pair."""

    original: str = Field(..., min_length=1)
    infringing: str = Field(..., min_length=1)


class GenerateNoticeRequest(BaseModel):
    """Schema for generating a DMCA notice."""

    infringement_id: UUID
    contact: ContactOverride | None = None
    target: TargetOverride | None = None
    evidence_items: list[EvidenceItem] = []


class GenerateNoticeResponse(BaseModel):
    """Generated notice with its quality report and target ladder."""

    notice: dict[str, Any]
    quality: dict[str, Any]
    enforcement_targets: list[dict[str, Any]]


# ============================================================================
# Bulk Queue Schemas
# ============================================================================


class SubmitBulkItem(BaseModel):
    """One notice in a bulk submission."""

    infringement_id: UUID
    provider_name: str = Field(..., min_length=1)
    delivery_method: Literal["email", "web_form", "manual"]
    notice_subject: str = Field(..., min_length=1)
    notice_body: str = Field(..., min_length=1)
    recipient_email: str | None = None
    recipient_name: str | None = None
    target_type: str = "platform"
    form_url: str | None = None
    cc_emails: list[str] = []


class SubmitBulkRequest(BaseModel):
    """Schema for submitting a batch of notices."""

    items: list[SubmitBulkItem]
    signature_name: str = ""
    perjury_confirmed: bool = False
    liability_confirmed: bool = False


class SubmitBulkResponse(BaseModel):
    batch_id: UUID
    total_queued: int
    email_count: int
    web_form_count: int
    estimated_completion_minutes: int


class QueueItemResponse(BaseModel):
    """Schema for a queued notice."""

    id: UUID
    batch_id: UUID
    infringement_id: UUID
    provider_name: str
    recipient_email: str | None = None
    recipient_name: str | None = None
    target_type: str
    delivery_method: str
    form_url: str | None = None
    notice_subject: str
    status: str
    attempt_count: int
    max_attempts: int
    error_message: str | None = None
    takedown_id: UUID | None = None
    scheduled_for: datetime
    completed_at: datetime | None = None
    created_at: datetime

    class Config:
        from_attributes = True


class BatchStatusResponse(BaseModel):
    """Aggregated batch counts plus per-item detail."""

    summary: dict[str, Any]
    items: list[QueueItemResponse]


class QueueItemAction(BaseModel):
    """Manual action on a queue item."""

    queue_item_id: UUID
    action: Literal["mark_submitted"]


# ============================================================================
# Infringement Schemas
# ============================================================================


class VerifyRequest(BaseModel):
    """Schema for verifying or rejecting an infringement."""

    action: Literal["verify", "reject"]


class VerifyResponse(BaseModel):
    success: bool
    action: str
    new_status: str
    evidence_snapshot_id: UUID | None = None
    message: str


class InfringementResponse(BaseModel):
    """Schema for infringement response."""

    id: UUID
    product_id: UUID
    source_url: str
    platform: str | None = None
    status: str
    severity_score: int = 0
    match_type: str | None = None
    match_confidence: float | None = None
    evidence: dict[str, Any] = {}
    infrastructure: dict[str, Any] = {}
    evidence_snapshot_id: UUID | None = None
    verified_by_user_at: datetime | None = None
    created_at: datetime | None = None

    class Config:
        from_attributes = True


class CollectEvidenceRequest(BaseModel):
    """Optional detection details for evidence collection."""

    detection_method: Literal["keyword", "hash", "manual"] = "keyword"
    matched_terms: list[str] = []
    matched_hash: str | None = None


class SnapshotIntegrityResponse(BaseModel):
    snapshot_id: UUID
    content_hash: str
    valid: bool
    timestamp_status: str | None = None
    timestamp_proof: str | None = None
    page_title: str | None = None
    wayback_url: str | None = None


# ============================================================================
# Intelligence Schemas
# ============================================================================


class OptimizeQueryRequest(BaseModel):
    """Schema for search query optimization."""

    platform: str = Field(..., min_length=1)
    base_query: str = Field(..., min_length=1)


class OptimizeQueryResponse(BaseModel):
    platform: str
    base_query: str
    optimized_query: str


class CandidateResult(BaseModel):
    """Scan result submitted for AI classification."""

    source_url: str
    platform: str
    risk_level: str = "medium"
    audience_size: str | None = None
    title: str | None = None
    snippet: str | None = None


class FilterRequest(BaseModel):
    """Schema for AI filtering of scan results."""

    results: list[CandidateResult] = Field(..., max_length=100)
