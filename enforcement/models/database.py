"""SQLAlchemy ORM database models for the enforcement pipeline.

Defines all database tables and relationships using SQLAlchemy 2.0
declarative mapping with ``Mapped`` type annotations. All models inherit
from ``Base`` which maps dict and list annotations to JSONB on PostgreSQL
(plain JSON elsewhere).

Core entity relationships:
    Profile --1:N--> Product --1:N--> Infringement
    Infringement --1:0..1--> EvidenceSnapshot
    Infringement --1:N--> StatusTransition
    Infringement --1:N--> DMCAQueueItem (grouped by batch_id)
    Infringement --1:N--> Takedown --1:N--> Communication
    Product --1:N--> LearningPattern
    Product --1:N--> AIPerformanceMetric, OptimizedQuery
    SystemLog (standalone)
"""

from datetime import date, datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

JSONType = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Base class for all ORM models.

    Configures automatic JSON column mapping for ``dict[str, Any]`` and
    ``list[Any]`` type annotations, so Python dicts and lists are stored
    as PostgreSQL JSONB columns without explicit column type declarations.
    """

    type_annotation_map = {
        dict[str, Any]: JSONType,
        list[Any]: JSONType,
    }


class Profile(Base):
    """A rights holder account and its default DMCA contact details."""

    __tablename__ = "profiles"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    email: Mapped[str] = mapped_column(String(320), nullable=False)
    dmca_reply_email: Mapped[str | None] = mapped_column(String(320))
    full_name: Mapped[str | None] = mapped_column(String(256))
    company: Mapped[str | None] = mapped_column(String(256))
    phone: Mapped[str | None] = mapped_column(String(64))
    address: Mapped[str | None] = mapped_column(Text)
    is_copyright_owner: Mapped[bool] = mapped_column(Boolean, default=True)
    relationship_to_owner: Mapped[str | None] = mapped_column(String(256))
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    products: Mapped[list["Product"]] = relationship(back_populates="owner")


class Product(Base):
    """A protected digital product.

    ``ai_extracted_data`` holds the versioned ``AIExtractedData`` record
    produced by product analysis and keyword refresh.
    """

    __tablename__ = "products"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(ForeignKey("profiles.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(512), nullable=False)
    type: Mapped[str | None] = mapped_column(String(64))
    price: Mapped[float | None] = mapped_column(Float)
    url: Mapped[str | None] = mapped_column(String(2048))
    description: Mapped[str | None] = mapped_column(Text)
    brand_name: Mapped[str | None] = mapped_column(String(256))
    keywords: Mapped[list[Any]] = mapped_column(default=list)

    # IP Protection
    copyright_info: Mapped[dict[str, Any] | None] = mapped_column()
    trademark_info: Mapped[dict[str, Any] | None] = mapped_column()
    dmca_contact: Mapped[dict[str, Any] | None] = mapped_column()

    # AI Analysis
    ai_extracted_data: Mapped[dict[str, Any] | None] = mapped_column()
    last_keyword_refresh_at: Mapped[datetime | None] = mapped_column(DateTime)

    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    owner: Mapped["Profile"] = relationship(back_populates="products")
    infringements: Mapped[list["Infringement"]] = relationship(back_populates="product")


class Infringement(Base):
    """A detected instance of unauthorized use of a product.

    Status lifecycle (enforced by ``services.infringement_workflow``):
        pending_verification -> active | false_positive
        active -> takedown_sent -> removed | disputed

    Rows are never hard-deleted; ``removed``, ``false_positive`` and
    ``archived`` are terminal.
    """

    __tablename__ = "infringements"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    product_id: Mapped[UUID] = mapped_column(ForeignKey("products.id"), nullable=False)
    user_id: Mapped[UUID] = mapped_column(Uuid, nullable=False)
    source_url: Mapped[str] = mapped_column(String(2048), nullable=False)
    url_normalized: Mapped[str | None] = mapped_column(String(512))
    platform: Mapped[str | None] = mapped_column(String(64))
    status: Mapped[str] = mapped_column(String(32), default="pending_verification")
    severity_score: Mapped[int] = mapped_column(Integer, default=0)

    # Detection
    match_type: Mapped[str | None] = mapped_column(String(64))
    match_confidence: Mapped[float | None] = mapped_column(Float)
    monetization_detected: Mapped[bool] = mapped_column(Boolean, default=False)
    infringement_type: Mapped[str | None] = mapped_column(String(64))
    evidence: Mapped[dict[str, Any]] = mapped_column(default=dict)
    infrastructure: Mapped[dict[str, Any]] = mapped_column(default=dict)

    # WHOIS
    whois_domain: Mapped[str | None] = mapped_column(String(256))
    whois_registrant_org: Mapped[str | None] = mapped_column(String(512))
    whois_registrar_name: Mapped[str | None] = mapped_column(String(256))
    whois_registrar_abuse_email: Mapped[str | None] = mapped_column(String(320))

    # Verification
    evidence_snapshot_id: Mapped[UUID | None] = mapped_column(Uuid)
    verified_by_user_at: Mapped[datetime | None] = mapped_column(DateTime)

    first_seen_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    updated_at: Mapped[datetime | None] = mapped_column(DateTime, onupdate=func.now())

    product: Mapped["Product"] = relationship(back_populates="infringements")


class EvidenceSnapshot(Base):
    """Immutable, hashed and attested evidence captured at verification time.

    ``content_hash`` is the SHA-256 of the canonical JSON of
    (page_url, screenshot_url, html_storage_path, infrastructure, evidence,
    captured_at). Only ``timestamp_proof`` and ``chain_of_custody`` may be
    replaced later, and only by appending (custody) or upgrading a pending
    proof.
    """

    __tablename__ = "evidence_snapshots"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    infringement_id: Mapped[UUID] = mapped_column(
        ForeignKey("infringements.id"), nullable=False, unique=True
    )
    user_id: Mapped[UUID] = mapped_column(Uuid, nullable=False)

    # Hashed fields
    page_url: Mapped[str] = mapped_column(String(2048), nullable=False)
    screenshot_url: Mapped[str | None] = mapped_column(String(2048))
    html_storage_path: Mapped[str | None] = mapped_column(String(1024))
    infrastructure: Mapped[dict[str, Any]] = mapped_column(default=dict)
    evidence: Mapped[dict[str, Any]] = mapped_column(default=dict)
    captured_at: Mapped[str] = mapped_column(String(64), nullable=False)
    content_hash: Mapped[str] = mapped_column(String(64), nullable=False)

    # Page capture, outside the hash
    page_title: Mapped[str | None] = mapped_column(String(1024))
    page_text: Mapped[str | None] = mapped_column(Text)
    page_links: Mapped[list[Any]] = mapped_column(default=list)
    page_html_hash: Mapped[str | None] = mapped_column(String(64))
    wayback_url: Mapped[str | None] = mapped_column(String(2048))

    evidence_matches: Mapped[list[Any]] = mapped_column(default=list)
    timestamp_proof: Mapped[dict[str, Any] | None] = mapped_column()
    chain_of_custody: Mapped[list[Any]] = mapped_column(default=list)
    attestation: Mapped[dict[str, Any]] = mapped_column(default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())


class StatusTransition(Base):
    """Audit trail entry for an infringement status change."""

    __tablename__ = "status_transitions"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    infringement_id: Mapped[UUID] = mapped_column(ForeignKey("infringements.id"), nullable=False)
    from_status: Mapped[str] = mapped_column(String(32), nullable=False)
    to_status: Mapped[str] = mapped_column(String(32), nullable=False)
    triggered_by: Mapped[UUID | None] = mapped_column(Uuid)
    reason: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())


class Takedown(Base):
    """A notice that was actually delivered (or manually submitted)."""

    __tablename__ = "takedowns"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    infringement_id: Mapped[UUID] = mapped_column(ForeignKey("infringements.id"), nullable=False)
    user_id: Mapped[UUID] = mapped_column(Uuid, nullable=False)
    type: Mapped[str] = mapped_column(String(32), default="dmca")
    status: Mapped[str] = mapped_column(String(32), default="sent")
    delivery_method: Mapped[str] = mapped_column(String(16), default="email")
    recipient_email: Mapped[str | None] = mapped_column(String(320))
    recipient_name: Mapped[str | None] = mapped_column(String(256))
    notice_subject: Mapped[str | None] = mapped_column(String(1024))
    notice_content: Mapped[str | None] = mapped_column(Text)
    queue_item_id: Mapped[UUID | None] = mapped_column(Uuid)
    sent_at: Mapped[datetime | None] = mapped_column(DateTime)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())


class DMCAQueueItem(Base):
    """One notice in a staggered bulk dispatch batch.

    Items sharing a ``batch_id`` form a DMCABatch. Status machine:
        pending -> processing -> sent | failed
        pending -> web_form (awaits manual confirmation)
        pending -> skipped (cancellation)
        failed retries re-enter pending while attempt_count < max_attempts
    """

    __tablename__ = "dmca_send_queue"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(Uuid, nullable=False, index=True)
    batch_id: Mapped[UUID] = mapped_column(Uuid, nullable=False, index=True)
    infringement_id: Mapped[UUID] = mapped_column(ForeignKey("infringements.id"), nullable=False)

    # Recipient
    recipient_email: Mapped[str | None] = mapped_column(String(320))
    recipient_name: Mapped[str | None] = mapped_column(String(256))
    provider_name: Mapped[str] = mapped_column(String(256), nullable=False)
    target_type: Mapped[str] = mapped_column(String(32), default="platform")
    delivery_method: Mapped[str] = mapped_column(String(16), nullable=False)
    form_url: Mapped[str | None] = mapped_column(String(2048))

    # Notice
    notice_subject: Mapped[str] = mapped_column(String(1024), nullable=False)
    notice_body: Mapped[str] = mapped_column(Text, nullable=False)
    cc_emails: Mapped[list[Any]] = mapped_column(default=list)

    # Processing
    status: Mapped[str] = mapped_column(String(16), default="pending", index=True)
    priority: Mapped[int] = mapped_column(Integer, default=0)
    attempt_count: Mapped[int] = mapped_column(Integer, default=0)
    max_attempts: Mapped[int] = mapped_column(Integer, default=3)

    # Results
    takedown_id: Mapped[UUID | None] = mapped_column(Uuid)
    resend_message_id: Mapped[str | None] = mapped_column(String(256))
    error_message: Mapped[str | None] = mapped_column(Text)

    # Timing
    scheduled_for: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    processing_started_at: Mapped[datetime | None] = mapped_column(DateTime)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime, onupdate=func.now())


class LearningPattern(Base):
    """A learned signal derived from user verify/reject feedback.

    ``confidence_score`` is the share of occurrences that agreed with the
    pattern's polarity (verified_count for ``verified_*`` types,
    rejected_count for ``false_positive_*`` types).
    """

    __tablename__ = "intelligence_patterns"
    __table_args__ = (
        UniqueConstraint("product_id", "pattern_type", "pattern_value", name="uq_pattern_key"),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    product_id: Mapped[UUID] = mapped_column(ForeignKey("products.id"), nullable=False)
    user_id: Mapped[UUID] = mapped_column(Uuid, nullable=False)
    pattern_type: Mapped[str] = mapped_column(String(32), nullable=False)
    pattern_value: Mapped[str] = mapped_column(String(1024), nullable=False)
    platform: Mapped[str | None] = mapped_column(String(64))
    occurrences: Mapped[int] = mapped_column(Integer, default=1)
    verified_count: Mapped[int] = mapped_column(Integer, default=0)
    rejected_count: Mapped[int] = mapped_column(Integer, default=0)
    confidence_score: Mapped[float] = mapped_column(Float, default=0.0)
    first_seen_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    last_seen_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())


class AIPerformanceMetric(Base):
    """Daily detection precision snapshot for a product."""

    __tablename__ = "ai_performance_metrics"
    __table_args__ = (UniqueConstraint("product_id", "date", name="uq_metric_day"),)

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    product_id: Mapped[UUID] = mapped_column(ForeignKey("products.id"), nullable=False)
    user_id: Mapped[UUID] = mapped_column(Uuid, nullable=False)
    metric_date: Mapped[date] = mapped_column("date", Date, nullable=False)
    total_detections: Mapped[int] = mapped_column(Integer, default=0)
    verified_infringements: Mapped[int] = mapped_column(Integer, default=0)
    false_positives: Mapped[int] = mapped_column(Integer, default=0)
    precision_rate: Mapped[float] = mapped_column(Float, default=0.0)
    ai_pass_rate: Mapped[float] = mapped_column(Float, default=0.0)


class OptimizedQuery(Base):
    """A search query rewritten from learned patterns."""

    __tablename__ = "optimized_queries"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    product_id: Mapped[UUID] = mapped_column(ForeignKey("products.id"), nullable=False)
    platform: Mapped[str] = mapped_column(String(64), nullable=False)
    base_query: Mapped[str] = mapped_column(Text, nullable=False)
    optimized_query: Mapped[str] = mapped_column(Text, nullable=False)
    optimization_reason: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())


class Communication(Base):
    """Outbound delivery log for takedown correspondence."""

    __tablename__ = "communications"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(Uuid, nullable=False)
    infringement_id: Mapped[UUID] = mapped_column(ForeignKey("infringements.id"), nullable=False)
    takedown_id: Mapped[UUID | None] = mapped_column(Uuid)
    channel: Mapped[str] = mapped_column(String(16), default="email")
    direction: Mapped[str] = mapped_column(String(16), default="outbound")
    recipient: Mapped[str | None] = mapped_column(String(320))
    subject: Mapped[str | None] = mapped_column(String(1024))
    body: Mapped[str | None] = mapped_column(Text)
    external_message_id: Mapped[str | None] = mapped_column(String(256))
    status: Mapped[str] = mapped_column(String(16), default="sent")
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())


class SystemLog(Base):
    """Persistent operational log entry written by ``SystemLogWriter``."""

    __tablename__ = "system_logs"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    log_source: Mapped[str] = mapped_column(String(32), nullable=False)
    log_level: Mapped[str] = mapped_column(String(16), nullable=False)
    operation: Mapped[str] = mapped_column(String(256), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    duration_ms: Mapped[int | None] = mapped_column(Integer)
    trace_id: Mapped[str | None] = mapped_column(String(128))
    user_id: Mapped[UUID | None] = mapped_column(Uuid)
    product_id: Mapped[UUID | None] = mapped_column(Uuid)
    context: Mapped[dict[str, Any]] = mapped_column(default=dict)
    error_message: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
