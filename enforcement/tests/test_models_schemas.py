"""
Tests for Pydantic schemas.
"""

from uuid import uuid4

import pytest
from pydantic import ValidationError

from enforcement.models.schemas import (
    FilterRequest,
    GenerateNoticeRequest,
    OptimizeQueryRequest,
    SubmitBulkItem,
    SubmitBulkRequest,
    VerifyRequest,
)


class TestNoticeSchemas:
    """Tests for notice generation schemas."""

    def test_generate_minimal(self):
        """Test generating with only the infringement id."""
        request = GenerateNoticeRequest(infringement_id=uuid4())
        assert request.contact is None
        assert request.evidence_items == []

    def test_contact_requires_name(self):
        """Test contact override validation."""
        with pytest.raises(ValidationError):
            GenerateNoticeRequest(infringement_id=uuid4(), contact={"full_name": "", "email": "a@b.co"})


class TestBulkSchemas:
    """Tests for bulk queue schemas."""

    def _item(self, **changes):
        values = dict(
            infringement_id=uuid4(),
            provider_name="Telegram",
            delivery_method="email",
            notice_subject="DMCA Takedown Notice",
            notice_body="Body",
            recipient_email="dmca@telegram.org",
        )
        values.update(changes)
        return values

    def test_submit_defaults(self):
        """Test attestation fields default to unset."""
        request = SubmitBulkRequest(items=[self._item()])
        assert request.signature_name == ""
        assert request.perjury_confirmed is False
        assert request.items[0].target_type == "platform"

    def test_invalid_delivery_method(self):
        """Test delivery method must be known."""
        with pytest.raises(ValidationError):
            SubmitBulkItem(**self._item(delivery_method="fax"))

    def test_empty_body_rejected(self):
        """Test notice body is required."""
        with pytest.raises(ValidationError):
            SubmitBulkItem(**self._item(notice_body=""))


class TestInfringementSchemas:
    """Tests for infringement schemas."""

    def test_verify_action(self):
        """Test verify action must be verify or reject."""
        assert VerifyRequest(action="reject").action == "reject"
        with pytest.raises(ValidationError):
            VerifyRequest(action="approve")


class TestIntelligenceSchemas:
    """Tests for intelligence schemas."""

    def test_optimize_requires_query(self):
        """Test base query must not be empty."""
        with pytest.raises(ValidationError):
            OptimizeQueryRequest(platform="google", base_query="")

    def test_filter_limit(self):
        """Test at most 100 results per filter request."""
        result = {"source_url": "https://a.test", "platform": "google"}
        assert len(FilterRequest(results=[result] * 100).results) == 100
        with pytest.raises(ValidationError):
            FilterRequest(results=[result] * 101)
