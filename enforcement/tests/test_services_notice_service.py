"""Tests for notice generation from stored infringements."""

from uuid import uuid4

import pytest

from enforcement.models.database import EvidenceSnapshot, Infringement, Product
from enforcement.services.notice_service import (
    InfringementAccessDenied,
    InfringementNotFound,
    NoticeService,
    NoticeValidationError,
    contact_from_dict,
)

OVERRIDE_CONTACT = {
    "full_name": "Sam Agent",
    "email": "sam@agency.example",
    "address": "9 Agency Road",
    "is_copyright_owner": False,
    "relationship_to_owner": "legal counsel",
}


class TestNoticeService:
    """Tests for ownership checks, contact resolution and the generated bundle."""

    @pytest.mark.asyncio
    async def test_generates_notice_from_profile_contact(self, session_factory, infringement, profile):
        async with session_factory() as session:
            generated = await NoticeService(session).generate(infringement.id, profile.id)

        notice = generated.notice
        assert notice.recipient_email == "dmca@telegram.org"
        assert "Alpha Trend Indicator" in notice.subject
        assert "/ Jane Creator /" in notice.body
        assert "owner@example.com" in notice.body
        assert "1 Main Street, Springfield" in notice.body
        assert generated.quality.passed is True
        assert generated.targets[0].provider.name == "Telegram"

        data = generated.to_dict()
        assert set(data) == {"notice", "quality", "enforcement_targets"}
        assert data["enforcement_targets"][0]["recommended"] is True

    @pytest.mark.asyncio
    async def test_page_capture_feeds_supplemental_evidence(self, session_factory, infringement, profile):
        async with session_factory() as session:
            snapshot = EvidenceSnapshot(
                id=uuid4(),
                infringement_id=infringement.id,
                user_id=profile.id,
                page_url=infringement.source_url,
                captured_at="2024-03-05T14:30:00",
                content_hash="ab" * 32,
                page_title="Alpha Trend Indicator free",
                page_text="x" * 4000,
                page_links=[{"href": "https://files.test/a.zip", "text": "a"}] * 3,
                wayback_url="https://web.archive.org/web/20240305143000/https://t.me/leakedindicators/42",
            )
            session.add(snapshot)
            stored = await session.get(Infringement, infringement.id)
            stored.evidence_snapshot_id = snapshot.id
            await session.commit()

        async with session_factory() as session:
            generated = await NoticeService(session).generate(infringement.id, profile.id)
        async with session_factory() as session:
            without_archive = await session.get(EvidenceSnapshot, snapshot.id)
            without_archive.wayback_url = None
            await session.commit()
        async with session_factory() as session:
            baseline = await NoticeService(session).generate(infringement.id, profile.id)

        body = generated.notice.body
        assert "Wayback Machine Archive: https://web.archive.org/web/20240305143000/" in body
        assert "Captured Page Content: 4KB of text preserved" in body
        assert "Page Links Captured: 3 outbound links recorded" in body
        assert "Wayback Machine Archive" not in baseline.notice.body
        assert generated.quality.score == min(100, baseline.quality.score + 2)

    @pytest.mark.asyncio
    async def test_contact_override_wins(self, session_factory, infringement, profile):
        async with session_factory() as session:
            generated = await NoticeService(session).generate(
                infringement.id, profile.id, contact_override=OVERRIDE_CONTACT
            )
        assert "/ Sam Agent /" in generated.notice.body
        assert "as legal counsel" in generated.notice.body

    @pytest.mark.asyncio
    async def test_product_contact_before_profile(self, session_factory, infringement, product, profile):
        async with session_factory() as session:
            stored = await session.get(Product, product.id)
            stored.dmca_contact = {**OVERRIDE_CONTACT, "full_name": "Product Contact"}
            await session.commit()

        async with session_factory() as session:
            generated = await NoticeService(session).generate(infringement.id, profile.id)
        assert "/ Product Contact /" in generated.notice.body

    @pytest.mark.asyncio
    async def test_target_override(self, session_factory, infringement, profile):
        async with session_factory() as session:
            generated = await NoticeService(session).generate(
                infringement.id,
                profile.id,
                target_override={"name": "Custom Host", "dmca_email": "abuse@custom.example"},
            )
        assert generated.notice.recipient_email == "abuse@custom.example"
        assert generated.notice.recipient_name == "Custom Host"

    @pytest.mark.asyncio
    async def test_caller_evidence_items_come_first(self, session_factory, infringement, profile):
        async with session_factory() as session:
            generated = await NoticeService(session).generate(
                infringement.id,
                profile.id,
                evidence_items=[{"original": "Chapter 1 text", "infringing": "Posted as message 42"}],
            )
        assert generated.notice.comparison_items[0].original == "Chapter 1 text"
        assert "1. Original: Chapter 1 text" in generated.notice.body

    @pytest.mark.asyncio
    async def test_unconfirmed_infringement_rejected(self, session_factory, make_infringement, profile):
        pending = await make_infringement(status="pending_verification")
        async with session_factory() as session:
            with pytest.raises(NoticeValidationError) as exc_info:
                await NoticeService(session).generate(pending.id, profile.id)
        assert exc_info.value.error == "Infringement must be confirmed before generating DMCA notice"
        assert exc_info.value.hint == 'Click "Confirm" on the infringement first'

    @pytest.mark.asyncio
    async def test_missing_address_rejected(self, session_factory, infringement, profile):
        async with session_factory() as session:
            with pytest.raises(NoticeValidationError) as exc_info:
                await NoticeService(session).generate(
                    infringement.id, profile.id, contact_override={**OVERRIDE_CONTACT, "address": None}
                )
        assert exc_info.value.error == "Mailing address is required for a DMCA notice"

    @pytest.mark.asyncio
    async def test_incomplete_override_has_no_contact(self, session_factory, infringement, profile):
        async with session_factory() as session:
            with pytest.raises(NoticeValidationError) as exc_info:
                await NoticeService(session).generate(
                    infringement.id, profile.id, contact_override={"full_name": "No Email"}
                )
        assert exc_info.value.error == "DMCA contact information not found"

    @pytest.mark.asyncio
    async def test_ownership(self, session_factory, infringement, profile):
        async with session_factory() as session:
            service = NoticeService(session)
            with pytest.raises(InfringementNotFound):
                await service.generate(uuid4(), profile.id)
            with pytest.raises(InfringementAccessDenied):
                await service.generate(infringement.id, uuid4())


class TestContactFromDict:
    """Tests for request contact parsing."""

    def test_requires_name_and_email(self):
        assert contact_from_dict({"email": "a@b.example"}) is None
        contact = contact_from_dict(OVERRIDE_CONTACT)
        assert contact.is_copyright_owner is False
        assert contact.company is None
