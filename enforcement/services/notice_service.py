"""
Notice Generation Service

Assembles everything needed to generate a DMCA notice for one confirmed
infringement:
- ownership and status checks
- contact resolution (request override, product contact, then profile)
- the enforcement target ladder and the notice recipient
- comparison items, the notice itself and its quality report
"""

import logging
from dataclasses import dataclass
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from enforcement.models.database import EvidenceSnapshot, Infringement, Product, Profile
from enforcement.models.records import AIExtractedData, EvidencePacket, InfrastructureSnapshot, TimestampProof
from enforcement.services.comparison_builder import MAX_ITEMS, ComparisonItem, build_comparison_items
from enforcement.services.infringement_profiles import detect_infringement_profile
from enforcement.services.notice_builder import (
    GOOD_FAITH_STATEMENT,
    PERJURY_STATEMENT,
    DMCAContact,
    Notice,
    NoticeEvidence,
    build_notice,
)
from enforcement.services.quality_checker import QualityInput, QualityResult, check_notice_quality
from enforcement.services.target_resolver import EnforcementTarget, ProviderInfo, resolve_all_targets

logger = logging.getLogger(__name__)

NOTICE_STATUSES = ("active", "takedown_sent")


class InfringementNotFound(Exception):
    pass


class InfringementAccessDenied(Exception):
    pass


class NoticeValidationError(Exception):
    """The notice cannot be generated until the caller fixes something."""

    def __init__(self, error: str, hint: str):
        self.error = error
        self.hint = hint
        super().__init__(error)


@dataclass
class GeneratedNotice:
    notice: Notice
    quality: QualityResult
    targets: list[EnforcementTarget]

    def to_dict(self) -> dict:
        return {
            "notice": self.notice.to_dict(),
            "quality": self.quality.to_dict(),
            "enforcement_targets": [target.to_dict() for target in self.targets],
        }


async def load_owned_infringement(
    db: AsyncSession,
    infringement_id: UUID,
    user_id: UUID,
) -> tuple[Infringement, Product]:
    """Fetch an infringement and its product, enforcing product ownership.

    Raises:
        InfringementNotFound: no such infringement
        InfringementAccessDenied: the caller does not own the product
    """
    infringement = await db.get(Infringement, infringement_id)
    if infringement is None:
        raise InfringementNotFound(str(infringement_id))
    product = await db.get(Product, infringement.product_id)
    if product is None or product.user_id != user_id:
        raise InfringementAccessDenied(str(infringement_id))
    return infringement, product


def targets_for(infringement: Infringement) -> list[EnforcementTarget]:
    infrastructure = InfrastructureSnapshot.from_stored(infringement.infrastructure)
    return resolve_all_targets(
        infringement.source_url,
        infringement.platform,
        infrastructure.hosting_provider,
        infringement.whois_registrar_name or infrastructure.registrar,
        infringement.whois_registrar_abuse_email,
    )


def contact_from_dict(data: dict) -> DMCAContact | None:
    if not data.get("full_name") or not data.get("email"):
        return None
    return DMCAContact(
        full_name=data["full_name"],
        email=data["email"],
        company=data.get("company"),
        phone=data.get("phone"),
        address=data.get("address"),
        is_copyright_owner=data.get("is_copyright_owner", True),
        relationship_to_owner=data.get("relationship_to_owner"),
    )


class NoticeService:
    """Generates notices for confirmed infringements."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def resolve_contact(self, product: Product, user_id: UUID, override: dict | None) -> DMCAContact:
        """Request override, then the product's DMCA contact, then the profile.

        Raises:
            NoticeValidationError: no usable contact or no mailing address
        """
        contact = None
        if override:
            contact = contact_from_dict(override)
        elif product.dmca_contact:
            contact = contact_from_dict(product.dmca_contact)
        else:
            profile = await self.db.get(Profile, user_id)
            if profile is not None and profile.full_name and profile.email:
                contact = DMCAContact(
                    full_name=profile.full_name,
                    email=profile.email,
                    company=profile.company,
                    phone=profile.phone,
                    address=profile.address,
                    is_copyright_owner=profile.is_copyright_owner,
                    relationship_to_owner=profile.relationship_to_owner,
                )

        if contact is None:
            raise NoticeValidationError(
                "DMCA contact information not found",
                "Please add DMCA contact information to your product or profile settings",
            )
        if not contact.address:
            raise NoticeValidationError(
                "Mailing address is required for a DMCA notice",
                "Add your mailing address to your profile or the product's DMCA contact",
            )
        return contact

    async def generate(
        self,
        infringement_id: UUID,
        user_id: UUID,
        contact_override: dict | None = None,
        target_override: dict | None = None,
        evidence_items: list[dict] | None = None,
    ) -> GeneratedNotice:
        """Build a notice, its quality report and the enforcement targets.

        Raises:
            InfringementNotFound, InfringementAccessDenied, NoticeValidationError
        """
        infringement, product = await load_owned_infringement(self.db, infringement_id, user_id)
        if infringement.status not in NOTICE_STATUSES:
            raise NoticeValidationError(
                "Infringement must be confirmed before generating DMCA notice",
                'Click "Confirm" on the infringement first',
            )

        contact = await self.resolve_contact(product, user_id, contact_override)

        targets = targets_for(infringement)
        if target_override:
            provider = ProviderInfo(
                name=target_override["name"],
                dmca_email=target_override.get("dmca_email"),
                dmca_form_url=target_override.get("dmca_form_url"),
                agent_name=target_override.get("agent_name") or target_override["name"],
                requirements="",
            )
        else:
            provider = targets[0].provider

        packet = EvidencePacket.from_stored(infringement.evidence)
        ai_data = AIExtractedData.from_stored(product.ai_extracted_data)
        snapshot = None
        if infringement.evidence_snapshot_id:
            snapshot = await self.db.get(EvidenceSnapshot, infringement.evidence_snapshot_id)

        comparison_items = self._comparison_items(infringement, product, packet, ai_data, snapshot, evidence_items)
        profile = detect_infringement_profile(
            infringement.platform, infringement.infringement_type, packet, infringement.source_url
        )

        notice_evidence = None
        timestamp_anchored = False
        if snapshot is not None:
            if snapshot.timestamp_proof:
                timestamp_anchored = TimestampProof.model_validate(snapshot.timestamp_proof).status != "failed"
            notice_evidence = NoticeEvidence(
                content_hash=snapshot.content_hash,
                timestamp_anchored=timestamp_anchored,
                captured_at=snapshot.captured_at,
                html_storage_path=snapshot.html_storage_path,
                wayback_url=snapshot.wayback_url,
                page_links_count=len(snapshot.page_links or []),
                page_text_length=len(snapshot.page_text or ""),
            )

        notice = build_notice(contact, product, infringement, profile, provider, comparison_items, notice_evidence)

        quality = check_notice_quality(QualityInput(
            contact_name=contact.full_name,
            contact_email=contact.email,
            contact_address=contact.address,
            contact_phone=contact.phone,
            product_name=product.name,
            product_description=product.description,
            product_url=product.url,
            copyright_reg_number=(product.copyright_info or {}).get("registration_number"),
            infringing_url=infringement.source_url,
            has_good_faith_statement=GOOD_FAITH_STATEMENT in notice.body,
            has_perjury_statement=PERJURY_STATEMENT in notice.body,
            has_signature="ELECTRONIC SIGNATURE" in notice.body,
            comparison_items=comparison_items,
            has_evidence_packet=snapshot is not None or bool(packet.screenshots or packet.matched_excerpts),
            has_unique_markers=bool(
                ai_data.unique_phrases or ai_data.unique_identifiers or ai_data.brand_identifiers
            ),
            has_blockchain_timestamp=timestamp_anchored,
            has_wayback_archive=bool(snapshot is not None and snapshot.wayback_url),
        ))

        logger.info(
            f"Generated {profile} notice for infringement {infringement.id} to {provider.name} "
            f"(quality {quality.score}, {quality.strength})"
        )
        return GeneratedNotice(notice=notice, quality=quality, targets=targets)

    @staticmethod
    def _comparison_items(
        infringement: Infringement,
        product: Product,
        packet: EvidencePacket,
        ai_data: AIExtractedData,
        snapshot: EvidenceSnapshot | None,
        evidence_items: list[dict] | None,
    ) -> list[ComparisonItem]:
        items = [
            ComparisonItem(original=item["original"], infringing=item["infringing"])
            for item in evidence_items or []
        ]
        seen = {item.original for item in items}
        built = build_comparison_items(
            product.name,
            infringement.source_url,
            product_url=product.url,
            product_type=product.type,
            evidence=packet,
            snapshot_matches=snapshot.evidence_matches if snapshot is not None else None,
            page_title=snapshot.page_title if snapshot is not None else None,
            captured_text=" ".join(packet.matched_excerpts),
            ai_data=ai_data,
        )
        for item in built:
            if item.original not in seen:
                items.append(item)
                seen.add(item.original)
        return items[:MAX_ITEMS]
