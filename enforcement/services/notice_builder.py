"""
DMCA Notice Builder

Assembles notices from structured data using a deterministic template
(no LLM involvement). Sections follow 17 U.S.C. §512(c)(3):

- A) Notifier / rights holder
- B) Copyrighted work identification
- C) Infringing material and comparison items
- D) Supplemental evidence (optional)
- E) Required statements
- F) Requested action
- G) Electronic signature
"""

from dataclasses import dataclass, field
from datetime import date, datetime

from enforcement.models.database import Infringement, Product
from enforcement.models.records import InfrastructureSnapshot
from enforcement.services.comparison_builder import ComparisonItem
from enforcement.services.infringement_profiles import get_profile_info
from enforcement.services.target_resolver import ProviderInfo

SECTION_RULE = "\n\n──────────────────────────────────────────\n\n"

GOOD_FAITH_STATEMENT = (
    "I have a good faith belief that the use of the copyrighted material described above is "
    "not authorized by the copyright owner, its agent, or the law."
)

PERJURY_STATEMENT = (
    "I swear, under penalty of perjury, that the information in this notification is accurate "
    "and that I am the copyright owner, or am authorized to act on behalf of the owner, of an "
    "exclusive right that is allegedly infringed."
)

PRODUCT_TYPE_TITLES = {
    "video_course": "Video Course",
    "ebook": "E-Book",
    "pdf": "PDF Document",
    "software": "Software Application",
    "images": "Image Collection",
    "audio": "Audio Content",
    "slides": "Presentation Slides",
    "trading_indicator": "Trading Indicator",
    "template": "Digital Template",
    "digital_asset": "Digital Asset",
    "course": "Online Course",
}


@dataclass
class DMCAContact:
    """Rights holder identity printed on the notice."""
    full_name: str
    email: str
    company: str | None = None
    phone: str | None = None
    address: str | None = None
    is_copyright_owner: bool = True
    relationship_to_owner: str | None = None


@dataclass
class NoticeEvidence:
    """Optional supplemental evidence references."""
    content_hash: str | None = None
    timestamp_anchored: bool = False
    wayback_url: str | None = None
    captured_at: str | None = None
    html_storage_path: str | None = None
    page_links_count: int = 0
    page_text_length: int = 0


@dataclass
class Notice:
    subject: str
    body: str
    recipient_email: str
    recipient_name: str
    recipient_form_url: str | None
    legal_references: list[str]
    evidence_links: list[str]
    sworn_statement: str
    comparison_items: list[ComparisonItem]
    profile: str
    delivery_method: str = "email"
    metadata: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "subject": self.subject,
            "body": self.body,
            "recipient_email": self.recipient_email,
            "recipient_name": self.recipient_name,
            "recipient_form_url": self.recipient_form_url,
            "legal_references": self.legal_references,
            "evidence_links": self.evidence_links,
            "sworn_statement": self.sworn_statement,
            "comparison_items": [item.to_dict() for item in self.comparison_items],
            "profile": self.profile,
            "delivery_method": self.delivery_method,
        }


def _long_date(value: date) -> str:
    return f"{value:%B} {value.day}, {value.year}"


def _parse_datetime(value: str | datetime | None) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def _rights_holder_section(contact: DMCAContact, provider: ProviderInfo) -> str:
    if contact.is_copyright_owner:
        standing = "I am the copyright owner of the work described below."
    else:
        relationship = f" as {contact.relationship_to_owner}" if contact.relationship_to_owner else ""
        standing = f"I am authorized to act on behalf of the copyright owner{relationship}."

    lines = ["Contact Information:", f"  Name: {contact.full_name}"]
    if contact.company:
        lines.append(f"  Company: {contact.company}")
    lines.append(f"  Email: {contact.email}")
    if contact.phone:
        lines.append(f"  Phone: {contact.phone}")
    if contact.address:
        lines.append(f"  Address: {contact.address}")

    return (
        f"Dear {provider.agent_name},\n\n"
        "I am writing to notify you of copyright infringement pursuant to the Digital "
        "Millennium Copyright Act, 17 U.S.C. §512(c)(3).\n\n"
        f"{standing}\n\n" + "\n".join(lines)
    )


def _work_section(product: Product) -> str:
    copyright_info = product.copyright_info or {}
    trademark_info = product.trademark_info or {}

    lines = ["IDENTIFICATION OF COPYRIGHTED WORK", "", f"  Title: {product.name}"]
    if product.type:
        lines.append(f"  Type: {PRODUCT_TYPE_TITLES.get(product.type, product.type)}")
    if product.price:
        lines.append(f"  Retail Price: ${product.price:g}")
    if product.url:
        lines.append(f"  Original URL: {product.url}")
    if product.description:
        lines.append(f"  Description: {product.description[:300]}")
    if copyright_info.get("registration_number"):
        lines.append(
            f"  Copyright Registration: {copyright_info['registration_number']} "
            f"({copyright_info.get('year') or ''})"
        )
    if copyright_info.get("holder_name"):
        lines.append(f"  Copyright Holder: {copyright_info['holder_name']}")
    if trademark_info.get("name"):
        registration = trademark_info.get("registration_number")
        suffix = f" (Reg. #{registration})" if registration else ""
        lines.append(f"  Trademark: {trademark_info['name']}{suffix}")

    lines.extend([
        "",
        "No authorization has been granted to the infringing party to reproduce, distribute, "
        "display, sell, or create derivative works from this content.",
    ])
    return "\n".join(lines)


def _infringement_section(
    infringement: Infringement,
    legal_basis: str,
    description: str,
    comparison_items: list[ComparisonItem],
) -> str:
    text = (
        "IDENTIFICATION OF INFRINGING MATERIAL\n\n"
        f"The following material constitutes {legal_basis}:\n\n"
        f"  Infringing URL: {infringement.source_url}"
    )
    if infringement.platform:
        text += f"\n  Platform: {infringement.platform}"
    first_seen = _parse_datetime(infringement.first_seen_at)
    if first_seen:
        text += f"\n  First Detected: {_long_date(first_seen)}"

    text += f"\n\n{description}"

    if comparison_items:
        text += "\n\nComparison of Original and Infringing Material:\n"
        for index, item in enumerate(comparison_items, start=1):
            text += f"\n  {index}. Original: {item.original}"
            text += f"\n     Infringing: {item.infringing}\n"
    return text


def _evidence_section(infringement: Infringement, evidence: NoticeEvidence) -> str:
    lines = ["SUPPLEMENTAL EVIDENCE", ""]

    captured = _parse_datetime(evidence.captured_at)
    if captured:
        lines.append(f"  Evidence Captured: {_long_date(captured)} at {captured:%H:%M} UTC")
    if evidence.content_hash:
        lines.append(f"  Content Fingerprint (SHA-256): {evidence.content_hash}")
    if evidence.wayback_url:
        lines.append(f"  Wayback Machine Archive: {evidence.wayback_url}")
    if evidence.timestamp_anchored:
        lines.append(
            "  Blockchain Timestamp: Evidence hash anchored to Bitcoin blockchain via OpenTimestamps"
        )
    if evidence.page_text_length:
        lines.append(
            f"  Captured Page Content: {round(evidence.page_text_length / 1000)}KB of text preserved"
        )
    if evidence.page_links_count:
        lines.append(f"  Page Links Captured: {evidence.page_links_count} outbound links recorded")
    if evidence.html_storage_path:
        lines.append("  Full HTML Archive: Preserved in secure storage")

    infrastructure = InfrastructureSnapshot.from_stored(infringement.infrastructure)
    if infrastructure.ip_address or infrastructure.hosting_provider:
        lines.extend(["", "  Server Infrastructure:"])
        if infrastructure.ip_address:
            lines.append(f"    IP Address: {infrastructure.ip_address}")
        if infrastructure.hosting_provider:
            lines.append(f"    Hosting Provider: {infrastructure.hosting_provider}")
        if infrastructure.country:
            lines.append(f"    Server Location: {infrastructure.country}")

    if infringement.whois_domain:
        lines.extend(["", "  Domain Registration:", f"    Domain: {infringement.whois_domain}"])
        if infringement.whois_registrant_org:
            lines.append(f"    Registered To: {infringement.whois_registrant_org}")
        if infringement.whois_registrar_name:
            lines.append(f"    Registrar: {infringement.whois_registrar_name}")

    lines.extend([
        "",
        "The above evidence is supplemental and is provided to assist in identifying the "
        "infringing material.",
    ])
    return "\n".join(lines)


def build_notice(
    contact: DMCAContact,
    product: Product,
    infringement: Infringement,
    profile: str,
    provider: ProviderInfo,
    comparison_items: list[ComparisonItem],
    evidence: NoticeEvidence | None = None,
    today: date | None = None,
) -> Notice:
    """Build a complete DMCA notice.

    The statutory sections are always present; the supplemental evidence
    section is added only when ``evidence`` is given.
    """
    profile_info = get_profile_info(profile)
    today = today or datetime.utcnow().date()

    sections = [
        _rights_holder_section(contact, provider),
        _work_section(product),
        _infringement_section(
            infringement, profile_info.legal_basis, profile_info.description, comparison_items
        ),
    ]
    if evidence is not None:
        sections.append(_evidence_section(infringement, evidence))

    sections.append(
        "STATEMENTS PURSUANT TO 17 U.S.C. §512(c)(3)\n\n"
        f"{GOOD_FAITH_STATEMENT}\n\n{PERJURY_STATEMENT}"
    )
    sections.append(
        "REQUESTED ACTION\n\n"
        "Pursuant to 17 U.S.C. §512(c), I respectfully request that you:\n\n"
        "  1. Expeditiously remove or disable access to the infringing material identified above.\n"
        "  2. Notify the individual responsible for the infringing material of this takedown request.\n"
        "  3. Inform me in writing of the actions taken in response to this notice.\n"
        "  4. Take reasonable steps to identify and remove any additional copies of this material "
        "hosted on your service.\n\n"
        "Please be advised that, pursuant to 17 U.S.C. §512(f), any person who knowingly and "
        "materially misrepresents that material is infringing may be subject to liability for damages."
    )

    signer = contact.full_name
    if contact.company:
        signer += f"\n{contact.company}"
    sections.append(
        "ELECTRONIC SIGNATURE\n\n"
        f"/ {contact.full_name} /\n\n"
        f"{signer}\n"
        f"Date: {_long_date(today)}\n\n"
        "This notice is submitted in compliance with the Digital Millennium Copyright Act "
        "(17 U.S.C. §512)."
    )

    legal_references = [
        "17 U.S.C. §512(c)(3) — DMCA Safe Harbor Notification Requirements",
        "17 U.S.C. §106 — Exclusive Rights in Copyrighted Works",
    ]
    if (product.trademark_info or {}).get("name"):
        legal_references.append("15 U.S.C. §1114 — Lanham Act (Trademark Protection)")

    return Notice(
        subject=f'DMCA Takedown Notice — Unauthorized {profile_info.label} of "{product.name}"',
        body=SECTION_RULE.join(sections),
        recipient_email=provider.dmca_email or "",
        recipient_name=provider.agent_name,
        recipient_form_url=provider.dmca_form_url,
        legal_references=legal_references,
        evidence_links=[infringement.source_url],
        sworn_statement=PERJURY_STATEMENT,
        comparison_items=comparison_items,
        profile=profile,
        delivery_method=provider.delivery_method,
    )
