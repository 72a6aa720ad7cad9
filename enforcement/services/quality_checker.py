"""
DMCA Notice Quality Checker

Scores a notice from 0 to 100. Errors mark statutory elements that are
missing; warnings mark a weaker but sendable notice. The check is
informational and never blocks generation.
"""

from dataclasses import asdict, dataclass, field

from enforcement.services.comparison_builder import ComparisonItem

ERROR_PENALTY = 15
WARNING_PENALTY = 4

REGENERATE_FIX = "This is auto-included by the notice builder. Regenerate the notice."


@dataclass
class QualityIssue:
    code: str
    message: str
    fix: str


@dataclass
class QualityInput:
    # Rights holder
    contact_name: str | None = None
    contact_email: str | None = None
    contact_address: str | None = None
    contact_phone: str | None = None

    # Copyrighted work
    product_name: str | None = None
    product_description: str | None = None
    product_url: str | None = None
    copyright_reg_number: str | None = None

    # Infringing material
    infringing_url: str | None = None

    # Notice content
    has_good_faith_statement: bool = False
    has_perjury_statement: bool = False
    has_signature: bool = False

    # Strength boosters
    comparison_items: list[ComparisonItem] = field(default_factory=list)
    has_evidence_packet: bool = False
    has_unique_markers: bool = False
    has_blockchain_timestamp: bool = False
    has_wayback_archive: bool = False


@dataclass
class QualityResult:
    passed: bool
    score: int
    strength: str  # strong | standard | weak
    errors: list[QualityIssue]
    warnings: list[QualityIssue]

    def to_dict(self) -> dict:
        return asdict(self)


def check_notice_quality(data: QualityInput) -> QualityResult:
    """Score a notice and list what to fix."""
    errors: list[QualityIssue] = []
    warnings: list[QualityIssue] = []

    if not data.contact_name:
        errors.append(QualityIssue(
            "NO_CONTACT_NAME", "Rights holder name is missing",
            "Add your full legal name to your profile",
        ))
    if not data.contact_email:
        errors.append(QualityIssue(
            "NO_CONTACT_EMAIL", "Contact email is missing",
            "Add your email address to your profile",
        ))
    if not data.contact_address:
        errors.append(QualityIssue(
            "NO_CONTACT_ADDRESS", "Mailing address is missing (required by §512)",
            "Add your mailing address to your profile or the product's DMCA contact",
        ))
    if not data.product_name:
        errors.append(QualityIssue(
            "NO_PRODUCT_NAME", "Copyrighted work title is missing",
            "Ensure your product has a name",
        ))
    if not data.infringing_url:
        errors.append(QualityIssue(
            "NO_INFRINGING_URL", "No infringing URL specified",
            "An infringing URL must be provided",
        ))
    if not data.has_good_faith_statement:
        errors.append(QualityIssue(
            "NO_GOOD_FAITH", "Good faith belief statement is missing", REGENERATE_FIX,
        ))
    if not data.has_perjury_statement:
        errors.append(QualityIssue(
            "NO_PERJURY", "Accuracy statement under penalty of perjury is missing", REGENERATE_FIX,
        ))
    if not data.has_signature:
        errors.append(QualityIssue(
            "NO_SIGNATURE", "Electronic signature is missing", REGENERATE_FIX,
        ))

    comparisons = len(data.comparison_items)
    if comparisons < 3:
        plural = "" if comparisons == 1 else "s"
        warnings.append(QualityIssue(
            "FEW_COMPARISONS", f"Only {comparisons} comparison item{plural} (3+ recommended)",
            "Run a scan to detect more evidence, or add comparison details manually when editing the notice",
        ))
    if not data.has_evidence_packet:
        warnings.append(QualityIssue(
            "NO_EVIDENCE", "No evidence packet attached",
            "Confirm the infringement to trigger automatic evidence capture",
        ))
    if not data.copyright_reg_number:
        warnings.append(QualityIssue(
            "NO_COPYRIGHT_REG", "No copyright registration number",
            "Add your copyright registration number to the product. Not required, but it "
            "significantly strengthens the notice.",
        ))
    if not data.has_unique_markers:
        warnings.append(QualityIssue(
            "NO_UNIQUE_MARKERS", "No unique markers identified (watermarks, distinctive phrases)",
            "Add unique identifiers to your product that make infringement easier to prove",
        ))
    if not data.contact_phone:
        warnings.append(QualityIssue(
            "NO_PHONE", "No phone number provided",
            "Add a phone number to your profile for stronger contact credibility",
        ))
    if not data.product_url:
        warnings.append(QualityIssue(
            "NO_PRODUCT_URL", "No original product URL provided",
            "Add the official product URL to your product settings",
        ))
    if not data.product_description or len(data.product_description) < 20:
        warnings.append(QualityIssue(
            "WEAK_DESCRIPTION", "Product description is missing or too short",
            "Add a detailed description (20+ characters) to your product settings",
        ))

    score = 100 - len(errors) * ERROR_PENALTY - len(warnings) * WARNING_PENALTY

    if comparisons >= 3:
        score += 5
    if data.has_evidence_packet:
        score += 5
    if data.copyright_reg_number:
        score += 3
    if data.has_blockchain_timestamp:
        score += 3
    if data.has_wayback_archive:
        score += 2
    if data.has_unique_markers:
        score += 2

    score = max(0, min(100, score))
    passed = not errors

    if passed and score >= 85 and len(warnings) <= 2:
        strength = "strong"
    elif passed and score >= 60:
        strength = "standard"
    else:
        strength = "weak"

    return QualityResult(passed=passed, score=score, strength=strength, errors=errors, warnings=warnings)
