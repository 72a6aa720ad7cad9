"""Typed records for the JSON columns.

Every JSON blob stored on an entity (evidence packets, infrastructure
snapshots, AI extraction data, timestamp proofs, custody entries) has an
explicit record type here. Stored shapes carry ``schema_version``;
``from_stored()`` upgrades older shapes before validation so rows written
before a shape change keep loading.
"""

from typing import Any, ClassVar, Literal

from pydantic import BaseModel, ConfigDict, Field

SCHEMA_VERSION = 1


class VersionedRecord(BaseModel):
    """Base for records persisted in JSON columns."""

    model_config = ConfigDict(extra="ignore")

    schema_version: int = SCHEMA_VERSION

    # Renamed keys per legacy version: {old_key: new_key}
    LEGACY_RENAMES: ClassVar[dict[int, dict[str, str]]] = {}

    @classmethod
    def from_stored(cls, data: dict[str, Any] | None):
        """Load a stored blob, upgrading legacy shapes first."""
        if not data:
            return cls()
        payload = dict(data)
        version = payload.get("schema_version", 0)
        for legacy_version in sorted(cls.LEGACY_RENAMES):
            if version > legacy_version:
                continue
            for old_key, new_key in cls.LEGACY_RENAMES[legacy_version].items():
                if old_key in payload and new_key not in payload:
                    payload[new_key] = payload.pop(old_key)
        payload = cls._upgrade(payload, version)
        payload["schema_version"] = SCHEMA_VERSION
        return cls.model_validate(payload)

    @classmethod
    def _upgrade(cls, payload: dict[str, Any], version: int) -> dict[str, Any]:
        return payload

    def to_stored(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


# ============================================================================
# Evidence
# ============================================================================


class DetectionMetadata(BaseModel):
    """How and when an evidence packet was collected."""

    model_config = ConfigDict(extra="allow")

    detection_method: str = "automated_scan"
    matched_terms: list[str] = []
    platform: str | None = None
    collected_at: str | None = None
    product_name: str | None = None
    collection_error: str | None = None
    partial_collection: bool = False


class EvidencePacket(VersionedRecord):
    """Evidence gathered for a single detection."""

    LEGACY_RENAMES: ClassVar[dict[int, dict[str, str]]] = {
        0: {"excerpts": "matched_excerpts", "redirect_chain": "url_chain"},
    }

    screenshots: list[str] = []
    matched_excerpts: list[str] = []
    hash_matches: list[str] = []
    url_chain: list[str] = []
    detection_metadata: DetectionMetadata = Field(default_factory=DetectionMetadata)

    # Profile detection clues
    page_title: str | None = None
    has_price: bool = False
    is_marketplace: bool = False
    image_matches: list[str] = []

    @classmethod
    def _upgrade(cls, payload: dict[str, Any], version: int) -> dict[str, Any]:
        # v0 stored a single screenshot URL
        if version == 0 and payload.get("screenshot_url") and not payload.get("screenshots"):
            payload["screenshots"] = [payload.pop("screenshot_url")]
        return payload


class InfrastructureSnapshot(VersionedRecord):
    """Network and registration details of the host serving an infringement."""

    LEGACY_RENAMES: ClassVar[dict[int, dict[str, str]]] = {
        0: {"hosting": "hosting_provider", "ip": "ip_address"},
    }

    ip_address: str | None = None
    hosting_provider: str | None = None
    asn: str | None = None
    asn_org: str | None = None
    country: str | None = None
    registrar: str | None = None
    cdn: str | None = None
    nameservers: list[str] = []


class AIExtractedData(VersionedRecord):
    """Product fingerprint produced by AI analysis and keyword refresh."""

    keywords: list[str] = []
    brand_identifiers: list[str] = []
    unique_phrases: list[str] = []
    copyrighted_terms: list[str] = []
    piracy_search_terms: list[str] = []
    alternative_names: list[str] = []
    unique_identifiers: list[str] = []
    platform_search_terms: dict[str, list[str]] = {}
    extraction_metadata: dict[str, Any] = {}

    @classmethod
    def _upgrade(cls, payload: dict[str, Any], version: int) -> dict[str, Any]:
        # v0 kept generated piracy terms under an auto_ prefix
        if version == 0:
            for key in ("alternative_names", "unique_identifiers"):
                legacy = payload.pop(f"auto_{key}", None)
                if legacy and not payload.get(key):
                    payload[key] = legacy
        return payload

    def merged_with(self, update: "AIExtractedData") -> "AIExtractedData":
        """Merge a refresh result, keeping every prior value.

        List fields are unioned preserving order (existing first); dict
        fields are merged key by key.
        """
        merged = self.model_copy(deep=True)
        for name in (
            "keywords",
            "brand_identifiers",
            "unique_phrases",
            "copyrighted_terms",
            "piracy_search_terms",
            "alternative_names",
            "unique_identifiers",
        ):
            current = getattr(merged, name)
            seen = {value.lower() for value in current}
            for value in getattr(update, name):
                if value.lower() not in seen:
                    current.append(value)
                    seen.add(value.lower())
        for platform, terms in update.platform_search_terms.items():
            existing = merged.platform_search_terms.setdefault(platform, [])
            for term in terms:
                if term not in existing:
                    existing.append(term)
        merged.extraction_metadata = {**merged.extraction_metadata, **update.extraction_metadata}
        return merged


# ============================================================================
# Timestamps / Snapshots
# ============================================================================


TimestampStatus = Literal["pending", "confirmed", "failed"]


class TimestampProof(BaseModel):
    """OpenTimestamps proof for an evidence hash."""

    model_config = ConfigDict(extra="ignore")

    hash: str
    ots_file: str | None = None  # base64 serialized detached timestamp
    created_at: str
    status: TimestampStatus = "pending"
    bitcoin_block: int | None = None
    confirmation_date: str | None = None
    verification_url: str | None = None
    error: str | None = None


class CustodyEntry(BaseModel):
    """One append-only chain of custody event."""

    action: str
    actor: str
    timestamp: str
    ip_address: str | None = None
    user_agent: str | None = None
    details: dict[str, Any] = {}


class Attestation(BaseModel):
    """Human-readable attestation and its signature hash."""

    statement: str
    signature: str
    signed_by: str
    signed_at: str
