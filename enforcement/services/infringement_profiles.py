"""
Infringement Profiles

Maps detected infringements to legally precise profiles, each naming the
17 U.S.C. §106 rights it violates. The profile drives the legal framing of
the notice body.
"""

from dataclasses import dataclass

from enforcement.models.records import EvidencePacket


@dataclass(frozen=True)
class ProfileInfo:
    id: str
    label: str
    legal_basis: str
    description: str


PROFILES: dict[str, ProfileInfo] = {
    "full_reupload": ProfileInfo(
        id="full_reupload",
        label="Full Reupload / Mirror",
        legal_basis=(
            "reproduction, distribution, and public display of the copyrighted work in its "
            "entirety, in violation of 17 U.S.C. §106(1), §106(3), and §106(5)"
        ),
        description=(
            "The infringing material is a complete or substantially complete copy of the "
            "copyrighted work, reproduced and made available without authorization."
        ),
    ),
    "copied_text": ProfileInfo(
        id="copied_text",
        label="Copied Text / Content Scrape",
        legal_basis=(
            "reproduction and public display of substantial textual content from the "
            "copyrighted work, in violation of 17 U.S.C. §106(1) and §106(5)"
        ),
        description=(
            "The infringing material contains substantial portions of text, descriptions, or "
            "written content copied directly from the copyrighted work."
        ),
    ),
    "copied_images": ProfileInfo(
        id="copied_images",
        label="Copied Images / Visual Assets",
        legal_basis=(
            "reproduction and public display of copyrighted visual assets, in violation of "
            "17 U.S.C. §106(1) and §106(5)"
        ),
        description=(
            "The infringing material contains copyrighted screenshots, graphics, images, or "
            "other visual assets reproduced without authorization."
        ),
    ),
    "leaked_download": ProfileInfo(
        id="leaked_download",
        label="Leaked Download / File Distribution",
        legal_basis=(
            "unauthorized reproduction and distribution of copyrighted digital files, in "
            "violation of 17 U.S.C. §106(1) and §106(3)"
        ),
        description=(
            "The copyrighted work has been made available for unauthorized download or "
            "distribution through file sharing, messaging platforms, or cyberlockers."
        ),
    ),
    "unauthorized_resale": ProfileInfo(
        id="unauthorized_resale",
        label="Unauthorized Resale",
        legal_basis=(
            "unauthorized reproduction, distribution, and commercial exploitation of the "
            "copyrighted work, in violation of 17 U.S.C. §106(1), §106(3), and §106(5)"
        ),
        description=(
            "The copyrighted work is being offered for sale or commercial distribution "
            "without any license or authorization from the copyright holder."
        ),
    ),
    "partial_copy": ProfileInfo(
        id="partial_copy",
        label="Partial Copy / Excerpt",
        legal_basis=(
            "reproduction and public display of substantial portions of the copyrighted "
            "work, in violation of 17 U.S.C. §106(1) and §106(5)"
        ),
        description=(
            "The infringing material contains substantial excerpts, modules, or sections "
            "copied from the copyrighted work without authorization."
        ),
    ),
}

PLATFORM_PROFILE_MAP = {
    "telegram": "leaked_download",
    "discord": "leaked_download",
    "torrent": "leaked_download",
    "cyberlocker": "leaked_download",
    "google": "full_reupload",
    "forum": "copied_text",
    "social": "copied_text",
}

TYPE_PROFILE_MAP = {
    "channel": "leaked_download",
    "group": "leaked_download",
    "bot": "leaked_download",
    "indexed_page": "full_reupload",
    "direct_download": "leaked_download",
    "torrent": "leaked_download",
    "server": "leaked_download",
    "post": "copied_text",
}

FILE_HOST_MARKERS = ("mega.nz", "mediafire", "drive.google", "dropbox", "anonfiles", "gofile")
STOREFRONT_MARKERS = ("gumroad", "shopify", "etsy", "sellfy", "payhip")

DEFAULT_PROFILE = "full_reupload"


def detect_infringement_profile(
    platform: str | None = None,
    infringement_type: str | None = None,
    evidence: EvidencePacket | None = None,
    source_url: str | None = None,
) -> str:
    """Pick the most specific profile for an infringement.

    Checked in order: infringement type, evidence clues, URL patterns,
    platform. Defaults to ``full_reupload`` as the broadest claim.
    """
    if infringement_type and infringement_type in TYPE_PROFILE_MAP:
        return TYPE_PROFILE_MAP[infringement_type]

    if evidence is not None:
        if evidence.has_price or evidence.is_marketplace:
            return "unauthorized_resale"
        if evidence.image_matches and not evidence.matched_excerpts:
            return "copied_images"

    if source_url:
        url = source_url.lower()
        if any(marker in url for marker in FILE_HOST_MARKERS):
            return "leaked_download"
        if any(marker in url for marker in STOREFRONT_MARKERS):
            return "unauthorized_resale"

    if platform and platform.lower() in PLATFORM_PROFILE_MAP:
        return PLATFORM_PROFILE_MAP[platform.lower()]

    return DEFAULT_PROFILE


def get_profile_info(profile: str) -> ProfileInfo:
    return PROFILES.get(profile, PROFILES[DEFAULT_PROFILE])
