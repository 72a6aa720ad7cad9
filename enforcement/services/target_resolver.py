"""
Enforcement Target Resolver

Determines who to notify about an infringement and how:
- Platform detection from a hostname table
- Provider DMCA contacts with a ``verified`` provenance flag
- Escalation list: platform -> hosting -> registrar -> fallback, with
  Google deindexing appended last
- Delivery method per target (email, web form or manual)

``verified`` is True only for contacts confirmed from the provider's own
copyright policy. Unverified entries are best-guess and should be checked
before relying on them.
"""

import logging
from dataclasses import asdict, dataclass, replace
from urllib.parse import urlparse

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProviderInfo:
    """DMCA contact details for a platform, host or registrar."""
    name: str
    dmca_email: str | None
    dmca_form_url: str | None
    agent_name: str
    requirements: str
    prefers_web_form: bool = False
    verified: bool = False

    @property
    def delivery_method(self) -> str:
        return delivery_method_for(self)

    def to_dict(self) -> dict:
        return {**asdict(self), "delivery_method": self.delivery_method}


@dataclass
class EnforcementTarget:
    """A party to notify, ranked by escalation step."""
    type: str  # platform | hosting | registrar | search_engine
    provider: ProviderInfo
    step: int
    recommended: bool
    reason: str
    deadline_days: int

    @property
    def delivery_method(self) -> str:
        return delivery_method_for(self.provider)

    def to_dict(self) -> dict:
        return {
            "type": self.type,
            "provider": self.provider.to_dict(),
            "step": self.step,
            "recommended": self.recommended,
            "reason": self.reason,
            "deadline_days": self.deadline_days,
            "delivery_method": self.delivery_method,
        }


@dataclass
class RecommendedRecipient:
    """Single recommended recipient for a notice."""
    recipient: str
    email: str | None = None
    form_url: str | None = None
    instructions: str | None = None
    verified: bool = False


PROVIDERS: dict[str, ProviderInfo] = {
    # Major Platforms
    "youtube": ProviderInfo(
        name="YouTube",
        dmca_email="copyright@youtube.com",
        dmca_form_url="https://www.youtube.com/copyright_complaint_page",
        agent_name="YouTube Copyright Team",
        requirements="Include video URLs with timestamps for specific content. Web form submission is strongly preferred.",
        prefers_web_form=True,
        verified=True,
    ),
    "google": ProviderInfo(
        name="Google",
        dmca_email=None,  # web form only
        dmca_form_url="https://support.google.com/legal/troubleshooter/1114905",
        agent_name="Google DMCA Agent",
        requirements="Google only accepts DMCA submissions via their Legal Troubleshooter web form. Include specific URLs to be removed from search results.",
        prefers_web_form=True,
        verified=True,
    ),
    "telegram": ProviderInfo(
        name="Telegram",
        dmca_email="dmca@telegram.org",
        dmca_form_url="https://telegram.org/dmca",
        agent_name="Telegram DMCA Agent",
        requirements="Email dmca@telegram.org. Include the channel/group username, invite link, or specific message links. Telegram is not US-based, so enforcement may differ from US platforms.",
        prefers_web_form=False,
        verified=True,
    ),
    "discord": ProviderInfo(
        name="Discord",
        dmca_email="copyright@discord.com",
        dmca_form_url="https://dis.gd/copyright",
        agent_name="Discord Trust & Safety",
        requirements="Use the web form or email copyright@discord.com. Include server ID, channel ID, and specific message links.",
        prefers_web_form=True,
        verified=True,
    ),

    # Cloud Storage / File Hosting
    "mega": ProviderInfo(
        name="MEGA",
        dmca_email="copyright@mega.nz",
        dmca_form_url="https://mega.nz/takedown",
        agent_name="MEGA Copyright Team",
        requirements="Use the web form (preferred). Include exact file/folder links.",
        prefers_web_form=True,
        verified=True,
    ),
    "mediafire": ProviderInfo(
        name="MediaFire",
        dmca_email="dmca@mediafire.com",
        dmca_form_url="https://www.mediafire.com/policies/dmca.php",
        agent_name="MediaFire Copyright Agent",
        requirements="Email dmca@mediafire.com. Include direct file download links.",
    ),
    "dropbox": ProviderInfo(
        name="Dropbox",
        dmca_email="copyright@dropbox.com",
        dmca_form_url="https://www.dropbox.com/copyright/dmca",
        agent_name="Dropbox Copyright Agent",
        requirements="Use web form or email copyright@dropbox.com. Include shared file/folder URLs.",
        prefers_web_form=True,
    ),
    "drive.google": ProviderInfo(
        name="Google Drive",
        dmca_email=None,  # web form only
        dmca_form_url="https://support.google.com/legal/troubleshooter/1114905",
        agent_name="Google DMCA Agent",
        requirements="Google only accepts DMCA submissions via their Legal Troubleshooter web form. Include shared drive file/folder links.",
        prefers_web_form=True,
        verified=True,
    ),

    # Infrastructure / Hosting
    "cloudflare": ProviderInfo(
        name="Cloudflare",
        dmca_email="dmca@cloudflare.com",
        dmca_form_url="https://abuse.cloudflare.com",
        agent_name="Cloudflare Trust & Safety",
        requirements="Cloudflare is a CDN and forwards the notice to the actual hosting provider. Use the abuse form (preferred).",
        prefers_web_form=True,
        verified=True,
    ),
    "namecheap": ProviderInfo(
        name="Namecheap",
        dmca_email="abuse@namecheap.com",
        dmca_form_url="https://www.namecheap.com/support/abuse-form/",
        agent_name="Namecheap Abuse Team",
        requirements="Include domain name and specific infringing URLs. As a registrar, they may forward to the actual host.",
        prefers_web_form=True,
    ),
    "godaddy": ProviderInfo(
        name="GoDaddy",
        dmca_email="copyright@godaddy.com",
        dmca_form_url="https://supportcenter.godaddy.com/AbuseReport",
        agent_name="GoDaddy Abuse Team",
        requirements="Include domain name and specific infringing URLs.",
        prefers_web_form=True,
    ),
    "digitalocean": ProviderInfo(
        name="DigitalOcean",
        dmca_email="abuse@digitalocean.com",
        dmca_form_url=None,
        agent_name="DigitalOcean Abuse Team",
        requirements="Include IP address and specific infringing URLs.",
    ),
    "hostinger": ProviderInfo(
        name="Hostinger",
        dmca_email="abuse@hostinger.com",
        dmca_form_url=None,
        agent_name="Hostinger Abuse Team",
        requirements="Include domain name and specific infringing URLs.",
    ),

    # Social Media
    "tiktok": ProviderInfo(
        name="TikTok",
        dmca_email="copyright@tiktok.com",
        dmca_form_url="https://www.tiktok.com/legal/report/Copyright",
        agent_name="TikTok Copyright Team",
        requirements="Use the web form (preferred). Include specific video URLs.",
        prefers_web_form=True,
        verified=True,
    ),
    "reddit": ProviderInfo(
        name="Reddit",
        dmca_email="copyright@reddit.com",
        dmca_form_url="https://reddit.zendesk.com/hc/en-us/requests/new?ticket_form_id=106573",
        agent_name="Reddit Copyright Team",
        requirements="Email copyright@reddit.com or use the web form. Include specific post/comment URLs.",
        verified=True,
    ),
    "facebook": ProviderInfo(
        name="Facebook / Meta",
        dmca_email="ip@fb.com",
        dmca_form_url="https://www.facebook.com/help/contact/634636770043571",
        agent_name="Meta IP Operations",
        requirements="Use the web form (strongly preferred). Include specific post/page URLs.",
        prefers_web_form=True,
        verified=True,
    ),
    "instagram": ProviderInfo(
        name="Instagram",
        dmca_email="ip@instagram.com",
        dmca_form_url="https://help.instagram.com/contact/552695131608132",
        agent_name="Meta IP Operations",
        requirements="Use the web form. Include specific post URLs. Shares Meta IP infrastructure.",
        prefers_web_form=True,
        verified=True,
    ),
    "twitter": ProviderInfo(
        name="X (Twitter)",
        dmca_email="copyright@x.com",
        dmca_form_url="https://help.x.com/en/forms/ipi/dmca",
        agent_name="X Copyright Team",
        requirements="Use the web form. Include specific tweet/post URLs.",
        prefers_web_form=True,
        verified=True,
    ),

    # Marketplaces
    "gumroad": ProviderInfo(
        name="Gumroad",
        dmca_email="dmca@gumroad.com",
        dmca_form_url=None,
        agent_name="Gumroad Trust & Safety",
        requirements="Email dmca@gumroad.com. Include the product listing URL and proof of original ownership.",
    ),
    "etsy": ProviderInfo(
        name="Etsy",
        dmca_email="legal@etsy.com",
        dmca_form_url="https://www.etsy.com/legal/ip/report",
        agent_name="Etsy IP Team",
        requirements="Use the web form (preferred). Include specific listing URLs.",
        prefers_web_form=True,
        verified=True,
    ),
    "amazon": ProviderInfo(
        name="Amazon",
        dmca_email="copyright@amazon.com",
        dmca_form_url="https://www.amazon.com/report/infringement",
        agent_name="Amazon Brand Registry",
        requirements="Use the Report Infringement form (preferred). Include product listing URLs.",
        prefers_web_form=True,
        verified=True,
    ),
    "ebay": ProviderInfo(
        name="eBay",
        dmca_email=None,  # VeRO enrollment required
        dmca_form_url="https://www.ebay.com/help/policies/listing-policies/creating-managing-listings/vero-rights-owner-program?id=4349",
        agent_name="eBay VeRO Program",
        requirements="eBay requires enrollment in their VeRO (Verified Rights Owner) Program before submitting takedowns. No one-off DMCA email.",
        prefers_web_form=True,
        verified=True,
    ),

    # Trading / Finance Platforms
    "tradingview": ProviderInfo(
        name="TradingView",
        dmca_email=None,
        dmca_form_url="https://www.tradingview.com/support/",
        agent_name="TradingView Support",
        requirements="TradingView has no public DMCA email. Submit a support ticket through their Help Center. Include the script/indicator URL and proof of original ownership.",
        prefers_web_form=True,
        verified=True,
    ),
    "mql5": ProviderInfo(
        name="MQL5 / MetaTrader Market",
        dmca_email=None,
        dmca_form_url="https://www.mql5.com/en/about/terms",
        agent_name="MQL5 Support",
        requirements="Contact MQL5 through their support system. Include the product listing URL on MQL5 marketplace.",
        prefers_web_form=True,
    ),
    "prorealcode": ProviderInfo(
        name="ProRealCode",
        dmca_email="contact@prorealcode.com",
        dmca_form_url=None,
        agent_name="ProRealCode Abuse Team",
        requirements="Contact via email with detailed infringement notice.",
    ),
    "forex-station": ProviderInfo(
        name="Forex Station",
        dmca_email="admin@forex-station.com",
        dmca_form_url=None,
        agent_name="Forex Station Admin",
        requirements="Contact forum administrators via email.",
    ),

    # Education / Course Platforms
    "udemy": ProviderInfo(
        name="Udemy",
        dmca_email="piracy@udemy.com",
        dmca_form_url="https://www.udemy.com/terms/ip/",
        agent_name="Udemy Trust & Safety",
        requirements="Email piracy@udemy.com or use the IP policy page. Include the course URL and proof of original content.",
    ),
    "teachable": ProviderInfo(
        name="Teachable",
        dmca_email="dmca@teachable.com",
        dmca_form_url=None,
        agent_name="Teachable Copyright Team",
        requirements="Email dmca@teachable.com. Include the course/school URL and proof of original ownership.",
    ),
    "thinkific": ProviderInfo(
        name="Thinkific",
        dmca_email="dmca@thinkific.com",
        dmca_form_url=None,
        agent_name="Thinkific Trust & Safety",
        requirements="Email dmca@thinkific.com. Include the course URL and proof of original ownership.",
    ),
    "skillshare": ProviderInfo(
        name="Skillshare",
        dmca_email=None,
        dmca_form_url="https://www.skillshare.com/en/terms",
        agent_name="Skillshare Trust & Safety",
        requirements="Check their Terms of Service for current DMCA process. Include the class URL.",
        prefers_web_form=True,
    ),

    # Additional Platforms
    "scribd": ProviderInfo(
        name="Scribd",
        dmca_email="copyright@scribd.com",
        dmca_form_url="https://support.scribd.com/hc/en-us/articles/210129366-Filing-a-copyright-claim",
        agent_name="Scribd Copyright Agent",
        requirements="Email copyright@scribd.com. Include the document URL and proof of original ownership.",
    ),
    "github": ProviderInfo(
        name="GitHub",
        dmca_email="copyright@github.com",
        dmca_form_url="https://support.github.com/contact/dmca-takedown",
        agent_name="GitHub DMCA Agent",
        requirements="Use the DMCA Takedown web form (preferred). GitHub publishes all DMCA notices publicly in their github/dmca repository. Include repo/file URLs.",
        prefers_web_form=True,
        verified=True,
    ),
    "pastebin": ProviderInfo(
        name="Pastebin",
        dmca_email="admin@pastebin.com",
        dmca_form_url="https://pastebin.com/report",
        agent_name="Pastebin Admin",
        requirements="Email admin@pastebin.com or use the report page. Include the paste URL.",
    ),
    "patreon": ProviderInfo(
        name="Patreon",
        dmca_email="copyright@patreon.com",
        dmca_form_url=None,
        agent_name="Patreon Copyright Agent",
        requirements="Email copyright@patreon.com. Include the creator page URL and proof of ownership.",
    ),
}

# Hostname -> provider key. Subdomains match by suffix.
PLATFORM_HOSTS: dict[str, str] = {
    "youtube.com": "youtube",
    "youtu.be": "youtube",
    "drive.google.com": "drive.google",
    "docs.google.com": "drive.google",
    "google.com": "google",
    "t.me": "telegram",
    "telegram.me": "telegram",
    "telegram.org": "telegram",
    "discord.com": "discord",
    "discord.gg": "discord",
    "discordapp.com": "discord",
    "mega.nz": "mega",
    "mega.io": "mega",
    "mediafire.com": "mediafire",
    "dropbox.com": "dropbox",
    "tiktok.com": "tiktok",
    "reddit.com": "reddit",
    "redd.it": "reddit",
    "facebook.com": "facebook",
    "fb.com": "facebook",
    "instagram.com": "instagram",
    "twitter.com": "twitter",
    "x.com": "twitter",
    "gumroad.com": "gumroad",
    "etsy.com": "etsy",
    "amazon.com": "amazon",
    "ebay.com": "ebay",
    "tradingview.com": "tradingview",
    "mql5.com": "mql5",
    "prorealcode.com": "prorealcode",
    "forex-station.com": "forex-station",
    "udemy.com": "udemy",
    "teachable.com": "teachable",
    "thinkific.com": "thinkific",
    "skillshare.com": "skillshare",
    "scribd.com": "scribd",
    "github.com": "github",
    "pastebin.com": "pastebin",
    "patreon.com": "patreon",
}

# Providers that are never matched against hosting or registrar names
_SEARCH_ENGINES = {"google"}

WEBSITE_ABUSE_TEAM = "Website Abuse Team"


def extract_host(url: str) -> str:
    """Lowercased hostname without a leading ``www.``; empty if unparsable."""
    try:
        host = urlparse(url if "://" in url else f"https://{url}").hostname or ""
    except ValueError:
        return ""
    host = host.lower()
    return host[4:] if host.startswith("www.") else host


def detect_platform(url: str) -> str:
    """Map a URL to a provider key, or ``"unknown"``.

    Tries an exact hostname match, then a subdomain suffix match.
    """
    host = extract_host(url)
    if not host:
        return "unknown"
    if host in PLATFORM_HOSTS:
        return PLATFORM_HOSTS[host]
    for known_host, key in PLATFORM_HOSTS.items():
        if host.endswith(f".{known_host}"):
            return key
    return "unknown"


def platform_display_name(url: str) -> str:
    """Provider name for known hosts, the TLD-stripped domain label otherwise."""
    key = detect_platform(url)
    if key in PROVIDERS:
        return PROVIDERS[key].name
    host = extract_host(url)
    labels = host.split(".")
    if len(labels) < 2:
        return host or "Unknown"
    return labels[-2].capitalize()


def delivery_method_for(provider: ProviderInfo) -> str:
    """``email`` if the provider has an address, else ``web_form``, else ``manual``."""
    if provider.dmca_email:
        return "email"
    if provider.dmca_form_url:
        return "web_form"
    return "manual"


def get_provider_by_id(provider_id: str) -> ProviderInfo | None:
    return PROVIDERS.get(provider_id.lower())


def get_recommended_recipient(url: str) -> RecommendedRecipient:
    """Recommended recipient for a URL, falling back to the site's abuse team."""
    provider = PROVIDERS.get(detect_platform(url))
    if provider is None:
        return RecommendedRecipient(
            recipient=WEBSITE_ABUSE_TEAM,
            instructions='Check the website footer or "Contact" page for abuse/DMCA contact information',
            verified=False,
        )
    suffix = "DMCA Agent" if provider.dmca_email else "Abuse Team"
    return RecommendedRecipient(
        recipient=f"{provider.name} {suffix}",
        email=provider.dmca_email,
        form_url=provider.dmca_form_url,
        instructions=provider.requirements,
        verified=provider.verified,
    )


def _match_by_name(name: str | None, exclude: set[str]) -> ProviderInfo | None:
    """Find a provider whose key appears in a hosting or registrar name."""
    if not name:
        return None
    normalized = name.lower()
    for key, provider in PROVIDERS.items():
        if key in _SEARCH_ENGINES or provider.name in exclude:
            continue
        if key in normalized:
            return provider
    return None


def _domain_fallback(url: str, abuse_email: str | None = None) -> ProviderInfo:
    domain = extract_host(url) or "Service Provider"
    return ProviderInfo(
        name=domain,
        dmca_email=abuse_email or None,
        dmca_form_url=None,
        agent_name=f"{domain} DMCA Agent",
        requirements="Contact the hosting provider or domain registrar directly with this notice.",
    )


def resolve_provider(
    url: str,
    platform_hint: str | None = None,
    hosting_provider: str | None = None,
    registrar: str | None = None,
    abuse_email: str | None = None,
) -> ProviderInfo:
    """Resolve the single most direct provider for a URL."""
    key = detect_platform(url)
    if key in PROVIDERS:
        return PROVIDERS[key]

    if platform_hint and platform_hint.lower() in PROVIDERS:
        return PROVIDERS[platform_hint.lower()]

    for name in (hosting_provider, registrar):
        provider = _match_by_name(name, set())
        if provider:
            return provider

    return _domain_fallback(url, abuse_email)


def resolve_all_targets(
    url: str,
    platform_hint: str | None = None,
    hosting_provider: str | None = None,
    registrar: str | None = None,
    abuse_email: str | None = None,
) -> list[EnforcementTarget]:
    """Resolve every enforcement target, ordered by escalation preference.

    Platform -> hosting -> registrar, each added when known. When none is
    known a manual-only website abuse team target is used. Google search
    deindexing is always appended last and is never recommended. The first
    target is the recommended one.
    """
    targets: list[EnforcementTarget] = []
    added: set[str] = set()

    def _add(target_type: str, provider: ProviderInfo, reason: str, deadline_days: int):
        targets.append(EnforcementTarget(
            type=target_type,
            provider=provider,
            step=len(targets) + 1,
            recommended=False,
            reason=reason,
            deadline_days=deadline_days,
        ))
        added.add(provider.name)

    # Platform: direct, best success rate
    platform_provider = None
    key = detect_platform(url)
    if key in PROVIDERS and key not in _SEARCH_ENGINES:
        platform_provider = PROVIDERS[key]
    elif platform_hint and platform_hint.lower() in PROVIDERS and platform_hint.lower() not in _SEARCH_ENGINES:
        platform_provider = PROVIDERS[platform_hint.lower()]

    if platform_provider:
        _add(
            "platform",
            platform_provider,
            f"Send directly to {platform_provider.name}. Platform takedowns have the highest "
            "success rate and fastest response time.",
            7,
        )

    # Hosting: escalation under safe harbor
    hosting = _match_by_name(hosting_provider, added)
    if hosting:
        _add(
            "hosting",
            hosting,
            f"Escalate to hosting provider {hosting.name}. Under DMCA Safe Harbor, they must "
            "act or lose protection.",
            14,
        )

    # Registrar: further escalation
    registrar_provider = _match_by_name(registrar, added)
    if registrar_provider:
        _add(
            "registrar",
            registrar_provider,
            f"Contact domain registrar {registrar_provider.name}. Useful when the hosting "
            "provider doesn't respond.",
            14,
        )
    elif abuse_email:
        registrar_name = registrar or "Domain Registrar"
        _add(
            "registrar",
            ProviderInfo(
                name=registrar_name,
                dmca_email=abuse_email,
                dmca_form_url=None,
                agent_name=f"{registrar_name} Abuse Team",
                requirements="Include the domain name and specific infringing URLs.",
            ),
            f"Contact registrar {registrar_name} via their abuse contact.",
            14,
        )

    # Nothing known: manual-only fallback
    if not targets:
        domain = extract_host(url) or "the website"
        _add(
            "platform",
            ProviderInfo(
                name=WEBSITE_ABUSE_TEAM,
                dmca_email=None,
                dmca_form_url=None,
                agent_name=f"{domain} Abuse Team",
                requirements='Check the website footer or "Contact" page for abuse/DMCA contact '
                "information, then contact the hosting provider or domain registrar directly.",
            ),
            "No verified contact is known for this site. Find the site's abuse contact and "
            "send the notice manually.",
            14,
        )

    targets[0].recommended = True

    # Search deindexing, always last
    if PROVIDERS["google"].name not in added:
        _add(
            "search_engine",
            PROVIDERS["google"],
            "Request Google to remove the infringing URL from search results. This reduces "
            "discoverability even if the content stays up.",
            0,
        )

    return targets


def override_provider(provider: ProviderInfo, **changes) -> ProviderInfo:
    """Copy of a provider with user-supplied contact fields applied."""
    return replace(provider, **{k: v for k, v in changes.items() if v is not None})
