"""WhoisXML API client.

Fetches domain registration details (registrar, abuse contact, registrant)
for infringing sites. Single lookups are cached in-process per client
instance; bulk lookups are submitted asynchronously and downloaded as CSV.
"""

import csv
import io
import logging
import time
from dataclasses import dataclass, field

import httpx

from enforcement.config import get_settings

logger = logging.getLogger(__name__)

CACHE_EVICT_BATCH = 100


@dataclass
class WhoisRecord:
    """Normalized WHOIS data for a domain."""
    domain: str
    registrant_organization: str | None = None
    registrant_country: str | None = None
    registrant_country_code: str | None = None
    registrar_name: str | None = None
    registrar_abuse_email: str | None = None
    registrar_abuse_phone: str | None = None
    created_date: str | None = None
    updated_date: str | None = None
    expires_date: str | None = None
    name_servers: list[str] = field(default_factory=list)
    status: str | None = None
    estimated_domain_age_days: int | None = None


def extract_domain(url: str) -> str | None:
    """Strip protocol, ``www.``, path and port; require at least one dot."""
    domain = url.strip()
    for prefix in ("https://", "http://"):
        if domain.lower().startswith(prefix):
            domain = domain[len(prefix):]
            break
    if domain.lower().startswith("www."):
        domain = domain[4:]
    for separator in ("/", "?", "#", ":"):
        domain = domain.split(separator)[0]

    if not domain or "." not in domain:
        return None
    return domain.lower()


class WhoisClient:
    """Client for the WhoisXML single and bulk lookup APIs."""

    def __init__(
        self,
        api_key: str | None = None,
        timeout: int = 15,
        cache_ttl_days: int | None = None,
        cache_max_entries: int | None = None,
    ):
        """Initialize WHOIS client.

        Args:
            api_key: WhoisXML API key (defaults to settings)
            timeout: Request timeout in seconds
            cache_ttl_days: Lifetime of cached records
            cache_max_entries: Cache size that triggers eviction
        """
        settings = get_settings()
        self.api_key = api_key if api_key is not None else settings.whois_api_key
        self.timeout = timeout
        self.api_url = settings.whois_api_url
        self.bulk_api_url = settings.whois_bulk_api_url.rstrip("/")
        self.cache_ttl = (cache_ttl_days or settings.whois_cache_ttl_days) * 86400
        self.cache_max_entries = cache_max_entries or settings.whois_cache_max_entries

        self._cache: dict[str, tuple[WhoisRecord, float]] = {}
        self._hits = 0
        self._misses = 0

    # ==================== Cache ====================

    def _cache_get(self, domain: str) -> WhoisRecord | None:
        entry = self._cache.get(domain)
        if entry is None:
            return None
        record, fetched_at = entry
        if time.monotonic() - fetched_at > self.cache_ttl:
            del self._cache[domain]
            return None
        return record

    def _cache_set(self, domain: str, record: WhoisRecord) -> None:
        self._cache[domain] = (record, time.monotonic())
        if len(self._cache) > self.cache_max_entries:
            oldest = sorted(self._cache.items(), key=lambda item: item[1][1])[:CACHE_EVICT_BATCH]
            for key, _ in oldest:
                del self._cache[key]

    def cache_stats(self) -> dict:
        """Cache size and hit rate for monitoring."""
        lookups = self._hits + self._misses
        return {
            "size": len(self._cache),
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": f"{self._hits / lookups * 100:.1f}%" if lookups else "N/A",
        }

    # ==================== Single lookup ====================

    async def lookup(self, url: str) -> WhoisRecord | None:
        """Look up WHOIS data for the domain of a URL.

        Args:
            url: Any URL or bare domain

        Returns:
            WhoisRecord, or None if unconfigured, unparsable or failed
        """
        if not self.api_key:
            logger.warning("WHOIS API key not configured, skipping lookup")
            return None

        domain = extract_domain(url)
        if not domain:
            logger.warning(f"Could not extract domain from URL: {url}")
            return None

        cached = self._cache_get(domain)
        if cached:
            self._hits += 1
            return cached
        self._misses += 1

        try:
            params = {"apiKey": self.api_key, "domainName": domain, "outputFormat": "JSON"}
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.get(
                    self.api_url, params=params, headers={"Accept": "application/json"}
                )
                response.raise_for_status()
                data = response.json()
        except httpx.TimeoutException:
            logger.warning(f"WHOIS lookup timeout for {domain}")
            return None
        except httpx.HTTPError as e:
            logger.warning(f"WHOIS lookup failed for {domain}: {e}")
            return None
        except ValueError as e:
            logger.warning(f"WHOIS returned invalid JSON for {domain}: {e}")
            return None

        raw = data.get("WhoisRecord")
        if not raw:
            logger.info(f"No WHOIS record found for {domain}")
            return None

        registrant = raw.get("registrant") or {}
        record = WhoisRecord(
            domain=raw.get("domainName") or domain,
            registrant_organization=registrant.get("organization"),
            registrant_country=registrant.get("country"),
            registrant_country_code=registrant.get("countryCode"),
            registrar_name=raw.get("registrarName"),
            registrar_abuse_email=raw.get("contactEmail"),
            registrar_abuse_phone=raw.get("customField2Value"),
            created_date=raw.get("createdDate"),
            updated_date=raw.get("updatedDate"),
            expires_date=raw.get("expiresDate"),
            name_servers=(raw.get("nameServers") or {}).get("hostNames") or [],
            status=raw.get("status"),
            estimated_domain_age_days=raw.get("estimatedDomainAge"),
        )
        self._cache_set(domain, record)
        return record

    # ==================== Bulk lookup ====================

    async def submit_bulk_request(self, urls: list[str]) -> str | None:
        """Submit the unique domains of ``urls`` for async bulk processing.

        Returns:
            The request ID to download results with, or None on failure
        """
        if not self.api_key:
            logger.warning("WHOIS API key not configured, skipping bulk request")
            return None

        domains = list(dict.fromkeys(d for d in (extract_domain(u) for u in urls) if d))
        if not domains:
            logger.warning("No valid domains for bulk WHOIS request")
            return None

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    f"{self.bulk_api_url}/bulkWhois",
                    json={"apiKey": self.api_key, "domains": domains, "outputFormat": "JSON"},
                )
                response.raise_for_status()
                data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Bulk WHOIS submit failed: {e}")
            return None

        request_id = data.get("requestId")
        if not request_id:
            logger.warning(f"Bulk WHOIS returned no requestId: {data}")
            return None

        logger.info(f"Bulk WHOIS request {request_id} submitted for {len(domains)} domains")
        return str(request_id)

    async def download_bulk_results(self, request_id: str) -> str | None:
        """Download the CSV results of a bulk request."""
        if not self.api_key:
            return None

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    f"{self.bulk_api_url}/download",
                    json={"apiKey": self.api_key, "requestId": request_id, "searchType": "all"},
                )
                response.raise_for_status()
                return response.text
        except httpx.HTTPError as e:
            logger.warning(f"Bulk WHOIS download failed for {request_id}: {e}")
            return None


def parse_bulk_csv(csv_text: str) -> dict[str, WhoisRecord]:
    """Parse bulk WHOIS CSV into records keyed by domain.

    The header row is skipped, as are rows with fewer than 10 columns.
    """
    results: dict[str, WhoisRecord] = {}

    def col(row: list[str], index: int) -> str | None:
        return (row[index].strip() or None) if index < len(row) else None

    reader = csv.reader(io.StringIO(csv_text))
    try:
        next(reader, None)
        for row in reader:
            if len(row) < 10 or not row[0].strip():
                continue
            domain = row[0].strip()
            country = col(row, 27)
            name_servers = col(row, 5)
            results[domain] = WhoisRecord(
                domain=domain,
                registrant_organization=col(row, 18),
                registrant_country=country,
                registrant_country_code=country,
                registrar_name=col(row, 1),
                registrar_abuse_email=col(row, 2),
                created_date=col(row, 6),
                updated_date=col(row, 7),
                expires_date=col(row, 8),
                name_servers=[ns for ns in name_servers.split("|") if ns] if name_servers else [],
                status=col(row, 12),
            )
    except csv.Error as e:
        logger.warning(f"Error parsing bulk WHOIS CSV: {e}")

    return results
