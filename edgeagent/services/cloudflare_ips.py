"""Cloudflare edge ranges for real-IP configuration"""

import logging
import time
from typing import Optional

import httpx

from edgeagent.config import get_settings

logger = logging.getLogger(__name__)

IPV4_URL = "https://www.cloudflare.com/ips-v4"
IPV6_URL = "https://www.cloudflare.com/ips-v6"

FALLBACK_IPV4 = [
    "173.245.48.0/20",
    "103.21.244.0/22",
    "103.22.200.0/22",
    "103.31.4.0/22",
    "141.101.64.0/18",
    "108.162.192.0/18",
    "190.93.240.0/20",
    "188.114.96.0/20",
    "197.234.240.0/22",
    "198.41.128.0/17",
    "162.158.0.0/15",
    "104.16.0.0/13",
    "104.24.0.0/14",
    "172.64.0.0/13",
    "131.0.72.0/22",
]

FALLBACK_IPV6 = [
    "2400:cb00::/32",
    "2606:4700::/32",
    "2803:f800::/32",
    "2405:b500::/32",
    "2405:8100::/32",
    "2a06:98c0::/29",
    "2c0f:f248::/32",
]


def parse_ranges(content: str) -> list[str]:
    return [line.strip() for line in content.splitlines() if line.strip() and not line.startswith("#")]


class CloudflareIPs:
    """Fetched ranges cached for a TTL, with a bundled fallback list"""

    def __init__(self, ttl: int = 86400, timeout: float = 10.0):
        self.ttl = ttl
        self.timeout = timeout
        self._cached: Optional[list[str]] = None
        self._cached_at: float = 0

    def _is_fresh(self) -> bool:
        return self._cached is not None and time.monotonic() - self._cached_at < self.ttl

    def current(self) -> list[str]:
        """Cached ranges, or the fallback list when nothing was fetched"""
        if self._cached:
            return list(self._cached)
        return FALLBACK_IPV4 + FALLBACK_IPV6

    async def refresh(self, force: bool = False) -> list[str]:
        """Fetch both lists unless the cache is still fresh"""
        if not force and self._is_fresh():
            return self.current()
        try:
            async with httpx.AsyncClient(timeout=self.timeout, follow_redirects=True) as client:
                ranges: list[str] = []
                for url in (IPV4_URL, IPV6_URL):
                    response = await client.get(url)
                    if response.status_code != 200:
                        raise httpx.HTTPStatusError(
                            f"HTTP {response.status_code}", request=response.request, response=response
                        )
                    ranges.extend(parse_ranges(response.text))
        except httpx.HTTPError as e:
            logger.warning(f"Failed to fetch Cloudflare IPs, using fallback list: {e}")
            return self.current()

        if not ranges:
            logger.warning("Cloudflare returned no ranges, using fallback list")
            return self.current()

        self._cached = ranges
        self._cached_at = time.monotonic()
        logger.info(f"Fetched {len(ranges)} Cloudflare IP ranges")
        return self.current()


_cloudflare: Optional[CloudflareIPs] = None


def get_cloudflare_ips() -> CloudflareIPs:
    global _cloudflare
    if _cloudflare is None:
        settings = get_settings()
        _cloudflare = CloudflareIPs(ttl=settings.cloudflare_ips_ttl, timeout=settings.cloudflare_fetch_timeout)
    return _cloudflare
