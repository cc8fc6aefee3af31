"""Cache manager client.

Fetches diagnostic pages that the proxy serves about itself and extracts the
few facts the lifecycle controller waits on.
"""

import logging
import re
from urllib.parse import urlsplit

import httpx

from proxy_overlord.core.log_events import closed_kid_sections
from proxy_overlord.domain.exceptions import DiagnosticsUnavailableError
from proxy_overlord.shared.timeouts import OverlordTimeouts

logger = logging.getLogger(__name__)

MANAGER_PATH_PREFIX = "/squid-internal-mgr/"

# A non-aggregated page: in SMP mode every kid reports in its own section.
KID_REPORT_PAGE = "events"
ACTIVE_REQUESTS_PAGE = "active_requests"

# One "uri <url>" line per active transaction in the active_requests page.
ACTIVE_URI_PATTERN = re.compile(r"^uri\s+(\S+)\s*$", re.MULTILINE)


class CacheManagerClient:
    """Queries the proxy's cache manager over HTTP.

    Args:
        host: Address the proxy listens on.
        port: Proxy listening port.
        timeout_seconds: Timeout for one page fetch.
        transport: Optional httpx transport (used by tests).
    """

    def __init__(
        self,
        host: str,
        port: int,
        timeout_seconds: float = OverlordTimeouts.PROBE_CACHE_MANAGER,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.host = host
        self.port = port
        self._timeout_seconds = timeout_seconds
        self._transport = transport

    def page_url(self, page: str) -> str:
        return f"http://{self.host}:{self.port}{MANAGER_PATH_PREFIX}{page}"

    def fetch(self, page: str) -> str:
        """Fetch a cache manager page.

        Raises:
            DiagnosticsUnavailableError: If the page cannot be obtained.
        """
        url = self.page_url(page)
        try:
            with httpx.Client(timeout=self._timeout_seconds, transport=self._transport) as client:
                response = client.get(url)
        except httpx.HTTPError as exc:
            raise DiagnosticsUnavailableError(
                f"cache manager query for {page} failed: {exc}"
            ) from exc

        if response.status_code != 200:
            raise DiagnosticsUnavailableError(
                f"cache manager query for {page} failed: HTTP {response.status_code}",
                hint="Check that the proxy configuration allows cache manager access from localhost",
            )
        return response.text

    def kid_sections(self) -> list[int]:
        """Kids that reported in the per-kid report page."""
        kids = closed_kid_sections(self.fetch(KID_REPORT_PAGE))
        logger.debug(f"Kids reporting: {kids}")
        return kids

    def active_request_uris(self) -> list[str]:
        """URIs of active transactions, excluding cache manager queries."""
        uris = ACTIVE_URI_PATTERN.findall(self.fetch(ACTIVE_REQUESTS_PAGE))
        return [uri for uri in uris if MANAGER_PATH_PREFIX not in uri and not uri.startswith("cache_object:")]

    def active_requests_for(self, path: str) -> int:
        """Number of active transactions whose URI path equals ``path``."""
        return sum(1 for uri in self.active_request_uris() if _uri_path(uri) == path)


def _uri_path(uri: str) -> str:
    if uri.startswith("/"):
        return uri.split("?", 1)[0]
    return urlsplit(uri).path or "/"
