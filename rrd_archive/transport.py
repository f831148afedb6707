"""
Blocking HTTP transport for RRD downloads.

Runs on the maintainer's worker threads. Every failure is reported as an empty
body so the parsers simply produce no updates for that cycle.
"""

import logging
import time
from typing import Optional

import httpx

from rrd_archive.config import MaintainerConfig
from rrd_archive.utils.log_sanitizer import redact_url

logger = logging.getLogger(__name__)


class HttpTransport:
    """httpx-backed implementation of the Transport protocol."""

    def __init__(self, config: Optional[MaintainerConfig] = None):
        """
        Initialize transport.

        Args:
            config: Timeout, TLS verification and user agent settings
        """
        self.config = config or MaintainerConfig()
        self._client = httpx.Client(
            timeout=self.config.request_timeout_seconds,
            verify=self.config.verify_tls,
            headers={"User-Agent": self.config.user_agent},
        )

    def fetch(self, url: Optional[str]) -> bytes:
        """GET a URL and return its body, or b"" on any failure."""
        if not url:
            return b""

        start_time = time.monotonic()
        try:
            response = self._client.get(url)
        except httpx.TimeoutException:
            logger.warning(
                f"RRD request timed out after {self.config.request_timeout_seconds}s: "
                f"{redact_url(url)}"
            )
            return b""
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.warning(f"RRD request failed for {redact_url(url)}: {e}")
            return b""

        if not response.is_success:
            logger.warning(f"RRD request returned HTTP {response.status_code}: {redact_url(url)}")
            return b""

        duration_ms = int((time.monotonic() - start_time) * 1000)
        logger.debug(
            f"Fetched {len(response.content)} bytes in {duration_ms}ms from {redact_url(url)}",
            extra={"duration_ms": duration_ms},
        )
        return response.content

    def close(self) -> None:
        self._client.close()
