"""
Backend availability probe, memoized for the lifetime of a session.

One prober is created per app context and injected into the API client;
``reset()`` is called on logout or when the user asks for a fresh check.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from typing import List, Optional

import httpx

logger = logging.getLogger(__name__)


class ProbeState(enum.Enum):
    UNKNOWN = "unknown"
    AVAILABLE = "available"
    UNAVAILABLE = "unavailable"


class BackendHealthProber:
    def __init__(
        self,
        lan_url: str,
        tunnel_url: Optional[str] = None,
        timeout: float = 2.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.lan_url = lan_url.rstrip("/")
        self.tunnel_url = tunnel_url.rstrip("/") if tunnel_url else None
        self.timeout = timeout
        self._transport = transport
        self._lock = asyncio.Lock()
        self.state = ProbeState.UNKNOWN
        self.prefer_tunnel = False

    @property
    def health_url(self) -> str:
        return f"{self.tunnel_url or self.lan_url}/health"

    def ordered_urls(self) -> List[str]:
        """Base URLs in the order requests should try them."""

        urls = [self.lan_url, self.tunnel_url]
        if self.prefer_tunnel:
            urls.reverse()
        return [url for url in urls if url]

    async def check_health(self) -> bool:
        """
        Return whether the backend answered ``GET /health``.

        Only the first call per session touches the network; concurrent
        callers wait for that single probe. Never raises.
        """
        if self.state is not ProbeState.UNKNOWN:
            return self.state is ProbeState.AVAILABLE

        async with self._lock:
            if self.state is not ProbeState.UNKNOWN:
                return self.state is ProbeState.AVAILABLE

            try:
                async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                    resp = await client.get(self.health_url)
                resp.raise_for_status()
            except httpx.HTTPError as exc:
                logger.warning("Backend health check failed (%s): %s", self.health_url, exc)
                self.state = ProbeState.UNAVAILABLE
                return False

            self.state = ProbeState.AVAILABLE
            self.prefer_tunnel = self.tunnel_url is not None
            logger.info("Backend available at %s", self.health_url)
            return True

    def reset(self) -> None:
        self.state = ProbeState.UNKNOWN
        self.prefer_tunnel = False
