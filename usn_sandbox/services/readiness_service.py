from __future__ import annotations

import asyncio
import logging

import aiohttp

logger = logging.getLogger(__name__)


class SandboxUnreachableError(RuntimeError):
    pass


class ReadinessService:
    """Single fail-fast probe of the sandbox node endpoint.

    Any HTTP response counts as reachable: the probe only answers whether the
    endpoint accepts connections, not whether the node is healthy.
    """

    _DEFAULT_PROBE_TIMEOUT_SECONDS: float = 3.0

    def __init__(
        self,
        *,
        node_url: str,
        session: aiohttp.ClientSession,
        timeout_seconds: float = _DEFAULT_PROBE_TIMEOUT_SECONDS,
    ) -> None:
        self._node_url = node_url.rstrip("/")
        self._session = session
        self._timeout = aiohttp.ClientTimeout(total=timeout_seconds)

    @property
    def node_url(self) -> str:
        return self._node_url

    async def is_reachable(self) -> bool:
        try:
            async with self._session.get(f"{self._node_url}/status", timeout=self._timeout) as resp:
                logger.debug("Readiness probe %s -> HTTP %s", self._node_url, resp.status)
                return True
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            logger.debug("Readiness probe %s failed: %r", self._node_url, exc)
            return False

    async def ensure_reachable(self) -> None:
        if not await self.is_reachable():
            raise SandboxUnreachableError(
                f"sandbox unreachable at {self._node_url}: run the sandbox first (`npm run sandbox`)"
            )
        logger.info("Sandbox node reachable at %s", self._node_url)
