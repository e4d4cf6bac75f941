"""
ingestion/rpc/failover.py

Connection Selector: выбор живого RPC эндпоинта с failover.

Primary first, then fallbacks in priority order. No internal backoff:
callers (startup vs. mid-loop recovery) decide how long to wait.
"""
import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence

from .ledger import LedgerClient, SolanaLedgerClient

logger = logging.getLogger(__name__)


class NoHealthyEndpointError(RuntimeError):
    """Every configured endpoint failed its liveness probe."""
    pass


@dataclass(frozen=True)
class EndpointConfig:
    """Конфигурация эндпоинта."""
    url: str
    priority: int = 0  # Lower = higher priority
    is_primary: bool = False


class ConnectionSelector:
    """
    Выдаёт проверенное соединение с первым живым эндпоинтом.

    Features:
    - Приоритетный список эндпоинтов (primary = priority 0)
    - Liveness probe (getSlot) with timeout before handing a connection out
    - Deterministic selection (no randomness, no health scoring)
    - Superseded connections are closed, never repaired in place
    """

    def __init__(
        self,
        endpoints: Sequence[str],
        connect: Optional[Callable[[str], LedgerClient]] = None,
        probe_timeout_seconds: float = 5.0,
    ):
        """
        Initialize ConnectionSelector.

        Args:
            endpoints: URLs, primary first
            connect: Factory that opens a LedgerClient for a URL
            probe_timeout_seconds: Upper bound for the liveness probe
        """
        if not endpoints:
            raise ValueError("ConnectionSelector needs at least one endpoint")

        self._endpoints: List[EndpointConfig] = [
            EndpointConfig(url=url, priority=i, is_primary=(i == 0))
            for i, url in enumerate(endpoints)
        ]
        self._connect = connect or SolanaLedgerClient.connect
        self._probe_timeout = probe_timeout_seconds

        self._active: Optional[LedgerClient] = None
        self._active_url: Optional[str] = None
        self._last_switch_time: Optional[float] = None
        self._failover_count = 0

    @property
    def active(self) -> Optional[LedgerClient]:
        """Connection handed out by the latest successful acquire()."""
        return self._active

    @property
    def active_url(self) -> Optional[str]:
        return self._active_url

    async def acquire(self) -> LedgerClient:
        """
        Вернуть соединение с первым живым эндпоинтом.

        Each endpoint is probed at most once per call, in priority order.

        Returns:
            Live LedgerClient

        Raises:
            NoHealthyEndpointError: если ни один эндпоинт не ответил
        """
        errors: Dict[str, str] = {}

        for endpoint in sorted(self._endpoints, key=lambda e: e.priority):
            client: Optional[LedgerClient] = None
            try:
                client = self._connect(endpoint.url)
                await asyncio.wait_for(client.get_height(), timeout=self._probe_timeout)
            except Exception as e:
                errors[endpoint.url] = str(e) or type(e).__name__
                label = "Primary" if endpoint.is_primary else "Fallback"
                logger.warning(f"[failover] {label} RPC {endpoint.url} failed probe: {errors[endpoint.url]}")
                if client is not None:
                    await self._close_quietly(client)
                if endpoint.is_primary:
                    self._failover_count += 1
                continue

            await self._switch(endpoint.url, client)
            return client

        logger.error(f"[failover] No healthy endpoints available! ({len(errors)} tried)")
        raise NoHealthyEndpointError(
            "All RPC endpoints unreachable: "
            + "; ".join(f"{url}: {err}" for url, err in errors.items())
        )

    async def _switch(self, url: str, client: LedgerClient) -> None:
        """Переключиться на новое соединение."""
        old_client, old_url = self._active, self._active_url
        self._active = client
        self._active_url = url
        self._last_switch_time = time.time()

        if old_url != url:
            logger.warning(f"[failover] Switching from {old_url} to {url}")
        else:
            logger.info(f"[failover] Reconnected to {url}")

        if old_client is not None and old_client is not client:
            await self._close_quietly(old_client)

    async def _close_quietly(self, client: LedgerClient) -> None:
        try:
            await client.close()
        except Exception as e:
            logger.debug(f"[failover] Error closing {getattr(client, 'url', client)}: {e}")

    async def close(self) -> None:
        """Close the active connection, if any."""
        if self._active is not None:
            await self._close_quietly(self._active)
        self._active = None
        self._active_url = None

    def get_status(self) -> Dict[str, Any]:
        """Get selector status."""
        return {
            "endpoints": {e.url: {
                "priority": e.priority,
                "is_primary": e.is_primary,
            } for e in self._endpoints},
            "active_endpoint": self._active_url,
            "last_switch": self._last_switch_time,
            "failover_count": self._failover_count,
        }

    def get_endpoints(self) -> List[str]:
        """Get list of all endpoint URLs in priority order."""
        return [e.url for e in self._endpoints]

    def __len__(self) -> int:
        return len(self._endpoints)
