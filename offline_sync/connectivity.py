# Connectivity Gate - is the backend reachable right now?
# Probes the health endpoint and caches the answer for a short window

import logging
import time
from typing import Callable, Optional


logger = logging.getLogger(__name__)


CACHE_DURATION = 30  # seconds, matches the periodic health loop
HEALTH_CHECK_TIMEOUT = 3  # seconds


class ConnectivityGate:
    """Caches the result of client.check_health() for cache_duration seconds"""

    def __init__(self, client, cache_duration: float = CACHE_DURATION,
                 timeout: float = HEALTH_CHECK_TIMEOUT,
                 clock: Callable[[], float] = time.monotonic):
        self.client = client
        self.cache_duration = cache_duration
        self.timeout = timeout
        self.clock = clock
        self._last_check: Optional[float] = None
        self._last_result = False

    async def check_backend_accessible(self) -> bool:
        now = self.clock()
        if self._last_check is not None and now - self._last_check < self.cache_duration:
            return self._last_result

        try:
            result = bool(await self.client.check_health(timeout=self.timeout))
        except Exception as e:
            logger.debug(f"Health probe raised: {e}")
            result = False

        if result != self._last_result:
            logger.info(f"Backend is now {'reachable' if result else 'unreachable'}")
        self._last_result = result
        self._last_check = now
        return result

    async def force_check(self) -> bool:
        """Bypass the cache"""
        self._last_check = None
        return await self.check_backend_accessible()

    @property
    def last_result(self) -> bool:
        return self._last_result
