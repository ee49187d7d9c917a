"""Debounced credit refresh for screens that reload credits on focus."""
import time
from typing import Callable, Optional

import logfire

from thumbgen.core.models.subscription_models import CreditsInfo
from thumbgen.core.service.credits.entitlement_writer import EntitlementWriter

# Minimum time between credit refreshes
MIN_REFRESH_INTERVAL_SECONDS = 5.0


class CreditsRefresher:
    """Keeps the latest known credits; at most one refresh runs at a time."""

    def __init__(
        self,
        writer: EntitlementWriter,
        min_interval: float = MIN_REFRESH_INTERVAL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.writer = writer
        self.min_interval = min_interval
        self._clock = clock
        self._credits = CreditsInfo()
        self._is_refreshing = False
        self._last_refresh: Optional[float] = None

    @property
    def credits(self) -> CreditsInfo:
        return self._credits

    async def refresh(self) -> CreditsInfo:
        """Apply a due credit reset, then reload credits. Skipped while debounced or already running."""
        if self._is_refreshing:
            return self._credits

        now = self._clock()
        if self._last_refresh is not None and now - self._last_refresh < self.min_interval:
            return self._credits

        self._is_refreshing = True
        self._last_refresh = now
        try:
            await self.writer.apply_scheduled_reset()
            self._credits = await self.writer.get_credits()
        except Exception as e:
            logfire.error(f"Error refreshing credits: {str(e)}")
        finally:
            self._is_refreshing = False
        return self._credits
