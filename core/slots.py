"""
Slot reservation against the shared coordinator.

Advisory only: the coordinator is asked for a generation slot before a
generation-class request, and whatever happens the request goes ahead.
"""

import asyncio
import logging
from typing import Optional

from .background import spawn_detached
from .profile_store import ProfileStore

logger = logging.getLogger(__name__)


class SlotReservationClient:

    def __init__(self, coordinator: Optional[ProfileStore], cooldown_seconds: int = 10):
        self.coordinator = coordinator
        self.cooldown_seconds = cooldown_seconds

    async def reserve(self, cooldown_seconds: Optional[int], endpoint: str) -> None:
        """Never raises."""
        if self.coordinator is None:
            return
        cooldown = self.cooldown_seconds if cooldown_seconds is None else cooldown_seconds
        try:
            await self.coordinator.request_generation_slot(cooldown, endpoint)
            logger.debug(f"Slot reserved on {endpoint} (cooldown {cooldown}s)")
        except Exception as e:
            logger.warning(f"Slot request failed, proceeding anyway: {e}")

    def reserve_detached(self, endpoint: str, cooldown_seconds: Optional[int] = None) -> Optional[asyncio.Task]:
        if self.coordinator is None:
            return None
        return spawn_detached(self.reserve(cooldown_seconds, endpoint), name=f"slot:{endpoint}")
