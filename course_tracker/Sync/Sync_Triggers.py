# Sync_Triggers.py
# Description: Trigger channel and the connectivity / app-state sources that feed it.
#
# Imports
import asyncio
from enum import Enum
from typing import Awaitable, Callable, Optional
#
# Third-Party Imports
from loguru import logger
#
# Local Imports
#
#######################################################################################################################
#
# Functions:

class TriggerReason(str, Enum):
    FOREGROUND = "foreground"
    RECONNECT = "reconnect"
    MANUAL = "manual"
    STARTUP = "startup"
    RETRY = "retry"


class SyncTriggerChannel:
    """
    Message channel between trigger sources and the sync engine.

    Holds at most one pending trigger: a cycle started for the pending trigger
    reads all dirty rows anyway, so further triggers queued behind it add nothing.
    """

    def __init__(self):
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=1)
        self.dropped = 0

    def send(self, reason: TriggerReason) -> bool:
        """Queues a trigger. Returns False when one is already pending."""
        try:
            self._queue.put_nowait(reason)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.debug(f"Sync trigger '{reason.value}' dropped: a trigger is already pending")
            return False
        return True

    async def next(self) -> TriggerReason:
        return await self._queue.get()

    def pending(self) -> bool:
        return not self._queue.empty()


class ConnectivityMonitor:
    """Sends RECONNECT when the network goes from offline to online."""

    def __init__(self, channel: SyncTriggerChannel, initially_online: Optional[bool] = None):
        self.channel = channel
        self.is_online = initially_online

    def update(self, is_online: bool) -> bool:
        """Records the current connectivity. Returns True when a trigger was sent."""
        was_online = self.is_online
        self.is_online = is_online
        if is_online and was_online is False:
            logger.info("Network reconnected; requesting sync")
            return self.channel.send(TriggerReason.RECONNECT)
        return False

    async def watch(self, probe: Callable[[], Awaitable[bool]], interval_seconds: float = 15.0):
        """Polls `probe` until cancelled, feeding each result to `update()`."""
        while True:
            try:
                online = await probe()
            except Exception as e:
                logger.debug(f"Connectivity probe raised, treating as offline: {e}")
                online = False
            self.update(online)
            await asyncio.sleep(interval_seconds)


class AppStateMonitor:
    """Sends FOREGROUND when the app moves into the 'active' state from any other state."""

    ACTIVE = "active"

    def __init__(self, channel: SyncTriggerChannel, initial_state: Optional[str] = None):
        self.channel = channel
        self.state = initial_state

    def update(self, state: str) -> bool:
        previous = self.state
        self.state = state
        if state == self.ACTIVE and previous is not None and previous != self.ACTIVE:
            logger.debug(f"App state {previous} -> {state}; requesting sync")
            return self.channel.send(TriggerReason.FOREGROUND)
        return False

#
# End of Sync_Triggers.py
#######################################################################################################################
