"""Background event loop for the bus side of a bridge.

The admin backend serves requests on Flask's threads while the KNX transport,
the datapoint callbacks and the TX queue run on one asyncio loop owned by a
daemon thread.
"""

import asyncio
import logging
import threading
from typing import Any, Callable, Optional

from ..bridge import KnxBridge

logger = logging.getLogger(__name__)


class BusLoop:
    """Runs ``bridge.on_ready`` and ``bridge.on_unload`` on a private event loop"""

    def __init__(self, bridge: KnxBridge):
        self.bridge = bridge
        self.loop = asyncio.new_event_loop()
        self.thread = threading.Thread(target=self._run, name='knx-bus', daemon=True)

    def _run(self):
        asyncio.set_event_loop(self.loop)
        self.loop.run_forever()

    @property
    def running(self) -> bool:
        return self.thread.is_alive()

    def call(self, func: Callable[..., Any], *args, timeout: Optional[float] = None) -> Any:
        """Run ``func(*args)`` on the loop thread and return its result."""
        async def _call():
            return func(*args)
        return asyncio.run_coroutine_threadsafe(_call(), self.loop).result(timeout)

    def start(self):
        self.thread.start()
        self.call(self.bridge.on_ready)
        logger.info("KNX bus loop started")

    def stop(self, timeout: float = 10.0):
        """Unload the bridge, then stop the loop and wait for its thread."""
        if not self.running:
            return
        try:
            asyncio.run_coroutine_threadsafe(self.bridge.on_unload(), self.loop).result(timeout)
        finally:
            self.loop.call_soon_threadsafe(self.loop.stop)
            self.thread.join(timeout)
            logger.info("KNX bus loop stopped")
