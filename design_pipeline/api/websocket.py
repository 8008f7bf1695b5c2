"""
WebSocket progress feed for a single design job.
"""

import asyncio
import json
import logging
from typing import Any, Dict

from fastapi import WebSocket

from design_pipeline.progress import ProgressSubscription, ProgressView

logger = logging.getLogger(__name__)

TERMINAL_EVENTS = {"complete", "error"}


class ProgressFeed:
    """
    Relays projector callbacks to one WebSocket client.

    Callbacks may fire on a notifier thread, so events are handed to the
    event loop through a queue.
    """

    def __init__(self, websocket: WebSocket):
        self.websocket = websocket
        self._loop = asyncio.get_running_loop()
        self._queue: asyncio.Queue = asyncio.Queue()

    def push(self, event: str, data: Dict[str, Any]) -> None:
        self._loop.call_soon_threadsafe(self._queue.put_nowait, (event, data))

    def on_update(self, view: ProgressView) -> None:
        self.push("update", view.snapshot())

    def on_complete(self, payload: Dict[str, Any]) -> None:
        self.push("complete", payload)

    def on_error(self, message: str) -> None:
        self.push("error", {"error_message": message})

    async def send(self, event: str, data: Dict[str, Any]) -> None:
        await self.websocket.send_text(json.dumps({"event": event, "data": data}, default=str))

    async def run(self, subscription: ProgressSubscription) -> bool:
        """
        Send the current snapshot, then every event until the job is terminal.

        Returns:
            True once a terminal event was sent, False if the client left first
        """
        await self.send("snapshot", subscription.view.snapshot())
        disconnected = asyncio.create_task(self._wait_for_disconnect())
        next_event = None
        try:
            while True:
                next_event = asyncio.create_task(self._queue.get())
                done, _ = await asyncio.wait({next_event, disconnected}, return_when=asyncio.FIRST_COMPLETED)
                if disconnected in done:
                    disconnected.result()
                    logger.info(f"Progress feed client for job {subscription.view.job_id} left before it finished")
                    return False

                event, data = next_event.result()
                await self.send(event, data)
                if event in TERMINAL_EVENTS:
                    logger.info(f"Progress feed for job {subscription.view.job_id} reached {event}")
                    return True
        finally:
            disconnected.cancel()
            if next_event is not None:
                next_event.cancel()

    async def _wait_for_disconnect(self) -> None:
        # Clients only listen; anything they send is ignored
        while True:
            message = await self.websocket.receive()
            if message["type"] == "websocket.disconnect":
                return
