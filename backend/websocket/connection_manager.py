"""
WebSocket Connection Manager
Forwards progress-tracker snapshots to connected job viewers
"""

import asyncio
import logging
from typing import Dict, Any, Set
from datetime import datetime
from fastapi import WebSocket, WebSocketDisconnect
from pydantic import BaseModel

from progress.tracker import JobSnapshot, ProgressTracker

logger = logging.getLogger(__name__)


class WebSocketMessage(BaseModel):
    """WebSocket message model"""
    type: str
    data: Dict[str, Any]
    timestamp: str = None

    def __init__(self, **data):
        if 'timestamp' not in data:
            data['timestamp'] = datetime.now().isoformat()
        super().__init__(**data)

    @classmethod
    def from_snapshot(cls, snapshot: JobSnapshot) -> "WebSocketMessage":
        return cls(type="job_progress", data=snapshot.model_dump(mode="json"))


class ConnectionManager:
    """Manages job-progress WebSocket viewers.

    Each viewer is a plain subscriber of the tracker: it never touches the job
    itself and its subscription is detached when the socket goes away.
    """

    def __init__(self, tracker: ProgressTracker, close_delay: float = 1.0):
        self.tracker = tracker
        self.close_delay = close_delay
        self.active_connections: Dict[str, Set[WebSocket]] = {}

    async def connect(self, websocket: WebSocket, topic: str):
        """Accept a new WebSocket connection"""
        await websocket.accept()
        self.active_connections.setdefault(topic, set()).add(websocket)
        logger.info(f"📡 New {topic} progress WebSocket connection established")

    def disconnect(self, websocket: WebSocket, topic: str):
        """Handle WebSocket disconnection"""
        connections = self.active_connections.get(topic)
        if connections is not None:
            connections.discard(websocket)
            if not connections:
                del self.active_connections[topic]
        logger.info(f"📡 {topic} progress WebSocket connection disconnected")

    def get_connection_count(self) -> Dict[str, int]:
        return {topic: len(connections) for topic, connections in self.active_connections.items()}

    async def stream_job(self, websocket: WebSocket, job_id: str):
        """Stream one job until it ends, then close ``close_delay`` seconds later."""
        await self._serve(websocket, job_id, self._pump_job(websocket, job_id))

    async def stream_all(self, websocket: WebSocket):
        """Stream every job's snapshots until the viewer disconnects."""
        await self._serve(websocket, "*", self._pump_all(websocket))

    async def _serve(self, websocket: WebSocket, topic: str, pump):
        await self.connect(websocket, topic)
        pump_task = asyncio.create_task(pump)
        receive_task = asyncio.create_task(self._receive_until_disconnect(websocket))
        try:
            await asyncio.wait({pump_task, receive_task}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (pump_task, receive_task):
                task.cancel()
            await asyncio.gather(pump_task, receive_task, return_exceptions=True)
            self.disconnect(websocket, topic)

    async def _receive_until_disconnect(self, websocket: WebSocket):
        try:
            while True:
                data = await websocket.receive_text()
                logger.debug(f"Received progress viewer message: {data}")
        except WebSocketDisconnect:
            pass

    async def _pump_job(self, websocket: WebSocket, job_id: str):
        # subscribe before reading the current state so no transition is missed
        async with self.tracker.subscribe(job_id) as subscription:
            snapshot = self.tracker.get_job(job_id)
            if snapshot is None:
                await self._send(websocket, WebSocketMessage(
                    type="job_not_found", data={"job_id": job_id}
                ))
                await websocket.close(code=1000)
                return

            await self._send(websocket, WebSocketMessage.from_snapshot(snapshot))
            while not snapshot.status.is_terminal:
                snapshot = await subscription.get()
                await self._send(websocket, WebSocketMessage.from_snapshot(snapshot))

        await asyncio.sleep(self.close_delay)
        await websocket.close(code=1000)

    async def _pump_all(self, websocket: WebSocket):
        async with self.tracker.subscribe() as subscription:
            for snapshot in self.tracker.all_jobs():
                await self._send(websocket, WebSocketMessage.from_snapshot(snapshot))
            async for snapshot in subscription:
                await self._send(websocket, WebSocketMessage.from_snapshot(snapshot))

    async def _send(self, websocket: WebSocket, message: WebSocketMessage):
        await websocket.send_text(message.model_dump_json())
