"""
Progress WebSocket Router
Streams job snapshots to viewers
"""

from fastapi import APIRouter, WebSocket
import logging

from websocket.connection_manager import ConnectionManager

logger = logging.getLogger(__name__)
router = APIRouter()


def _connection_manager(websocket: WebSocket) -> ConnectionManager:
    return websocket.app.state.connection_manager


@router.websocket("/ws/jobs")
async def websocket_all_jobs(websocket: WebSocket):
    """WebSocket endpoint for every job's progress"""
    await _connection_manager(websocket).stream_all(websocket)


@router.websocket("/ws/jobs/{job_id}")
async def websocket_job(websocket: WebSocket, job_id: str):
    """WebSocket endpoint for one job; closes shortly after the job finishes"""
    await _connection_manager(websocket).stream_job(websocket, job_id)
