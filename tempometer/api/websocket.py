"""WebSocket endpoint for live tempo detection."""

import asyncio
import logging

import numpy as np
from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from tempometer.analysis.engine import BpmDetectorCoordinator
from tempometer.analysis.models import AudioFrame, DetectionStatus
from tempometer.api.schemas import BufferingMessage, SummaryMessage, summary_to_response
from tempometer.config import settings

logger = logging.getLogger(__name__)

router = APIRouter()


@router.websocket("/ws/live")
async def live_detection(websocket: WebSocket):
    """Live tempo detection via WebSocket.

    Protocol:
    - Client sends binary Float32 PCM chunks (``settings.sample_rate``, mono)
    - Server sends JSON messages:
      - {"type": "buffering", "seconds": N, "total": W}
      - {"type": "summary", "data": {...}}
      - {"type": "error", "message": "..."}
    """
    await websocket.accept()
    coordinator = BpmDetectorCoordinator()
    loop = asyncio.get_running_loop()
    sequence = 0

    try:
        while True:
            data = await websocket.receive_bytes()
            usable = len(data) - len(data) % 4
            if usable == 0:
                continue
            frame = AudioFrame(
                samples=np.frombuffer(data[:usable], dtype=np.float32),
                sample_rate=settings.sample_rate,
                sequence=sequence,
            )
            sequence += 1

            # Detector batches are CPU-bound; keep the event loop free.
            summaries = await loop.run_in_executor(None, coordinator.push, frame)
            for summary in summaries:
                if summary.status == DetectionStatus.BUFFERING:
                    message = BufferingMessage(
                        seconds=round(summary.buffered_seconds, 1),
                        total=coordinator.context.window_duration,
                    )
                else:
                    message = SummaryMessage(data=summary_to_response(summary))
                await websocket.send_json(message.model_dump())

    except WebSocketDisconnect:
        logger.info("Live client disconnected")
    except Exception as e:
        logger.exception(f"Live detection failed: {e}")
        try:
            await websocket.send_json({"type": "error", "message": "Detection failed"})
            await websocket.close()
        except (RuntimeError, WebSocketDisconnect):
            pass
    finally:
        coordinator.close()
