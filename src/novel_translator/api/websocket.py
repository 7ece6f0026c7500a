"""WebSocket handler for real-time job events."""

import asyncio

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from fastapi.encoders import jsonable_encoder

from novel_translator.services.events import EventBus, PipelineEvent
from novel_translator.services.pipeline_service import PipelineService

router = APIRouter()

HEARTBEAT_SECONDS = 30.0
JOB_NOT_FOUND = 4404


@router.websocket("/ws/jobs/{job_id}")
async def job_websocket(websocket: WebSocket, job_id: str) -> None:
    """Stream one job's events.

    The first message is a ``job_snapshot`` with the job as served by
    ``GET /api/v1/jobs/{job_id}``. The socket is closed after the job's final
    event, or right after the snapshot if the job has already finished.
    """
    await websocket.accept()

    event_bus: EventBus = websocket.app.state.event_bus
    service: PipelineService = websocket.app.state.pipeline_service
    queue: asyncio.Queue[PipelineEvent] = asyncio.Queue(maxsize=1000)

    def on_event(event: PipelineEvent) -> None:
        try:
            queue.put_nowait(event)
        except asyncio.QueueFull:
            pass  # Client is not keeping up; progress is also on GET /jobs

    # Subscribe before the snapshot so no event falls between the two
    sub_id = event_bus.subscribe(on_event, job_id=job_id)
    try:
        job = service.get_job(job_id)
        if job is None:
            await websocket.close(code=JOB_NOT_FOUND, reason="Job not found")
            return
        await websocket.send_json({"type": "job_snapshot", "job_id": job_id, "data": jsonable_encoder(job)})
        if job["completed_at"] is not None:
            await websocket.close()
            return

        while True:
            try:
                event = await asyncio.wait_for(queue.get(), timeout=HEARTBEAT_SECONDS)
            except asyncio.TimeoutError:
                await websocket.send_json({"type": "heartbeat"})
                continue
            await websocket.send_json(event.to_dict())
            if event.is_final:
                await websocket.close()
                break
    except WebSocketDisconnect:
        pass
    finally:
        event_bus.unsubscribe(sub_id)
