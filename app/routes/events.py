from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from app.services.broadcaster import broadcaster

router = APIRouter(tags=["Events"])


@router.websocket("/ws/events")
async def events(websocket: WebSocket):
    await broadcaster.connect(websocket)
    try:
        while True:
            # clients only listen; anything they send is ignored
            await websocket.receive_text()
    except WebSocketDisconnect:
        await broadcaster.disconnect(websocket)
