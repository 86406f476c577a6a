import json
import logging

import anyio
from fastapi import APIRouter, Request, WebSocket, WebSocketDisconnect
from pydantic import ValidationError as PayloadError

from geopresence.delivery import DeliveryEngine
from geopresence.schemas.realtime import ClientEvent, ClientFrame
from geopresence.session import RealtimeSession
from geopresence.websocket_manager import WebSocketConnection

logger = logging.getLogger(__name__)

router = APIRouter()


@router.websocket("/ws")
async def websocket_presence(websocket: WebSocket):
    engine: DeliveryEngine = websocket.app.state.engine

    await websocket.accept()
    connection = WebSocketConnection(websocket)
    session = RealtimeSession(connection, engine)
    await engine.manager.connect(connection)

    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(message.get("code", 1000))

            data = message.get("text")
            if data is None:
                await connection.send_error("Binary frames are not supported")
                continue

            try:
                frame = ClientFrame.model_validate(json.loads(data))
            except json.JSONDecodeError:
                await connection.send_error("Invalid JSON format")
                continue
            except PayloadError:
                await connection.send_error("Unknown action")
                continue

            if frame.action is ClientEvent.DISCONNECT:
                await connection.send_error("Unknown action: disconnect")
                continue

            try:
                await session.handle(frame.action, frame.data)
            except Exception as e:
                logger.exception("Error processing %s from %s", frame.action.value, connection.connection_id)
                await connection.send_error(f"Error processing message: {e}")

    except WebSocketDisconnect:
        pass
    finally:
        # the server may cancel this task once the peer is gone
        with anyio.CancelScope(shield=True):
            try:
                await session.close()
            except Exception:
                logger.exception("Cleanup failed for %s", connection.connection_id)
            finally:
                await engine.manager.disconnect(connection)


@router.get("/ws/online-users")
async def get_online_users(request: Request):
    """Usernames with a live realtime connection."""
    online_users = request.app.state.engine.registry.online_usernames()
    return {"online_users": online_users, "count": len(online_users)}
