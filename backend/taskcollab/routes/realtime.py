from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect, status
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool
from starlette.requests import HTTPConnection

from taskcollab.auth.channel_gate import HandshakeRejected, authenticate_handshake
from taskcollab.auth.tokens import TokenCodec
from taskcollab.core.database import get_db
from taskcollab.dependencies.auth import get_token_codec
from taskcollab.services.realtime import RealtimeEvent, RealtimeHub, RoomAccessError

logger = logging.getLogger(__name__)

router = APIRouter(tags=["realtime"])


def get_realtime_hub(conn: HTTPConnection) -> RealtimeHub:
    return conn.app.state.realtime_hub


@router.websocket("/ws")
async def realtime_socket(
    websocket: WebSocket,
    db: Session = Depends(get_db),
    codec: TokenCodec = Depends(get_token_codec),
    hub: RealtimeHub = Depends(get_realtime_hub),
):
    try:
        # Blocking DB lookup; keep it off the event loop shared by every socket.
        identity = await run_in_threadpool(authenticate_handshake, websocket, db, codec)
    except HandshakeRejected as exc:
        # A close before accept reaches the client as a bare 403 without the reason.
        await websocket.accept()
        await websocket.send_json({"event": RealtimeEvent.ERROR.value, "data": {"message": exc.message}})
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason=exc.message)
        return
    finally:
        # Release the DB connection; the socket may stay open for hours.
        db.rollback()

    await websocket.accept()
    connection_id = hub.register(websocket, identity.user_id)
    await websocket.send_json(
        {
            "event": RealtimeEvent.CONNECTION.value,
            "data": {"userId": identity.user_id, "rooms": sorted(hub.rooms_for(connection_id))},
        }
    )

    try:
        while True:
            try:
                message = await websocket.receive_json()
            except ValueError:
                await websocket.send_json(
                    {"event": RealtimeEvent.ERROR.value, "data": {"message": "Malformed message"}}
                )
                continue

            event = message.get("event") if isinstance(message, dict) else None
            room = message.get("data") if isinstance(message, dict) else None

            if event not in (RealtimeEvent.JOIN_ROOM.value, RealtimeEvent.LEAVE_ROOM.value):
                await websocket.send_json(
                    {"event": RealtimeEvent.ERROR.value, "data": {"message": f"Unsupported event: {event}"}}
                )
                continue

            try:
                if event == RealtimeEvent.JOIN_ROOM.value:
                    hub.join(connection_id, str(room or ""))
                else:
                    hub.leave(connection_id, str(room or ""))
            except RoomAccessError as exc:
                await websocket.send_json({"event": RealtimeEvent.ERROR.value, "data": {"message": str(exc)}})
                continue

            await websocket.send_json({"event": event, "data": sorted(hub.rooms_for(connection_id))})
    except WebSocketDisconnect:
        pass
    finally:
        hub.disconnect(connection_id)
