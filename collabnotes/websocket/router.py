from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from collabnotes.core.dependencies import get_user_from_token
from collabnotes.db.database import SessionLocal
from collabnotes.websocket import events
from collabnotes.websocket.handlers import handle_client_event, stop_typing_for
from collabnotes.websocket.manager import manager
import asyncio
import json
import logging

logger = logging.getLogger(__name__)
router = APIRouter()

AUTH_TIMEOUT_SECONDS = 10


async def _send(websocket: WebSocket, event: events.ServerEvent):
    await websocket.send_text(json.dumps(event.to_wire(), ensure_ascii=False))


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """
    Realtime endpoint.

    The first frame must be {"type": "auth", "token": <JWT>}; anything else
    closes the socket with 1008. After that the server sends "connected" and
    "presence:initial" and the session starts receiving events.
    """
    await websocket.accept()

    # one DB session per socket
    db = SessionLocal()
    user = None
    company_id = None

    try:
        try:
            raw = await asyncio.wait_for(websocket.receive_text(), timeout=AUTH_TIMEOUT_SECONDS)
            frame = events.parse_client_event(raw)
            if not isinstance(frame, events.AuthFrame):
                raise ValueError(f"expected auth frame, got {frame.type}")
            user = get_user_from_token(frame.token, db)
            company_id = user.company_id
        except WebSocketDisconnect:
            return
        except Exception as e:
            logger.warning(f"WebSocket handshake rejected: {e}")
            user = None
            await websocket.close(code=1008, reason="Authentication failed")
            return

        first_session = manager.connect(user.id, company_id, websocket)
        await _send(websocket, events.Connected(user_id=user.id))
        await _send(websocket, events.PresenceInitial(user_ids=manager.online_users(company_id, exclude=user.id)))
        if first_session:
            await manager.broadcast_user_status(user.id, company_id, True, db)

        # listen until the client goes away
        while True:
            raw = await websocket.receive_text()
            try:
                event = events.parse_client_event(raw)
            except ValueError as e:
                # pydantic's ValidationError is a ValueError too
                logger.debug(f"Bad frame from user {user.id}: {e}")
                await _send(websocket, events.ErrorEvent(message="Invalid event", code="ValidationError"))
                continue

            reply = await handle_client_event(db, user, event)
            if reply is not None:
                await _send(websocket, reply)

    except WebSocketDisconnect:
        logger.info(f"WebSocket closed for user {user.id if user else '?'}")
    except Exception as e:
        logger.error(f"WebSocket error for user {user.id if user else '?'}: {e}")
    finally:
        if user is not None and manager.disconnect(user.id, websocket):
            try:
                await stop_typing_for(db, user.id)
                await manager.broadcast_user_status(user.id, company_id, False, db)
            except Exception as e:
                logger.error(f"Offline broadcast for user {user.id} failed: {e}")
        db.close()
