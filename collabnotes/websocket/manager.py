from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple
from fastapi import WebSocket
from sqlalchemy.orm import Session
import json
import logging

from collabnotes.core.clock import utcnow
from collabnotes.websocket.events import PresenceUpdate, ServerEvent

logger = logging.getLogger(__name__)

# (typing user, recipient_id, group_id)
TypingKey = Tuple[int, Optional[int], Optional[int]]


class ConnectionManager:
    """WebSocket session registry, a user may hold several sessions at once."""

    def __init__(self):
        # {user_id: [WebSocket, ...]}
        self.active_connections: Dict[int, List[WebSocket]] = {}
        # {user_id: company_id}, presence never crosses tenants
        self.user_companies: Dict[int, int] = {}
        # {(user_id, recipient_id, group_id): started_at}
        self.typing: Dict[TypingKey, datetime] = {}

    def connect(self, user_id: int, company_id: int, websocket: WebSocket) -> bool:
        """Register an already accepted socket. True when this is the user's first session."""
        sessions = self.active_connections.setdefault(user_id, [])
        sessions.append(websocket)
        self.user_companies[user_id] = company_id
        logger.info(f"User {user_id} connected ({len(sessions)} session(s)), online users: {len(self.active_connections)}")
        return len(sessions) == 1

    def disconnect(self, user_id: int, websocket: WebSocket) -> bool:
        """Drop one session. True when it was the user's last one."""
        sessions = self.active_connections.get(user_id)
        if not sessions:
            return False
        if websocket in sessions:
            sessions.remove(websocket)
        if sessions:
            return False
        del self.active_connections[user_id]
        self.user_companies.pop(user_id, None)
        logger.info(f"User {user_id} went offline, online users: {len(self.active_connections)}")
        return True

    def is_online(self, user_id: int) -> bool:
        return user_id in self.active_connections

    def online_users(self, company_id: int, exclude: Optional[int] = None) -> List[int]:
        return [
            uid for uid, cid in self.user_companies.items()
            if cid == company_id and uid != exclude and uid in self.active_connections
        ]

    async def send_personal_message(self, user_id: int, message: dict) -> bool:
        """Send to every session of the user. Dead sessions are dropped."""
        sessions = list(self.active_connections.get(user_id, []))
        if not sessions:
            return False
        text = json.dumps(message, ensure_ascii=False)
        delivered = False
        for websocket in sessions:
            try:
                await websocket.send_text(text)
                delivered = True
            except Exception as e:
                logger.error(f"Send to user {user_id} failed, dropping session: {e}")
                self.disconnect(user_id, websocket)
        return delivered

    async def dispatch(self, user_ids: Iterable[int], event: ServerEvent, exclude: Optional[int] = None) -> int:
        """Push one server event to each listed user. Returns how many users got it."""
        wire = event.to_wire()
        reached = 0
        for user_id in dict.fromkeys(user_ids):
            if user_id == exclude:
                continue
            if await self.send_personal_message(user_id, wire):
                reached += 1
        return reached

    async def broadcast_user_status(self, user_id: int, company_id: int, online: bool, db: Session):
        """Tell the user's online colleagues about a presence change, stamping last_seen on the way out."""
        from collabnotes.models.user import User

        last_seen = None
        if not online:
            user = db.query(User).filter(User.id == user_id).first()
            if user:
                user.last_seen = utcnow()
                db.commit()
                last_seen = user.last_seen

        await self.dispatch(
            self.online_users(company_id, exclude=user_id),
            PresenceUpdate(user_id=user_id, online=online, last_seen=last_seen),
        )

    # ========== typing indicators ==========

    def start_typing(self, user_id: int, recipient_id: Optional[int], group_id: Optional[int], now: datetime):
        self.typing[(user_id, recipient_id, group_id)] = now

    def stop_typing(self, user_id: int, recipient_id: Optional[int], group_id: Optional[int]) -> bool:
        return self.typing.pop((user_id, recipient_id, group_id), None) is not None

    def pop_expired_typing(self, now: datetime, max_age_seconds: float) -> List[TypingKey]:
        expired = [k for k, started in self.typing.items() if (now - started).total_seconds() > max_age_seconds]
        for key in expired:
            del self.typing[key]
        return expired

    def pop_typing_of(self, user_id: int) -> List[TypingKey]:
        keys = [k for k in self.typing if k[0] == user_id]
        for key in keys:
            del self.typing[key]
        return keys

    def reset(self):
        self.active_connections.clear()
        self.user_companies.clear()
        self.typing.clear()


# Global singleton
manager = ConnectionManager()
