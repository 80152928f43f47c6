"""
Client-side message state.

``ChatState`` keeps one ordered message list per thread (a direct peer or a
group) and reconciles three sources: optimistic local sends, REST responses
and realtime events. Messages are plain dicts in the server's JSON shape.

Matching is always by durable message id. A provisional entry carries a
``temp_id`` until its send resolves; ``pending`` maps that temp id to the
durable id for the short window in between and is emptied on merge.
"""
import logging
import uuid
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from collabnotes.core.clock import utcnow
from collabnotes.models.messages import TOMBSTONE, MessageStatus
from collabnotes.websocket import events

logger = logging.getLogger(__name__)

# ("direct", peer_id) or ("group", group_id)
ThreadKey = Tuple[str, int]
Emit = Callable[[str, Dict[str, Any]], Awaitable[None]]

_RANK = {
    MessageStatus.SENT.value: 0,
    MessageStatus.DELIVERED.value: 1,
    MessageStatus.READ.value: 2,
    MessageStatus.DELETED.value: 3,
}

# receipts for messages this client never loads are dropped oldest first
MAX_PARKED_RECEIPTS = 256


def direct(peer_id: int) -> ThreadKey:
    return ("direct", peer_id)


def group(group_id: int) -> ThreadKey:
    return ("group", group_id)


class ChatState:

    def __init__(self, user_id: int, api, emit: Emit, max_parked: int = MAX_PARKED_RECEIPTS):
        self.user_id = user_id
        self.api = api
        self.emit = emit
        self.threads: Dict[ThreadKey, List[dict]] = {}
        # temp id -> durable id (None while the send is in flight)
        self.pending: Dict[str, Optional[int]] = {}
        # receipts for ids we do not hold yet: {message_id: {"type", "at"}}
        self.parked_receipts: Dict[int, List[dict]] = {}
        self.max_parked = max_parked
        self.focused: Optional[ThreadKey] = None

    # ---------- lookup ----------
    def thread_key(self, msg: dict) -> ThreadKey:
        if msg.get("group_id") is not None:
            return group(msg["group_id"])
        peer = msg["recipient_id"] if msg["sender_id"] == self.user_id else msg["sender_id"]
        return direct(peer)

    def messages(self, key: ThreadKey) -> List[dict]:
        return list(self.threads.get(key, []))

    def find(self, message_id: int) -> Optional[dict]:
        for thread in self.threads.values():
            for msg in thread:
                if msg.get("id") == message_id:
                    return msg
        return None

    def unread(self, key: ThreadKey) -> List[dict]:
        return [
            m for m in self.threads.get(key, [])
            if m.get("id") is not None
            and m.get("recipient_id") == self.user_id
            and m.get("read_at") is None
            and not m.get("is_deleted")
        ]

    def _sort(self, key: ThreadKey):
        # server order is (created_at, id); provisional entries stay at the tail
        self.threads[key].sort(key=lambda m: (m.get("optimistic", False), m["created_at"], m.get("id") or 0))

    @staticmethod
    def _merge_fields(existing: dict, incoming: dict) -> dict:
        merged = {**existing, **incoming}
        if _RANK.get(existing.get("status"), 0) > _RANK.get(incoming.get("status"), 0):
            merged["status"] = existing["status"]
        for field in ("delivered_at", "read_at"):
            if incoming.get(field) is None:
                merged[field] = existing.get(field)
        return merged

    def _upsert(self, key: ThreadKey, msg: dict) -> dict:
        thread = self.threads.setdefault(key, [])
        for i, existing in enumerate(thread):
            if existing.get("id") == msg["id"]:
                thread[i] = self._merge_fields(existing, msg)
                return thread[i]
        entry = dict(msg)
        thread.append(entry)
        self._sort(key)
        return entry

    # ---------- receipts ----------
    @staticmethod
    def _apply_receipt(msg: dict, kind: str, at: Optional[str]):
        """Receipts only ever move a message forward."""
        if msg.get("is_deleted"):
            return
        if kind == events.MessageRead.EVENT:
            if msg.get("read_at") is None:
                msg["read_at"] = at
            if msg.get("delivered_at") is None:
                msg["delivered_at"] = at
            target = MessageStatus.READ.value
        else:
            if msg.get("delivered_at") is None:
                msg["delivered_at"] = at
            target = MessageStatus.DELIVERED.value
        if _RANK.get(msg.get("status"), 0) < _RANK[target]:
            msg["status"] = target

    def _receipt(self, message_id: int, kind: str, at: Optional[str]):
        msg = self.find(message_id)
        if msg is None:
            self.parked_receipts.setdefault(message_id, []).append({"type": kind, "at": at})
            while len(self.parked_receipts) > self.max_parked:
                self.parked_receipts.pop(next(iter(self.parked_receipts)))
            return
        self._apply_receipt(msg, kind, at)

    def _apply_parked(self, msg: dict):
        for receipt in self.parked_receipts.pop(msg["id"], []):
            self._apply_receipt(msg, receipt["type"], receipt["at"])

    # ---------- sending ----------
    async def send_direct(self, recipient_id: int, content: str) -> dict:
        return await self._send(
            direct(recipient_id),
            lambda: self.api.send_direct(recipient_id, content),
            content,
            recipient_id=recipient_id,
        )

    async def send_group(self, group_id: int, content: str) -> dict:
        return await self._send(
            group(group_id),
            lambda: self.api.send_group(group_id, content),
            content,
            group_id=group_id,
        )

    async def _send(self, key: ThreadKey, call, content: str,
                    recipient_id: Optional[int] = None, group_id: Optional[int] = None) -> dict:
        temp_id = f"temp-{uuid.uuid4().hex}"
        self.threads.setdefault(key, []).append({
            "id": None,
            "temp_id": temp_id,
            "optimistic": True,
            "sender_id": self.user_id,
            "recipient_id": recipient_id,
            "group_id": group_id,
            "content": content,
            "status": MessageStatus.SENT.value,
            "created_at": utcnow().isoformat(),
            "delivered_at": None,
            "read_at": None,
            "is_edited": False,
            "is_deleted": False,
            "attachments": [],
            "reactions": [],
        })
        self.pending[temp_id] = None

        try:
            confirmed = await call()
        except Exception:
            # no retry: drop the provisional entry and let the caller decide
            self._drop_temp(key, temp_id)
            self.pending.pop(temp_id, None)
            raise
        return self._merge_confirmed(key, temp_id, confirmed)

    def _drop_temp(self, key: ThreadKey, temp_id: str):
        thread = self.threads.get(key, [])
        self.threads[key] = [m for m in thread if m.get("temp_id") != temp_id]

    def _merge_confirmed(self, key: ThreadKey, temp_id: str, confirmed: dict) -> dict:
        durable_id = confirmed["id"]
        self.pending[temp_id] = durable_id

        thread = self.threads.setdefault(key, [])
        existing = next((m for m in thread if m.get("id") == durable_id), None)
        if existing is not None:
            # a thread load got here first
            self._drop_temp(key, temp_id)
            merged = self._merge_fields(existing, confirmed)
            existing.clear()
            existing.update(merged)
            merged = existing
        else:
            merged = dict(confirmed)
            for i, msg in enumerate(thread):
                if msg.get("temp_id") == temp_id:
                    thread[i] = merged
                    break
            else:
                thread.append(merged)

        self._apply_parked(merged)
        del self.pending[temp_id]
        self._sort(key)
        return merged

    # ---------- loading ----------
    async def load_thread(self, key: ThreadKey) -> List[dict]:
        kind, target_id = key
        if kind == "group":
            page = await self.api.fetch_group_thread(target_id)
        else:
            page = await self.api.fetch_thread(target_id)
        for msg in page["messages"]:
            entry = self._upsert(key, msg)
            self._apply_parked(entry)
        self.threads.setdefault(key, [])
        return self.messages(key)

    async def open_thread(self, key: ThreadKey) -> List[dict]:
        """Focus a thread, load it if needed and mark what we received as read."""
        self.focused = key
        if key not in self.threads:
            await self.load_thread(key)
        if key[0] == "direct":
            for msg in self.unread(key):
                response = await self.api.mark_read(msg["id"])
                msg.update(response["message"])
        return self.messages(key)

    def blur(self):
        self.focused = None

    # ---------- realtime ----------
    async def handle_event(self, frame) -> None:
        event = frame if isinstance(frame, events.ServerEvent) else events.parse_server_event(frame)

        if isinstance(event, events.MessageNew):
            await self._on_new(event.message.model_dump(mode="json"))
        elif isinstance(event, (events.MessageDelivered, events.MessageRead)):
            at = event.read_at if isinstance(event, events.MessageRead) else event.delivered_at
            self._receipt(event.message_id, event.EVENT, at.isoformat() if at else None)
        elif isinstance(event, events.MessageEdited):
            msg = self.find(event.message.id)
            if msg is not None:
                edited = event.message
                msg.update({
                    "content": edited.content,
                    "edited_at": edited.edited_at.isoformat() if edited.edited_at else None,
                    "is_edited": edited.is_edited,
                })
        elif isinstance(event, events.MessageDeleted):
            msg = self.find(event.message_id)
            if msg is not None:
                msg.update({
                    "content": TOMBSTONE,
                    "status": MessageStatus.DELETED.value,
                    "is_deleted": True,
                    "attachments": [],
                    "reactions": [],
                })
        elif isinstance(event, events.ReactionUpdated):
            msg = self.find(event.message_id)
            if msg is not None:
                msg["reactions"] = [r.model_dump(mode="json") for r in event.reactions]
        else:
            logger.debug(f"Ignoring {event.EVENT}")

    async def _on_new(self, msg: dict):
        key = self.thread_key(msg)
        known = self.find(msg["id"]) is not None
        entry = self._upsert(key, msg)
        self._apply_parked(entry)
        if known or msg["sender_id"] == self.user_id:
            return

        await self.emit("message:delivered", {"message_id": msg["id"]})
        if self.focused != key:
            return
        if msg.get("group_id") is None:
            response = await self.api.mark_read(msg["id"])
            entry.update(response["message"])
        await self.emit("message:read", {"message_id": msg["id"]})
