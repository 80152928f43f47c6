import pytest

from collabnotes.client.http import APIError, MessagesAPI
from collabnotes.client.reconciler import ChatState, direct, group
from collabnotes.websocket import events
from collabnotes.websocket.handlers import handle_client_event
from conftest import token_for

ME, PEER = 1, 2


def wire(message_id, sender=PEER, recipient=ME, group_id=None, content="hi", status="SENT",
         created_at="2026-03-02T09:00:00", **extra):
    msg = {
        "id": message_id,
        "company_id": 1,
        "sender_id": sender,
        "recipient_id": None if group_id else recipient,
        "group_id": group_id,
        "parent_id": None,
        "content": content,
        "type": "TEXT",
        "status": status,
        "created_at": created_at,
        "delivered_at": None,
        "read_at": None,
        "edited_at": None,
        "deleted_at": None,
        "is_edited": False,
        "is_deleted": False,
        "attachments": [],
        "reactions": [],
    }
    msg.update(extra)
    return msg


def new(msg):
    return {"type": "message:new", "data": {"message": msg}}


def receipt(kind, message_id, at="2026-03-02T09:05:00", user_id=PEER):
    field = "read_at" if kind == "message:read" else "delivered_at"
    return {"type": kind, "data": {"message_id": message_id, "user_id": user_id, field: at}}


class FakeAPI:
    """Scripted REST side; ``on_send`` runs while the send is in flight."""

    def __init__(self):
        self.next_id = 100
        self.on_send = None
        self.fail_with = None
        self.read_calls = []
        self.pages = {}

    async def send_direct(self, recipient_id, content):
        if self.on_send:
            await self.on_send()
        if self.fail_with:
            raise self.fail_with
        self.next_id += 1
        return wire(self.next_id, sender=ME, recipient=recipient_id, content=content,
                    created_at="2026-03-02T10:00:00")

    async def send_group(self, group_id, content):
        self.next_id += 1
        return wire(self.next_id, sender=ME, group_id=group_id, content=content, created_at="2026-03-02T10:00:00")

    async def fetch_thread(self, user_id, last_id=None, limit=50):
        return {"messages": self.pages.get(("direct", user_id), []), "has_more": False, "last_id": None}

    async def fetch_group_thread(self, group_id, last_id=None, limit=50):
        return {"messages": self.pages.get(("group", group_id), []), "has_more": False, "last_id": None}

    async def mark_read(self, message_id):
        self.read_calls.append(message_id)
        return {"message": {"id": message_id, "status": "READ", "read_at": "2026-03-02T11:00:00"}, "changed": True}


@pytest.fixture
def api():
    return FakeAPI()


@pytest.fixture
def emitted():
    return []


@pytest.fixture
def state(api, emitted):
    async def emit(event_type, data):
        emitted.append((event_type, data))
    return ChatState(ME, api, emit)


# ==================== sending ====================

async def test_optimistic_entry_is_replaced_by_confirmed(state, api):
    seen_in_flight = []

    async def peek():
        seen_in_flight.extend(state.messages(direct(PEER)))
    api.on_send = peek

    confirmed = await state.send_direct(PEER, "hello")

    assert seen_in_flight[0]["optimistic"] is True
    assert seen_in_flight[0]["id"] is None
    assert seen_in_flight[0]["temp_id"].startswith("temp-")
    thread = state.messages(direct(PEER))
    assert [m["id"] for m in thread] == [confirmed["id"]]
    assert "temp_id" not in thread[0]
    assert state.pending == {}


async def test_record_loaded_before_response_leaves_one_entry(state, api):
    async def load_first():
        api.pages[("direct", PEER)] = [wire(api.next_id + 1, sender=ME, recipient=PEER, content="hello",
                                            created_at="2026-03-02T10:00:00")]
        await state.load_thread(direct(PEER))
    api.on_send = load_first

    await state.send_direct(PEER, "hello")
    thread = state.messages(direct(PEER))
    assert len(thread) == 1
    assert thread[0]["id"] == api.next_id


async def test_failed_send_is_dropped(state, api):
    api.fail_with = APIError(400, "too long", "ValidationError")
    with pytest.raises(APIError):
        await state.send_direct(PEER, "x")
    assert state.messages(direct(PEER)) == []
    assert state.pending == {}


async def test_receipt_before_confirmation_is_applied_on_merge(state, api):
    async def early_read():
        await state.handle_event(receipt("message:read", api.next_id + 1))
    api.on_send = early_read

    confirmed = await state.send_direct(PEER, "quick")
    assert confirmed["status"] == "READ"
    assert confirmed["read_at"] == "2026-03-02T09:05:00"
    assert state.parked_receipts == {}


async def test_parked_receipts_are_capped(api, emitted):
    async def emit(event_type, data):
        emitted.append((event_type, data))
    state = ChatState(ME, api, emit, max_parked=2)

    for message_id in (41, 42, 43):
        await state.handle_event(receipt("message:delivered", message_id))
    await state.handle_event(receipt("message:read", 43))

    # the oldest stray receipt went first
    assert list(state.parked_receipts) == [42, 43]
    assert len(state.parked_receipts[43]) == 2


# ==================== receipts ====================

async def test_receipts_never_go_backwards(state, api):
    sent = await state.send_direct(PEER, "hello")

    await state.handle_event(receipt("message:read", sent["id"]))
    await state.handle_event(receipt("message:delivered", sent["id"], at="2026-03-02T09:09:00"))
    # a late echo of the original send
    await state.handle_event(new(wire(sent["id"], sender=ME, recipient=PEER, content="hello",
                                      created_at=sent["created_at"])))

    msg = state.find(sent["id"])
    assert msg["status"] == "READ"
    assert msg["read_at"] == "2026-03-02T09:05:00"
    assert msg["delivered_at"] == "2026-03-02T09:05:00"


# ==================== incoming ====================

async def test_incoming_in_background_thread_is_only_delivered(state, api, emitted):
    await state.handle_event(new(wire(7)))
    assert emitted == [("message:delivered", {"message_id": 7})]
    assert api.read_calls == []
    assert [m["id"] for m in state.unread(direct(PEER))] == [7]


async def test_incoming_in_focused_thread_is_read(state, api, emitted):
    await state.open_thread(direct(PEER))
    await state.handle_event(new(wire(7)))

    assert api.read_calls == [7]
    assert emitted == [("message:delivered", {"message_id": 7}), ("message:read", {"message_id": 7})]
    assert state.find(7)["read_at"] == "2026-03-02T11:00:00"
    assert state.unread(direct(PEER)) == []


async def test_duplicate_event_is_not_acked_twice(state, emitted):
    await state.handle_event(new(wire(7)))
    await state.handle_event(new(wire(7)))
    assert len(emitted) == 1
    assert len(state.messages(direct(PEER))) == 1


async def test_group_message_in_focused_group(state, api, emitted):
    state.focused = group(9)
    await state.handle_event(new(wire(8, sender=3, group_id=9)))
    # group reads are relayed, there is no REST read for them
    assert api.read_calls == []
    assert [e[0] for e in emitted] == ["message:delivered", "message:read"]
    assert [m["id"] for m in state.messages(group(9))] == [8]


async def test_open_thread_marks_received_messages_read(state, api):
    api.pages[("direct", PEER)] = [
        wire(1, created_at="2026-03-02T08:00:00"),
        wire(2, sender=ME, recipient=PEER, created_at="2026-03-02T08:01:00"),
        wire(3, created_at="2026-03-02T08:02:00", read_at="2026-03-02T08:03:00", status="READ"),
    ]
    thread = await state.open_thread(direct(PEER))
    assert [m["id"] for m in thread] == [1, 2, 3]
    assert api.read_calls == [1]

    state.blur()
    assert state.focused is None


async def test_out_of_order_arrivals_are_sorted(state):
    await state.handle_event(new(wire(5, created_at="2026-03-02T09:02:00")))
    await state.handle_event(new(wire(4, created_at="2026-03-02T09:01:00")))
    await state.handle_event(new(wire(6, created_at="2026-03-02T09:01:00")))
    assert [m["id"] for m in state.messages(direct(PEER))] == [4, 6, 5]


async def test_edit_delete_and_reactions(state):
    await state.handle_event(new(wire(7, content="helo")))

    await state.handle_event({"type": "message:edited", "data": {"message": wire(
        7, content="hello", edited_at="2026-03-02T09:01:00", is_edited=True)}})
    assert state.find(7)["content"] == "hello"
    assert state.find(7)["is_edited"] is True

    await state.handle_event({"type": "reaction:updated", "data": {
        "message_id": 7, "user_id": ME, "emoji": "👍", "action": "added",
        "reactions": [{"emoji": "👍", "count": 1, "user_ids": [ME]}],
    }})
    assert state.find(7)["reactions"][0]["count"] == 1

    await state.handle_event({"type": "message:deleted", "data": {"message_id": 7, "deleted_by": PEER}})
    msg = state.find(7)
    assert msg["is_deleted"] is True
    assert msg["reactions"] == []

    # receipts for a tombstone are ignored
    await state.handle_event(receipt("message:read", 7))
    assert msg["read_at"] is None


async def test_unknown_frames_raise(state):
    with pytest.raises(KeyError):
        await state.handle_event({"type": "weather:update", "data": {}})


# ==================== against the real server ====================

async def test_two_clients_converge(client, db, world, connect):
    alice_socket = connect(world.alice)
    bob_socket = connect(world.bob)

    def emitter(user):
        async def emit(event_type, data):
            reply = await handle_client_event(db, user, events.parse_client_event({"type": event_type, **data}))
            assert reply is None
        return emit

    alice = ChatState(world.alice.id, MessagesAPI(client, token_for(world.alice)), emitter(world.alice))
    bob = ChatState(world.bob.id, MessagesAPI(client, token_for(world.bob)), emitter(world.bob))

    assert await bob.open_thread(direct(world.alice.id)) == []

    sent = await alice.send_direct(world.bob.id, "lunch?")

    for frame in bob_socket.drain():
        await bob.handle_event(frame)
    for frame in alice_socket.drain():
        await alice.handle_event(frame)

    mine = alice.messages(direct(world.bob.id))
    assert [m["id"] for m in mine] == [sent["id"]]
    assert mine[0]["status"] == "READ"
    assert mine[0]["read_at"] is not None

    theirs = bob.messages(direct(world.alice.id))
    assert [m["id"] for m in theirs] == [sent["id"]]
    assert bob.unread(direct(world.alice.id)) == []

    res = await client.get("/api/messages/unread", headers={"Authorization": f"Bearer {token_for(world.bob)}"})
    assert res.json()["total"] == 0
