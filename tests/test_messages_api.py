from datetime import timedelta

from collabnotes.core.clock import utcnow
from collabnotes.models.messages import TOMBSTONE, Message


async def send(client, auth, sender, recipient, content="hello"):
    res = await client.post(
        "/api/messages",
        json={"recipient_id": recipient.id, "content": content},
        headers=auth(sender),
    )
    assert res.status_code == 201, res.text
    return res.json()


async def test_requires_authentication(client, world):
    res = await client.get(f"/api/messages/thread/{world.bob.id}")
    assert res.status_code == 401

    res = await client.get(f"/api/messages/thread/{world.bob.id}", headers={"Authorization": "Bearer nope"})
    assert res.status_code == 401


async def test_send_then_fetch_shows_message_once(client, auth, world):
    sent = await send(client, auth, world.alice, world.bob)
    assert sent["status"] == "SENT"
    assert sent["read_at"] is None

    res = await client.get(f"/api/messages/thread/{world.bob.id}", headers=auth(world.alice))
    assert res.status_code == 200
    ids = [m["id"] for m in res.json()["messages"]]
    assert ids.count(sent["id"]) == 1


async def test_camel_case_body_is_accepted(client, auth, world):
    res = await client.post(
        "/api/messages",
        json={"recipientId": world.bob.id, "content": "hi"},
        headers=auth(world.alice),
    )
    assert res.status_code == 201
    assert res.json()["recipient_id"] == world.bob.id


async def test_thread_is_oldest_first_with_cursor(client, auth, world):
    sent = [await send(client, auth, world.alice, world.bob, f"m{i}") for i in range(5)]

    res = await client.get(f"/api/messages/thread/{world.bob.id}?limit=3", headers=auth(world.alice))
    page = res.json()
    assert [m["content"] for m in page["messages"]] == ["m2", "m3", "m4"]
    assert page["has_more"] is True
    assert page["last_id"] == sent[2]["id"]

    res = await client.get(
        f"/api/messages/thread/{world.bob.id}?limit=3&last_id={page['last_id']}", headers=auth(world.alice)
    )
    page = res.json()
    assert [m["content"] for m in page["messages"]] == ["m0", "m1"]
    assert page["has_more"] is False


async def test_recipient_gets_message_new(client, auth, world, connect):
    bob_socket = connect(world.bob)
    alice_socket = connect(world.alice)
    sent = await send(client, auth, world.alice, world.bob)

    frames = bob_socket.of_type("message:new")
    assert len(frames) == 1
    assert frames[0]["data"]["message"]["id"] == sent["id"]
    # exactly the recipient, never the sender
    assert alice_socket.of_type("message:new") == []


async def test_fetch_marks_delivered_but_not_read(client, auth, world, connect):
    alice_socket = connect(world.alice)
    sent = await send(client, auth, world.alice, world.bob)

    res = await client.get(f"/api/messages/thread/{world.alice.id}", headers=auth(world.bob))
    msg = next(m for m in res.json()["messages"] if m["id"] == sent["id"])
    assert msg["status"] == "DELIVERED"
    assert msg["delivered_at"] is not None
    assert msg["read_at"] is None

    delivered = alice_socket.of_type("message:delivered")
    assert [f["data"]["message_id"] for f in delivered] == [sent["id"]]


async def test_cannot_message_other_tenant(client, auth, world):
    res = await client.post(
        "/api/messages",
        json={"recipient_id": world.outsider.id, "content": "psst"},
        headers=auth(world.alice),
    )
    assert res.status_code == 404
    assert res.json()["code"] == "NotFound"

    res = await client.get(f"/api/messages/thread/{world.outsider.id}", headers=auth(world.alice))
    assert res.status_code == 404


async def test_content_validation(client, auth, world):
    res = await client.post(
        "/api/messages",
        json={"recipient_id": world.bob.id, "content": "x" * 2001},
        headers=auth(world.alice),
    )
    assert res.status_code == 400
    body = res.json()
    assert body["code"] == "ValidationError"
    assert body["errors"][0]["field"] == "content"

    res = await client.post(
        "/api/messages",
        json={"recipient_id": world.bob.id, "content": "   "},
        headers=auth(world.alice),
    )
    assert res.status_code == 400


async def test_mark_read_is_idempotent(client, auth, world, connect):
    alice_socket = connect(world.alice)
    sent = await send(client, auth, world.alice, world.bob)

    res = await client.patch(f"/api/messages/{sent['id']}/read", headers=auth(world.bob))
    assert res.status_code == 200
    first = res.json()
    assert first["changed"] is True
    assert first["code"] is None
    assert first["message"]["read_at"] is not None
    assert first["message"]["status"] == "READ"

    res = await client.patch(f"/api/messages/{sent['id']}/read", headers=auth(world.bob))
    again = res.json()
    assert again["changed"] is False
    assert again["code"] == "NoOp"
    assert again["message"]["read_at"] == first["message"]["read_at"]

    reads = alice_socket.of_type("message:read")
    assert len(reads) == 1
    assert reads[0]["data"]["message_id"] == sent["id"]
    assert reads[0]["data"]["user_id"] == world.bob.id


async def test_only_recipient_marks_read(client, auth, world):
    sent = await send(client, auth, world.alice, world.bob)

    res = await client.patch(f"/api/messages/{sent['id']}/read", headers=auth(world.alice))
    assert res.status_code == 403

    # not a participant: the message does not exist for them
    res = await client.patch(f"/api/messages/{sent['id']}/read", headers=auth(world.carol))
    assert res.status_code == 404


async def test_unread_counts(client, auth, world):
    await send(client, auth, world.alice, world.bob, "one")
    second = await send(client, auth, world.alice, world.bob, "two")
    await send(client, auth, world.carol, world.bob, "three")
    await client.patch(f"/api/messages/{second['id']}/read", headers=auth(world.bob))

    res = await client.get("/api/messages/unread", headers=auth(world.bob))
    body = res.json()
    assert body["total"] == 2
    assert body["by_user"] == {str(world.alice.id): 1, str(world.carol.id): 1}


async def test_edit_and_history(client, auth, world, connect):
    bob_socket = connect(world.bob)
    sent = await send(client, auth, world.alice, world.bob, "helo")

    res = await client.patch(f"/api/messages/{sent['id']}/edit", json={"content": "hello"}, headers=auth(world.alice))
    assert res.status_code == 200
    assert res.json()["content"] == "hello"
    assert res.json()["is_edited"] is True
    assert bob_socket.of_type("message:edited")[0]["data"]["message"]["content"] == "hello"

    res = await client.get(f"/api/messages/{sent['id']}/history", headers=auth(world.bob))
    history = res.json()["history"]
    assert [(h["type"], h["content"]) for h in history] == [("original", "helo"), ("edited", "hello")]


async def test_edit_rules(client, auth, world, db):
    sent = await send(client, auth, world.alice, world.bob, "draft")

    res = await client.patch(f"/api/messages/{sent['id']}/edit", json={"content": "mine now"}, headers=auth(world.bob))
    assert res.status_code == 403
    assert res.json()["code"] == "Forbidden"

    msg = db.get(Message, sent["id"])
    msg.created_at = utcnow() - timedelta(hours=24, minutes=1)
    db.commit()

    res = await client.patch(f"/api/messages/{sent['id']}/edit", json={"content": "late"}, headers=auth(world.alice))
    assert res.status_code == 403
    assert res.json()["code"] == "EditWindowExpired"


async def test_edit_just_inside_window(client, auth, world, db):
    sent = await send(client, auth, world.alice, world.bob, "draft")
    msg = db.get(Message, sent["id"])
    msg.created_at = utcnow() - timedelta(hours=24) + timedelta(minutes=1)
    db.commit()

    res = await client.patch(f"/api/messages/{sent['id']}/edit", json={"content": "final"}, headers=auth(world.alice))
    assert res.status_code == 200


async def test_reacting_twice_nets_zero(client, auth, world, connect):
    alice_socket = connect(world.alice)
    sent = await send(client, auth, world.alice, world.bob)

    res = await client.post(f"/api/messages/{sent['id']}/react", json={"emoji": "👍"}, headers=auth(world.bob))
    assert res.json()["action"] == "added"
    assert res.json()["reactions"] == [{"emoji": "👍", "count": 1, "user_ids": [world.bob.id]}]

    res = await client.post(f"/api/messages/{sent['id']}/react", json={"emoji": "👍"}, headers=auth(world.bob))
    assert res.json()["action"] == "removed"

    res = await client.get(f"/api/messages/{sent['id']}/reactions", headers=auth(world.alice))
    assert res.json() == []
    assert [f["data"]["action"] for f in alice_socket.of_type("reaction:updated")] == ["added", "removed"]


async def test_reaction_emoji_length(client, auth, world):
    sent = await send(client, auth, world.alice, world.bob)
    res = await client.post(f"/api/messages/{sent['id']}/react", json={"emoji": "x" * 11}, headers=auth(world.bob))
    assert res.status_code == 400


async def test_soft_delete(client, auth, world, connect):
    bob_socket = connect(world.bob)
    sent = await send(client, auth, world.alice, world.bob, "oops")
    await client.post(f"/api/messages/{sent['id']}/react", json={"emoji": "😅"}, headers=auth(world.bob))

    res = await client.delete(f"/api/messages/{sent['id']}", headers=auth(world.bob))
    assert res.status_code == 403

    res = await client.delete(f"/api/messages/{sent['id']}", headers=auth(world.alice))
    assert res.status_code == 200
    body = res.json()
    assert body["content"] == TOMBSTONE
    assert body["status"] == "DELETED"
    assert body["is_deleted"] is True
    assert body["reactions"] == []
    assert bob_socket.of_type("message:deleted")[0]["data"]["message_id"] == sent["id"]

    # still listed in the thread, as a tombstone
    res = await client.get(f"/api/messages/thread/{world.alice.id}", headers=auth(world.bob))
    listed = next(m for m in res.json()["messages"] if m["id"] == sent["id"])
    assert listed["content"] == TOMBSTONE

    res = await client.patch(f"/api/messages/{sent['id']}/edit", json={"content": "undo"}, headers=auth(world.alice))
    assert res.status_code == 404


async def test_super_admin_can_delete_any_message(client, auth, world):
    sent = await send(client, auth, world.alice, world.bob)
    res = await client.delete(f"/api/messages/{sent['id']}", headers=auth(world.root))
    assert res.status_code == 200
    assert res.json()["is_deleted"] is True


async def test_enhanced_rejects_both_targets(client, auth, world):
    res = await client.post(
        "/api/messages/enhanced",
        data={"recipient_id": str(world.bob.id), "group_id": "1", "content": "both"},
        headers=auth(world.alice),
    )
    assert res.status_code == 400
    assert res.json()["code"] == "ValidationError"

    res = await client.post("/api/messages/enhanced", data={"content": "neither"}, headers=auth(world.alice))
    assert res.status_code == 400


async def test_enhanced_with_attachments(client, auth, world, upload_dir):
    files = [
        ("attachments", ("notes.txt", b"meeting notes", "text/plain")),
        ("attachments", ("plan.pdf", b"%PDF-1.4", "application/pdf")),
    ]
    res = await client.post(
        "/api/messages/enhanced",
        data={"recipient_id": str(world.bob.id), "content": "see attached"},
        files=files,
        headers=auth(world.alice),
    )
    assert res.status_code == 201, res.text
    body = res.json()
    assert body["type"] == "FILE"
    assert [a["file_name"] for a in body["attachments"]] == ["notes.txt", "plan.pdf"]
    assert len(list(upload_dir.iterdir())) == 2

    url = body["attachments"][0]["url"]
    res = await client.get(url, headers=auth(world.bob))
    assert res.status_code == 200
    assert res.content == b"meeting notes"

    res = await client.get(url, headers=auth(world.carol))
    assert res.status_code == 404

    await client.delete(f"/api/messages/{body['id']}", headers=auth(world.alice))
    res = await client.get(url, headers=auth(world.bob))
    assert res.status_code == 404


async def test_enhanced_attachment_limit(client, auth, world, upload_dir):
    files = [("attachments", (f"f{i}.txt", b"x", "text/plain")) for i in range(6)]
    res = await client.post(
        "/api/messages/enhanced",
        data={"recipient_id": str(world.bob.id)},
        files=files,
        headers=auth(world.alice),
    )
    assert res.status_code == 400
    assert not upload_dir.exists() or not any(upload_dir.iterdir())


async def test_reply_must_stay_in_thread(client, auth, world):
    first = await send(client, auth, world.alice, world.bob)

    res = await client.post(
        "/api/messages/enhanced",
        data={"recipient_id": str(world.bob.id), "content": "re", "parent_id": str(first["id"])},
        headers=auth(world.alice),
    )
    assert res.status_code == 201
    assert res.json()["parent_id"] == first["id"]

    res = await client.post(
        "/api/messages/enhanced",
        data={"recipient_id": str(world.carol.id), "content": "re", "parent_id": str(first["id"])},
        headers=auth(world.alice),
    )
    assert res.status_code == 404
