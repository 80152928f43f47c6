import pytest


@pytest.fixture
async def conversations(client, auth, world):
    async def dm(sender, recipient, content):
        res = await client.post(
            "/api/messages", json={"recipient_id": recipient.id, "content": content}, headers=auth(sender)
        )
        return res.json()

    res = await client.post(
        "/api/groups/create", json={"name": "Release", "member_ids": [world.bob.id]}, headers=auth(world.alice)
    )
    group = res.json()
    res = await client.post(
        f"/api/groups/{group['id']}/messages", json={"content": "Release Notes are out"}, headers=auth(world.bob)
    )
    return {
        "to_bob": await dm(world.alice, world.bob, "release candidate ready"),
        "to_carol": await dm(world.alice, world.carol, "RELEASE party friday"),
        "private": await dm(world.bob, world.carol, "release gossip"),
        "percent": await dm(world.alice, world.bob, "100% done"),
        "group": res.json(),
        "group_id": group["id"],
    }


async def search(client, auth, user, **params):
    res = await client.get("/api/messages/search", params=params, headers=auth(user))
    assert res.status_code == 200, res.text
    return res.json()


async def test_case_insensitive_and_scoped_to_caller(client, auth, world, conversations):
    page = await search(client, auth, world.alice, q="release")
    ids = {m["id"] for m in page["messages"]}
    assert ids == {conversations["to_bob"]["id"], conversations["to_carol"]["id"], conversations["group"]["id"]}
    assert page["total"] == 3
    # bob and carol's private exchange never shows up for alice
    assert conversations["private"]["id"] not in ids


async def test_direct_scope_with_peer(client, auth, world, conversations):
    page = await search(client, auth, world.alice, q="release", type="direct", user_id=world.carol.id)
    assert [m["id"] for m in page["messages"]] == [conversations["to_carol"]["id"]]


async def test_group_scope(client, auth, world, conversations):
    page = await search(client, auth, world.bob, q="notes", type="group", group_id=conversations["group_id"])
    assert [m["id"] for m in page["messages"]] == [conversations["group"]["id"]]

    page = await search(client, auth, world.carol, q="notes", type="group")
    assert page["messages"] == []


async def test_wildcards_are_literal(client, auth, world, conversations):
    page = await search(client, auth, world.alice, q="%")
    assert [m["id"] for m in page["messages"]] == [conversations["percent"]["id"]]


async def test_deleted_messages_never_match(client, auth, world, conversations):
    await client.delete(f"/api/messages/{conversations['to_bob']['id']}", headers=auth(world.alice))
    page = await search(client, auth, world.bob, q="candidate")
    assert page["messages"] == []


async def test_pagination(client, auth, world, conversations):
    page = await search(client, auth, world.alice, q="release", limit=2)
    assert len(page["messages"]) == 2
    assert page["total"] == 3

    rest = await search(client, auth, world.alice, q="release", limit=2, offset=2)
    assert len(rest["messages"]) == 1


async def test_bad_scope_rejected(client, auth, world):
    res = await client.get("/api/messages/search", params={"q": "x", "type": "everything"}, headers=auth(world.alice))
    assert res.status_code == 400
