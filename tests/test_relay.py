"""Tests for the admin mutation relay."""

from app.domain.relay import NO_ADMIN_WARNING, MutationRelay, PersistOutcome
from app.models.event import RELAY_ACTION
from tests.conftest import make_user
from tests.test_websocket import FakePeer


def test_envelope_shape():
    envelope = MutationRelay.build_envelope("m1", {"flags": {"processed": True}})
    assert envelope == {
        "action": RELAY_ACTION,
        "msgId": "m1",
        "data": {"content": None, "flags": {"processed": True}},
    }


async def _message(runtime, author):
    return await runtime.store.create_child("world", author.id, content="<p>hi</p>")


async def test_author_writes_directly(runtime, db_session):
    author = await make_user(db_session, "direct")
    message = await _message(runtime, author)
    outcome = await runtime.relay.safe_update_message(author, message.id, {"content": "<p>edited</p>"})
    assert outcome == PersistOutcome.WRITTEN
    assert (await runtime.store.require(message.id)).content == "<p>edited</p>"


async def test_missing_message(runtime, db_session):
    author = await make_user(db_session, "ghost")
    outcome = await runtime.relay.safe_update_message(author, "nope", {"content": "x"})
    assert outcome == PersistOutcome.MISSING


async def test_routes_to_first_admin(runtime, db_session):
    author = await make_user(db_session, "writer")
    helper = await make_user(db_session, "helper")
    admin = FakePeer("gm-id", is_admin=True)
    runtime.connections.join("world", admin)
    message = await _message(runtime, author)

    outcome = await runtime.relay.safe_update_message(helper, message.id, {"flags": {"x": 1}})

    assert outcome == PersistOutcome.RELAYED
    ((channel, envelope),) = admin.received
    assert channel == runtime.relay.channel
    assert envelope["msgId"] == message.id
    assert envelope["data"]["flags"] == {"x": 1}
    assert (await runtime.store.require(message.id)).flags == {}


async def test_no_admin_notifies(runtime, db_session):
    author = await make_user(db_session, "writer2")
    helper = await make_user(db_session, "helper2")
    message = await _message(runtime, author)
    seen = []

    async def notify(level, text):
        seen.append((level, text))

    outcome = await runtime.relay.safe_update_message(helper, message.id, {"content": "x"}, notify)
    assert outcome == PersistOutcome.NO_AUTHORITY
    assert seen == [("warn", NO_ADMIN_WARNING)]


async def test_unreachable_admin_fails(runtime, db_session):
    author = await make_user(db_session, "writer3")
    helper = await make_user(db_session, "helper3")
    runtime.connections.join("world", FakePeer("gm-id", is_admin=True, broken=True))
    message = await _message(runtime, author)
    outcome = await runtime.relay.safe_update_message(helper, message.id, {"content": "x"})
    assert outcome == PersistOutcome.FAILED


async def test_admin_applies_envelope(runtime, db_session):
    author = await make_user(db_session, "writer4")
    gm = await make_user(db_session, "gm4", role="admin")
    message = await _message(runtime, author)
    envelope = MutationRelay.build_envelope(message.id, {"flags": {"processed": True}})

    assert await runtime.relay.apply_envelope(gm, envelope) == PersistOutcome.WRITTEN
    stored = await runtime.store.require(message.id)
    assert stored.flags == {"processed": True}
    assert stored.content == "<p>hi</p>"


async def test_envelope_ignored_for_non_admin_and_other_actions(runtime, db_session):
    author = await make_user(db_session, "writer5")
    gm = await make_user(db_session, "gm5", role="admin")
    message = await _message(runtime, author)
    envelope = MutationRelay.build_envelope(message.id, {"content": "hacked"})

    assert await runtime.relay.apply_envelope(author, envelope) is None
    assert await runtime.relay.apply_envelope(gm, {**envelope, "action": "deleteMessage"}) is None
    assert await runtime.relay.apply_envelope(gm, {"action": RELAY_ACTION}) is None
    assert await runtime.relay.apply_envelope(gm, "garbage") is None
    assert (await runtime.store.require(message.id)).content == "<p>hi</p>"
