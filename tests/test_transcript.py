"""Tests for the chat transcript and the one-node-per-message guard."""

import asyncio

from app.domain.transcript import ChatTranscript, DedupGuard


def test_guard_keeps_latest_node():
    transcript = ChatTranscript()
    DedupGuard(transcript)
    transcript.insert("m1", "<p>first</p>")
    transcript.insert("m2", "<p>other</p>")
    transcript.insert("m1", "<p>second</p>")
    nodes = transcript.find_all("m1")
    assert len(nodes) == 1
    assert nodes[0].html == "<p>second</p>"
    assert [n.message_id for n in transcript.nodes] == ["m2", "m1"]


def test_prune_prefers_given_node():
    transcript = ChatTranscript()
    guard = DedupGuard(transcript)
    guard._pruning = True  # let duplicates accumulate
    keep = transcript.insert("m1", "a")
    transcript.insert("m1", "b")
    guard._pruning = False
    guard.prune("m1", keep)
    assert transcript.find_all("m1") == [keep]


def test_remove_message_drops_every_node():
    transcript = ChatTranscript()
    transcript.insert("m1", "a")
    transcript.insert("m1", "b")
    transcript.remove_message("m1")
    assert transcript.find("m1") is None


async def test_wait_for_existing_node_returns_immediately():
    transcript = ChatTranscript()
    node = transcript.insert("m1", "a")
    assert await transcript.wait_for_node("m1", 0.01) is node


async def test_wait_for_node_sees_later_insert():
    transcript = ChatTranscript()

    async def insert_later():
        await asyncio.sleep(0.01)
        transcript.insert("m1", "late")

    task = asyncio.create_task(insert_later())
    node = await transcript.wait_for_node("m1", 1.0)
    await task
    assert node is not None and node.html == "late"


async def test_wait_for_node_times_out(caplog):
    transcript = ChatTranscript()
    with caplog.at_level("WARNING", logger="ezd6.transcript"):
        assert await transcript.wait_for_node("missing", 0.01) is None
    assert "Timed out" in caplog.text
