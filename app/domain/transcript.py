"""Client-side chat transcript and the one-node-per-message dedup guard."""

from __future__ import annotations

import asyncio
import itertools
import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Callable

logger = logging.getLogger("ezd6.transcript")

_seq = itertools.count(1)


@dataclass(eq=False)
class TranscriptNode:
    message_id: str
    html: str
    seq: int


MutationObserver = Callable[["ChatTranscript"], None]


class ChatTranscript:
    """Ordered, id-tagged rendered nodes for one client.

    Several render paths can insert a node for the same message; observers are
    notified after every mutation.
    """

    def __init__(self) -> None:
        self._nodes: list[TranscriptNode] = []
        self._observers: list[MutationObserver] = []
        self._arrivals: dict[str, asyncio.Event] = defaultdict(asyncio.Event)

    def observe(self, observer: MutationObserver) -> None:
        self._observers.append(observer)

    def _mutated(self) -> None:
        for observer in list(self._observers):
            observer(self)

    @property
    def nodes(self) -> list[TranscriptNode]:
        return list(self._nodes)

    def insert(self, message_id: str, html: str) -> TranscriptNode:
        node = TranscriptNode(message_id=message_id, html=html, seq=next(_seq))
        self._nodes.append(node)
        self._arrivals[message_id].set()
        self._mutated()
        return node

    def remove(self, node: TranscriptNode) -> None:
        if node in self._nodes:
            self._nodes.remove(node)
            self._mutated()

    def remove_message(self, message_id: str) -> None:
        before = len(self._nodes)
        self._nodes = [n for n in self._nodes if n.message_id != message_id]
        self._arrivals.pop(message_id, None)
        if len(self._nodes) != before:
            self._mutated()

    def find_all(self, message_id: str) -> list[TranscriptNode]:
        return [n for n in self._nodes if n.message_id == message_id]

    def find(self, message_id: str) -> TranscriptNode | None:
        nodes = self.find_all(message_id)
        return nodes[-1] if nodes else None

    async def wait_for_node(self, message_id: str, timeout: float) -> TranscriptNode | None:
        """Wait up to ``timeout`` seconds for a node; ``None`` (logged) on timeout."""
        existing = self.find(message_id)
        if existing is not None:
            return existing
        try:
            await asyncio.wait_for(self._arrivals[message_id].wait(), timeout)
        except asyncio.TimeoutError:
            logger.warning("Timed out waiting for transcript node of message %s", message_id)
            return None
        return self.find(message_id)


class DedupGuard:
    """Keeps exactly one live node per message id in a transcript."""

    def __init__(self, transcript: ChatTranscript) -> None:
        self._transcript = transcript
        self._pruning = False
        transcript.observe(self._on_mutation)

    def _on_mutation(self, _transcript: ChatTranscript) -> None:
        if not self._pruning:
            self.prune_all()

    def prune(self, message_id: str, preferred: TranscriptNode | None = None) -> None:
        nodes = self._transcript.find_all(message_id)
        if len(nodes) <= 1:
            return
        keep = preferred if preferred in nodes else max(nodes, key=lambda n: n.seq)
        self._drop([n for n in nodes if n is not keep])

    def prune_all(self) -> None:
        latest: dict[str, TranscriptNode] = {}
        for node in self._transcript.nodes:
            current = latest.get(node.message_id)
            if current is None or node.seq > current.seq:
                latest[node.message_id] = node
        stale = [n for n in self._transcript.nodes if latest[n.message_id] is not n]
        self._drop(stale)

    def _drop(self, nodes: list[TranscriptNode]) -> None:
        if not nodes:
            return
        self._pruning = True
        try:
            for node in nodes:
                self._transcript.remove(node)
        finally:
            self._pruning = False
