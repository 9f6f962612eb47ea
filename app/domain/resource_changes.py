"""Resource-change summaries — batch pool changes per actor into one info message."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field

from app.domain import rendering
from app.domain.messages import DocumentStore

logger = logging.getLogger("ezd6.resource_changes")

RESOURCE_CHANGE_FLAG = "resourceChange"


def _sign(value: int) -> int:
    return (value > 0) - (value < 0)


def _unique_key(rows: dict[str, dict], resource_key: str) -> str:
    if resource_key not in rows:
        return resource_key
    idx = 1
    while f"{resource_key}::{idx}" in rows:
        idx += 1
    return f"{resource_key}::{idx}"


def merge_rows(
    rows: dict[str, dict],
    order: list[str],
    changes: list[dict],
) -> tuple[dict[str, dict], list[str]]:
    """Fold ``changes`` into an existing summary.

    A change extends the most recent row for the same resource when both moved
    in the same direction; otherwise it becomes a new row.
    """
    rows = {k: dict(v) for k, v in rows.items()}
    order = list(order)
    for change in changes:
        incoming = change["new_value"] - change["old_value"]
        last_key = next(
            (k for k in reversed(order) if rows.get(k, {}).get("resource_key") == change["resource_key"]),
            None,
        )
        existing = rows.get(last_key) if last_key else None
        if existing and _sign(existing["new_value"] - existing["old_value"]) == _sign(incoming):
            existing["new_value"] = change["new_value"]
            existing["resource_name"] = change.get("resource_name") or existing["resource_name"]
            existing["resource_icon"] = change.get("resource_icon") or existing["resource_icon"]
            existing["max_value"] = change.get("max_value") or existing["max_value"]
            continue
        key = _unique_key(rows, change["resource_key"])
        rows[key] = dict(change)
        order.append(key)
    return rows, order


@dataclass
class PendingBatch:
    room_id: str
    actor_id: str
    author_id: str
    changes: dict[str, dict] = field(default_factory=dict)
    order: list[str] = field(default_factory=list)
    timer: asyncio.Task | None = None


class ResourceChangeBatcher:
    """Collects pool changes for a short window, then posts or merges a summary."""

    def __init__(self, store: DocumentStore, window: float = 0.05) -> None:
        self._store = store
        self.window = window
        self._pending: dict[str, PendingBatch] = {}

    def queue(self, room_id: str, actor_id: str, author_id: str, row: dict) -> None:
        batch = self._pending.get(actor_id)
        if batch is None:
            batch = PendingBatch(room_id=room_id, actor_id=actor_id, author_id=author_id)
            self._pending[actor_id] = batch

        key = row["resource_key"]
        existing = batch.changes.get(key)
        if existing:
            existing["new_value"] = row["new_value"]
            existing["resource_name"] = row.get("resource_name") or existing["resource_name"]
            existing["resource_icon"] = row.get("resource_icon") or existing["resource_icon"]
            existing["max_value"] = row.get("max_value") or existing["max_value"]
        else:
            batch.changes[key] = dict(row)
            batch.order.append(key)

        if batch.timer is None:
            batch.timer = asyncio.create_task(self._flush_later(actor_id))

    async def _flush_later(self, actor_id: str) -> None:
        await asyncio.sleep(self.window)
        await self.flush(actor_id, from_timer=True)

    async def flush(self, actor_id: str, from_timer: bool = False) -> None:
        batch = self._pending.pop(actor_id, None)
        if batch is None:
            return
        if batch.timer is not None and not from_timer:
            batch.timer.cancel()
        changes = [batch.changes[k] for k in batch.order]
        try:
            if await self._merge_into_last(batch, changes):
                return
            rows, order = merge_rows({}, [], changes)
            flag = {"actorId": batch.actor_id, "rows": rows, "order": order}
            await self._store.create_child(
                batch.room_id,
                batch.author_id,
                actor_id=batch.actor_id,
                content=rendering.render_resource_change(batch.actor_id, [rows[k] for k in order]),
                flags={RESOURCE_CHANGE_FLAG: flag},
            )
        except Exception:
            logger.exception("Posting resource changes for actor %s failed", actor_id)

    async def _merge_into_last(self, batch: PendingBatch, changes: list[dict]) -> bool:
        last = await self._store.last_in_room(batch.room_id)
        if last is None:
            return False
        flags = last.flags
        flag = flags.get(RESOURCE_CHANGE_FLAG)
        if not isinstance(flag, dict) or flag.get("actorId") != batch.actor_id:
            return False
        rows, order = merge_rows(flag.get("rows") or {}, flag.get("order") or [], changes)
        flags[RESOURCE_CHANGE_FLAG] = {"actorId": batch.actor_id, "rows": rows, "order": order}
        content = rendering.render_resource_change(batch.actor_id, [rows[k] for k in order])
        await self._store.update(last.id, {"content": content, "flags": flags})
        return True

    async def flush_all(self) -> None:
        for actor_id in list(self._pending):
            await self.flush(actor_id)

    def pending_count(self) -> int:
        return len(self._pending)

    async def close(self) -> None:
        """Post whatever is still waiting, then stop."""
        await self.flush_all()
