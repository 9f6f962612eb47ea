"""Promote a player to admin (game master) so they can accept relayed roll updates.

Usage:
    python scripts/promote_admin.py <username-or-user-id>
"""

from __future__ import annotations

import asyncio
import sys

from sqlalchemy import or_, select

from app.infra.db import async_session_factory, init_db
from app.models.db_models import User


async def promote(ident: str) -> int:
    await init_db()
    async with async_session_factory() as db:
        result = await db.execute(select(User).where(or_(User.id == ident, User.username == ident)))
        user = result.scalar_one_or_none()
        if user is None:
            print(f"Error: no user '{ident}'.")
            return 1
        if user.is_admin:
            print(f"User '{user.username}' (id={user.id}) is already an admin.")
            return 0
        user.role = "admin"
        await db.commit()
        print(f"User '{user.username}' (id={user.id}) promoted to admin.")
        return 0


if __name__ == "__main__":
    if len(sys.argv) != 2:
        print("Usage: python scripts/promote_admin.py <username-or-user-id>")
        sys.exit(1)
    sys.exit(asyncio.run(promote(sys.argv[1])))
