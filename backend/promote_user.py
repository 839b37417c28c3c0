import asyncio
import sys

from sqlalchemy import update

from ember_society.core.database import SessionLocal, engine, init_db
from ember_society.models.user import User


async def promote_user(email: str, session_factory=SessionLocal) -> int:
    """Flag the account with ``email`` as an admin. Returns the number of rows updated."""
    async with session_factory() as db:
        result = await db.execute(update(User).where(User.email == email).values(is_admin=True))
        await db.commit()
        return result.rowcount


async def _main(email: str) -> int:
    await init_db()
    updated = await promote_user(email)
    await engine.dispose()
    return updated


if __name__ == "__main__":
    if len(sys.argv) != 2:
        print("usage: python promote_user.py <email>")
        sys.exit(2)
    count = asyncio.run(_main(sys.argv[1]))
    print(count, "rows updated")
    sys.exit(0 if count else 1)
