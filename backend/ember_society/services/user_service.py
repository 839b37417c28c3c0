from typing import Dict, Iterable, Optional

from fastapi import HTTPException
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from ember_society.models.post import Post
from ember_society.models.user import User, Follow
from ember_society.schemas.user import UserSummary, ProfileCounts


async def get_user_by_username(db: AsyncSession, username: str) -> Optional[User]:
    result = await db.execute(select(User).where(User.username == username))
    return result.scalar_one_or_none()


async def get_user_summaries(db: AsyncSession, user_ids: Iterable[int]) -> Dict[int, UserSummary]:
    """Load author/participant cards for a batch of ids in one query."""
    ids = {uid for uid in user_ids if uid is not None}
    if not ids:
        return {}
    result = await db.execute(select(User).where(User.id.in_(ids)))
    return {user.id: UserSummary.model_validate(user) for user in result.scalars().all()}


async def get_user_or_404(db: AsyncSession, username: str) -> User:
    user = await get_user_by_username(db, username)
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")
    return user


async def get_profile_counts(db: AsyncSession, user_id: int) -> ProfileCounts:
    posts = await db.scalar(select(func.count(Post.id)).where(Post.author_id == user_id))
    followers = await db.scalar(select(func.count(Follow.id)).where(Follow.following_id == user_id))
    following = await db.scalar(select(func.count(Follow.id)).where(Follow.follower_id == user_id))
    return ProfileCounts(posts=posts or 0, followers=followers or 0, following=following or 0)


async def is_following(db: AsyncSession, follower_id: int, following_id: int) -> bool:
    result = await db.execute(
        select(Follow.id).where(Follow.follower_id == follower_id, Follow.following_id == following_id)
    )
    return result.first() is not None
