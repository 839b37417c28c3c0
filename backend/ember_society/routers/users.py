from typing import List
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query
from sqlalchemy import select, delete, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from ember_society.core.database import get_db
from ember_society.models.notification_models import NotificationCategory
from ember_society.models.post import Post
from ember_society.models.user import User, Follow
from ember_society.routers.auth import get_current_user
from ember_society.schemas.post import Post as PostSchema
from ember_society.schemas.user import UserSummary, UserProfile, CurrentUser, PublicProfile, UserUpdate
from ember_society.services.club_service import is_member
from ember_society.services.notification_service import NotificationDispatcher, get_dispatcher
from ember_society.services.post_service import serialize_posts
from ember_society.services.user_service import get_user_or_404, get_profile_counts, is_following

router = APIRouter(prefix="/users", tags=["users"])
logger = logging.getLogger(__name__)


@router.get("/search", response_model=List[UserSummary])
async def search_users(
    q: str = Query(""),
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    term = q.strip()
    if not term:
        return []
    pattern = f"%{term}%"
    result = await db.execute(
        select(User)
        .where(or_(User.username.ilike(pattern), User.display_name.ilike(pattern)))
        .order_by(User.username)
        .limit(10)
    )
    return result.scalars().all()


@router.get("/me", response_model=CurrentUser)
async def get_me(user: User = Depends(get_current_user)):
    return user


@router.patch("/me", response_model=CurrentUser)
async def update_me(
    update: UserUpdate,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    changes = update.model_dump(exclude_unset=True)
    default_club_id = changes.get("default_club_id")
    if default_club_id is not None and not await is_member(db, default_club_id, user.id):
        raise HTTPException(status_code=400, detail="You must be a member of the club to set it as default")

    for field, value in changes.items():
        setattr(user, field, value)
    await db.commit()
    await db.refresh(user)
    return user


@router.get("/{username}", response_model=PublicProfile)
async def get_profile(
    username: str,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    profile_user = await get_user_or_404(db, username)
    profile = UserProfile.model_validate(profile_user)
    return PublicProfile(
        **profile.model_dump(),
        counts=await get_profile_counts(db, profile_user.id),
        is_following=await is_following(db, user.id, profile_user.id),
    )


@router.get("/{username}/posts", response_model=List[PostSchema])
async def get_user_posts(
    username: str,
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    author = await get_user_or_404(db, username)
    result = await db.execute(
        select(Post)
        .where(Post.author_id == author.id)
        .order_by(Post.created_at.desc(), Post.id.desc())
        .limit(limit)
        .offset(offset)
    )
    return await serialize_posts(db, result.scalars().all(), user.id)


@router.post("/{username}/follow")
async def follow_user(
    username: str,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    target = await get_user_or_404(db, username)
    if target.id == user.id:
        raise HTTPException(status_code=400, detail="Cannot follow yourself")

    db.add(Follow(follower_id=user.id, following_id=target.id))
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise HTTPException(status_code=400, detail="Already following this user")

    dispatcher.schedule(
        background_tasks,
        f"new follower {user.id} -> {target.id}",
        dispatcher.dispatch,
        target.id,
        NotificationCategory.NEW_FOLLOWER,
        "New follower",
        f"{user.name} started following you",
        f"/u/{user.username}",
    )
    return {"message": "Successfully followed user"}


@router.delete("/{username}/follow")
async def unfollow_user(
    username: str,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    target = await get_user_or_404(db, username)
    result = await db.execute(
        delete(Follow).where(Follow.follower_id == user.id, Follow.following_id == target.id)
    )
    await db.commit()
    if result.rowcount == 0:
        raise HTTPException(status_code=404, detail="Not following this user")
    return {"message": "Successfully unfollowed user"}


@router.get("/{username}/followers", response_model=List[UserSummary])
async def get_followers(
    username: str,
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    target = await get_user_or_404(db, username)
    result = await db.execute(
        select(User)
        .join(Follow, Follow.follower_id == User.id)
        .where(Follow.following_id == target.id)
        .order_by(Follow.created_at.desc())
        .limit(limit)
        .offset(offset)
    )
    return result.scalars().all()


@router.get("/{username}/following", response_model=List[UserSummary])
async def get_following(
    username: str,
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    target = await get_user_or_404(db, username)
    result = await db.execute(
        select(User)
        .join(Follow, Follow.following_id == User.id)
        .where(Follow.follower_id == target.id)
        .order_by(Follow.created_at.desc())
        .limit(limit)
        .offset(offset)
    )
    return result.scalars().all()
