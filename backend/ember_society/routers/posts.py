from datetime import datetime
from typing import List
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query
from sqlalchemy import select, delete
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from ember_society.core.database import get_db
from ember_society.models.club import Club, ClubMember
from ember_society.models.event import Event
from ember_society.models.notification_models import NotificationCategory
from ember_society.models.post import Post, Comment, Like
from ember_society.models.user import User
from ember_society.routers.auth import get_current_user
from ember_society.schemas.notification import NotificationPayload
from ember_society.schemas.post import PostCreate, PostUpdate, Post as PostSchema, CommentCreate, Comment as CommentSchema
from ember_society.services.club_service import is_member
from ember_society.services.event_service import serialize_events
from ember_society.services.notification_service import NotificationDispatcher, get_dispatcher
from ember_society.services.post_service import get_post_or_404, serialize_posts, serialize_post, serialize_comments

router = APIRouter(prefix="/posts", tags=["posts"])
logger = logging.getLogger(__name__)

FEED_EVENT_LIMIT = 10


@router.get("/feed")
async def get_feed(
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Posts and upcoming events from the caller's clubs, newest first."""
    club_ids = select(ClubMember.club_id).where(ClubMember.user_id == user.id)

    result = await db.execute(
        select(Post)
        .where(Post.club_id.in_(club_ids))
        .order_by(Post.created_at.desc(), Post.id.desc())
        .limit(limit)
        .offset(offset)
    )
    posts = await serialize_posts(db, result.scalars().all(), user.id)

    result = await db.execute(
        select(Event)
        .where(Event.club_id.in_(club_ids), Event.start_time >= datetime.utcnow())
        .order_by(Event.start_time)
        .limit(FEED_EVENT_LIMIT)
    )
    events = await serialize_events(db, result.scalars().all(), include_rsvps=False)

    items = [(p.created_at, {**p.model_dump(), "type": "post"}) for p in posts]
    items += [(e.start_time, {**e.model_dump(), "type": "event"}) for e in events]
    items.sort(key=lambda item: item[0], reverse=True)
    return [item for _, item in items]


@router.post("", response_model=PostSchema, status_code=201)
async def create_post(
    post_data: PostCreate,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    if not post_data.content.strip():
        raise HTTPException(status_code=400, detail="Content is required")

    club = await db.get(Club, post_data.club_id)
    if club is None:
        raise HTTPException(status_code=404, detail="Club not found")
    if not await is_member(db, club.id, user.id):
        raise HTTPException(status_code=403, detail="You must be a member of this club to post")

    post = Post(content=post_data.content, image_url=post_data.image_url, author_id=user.id, club_id=club.id)
    db.add(post)
    await db.commit()
    await db.refresh(post)
    logger.info(f"User {user.id} created post {post.id} in club {club.id}")

    link = f"/posts/{post.id}"
    dispatcher.schedule(
        background_tasks,
        f"club post {post.id}",
        dispatcher.notify_club_members,
        club.id,
        user.id,
        NotificationPayload(
            type=NotificationCategory.NEW_POST_IN_CLUB,
            title=f"New post in {club.name}",
            message=f"{user.name} posted in {club.name}",
            link_url=link,
        ),
    )
    dispatcher.schedule(
        background_tasks,
        f"post mentions {post.id}",
        dispatcher.notify_mentioned_users,
        post.content,
        user.id,
        "You were mentioned in a post",
        f"{user.name} mentioned you in a post",
        link,
    )
    return await serialize_post(db, post, user.id)


@router.get("/{post_id}", response_model=PostSchema)
async def get_post(post_id: int, db: AsyncSession = Depends(get_db), user: User = Depends(get_current_user)):
    post = await get_post_or_404(db, post_id)
    return await serialize_post(db, post, user.id)


@router.patch("/{post_id}", response_model=PostSchema)
async def update_post(
    post_id: int,
    update: PostUpdate,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    post = await get_post_or_404(db, post_id)
    if post.author_id != user.id:
        raise HTTPException(status_code=403, detail="You can only edit your own posts")

    for field, value in update.model_dump(exclude_unset=True).items():
        setattr(post, field, value)
    await db.commit()
    await db.refresh(post)
    return await serialize_post(db, post, user.id)


@router.delete("/{post_id}")
async def delete_post(post_id: int, db: AsyncSession = Depends(get_db), user: User = Depends(get_current_user)):
    post = await get_post_or_404(db, post_id)
    if post.author_id != user.id:
        raise HTTPException(status_code=403, detail="You can only delete your own posts")

    await db.delete(post)
    await db.commit()
    return {"message": "Post deleted successfully"}


@router.post("/{post_id}/like")
async def like_post(post_id: int, db: AsyncSession = Depends(get_db), user: User = Depends(get_current_user)):
    await get_post_or_404(db, post_id)
    db.add(Like(user_id=user.id, post_id=post_id))
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise HTTPException(status_code=400, detail="You already liked this post")
    return {"message": "Post liked successfully"}


@router.delete("/{post_id}/like")
async def unlike_post(post_id: int, db: AsyncSession = Depends(get_db), user: User = Depends(get_current_user)):
    result = await db.execute(delete(Like).where(Like.user_id == user.id, Like.post_id == post_id))
    await db.commit()
    if result.rowcount == 0:
        raise HTTPException(status_code=404, detail="Like not found")
    return {"message": "Post unliked successfully"}


@router.get("/{post_id}/comments", response_model=List[CommentSchema])
async def get_comments(
    post_id: int,
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    result = await db.execute(
        select(Comment)
        .where(Comment.post_id == post_id)
        .order_by(Comment.created_at.desc(), Comment.id.desc())
        .limit(limit)
        .offset(offset)
    )
    return await serialize_comments(db, result.scalars().all())


@router.post("/{post_id}/comments", response_model=CommentSchema, status_code=201)
async def create_comment(
    post_id: int,
    comment_data: CommentCreate,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    if not comment_data.content.strip():
        raise HTTPException(status_code=400, detail="Content is required")

    post = await get_post_or_404(db, post_id)
    parent = None
    if comment_data.parent_id is not None:
        parent = await db.get(Comment, comment_data.parent_id)
        if parent is None or parent.post_id != post.id:
            raise HTTPException(status_code=404, detail="Parent comment not found")

    comment = Comment(content=comment_data.content, author_id=user.id, post_id=post.id, parent_id=comment_data.parent_id)
    db.add(comment)
    await db.commit()
    await db.refresh(comment)

    link = f"/posts/{post.id}"
    if parent is None and post.author_id != user.id:
        dispatcher.schedule(
            background_tasks,
            f"comment {comment.id}",
            dispatcher.dispatch,
            post.author_id,
            NotificationCategory.NEW_COMMENT,
            "New comment on your post",
            f"{user.name} commented on your post",
            link,
        )
    elif parent is not None and parent.author_id != user.id:
        dispatcher.schedule(
            background_tasks,
            f"reply {comment.id}",
            dispatcher.dispatch,
            parent.author_id,
            NotificationCategory.NEW_REPLY,
            "New reply to your comment",
            f"{user.name} replied to your comment",
            link,
        )

    return (await serialize_comments(db, [comment]))[0]
