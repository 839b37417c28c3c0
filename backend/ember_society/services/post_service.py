from typing import Dict, Iterable, List, Optional, Sequence

from fastapi import HTTPException
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from ember_society.models.club import Club
from ember_society.models.post import Post, Comment, Like
from ember_society.schemas.club import ClubRef
from ember_society.schemas.post import Post as PostSchema, Comment as CommentSchema
from ember_society.services.user_service import get_user_summaries


async def get_post_or_404(db: AsyncSession, post_id: int) -> Post:
    post = await db.get(Post, post_id)
    if post is None:
        raise HTTPException(status_code=404, detail="Post not found")
    return post


async def get_club_refs(db: AsyncSession, club_ids: Iterable[int]) -> Dict[int, ClubRef]:
    ids = {cid for cid in club_ids if cid is not None}
    if not ids:
        return {}
    result = await db.execute(select(Club).where(Club.id.in_(ids)))
    return {club.id: ClubRef.model_validate(club) for club in result.scalars().all()}


async def _count_by_post(db: AsyncSession, column, post_ids: List[int]) -> Dict[int, int]:
    if not post_ids:
        return {}
    result = await db.execute(
        select(column, func.count()).where(column.in_(post_ids)).group_by(column)
    )
    return {post_id: count for post_id, count in result.all()}


async def serialize_posts(db: AsyncSession, posts: Sequence[Post], viewer_id: Optional[int] = None) -> List[PostSchema]:
    """Attach author, club, counts and the viewer's like flag in a fixed number of queries."""
    post_ids = [p.id for p in posts]
    authors = await get_user_summaries(db, (p.author_id for p in posts))
    clubs = await get_club_refs(db, (p.club_id for p in posts))
    like_counts = await _count_by_post(db, Like.post_id, post_ids)
    comment_counts = await _count_by_post(db, Comment.post_id, post_ids)

    liked = set()
    if viewer_id is not None and post_ids:
        result = await db.execute(
            select(Like.post_id).where(Like.user_id == viewer_id, Like.post_id.in_(post_ids))
        )
        liked = set(result.scalars().all())

    return [
        PostSchema(
            id=p.id,
            content=p.content,
            image_url=p.image_url,
            author_id=p.author_id,
            club_id=p.club_id,
            created_at=p.created_at,
            updated_at=p.updated_at,
            author=authors.get(p.author_id),
            club=clubs.get(p.club_id),
            like_count=like_counts.get(p.id, 0),
            comment_count=comment_counts.get(p.id, 0),
            is_liked_by_user=p.id in liked,
        )
        for p in posts
    ]


async def serialize_post(db: AsyncSession, post: Post, viewer_id: Optional[int] = None) -> PostSchema:
    return (await serialize_posts(db, [post], viewer_id))[0]


async def serialize_comments(db: AsyncSession, comments: Sequence[Comment]) -> List[CommentSchema]:
    authors = await get_user_summaries(db, (c.author_id for c in comments))
    return [
        CommentSchema(
            id=c.id,
            content=c.content,
            author_id=c.author_id,
            post_id=c.post_id,
            parent_id=c.parent_id,
            created_at=c.created_at,
            author=authors.get(c.author_id),
        )
        for c in comments
    ]
