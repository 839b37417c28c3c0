from typing import List, Optional, Sequence
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from ember_society.core.database import get_db
from ember_society.models.club import Club
from ember_society.models.review import Review, ReviewCategory
from ember_society.models.user import User
from ember_society.routers.auth import get_current_user
from ember_society.schemas.review import ReviewCreate, ReviewUpdate, Review as ReviewSchema
from ember_society.services.notification_service import NotificationDispatcher, get_dispatcher
from ember_society.services.post_service import get_club_refs
from ember_society.services.user_service import get_user_summaries, get_user_or_404

router = APIRouter(prefix="/reviews", tags=["reviews"])
logger = logging.getLogger(__name__)


async def _serialize(db: AsyncSession, reviews: Sequence[Review]) -> List[ReviewSchema]:
    authors = await get_user_summaries(db, (r.author_id for r in reviews))
    clubs = await get_club_refs(db, (r.club_id for r in reviews))
    return [
        ReviewSchema(
            id=r.id,
            title=r.title,
            content=r.content,
            rating=r.rating,
            category=r.category,
            product_name=r.product_name,
            brand=r.brand,
            image_url=r.image_url,
            club_id=r.club_id,
            author_id=r.author_id,
            created_at=r.created_at,
            updated_at=r.updated_at,
            author=authors.get(r.author_id),
            club=clubs.get(r.club_id),
        )
        for r in reviews
    ]


async def _get_own_review(db: AsyncSession, review_id: int, user: User, action: str) -> Review:
    review = await db.get(Review, review_id)
    if review is None:
        raise HTTPException(status_code=404, detail="Review not found")
    if review.author_id != user.id:
        raise HTTPException(status_code=403, detail=f"You can only {action} your own reviews")
    return review


def _schedule_mentions(dispatcher: NotificationDispatcher, background_tasks: BackgroundTasks, review: Review, user: User) -> None:
    dispatcher.schedule(
        background_tasks,
        f"review mentions {review.id}",
        dispatcher.notify_mentioned_users,
        review.content,
        user.id,
        "You were mentioned in a review",
        f"{user.name} mentioned you in a review of {review.product_name}",
        "/reviews",
    )


@router.get("", response_model=List[ReviewSchema])
async def list_reviews(
    category: Optional[ReviewCategory] = None,
    club_slug: Optional[str] = Query(None, alias="clubSlug"),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    query = select(Review)
    if category is not None:
        query = query.where(Review.category == category)
    if club_slug:
        # An unknown slug leaves the club filter off
        club_id = (await db.execute(select(Club.id).where(Club.slug == club_slug))).scalar_one_or_none()
        if club_id is not None:
            query = query.where(Review.club_id == club_id)

    result = await db.execute(
        query.order_by(Review.created_at.desc(), Review.id.desc()).limit(limit).offset(offset)
    )
    return await _serialize(db, result.scalars().all())


@router.get("/user/{username}", response_model=List[ReviewSchema])
async def list_user_reviews(
    username: str,
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    author = await get_user_or_404(db, username)
    result = await db.execute(
        select(Review)
        .where(Review.author_id == author.id)
        .order_by(Review.created_at.desc(), Review.id.desc())
        .limit(limit)
        .offset(offset)
    )
    return await _serialize(db, result.scalars().all())


@router.get("/{review_id}", response_model=ReviewSchema)
async def get_review(review_id: int, db: AsyncSession = Depends(get_db), user: User = Depends(get_current_user)):
    review = await db.get(Review, review_id)
    if review is None:
        raise HTTPException(status_code=404, detail="Review not found")
    return (await _serialize(db, [review]))[0]


@router.post("", response_model=ReviewSchema, status_code=201)
async def create_review(
    review_data: ReviewCreate,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    if review_data.club_id is not None and await db.get(Club, review_data.club_id) is None:
        raise HTTPException(status_code=404, detail="Club not found")

    review = Review(**review_data.model_dump(), author_id=user.id)
    db.add(review)
    await db.commit()
    await db.refresh(review)

    _schedule_mentions(dispatcher, background_tasks, review, user)
    return (await _serialize(db, [review]))[0]


@router.patch("/{review_id}", response_model=ReviewSchema)
async def update_review(
    review_id: int,
    update: ReviewUpdate,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    review = await _get_own_review(db, review_id, user, "edit")

    changes = update.model_dump(exclude_unset=True)
    for field, value in changes.items():
        setattr(review, field, value)
    await db.commit()
    await db.refresh(review)

    if "content" in changes:
        _schedule_mentions(dispatcher, background_tasks, review, user)
    return (await _serialize(db, [review]))[0]


@router.delete("/{review_id}")
async def delete_review(review_id: int, db: AsyncSession = Depends(get_db), user: User = Depends(get_current_user)):
    review = await _get_own_review(db, review_id, user, "delete")
    await db.delete(review)
    await db.commit()
    return {"message": "Review deleted successfully"}
