from typing import Optional

from fastapi import HTTPException
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ember_society.models.club import Club, ClubMember, MANAGER_ROLES


async def get_club_by_slug(db: AsyncSession, slug: str) -> Club:
    result = await db.execute(select(Club).where(Club.slug == slug))
    club = result.scalar_one_or_none()
    if club is None:
        raise HTTPException(status_code=404, detail="Club not found")
    return club


async def get_membership(db: AsyncSession, club_id: int, user_id: int) -> Optional[ClubMember]:
    result = await db.execute(
        select(ClubMember).where(ClubMember.club_id == club_id, ClubMember.user_id == user_id)
    )
    return result.scalar_one_or_none()


async def is_member(db: AsyncSession, club_id: int, user_id: int) -> bool:
    return await get_membership(db, club_id, user_id) is not None


def is_manager(membership: Optional[ClubMember]) -> bool:
    return membership is not None and membership.role in MANAGER_ROLES
