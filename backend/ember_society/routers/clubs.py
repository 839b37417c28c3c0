import secrets
from datetime import datetime, timedelta
from typing import List, Optional
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query
from sqlalchemy import func, select, or_
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from ember_society.core.database import get_db
from ember_society.models.club import Club, ClubMember, ClubInvite, ClubRole
from ember_society.models.notification_models import NotificationCategory
from ember_society.models.post import Post
from ember_society.models.user import User
from ember_society.routers.auth import get_current_user, get_optional_user
from ember_society.schemas.club import (
    ClubCreate,
    ClubUpdate,
    Club as ClubSchema,
    ClubDetail,
    ClubMember as ClubMemberSchema,
    MemberRoleUpdate,
    InviteCreate,
    ClubInvite as ClubInviteSchema,
    InvitePreview,
)
from ember_society.schemas.post import Post as PostSchema
from ember_society.services.club_service import get_club_by_slug, get_membership, is_manager
from ember_society.services.notification_service import NotificationDispatcher, get_dispatcher
from ember_society.services.post_service import serialize_posts
from ember_society.services.user_service import get_user_summaries

router = APIRouter(prefix="/clubs", tags=["clubs"])
logger = logging.getLogger(__name__)

INVITE_TTL = timedelta(days=7)


async def _get_invite_or_404(db: AsyncSession, token: str) -> ClubInvite:
    result = await db.execute(select(ClubInvite).where(ClubInvite.token == token))
    invite = result.scalar_one_or_none()
    if invite is None:
        raise HTTPException(status_code=404, detail="Invitation not found")
    return invite


def _check_invite_usable(invite: ClubInvite) -> None:
    if datetime.utcnow() > invite.expires_at:
        raise HTTPException(status_code=400, detail="Invitation has expired")
    if invite.accepted:
        raise HTTPException(status_code=400, detail="Invitation has already been accepted")


async def _require_manager(db: AsyncSession, club: Club, user: User, action: str) -> ClubMember:
    membership = await get_membership(db, club.id, user.id)
    if not is_manager(membership):
        raise HTTPException(status_code=403, detail=f"Only club owners and admins can {action}")
    return membership


# Token routes are registered before "/{slug}" ones so "invites" is never read as a slug


@router.get("/invites/{token}", response_model=InvitePreview)
async def preview_invite(token: str, db: AsyncSession = Depends(get_db)):
    invite = await _get_invite_or_404(db, token)
    _check_invite_usable(invite)
    club = await db.get(Club, invite.club_id)
    return InvitePreview(club=ClubSchema.model_validate(club), email=invite.email, expires_at=invite.expires_at)


@router.post("/invites/{token}/accept")
async def accept_invite(token: str, db: AsyncSession = Depends(get_db), user: User = Depends(get_current_user)):
    invite = await _get_invite_or_404(db, token)
    _check_invite_usable(invite)

    if user.email.lower() != invite.email.lower():
        raise HTTPException(status_code=403, detail="This invitation is for a different email address")
    if await get_membership(db, invite.club_id, user.id):
        raise HTTPException(status_code=400, detail="You are already a member of this club")

    club = await db.get(Club, invite.club_id)
    db.add(ClubMember(club_id=club.id, user_id=user.id, role=ClubRole.MEMBER))
    club.member_count += 1
    invite.accepted = True
    await db.commit()

    logger.info(f"User {user.id} accepted invite to club {club.id}")
    return {"message": "Invitation accepted successfully", "club": ClubSchema.model_validate(club)}


@router.get("", response_model=List[ClubSchema])
async def list_clubs(db: AsyncSession = Depends(get_db), user: Optional[User] = Depends(get_optional_user)):
    """Public clubs plus the private ones the caller belongs to."""
    query = select(Club)
    if user is None:
        query = query.where(Club.is_private.is_(False))
    else:
        member_of = select(ClubMember.club_id).where(ClubMember.user_id == user.id)
        query = query.where(or_(Club.is_private.is_(False), Club.id.in_(member_of)))
    result = await db.execute(query.order_by(Club.created_at.desc(), Club.id.desc()))
    return result.scalars().all()


@router.post("", response_model=ClubSchema, status_code=201)
async def create_club(club_data: ClubCreate, db: AsyncSession = Depends(get_db), user: User = Depends(get_current_user)):
    result = await db.execute(select(Club.id).where(Club.slug == club_data.slug))
    if result.first() is not None:
        raise HTTPException(status_code=400, detail="This slug is already taken")

    club = Club(**club_data.model_dump(), creator_id=user.id, member_count=1)
    db.add(club)
    await db.flush()
    db.add(ClubMember(club_id=club.id, user_id=user.id, role=ClubRole.OWNER))
    await db.commit()
    await db.refresh(club)

    logger.info(f"User {user.id} created club {club.slug}")
    return club


@router.get("/{slug}", response_model=ClubDetail)
async def get_club(slug: str, db: AsyncSession = Depends(get_db), user: Optional[User] = Depends(get_optional_user)):
    club = await get_club_by_slug(db, slug)

    result = await db.execute(
        select(ClubMember).where(ClubMember.club_id == club.id).order_by(ClubMember.joined_at, ClubMember.id)
    )
    memberships = result.scalars().all()
    users = await get_user_summaries(db, (m.user_id for m in memberships))
    members = [
        ClubMemberSchema(id=m.id, user_id=m.user_id, role=m.role, joined_at=m.joined_at, user=users.get(m.user_id))
        for m in memberships
    ]

    user_membership = None
    if user is not None:
        user_membership = next((m for m in members if m.user_id == user.id), None)
    if club.is_private and user_membership is None:
        raise HTTPException(status_code=403, detail="This club is private")

    return ClubDetail(
        **ClubSchema.model_validate(club).model_dump(),
        members=members,
        user_membership=user_membership,
    )


@router.patch("/{slug}", response_model=ClubSchema)
async def update_club(
    slug: str,
    update: ClubUpdate,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    club = await get_club_by_slug(db, slug)
    await _require_manager(db, club, user, "update club settings")

    for field, value in update.model_dump(exclude_unset=True).items():
        setattr(club, field, value)
    await db.commit()
    await db.refresh(club)
    return club


@router.delete("/{slug}")
async def delete_club(slug: str, db: AsyncSession = Depends(get_db), user: User = Depends(get_current_user)):
    club = await get_club_by_slug(db, slug)
    membership = await get_membership(db, club.id, user.id)
    if membership is None or membership.role != ClubRole.OWNER:
        raise HTTPException(status_code=403, detail="Only the club owner can delete the club")

    await db.delete(club)
    await db.commit()
    logger.info(f"Club {slug} deleted by user {user.id}")
    return {"message": "Club deleted successfully"}


@router.post("/{slug}/join")
async def join_club(slug: str, db: AsyncSession = Depends(get_db), user: User = Depends(get_current_user)):
    club = await get_club_by_slug(db, slug)
    if await get_membership(db, club.id, user.id):
        raise HTTPException(status_code=400, detail="You are already a member of this club")
    if club.is_private:
        raise HTTPException(status_code=403, detail="This club is private and requires an invitation")

    db.add(ClubMember(club_id=club.id, user_id=user.id, role=ClubRole.MEMBER))
    club.member_count += 1
    await db.commit()
    return {"message": "Successfully joined club"}


@router.post("/{slug}/leave")
async def leave_club(slug: str, db: AsyncSession = Depends(get_db), user: User = Depends(get_current_user)):
    club = await get_club_by_slug(db, slug)
    membership = await get_membership(db, club.id, user.id)
    if membership is None:
        raise HTTPException(status_code=400, detail="You are not a member of this club")
    if membership.role == ClubRole.OWNER:
        raise HTTPException(status_code=400, detail="Club owner cannot leave. Transfer ownership or delete the club.")

    await db.delete(membership)
    club.member_count = max(club.member_count - 1, 0)
    await db.commit()
    return {"message": "Successfully left club"}


@router.patch("/{slug}/members/{member_id}")
async def update_member_role(
    slug: str,
    member_id: int,
    update: MemberRoleUpdate,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    if update.role == ClubRole.OWNER:
        raise HTTPException(status_code=400, detail="Invalid role")

    club = await get_club_by_slug(db, slug)
    await _require_manager(db, club, user, "change member roles")

    target = await db.get(ClubMember, member_id)
    if target is None or target.club_id != club.id:
        raise HTTPException(status_code=404, detail="Member not found")
    if target.role == ClubRole.OWNER:
        raise HTTPException(status_code=400, detail="Cannot change owner role")

    target.role = update.role
    await db.commit()
    return {"message": "Member role updated successfully"}


@router.get("/{slug}/posts", response_model=List[PostSchema])
async def get_club_posts(
    slug: str,
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
    user: Optional[User] = Depends(get_optional_user),
):
    club = await get_club_by_slug(db, slug)
    viewer_id = user.id if user else None
    if club.is_private and (viewer_id is None or not await get_membership(db, club.id, viewer_id)):
        raise HTTPException(status_code=403, detail="This club is private")

    result = await db.execute(
        select(Post)
        .where(Post.club_id == club.id)
        .order_by(Post.created_at.desc(), Post.id.desc())
        .limit(limit)
        .offset(offset)
    )
    return await serialize_posts(db, result.scalars().all(), viewer_id)


@router.post("/{slug}/invites", response_model=ClubInviteSchema, status_code=201)
async def create_invite(
    slug: str,
    invite_data: InviteCreate,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    club = await get_club_by_slug(db, slug)
    await _require_manager(db, club, user, "send invitations")

    email = invite_data.email.lower()
    result = await db.execute(select(User).where(func.lower(User.email) == email))
    invitee = result.scalars().first()
    if invitee is not None and await get_membership(db, club.id, invitee.id):
        raise HTTPException(status_code=400, detail="User is already a member of this club")

    result = await db.execute(
        select(ClubInvite.id).where(
            ClubInvite.club_id == club.id,
            ClubInvite.email == email,
            ClubInvite.accepted.is_(False),
            ClubInvite.expires_at > datetime.utcnow(),
        )
    )
    if result.first() is not None:
        raise HTTPException(status_code=400, detail="An invitation for this email already exists")

    invite = ClubInvite(
        club_id=club.id,
        email=email,
        invited_by=user.id,
        token=secrets.token_hex(32),
        expires_at=datetime.utcnow() + INVITE_TTL,
    )
    db.add(invite)
    await db.commit()
    await db.refresh(invite)
    logger.info(f"User {user.id} invited {email} to club {club.slug}")

    if invitee is not None:
        dispatcher.schedule(
            background_tasks,
            f"club invite {invite.id}",
            dispatcher.dispatch,
            invitee.id,
            NotificationCategory.CLUB_INVITE,
            "Club invitation",
            f"{user.name} invited you to join {club.name}",
            f"/clubs/{club.slug}/invite/{invite.token}",
        )
    return invite


@router.get("/{slug}/invites", response_model=List[ClubInviteSchema])
async def list_invites(slug: str, db: AsyncSession = Depends(get_db), user: User = Depends(get_current_user)):
    club = await get_club_by_slug(db, slug)
    await _require_manager(db, club, user, "view invitations")
    result = await db.execute(
        select(ClubInvite).where(ClubInvite.club_id == club.id).order_by(ClubInvite.created_at.desc())
    )
    return result.scalars().all()


@router.delete("/{slug}/invites/{invite_id}")
async def revoke_invite(
    slug: str,
    invite_id: int,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    club = await get_club_by_slug(db, slug)
    await _require_manager(db, club, user, "revoke invitations")

    invite = await db.get(ClubInvite, invite_id)
    if invite is None or invite.club_id != club.id:
        raise HTTPException(status_code=404, detail="Invitation not found")
    await db.delete(invite)
    await db.commit()
    return {"message": "Invitation revoked successfully"}
