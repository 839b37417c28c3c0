from typing import List, Optional, Sequence
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from ember_society.core.database import get_db
from ember_society.models.post import Post, Comment
from ember_society.models.report import Report, ReportStatus
from ember_society.models.user import User
from ember_society.routers.auth import get_current_user, get_current_admin_user
from ember_society.schemas.report import ReportCreate, ReportStatusUpdate, ReportedContent, Report as ReportSchema
from ember_society.services.user_service import get_user_summaries

router = APIRouter(prefix="/reports", tags=["reports"])
logger = logging.getLogger(__name__)


async def _serialize(db: AsyncSession, reports: Sequence[Report]) -> List[ReportSchema]:
    post_ids = {r.reported_post_id for r in reports if r.reported_post_id}
    comment_ids = {r.reported_comment_id for r in reports if r.reported_comment_id}

    posts = {}
    if post_ids:
        posts = {p.id: p for p in (await db.execute(select(Post).where(Post.id.in_(post_ids)))).scalars().all()}
    comments = {}
    if comment_ids:
        comments = {c.id: c for c in (await db.execute(select(Comment).where(Comment.id.in_(comment_ids)))).scalars().all()}

    user_ids = set()
    for r in reports:
        user_ids.update((r.reporter_id, r.reported_user_id))
    user_ids.update(p.author_id for p in posts.values())
    user_ids.update(c.author_id for c in comments.values())
    users = await get_user_summaries(db, user_ids)

    def content(item) -> Optional[ReportedContent]:
        if item is None:
            return None
        return ReportedContent(id=item.id, content=item.content, author=users.get(item.author_id))

    return [
        ReportSchema(
            id=r.id,
            reason=r.reason,
            description=r.description,
            status=r.status,
            reporter_id=r.reporter_id,
            reported_user_id=r.reported_user_id,
            reported_post_id=r.reported_post_id,
            reported_comment_id=r.reported_comment_id,
            created_at=r.created_at,
            reporter=users.get(r.reporter_id),
            reported_user=users.get(r.reported_user_id),
            reported_post=content(posts.get(r.reported_post_id)),
            reported_comment=content(comments.get(r.reported_comment_id)),
        )
        for r in reports
    ]


async def _get_report_or_404(db: AsyncSession, report_id: int) -> Report:
    report = await db.get(Report, report_id)
    if report is None:
        raise HTTPException(status_code=404, detail="Report not found")
    return report


@router.post("", response_model=ReportSchema, status_code=201)
async def create_report(
    report_data: ReportCreate,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    if not (report_data.reported_user_id or report_data.reported_post_id or report_data.reported_comment_id):
        raise HTTPException(status_code=400, detail="Must specify what you are reporting")

    targets = (
        (report_data.reported_user_id, User, "Reported user not found"),
        (report_data.reported_post_id, Post, "Reported post not found"),
        (report_data.reported_comment_id, Comment, "Reported comment not found"),
    )
    for target_id, model, detail in targets:
        if target_id is not None and await db.get(model, target_id) is None:
            raise HTTPException(status_code=404, detail=detail)

    report = Report(**report_data.model_dump(), reporter_id=user.id)
    db.add(report)
    await db.commit()
    await db.refresh(report)
    logger.info(f"User {user.id} filed report {report.id} ({report.reason.value})")
    return (await _serialize(db, [report]))[0]


@router.get("", response_model=List[ReportSchema])
async def list_reports(
    status: Optional[ReportStatus] = None,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(get_current_admin_user),
):
    query = select(Report)
    if status is not None:
        query = query.where(Report.status == status)
    result = await db.execute(
        query.order_by(Report.created_at.desc(), Report.id.desc()).limit(limit).offset(offset)
    )
    return await _serialize(db, result.scalars().all())


@router.get("/{report_id}", response_model=ReportSchema)
async def get_report(report_id: int, db: AsyncSession = Depends(get_db), admin: User = Depends(get_current_admin_user)):
    report = await _get_report_or_404(db, report_id)
    return (await _serialize(db, [report]))[0]


@router.patch("/{report_id}", response_model=ReportSchema)
async def update_report_status(
    report_id: int,
    update: ReportStatusUpdate,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(get_current_admin_user),
):
    report = await _get_report_or_404(db, report_id)
    report.status = update.status
    await db.commit()
    await db.refresh(report)
    logger.info(f"Admin {admin.id} set report {report.id} to {report.status.value}")
    return (await _serialize(db, [report]))[0]


@router.delete("/{report_id}")
async def delete_report(report_id: int, db: AsyncSession = Depends(get_db), admin: User = Depends(get_current_admin_user)):
    report = await _get_report_or_404(db, report_id)
    await db.delete(report)
    await db.commit()
    return {"message": "Report deleted successfully"}
