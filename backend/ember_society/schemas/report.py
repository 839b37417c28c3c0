from pydantic import BaseModel
from typing import Optional
from datetime import datetime

from ember_society.models.report import ReportReason, ReportStatus
from ember_society.schemas.user import UserSummary


class ReportCreate(BaseModel):
    reason: ReportReason
    description: Optional[str] = None
    reported_user_id: Optional[int] = None
    reported_post_id: Optional[int] = None
    reported_comment_id: Optional[int] = None


class ReportStatusUpdate(BaseModel):
    status: ReportStatus


class ReportedContent(BaseModel):
    id: int
    content: str
    author: Optional[UserSummary] = None


class Report(BaseModel):
    id: int
    reason: ReportReason
    description: Optional[str] = None
    status: ReportStatus
    reporter_id: int
    reported_user_id: Optional[int] = None
    reported_post_id: Optional[int] = None
    reported_comment_id: Optional[int] = None
    created_at: datetime
    reporter: Optional[UserSummary] = None
    reported_user: Optional[UserSummary] = None
    reported_post: Optional[ReportedContent] = None
    reported_comment: Optional[ReportedContent] = None
