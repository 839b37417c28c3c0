from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime

from ember_society.models.review import ReviewCategory
from ember_society.schemas.user import UserSummary
from ember_society.schemas.club import ClubRef


class ReviewCreate(BaseModel):
    title: str = Field(..., min_length=1)
    content: str = Field(..., min_length=1)
    rating: int = Field(..., ge=1, le=5)
    category: ReviewCategory
    product_name: str = Field(..., min_length=1)
    brand: Optional[str] = None
    image_url: Optional[str] = None
    club_id: Optional[int] = None


class ReviewUpdate(BaseModel):
    title: Optional[str] = None
    content: Optional[str] = None
    rating: Optional[int] = Field(None, ge=1, le=5)
    category: Optional[ReviewCategory] = None
    product_name: Optional[str] = None
    brand: Optional[str] = None
    image_url: Optional[str] = None


class Review(BaseModel):
    id: int
    title: str
    content: str
    rating: int
    category: ReviewCategory
    product_name: str
    brand: Optional[str] = None
    image_url: Optional[str] = None
    club_id: Optional[int] = None
    author_id: int
    created_at: datetime
    updated_at: datetime
    author: Optional[UserSummary] = None
    club: Optional[ClubRef] = None
