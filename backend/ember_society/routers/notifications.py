from typing import List
from fastapi import APIRouter, Depends, Request, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from ember_society.core.database import get_db
from ember_society.core.config import get_settings
from ember_society.models.user import User
from ember_society.routers.auth import get_current_user
from ember_society.schemas.notification import (
    Notification as NotificationSchema,
    NotificationPreferences,
    NotificationPreferencesUpdate,
    PushSubscribeRequest,
    PushUnsubscribeRequest,
)
from ember_society.services.notification_service import NotificationService

router = APIRouter(prefix="/notifications", tags=["notifications"])
logger = logging.getLogger(__name__)


def get_notification_service(
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
) -> NotificationService:
    return NotificationService(db, user.id)


@router.get("/vapid-public-key")
async def get_vapid_public_key():
    settings = get_settings()
    if not settings.VAPID_PUBLIC_KEY:
        raise HTTPException(status_code=500, detail="VAPID public key not configured")
    return {"publicKey": settings.VAPID_PUBLIC_KEY}


@router.get("", response_model=List[NotificationSchema])
async def list_notifications(
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    service: NotificationService = Depends(get_notification_service),
):
    return await service.list_notifications(limit, offset)


@router.get("/unread-count")
async def unread_count(service: NotificationService = Depends(get_notification_service)):
    return {"count": await service.unread_count()}


@router.patch("/{notification_id}/read")
async def mark_read(notification_id: int, service: NotificationService = Depends(get_notification_service)):
    if not await service.mark_read(notification_id):
        raise HTTPException(status_code=404, detail="Notification not found")
    return {"message": "Notification marked as read"}


@router.post("/mark-all-read")
async def mark_all_read(service: NotificationService = Depends(get_notification_service)):
    await service.mark_all_read()
    return {"message": "All notifications marked as read"}


@router.get("/preferences", response_model=NotificationPreferences)
async def get_preferences(service: NotificationService = Depends(get_notification_service)):
    return await service.get_preferences()


@router.patch("/preferences", response_model=NotificationPreferences)
async def update_preferences(
    update: NotificationPreferencesUpdate,
    service: NotificationService = Depends(get_notification_service),
):
    return await service.update_preferences(update.model_dump(exclude_unset=True))


@router.post("/push/subscribe")
async def subscribe(
    request: Request,
    subscription: PushSubscribeRequest,
    service: NotificationService = Depends(get_notification_service),
):
    user_agent = subscription.user_agent or request.headers.get("user-agent")
    try:
        created = await service.subscribe(
            subscription.endpoint,
            subscription.keys.p256dh,
            subscription.keys.auth,
            user_agent,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    if not created:
        return {"message": "Already subscribed"}
    logger.info(f"User {service.user_id} registered a push subscription")
    return {"message": "Successfully subscribed to push notifications"}


@router.post("/push/unsubscribe")
async def unsubscribe(
    subscription: PushUnsubscribeRequest,
    service: NotificationService = Depends(get_notification_service),
):
    await service.unsubscribe(subscription.endpoint)
    return {"message": "Successfully unsubscribed from push notifications"}
