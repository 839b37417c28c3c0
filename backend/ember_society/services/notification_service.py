import asyncio
import logging
from typing import Any, Callable, Dict, Iterable, List, Optional

from sqlalchemy import select, update, delete, func
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ember_society.core.database import SessionLocal
from ember_society.models.club import ClubMember
from ember_society.models.notification_models import (
    Notification,
    NotificationCategory,
    NotificationPreference,
    PushSubscription,
    PREFERENCE_FIELDS,
)
from ember_society.models.user import User, Follow
from ember_society.schemas.notification import NotificationPayload
from ember_society.services.best_effort import BestEffort, best_effort
from ember_society.services.mentions import extract_mentions
from ember_society.services.push import PushGoneError, WebPushSender

logger = logging.getLogger(__name__)


class NotificationDispatcher:
    """
    Creates notifications and delivers web pushes.

    Every public coroutine here is non-critical to its caller: failures are
    logged and swallowed. Each dispatch opens its own session so fan-outs can
    run concurrently.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker = SessionLocal,
        push_sender: Optional[WebPushSender] = None,
        runner: Optional[BestEffort] = None,
    ):
        self.session_factory = session_factory
        self.push_sender = push_sender or WebPushSender()
        self.runner = runner or best_effort

    async def dispatch(
        self,
        recipient_id: int,
        category: NotificationCategory,
        title: str,
        body: str,
        link_url: Optional[str] = None,
    ) -> None:
        try:
            async with self.session_factory() as db:
                # A missing row means every category on and push off; it is not created here.
                preferences = (
                    await db.execute(
                        select(NotificationPreference).where(NotificationPreference.user_id == recipient_id)
                    )
                ).scalar_one_or_none()

                field = PREFERENCE_FIELDS.get(category)
                if preferences is not None and field and not getattr(preferences, field):
                    logger.debug(f"User {recipient_id} disabled {category.value}, skipping")
                    return

                notification = Notification(
                    user_id=recipient_id,
                    type=category,
                    title=title,
                    message=body,
                    link_url=link_url,
                )
                db.add(notification)
                await db.commit()

                if preferences is not None and preferences.push_enabled:
                    await self._push_to_user(db, recipient_id, {
                        "title": title,
                        "body": body,
                        "url": link_url,
                        "id": notification.id,
                    })
        except Exception as e:
            logger.error(f"Error creating {category.value} notification for user {recipient_id}: {e}")

    async def _push_to_user(self, db: AsyncSession, user_id: int, payload: Dict[str, Any]) -> None:
        if not self.push_sender.configured:
            logger.warning("VAPID keys not configured, skipping push notification.")
            return

        result = await db.execute(select(PushSubscription).where(PushSubscription.user_id == user_id))
        subscriptions = result.scalars().all()
        if not subscriptions:
            logger.info(f"No push subscriptions for user {user_id}")
            return

        outcomes = await asyncio.gather(*(self._deliver(sub, payload) for sub in subscriptions))

        gone_ids = [sub.id for sub, outcome in zip(subscriptions, outcomes) if outcome is False]
        if gone_ids:
            logger.info(f"Removing {len(gone_ids)} expired push subscription(s) for user {user_id}")
            await db.execute(delete(PushSubscription).where(PushSubscription.id.in_(gone_ids)))
            await db.commit()

    async def _deliver(self, sub: PushSubscription, payload: Dict[str, Any]) -> Optional[bool]:
        """True when delivered, False when the endpoint is gone, None on other failures."""
        try:
            await self.push_sender.send(sub.endpoint, sub.p256dh, sub.auth, payload)
            logger.info(f"Push sent to subscription {sub.id}")
            return True
        except PushGoneError as ex:
            logger.info(f"Subscription {sub.id} expired/gone: {ex}")
            return False
        except Exception as e:
            logger.error(f"WebPush failed for subscription {sub.id}: {e}")
            return None

    async def notify_users(self, user_ids: Iterable[int], payload: NotificationPayload) -> int:
        """Dispatch ``payload`` to every user concurrently. Returns how many dispatches completed."""
        return await self.runner.run_all(
            f"notify {payload.type.value}",
            (
                self.dispatch(user_id, payload.type, payload.title, payload.message, payload.link_url)
                for user_id in user_ids
            ),
        )

    async def notify_club_members(self, club_id: int, exclude_user_id: int, payload: NotificationPayload) -> int:
        try:
            async with self.session_factory() as db:
                result = await db.execute(
                    select(ClubMember.user_id).where(
                        ClubMember.club_id == club_id,
                        ClubMember.user_id != exclude_user_id,
                    )
                )
                member_ids = result.scalars().all()
        except Exception as e:
            logger.error(f"Error loading members of club {club_id}: {e}")
            return 0
        return await self.notify_users(member_ids, payload)

    async def notify_followers(self, user_id: int, payload: NotificationPayload) -> int:
        try:
            async with self.session_factory() as db:
                result = await db.execute(select(Follow.follower_id).where(Follow.following_id == user_id))
                follower_ids = result.scalars().all()
        except Exception as e:
            logger.error(f"Error loading followers of user {user_id}: {e}")
            return 0
        return await self.notify_users(follower_ids, payload)

    async def notify_mentioned_users(
        self,
        content: str,
        exclude_user_id: int,
        title: str,
        message: str,
        link_url: Optional[str] = None,
    ) -> int:
        usernames = extract_mentions(content)
        if not usernames:
            return 0
        try:
            async with self.session_factory() as db:
                result = await db.execute(
                    select(User.id).where(User.username.in_(usernames), User.id != exclude_user_id)
                )
                user_ids = result.scalars().all()
        except Exception as e:
            logger.error(f"Error resolving mentions {usernames}: {e}")
            return 0
        payload = NotificationPayload(
            type=NotificationCategory.POST_MENTION,
            title=title,
            message=message,
            link_url=link_url,
        )
        return await self.notify_users(user_ids, payload)

    def schedule(self, background_tasks, label: str, func: Callable, *args, **kwargs) -> None:
        """Queue ``func(*args, **kwargs)`` on FastAPI background tasks as best-effort work."""
        background_tasks.add_task(self._run_detached, label, func, args, kwargs)

    async def _run_detached(self, label: str, func: Callable, args: tuple, kwargs: dict) -> None:
        await self.runner.run(label, func(*args, **kwargs))


_dispatcher: Optional[NotificationDispatcher] = None


def get_dispatcher() -> NotificationDispatcher:
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = NotificationDispatcher()
    return _dispatcher


class NotificationService:
    """Request-scoped reads and writes of a user's notifications, preferences and push subscriptions."""

    def __init__(self, db: AsyncSession, user_id: int):
        self.db = db
        self.user_id = user_id

    async def list_notifications(self, limit: int = 20, offset: int = 0) -> List[Notification]:
        result = await self.db.execute(
            select(Notification)
            .where(Notification.user_id == self.user_id)
            .order_by(Notification.created_at.desc(), Notification.id.desc())
            .limit(limit)
            .offset(offset)
        )
        return result.scalars().all()

    async def unread_count(self) -> int:
        result = await self.db.execute(
            select(func.count(Notification.id)).where(
                Notification.user_id == self.user_id,
                Notification.is_read.is_(False),
            )
        )
        return result.scalar_one()

    async def mark_read(self, notification_id: int) -> bool:
        notification = await self.db.get(Notification, notification_id)
        if notification is None or notification.user_id != self.user_id:
            return False
        notification.is_read = True
        await self.db.commit()
        return True

    async def mark_all_read(self) -> None:
        await self.db.execute(
            update(Notification)
            .where(Notification.user_id == self.user_id, Notification.is_read.is_(False))
            .values(is_read=True)
        )
        await self.db.commit()

    async def get_preferences(self) -> NotificationPreference:
        """Explicit reads materialize the default record."""
        result = await self.db.execute(
            select(NotificationPreference).where(NotificationPreference.user_id == self.user_id)
        )
        preferences = result.scalar_one_or_none()
        if preferences is None:
            preferences = NotificationPreference(user_id=self.user_id)
            self.db.add(preferences)
            await self.db.commit()
            await self.db.refresh(preferences)
        return preferences

    async def update_preferences(self, changes: Dict[str, bool]) -> NotificationPreference:
        preferences = await self.get_preferences()
        for field, value in changes.items():
            if value is not None and hasattr(preferences, field):
                setattr(preferences, field, value)
        await self.db.commit()
        await self.db.refresh(preferences)
        return preferences

    async def subscribe(self, endpoint: str, p256dh: str, auth: str, user_agent: Optional[str] = None) -> bool:
        """Register a push endpoint. Returns False when the caller already owned it."""
        if not endpoint or not p256dh or not auth:
            raise ValueError("Invalid subscription data")

        result = await self.db.execute(select(PushSubscription).where(PushSubscription.endpoint == endpoint))
        existing = result.scalar_one_or_none()

        if existing:
            already_owned = existing.user_id == self.user_id
            # Same browser, possibly a different account signed in now
            existing.user_id = self.user_id
            existing.p256dh = p256dh
            existing.auth = auth
            existing.user_agent = user_agent
            await self.db.commit()
            return not already_owned

        self.db.add(PushSubscription(
            user_id=self.user_id,
            endpoint=endpoint,
            p256dh=p256dh,
            auth=auth,
            user_agent=user_agent,
        ))
        await self.db.commit()
        return True

    async def unsubscribe(self, endpoint: str) -> int:
        result = await self.db.execute(
            delete(PushSubscription).where(
                PushSubscription.user_id == self.user_id,
                PushSubscription.endpoint == endpoint,
            )
        )
        await self.db.commit()
        return result.rowcount
