from .user import User, Follow
from .club import Club, ClubMember, ClubInvite, ClubRole
from .post import Post, Comment, Like
from .review import Review, ReviewCategory
from .message import Conversation, Message
from .event import Event, EventRSVP, EventReminderLog, RSVPStatus, ReminderWindow
from .report import Report, ReportReason, ReportStatus
from .herf import HerfSession, HerfParticipant, HerfChatMessage, HerfStatus
from .notification_models import Notification, NotificationPreference, PushSubscription, NotificationCategory
