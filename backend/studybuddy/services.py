"""Business logic services used by HTTP controllers.

This module holds small service classes that coordinate repositories.
Services are intentionally thin: they perform validation, execute the
domain rules and persist aggregates via repositories.

Failures are signalled with built-in exceptions that the routers map to
HTTP statuses: `ValueError` (400), `PermissionError` (403) and
`LookupError` (404).
"""

import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, List, Optional

import jwt
from passlib.context import CryptContext
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session

from . import models, repositories
from .schemas import MAX_SQL_INT
from .config import settings

PWD_CTX = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")

logger = logging.getLogger("studybuddy.services")


def _as_utc_naive(value: Optional[datetime]) -> Optional[datetime]:
    """Convert an aware datetime to naive UTC; naive values are assumed to be UTC already."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _reminded_session(n: models.Notification) -> Optional[int]:
    """Return the `session_id` a reminder points at; metadata may be any JSON value."""
    meta = json.loads(n.metadata_json) if n.metadata_json else None
    return meta.get('session_id') if isinstance(meta, dict) else None


def serialize_notification(n: models.Notification) -> dict:
    """Render a notification row for the API with its metadata decoded."""
    return {
        'notification_id': n.notification_id,
        'user_id': n.user_id,
        'notification_type': n.notification_type,
        'title': n.title,
        'message': n.message,
        'metadata': json.loads(n.metadata_json) if n.metadata_json else None,
        'is_read': n.is_read,
        'scheduled_for': n.scheduled_for,
        'sent_at': n.sent_at,
        'created_at': n.created_at,
    }


class AuthService:
    """Authentication related operations (register + authenticate)."""
    def __init__(self, session: Session):
        self.session = session
        self.user_repo = repositories.UserRepository(session)

    def register(self, email: str, password: str, first_name: str = "", last_name: str = "",
                 university: Optional[str] = None) -> models.User:
        """Create a new user with a hashed password.

        Returns the persisted `User` instance.
        """
        if not email or not email.strip():
            raise ValueError('email is required')
        if not password:
            raise ValueError('password is required')
        hashed = PWD_CTX.hash(password)
        u = models.User(
            email=email.strip().lower(),
            password_hash=hashed,
            first_name=first_name,
            last_name=last_name,
            university=university,
        )
        return self.user_repo.create(u)

    def authenticate(self, email: str, password: str) -> Optional[str]:
        """Verify credentials and return a signed JWT token on success.

        Returns `None` if authentication fails.
        """
        # One lookup by email then verify the supplied password hash.
        user = self.user_repo.get_by_email(email.strip().lower())
        if not user or not user.is_active:
            return None
        if not PWD_CTX.verify(password, user.password_hash):
            return None
        return create_access_token(user)


def create_access_token(user: models.User) -> str:
    """Sign a token carrying the user's id and email."""
    expire = datetime.now(timezone.utc) + timedelta(hours=settings.JWT_EXPIRE_HOURS)
    payload = {"user_id": user.user_id, "email": user.email, "exp": int(expire.timestamp())}
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


class CatalogService:
    """Read and write the module → topic → chapter hierarchy."""
    def __init__(self, session: Session):
        self.session = session
        self.module_repo = repositories.ModuleRepository(session)
        self.topic_repo = repositories.TopicRepository(session)
        self.chapter_repo = repositories.ChapterRepository(session)

    def list_modules(self, university: Optional[str] = None, search: Optional[str] = None,
                     limit: int = 50, offset: int = 0) -> List[dict]:
        """Return active module summaries with enrollment and topic counts."""
        rows = self.module_repo.list_active(university=university, search=search, limit=limit, offset=offset)
        return [
            {**module.model_dump(), 'enrolled_count': enrolled, 'topic_count': topics}
            for module, enrolled, topics in rows
        ]

    def get_module(self, module_id: int) -> dict:
        """Return one active module with its aggregated counts."""
        row = self.module_repo.get_with_counts(module_id)
        if not row:
            raise LookupError('Module not found')
        module, enrolled, topics, groups = row
        return {
            **module.model_dump(),
            'enrolled_count': enrolled,
            'topic_count': topics,
            'study_group_count': groups,
        }

    def list_topics(self, module_id: int) -> List[dict]:
        """List a module's active topics with their chapter counts."""
        rows = self.topic_repo.list_for_module(module_id)
        return [{**topic.model_dump(), 'chapter_count': chapters} for topic, chapters in rows]

    def list_chapters(self, topic_id: int) -> List[dict]:
        """List a topic's active chapters."""
        return [c.model_dump() for c in self.chapter_repo.list_for_topic(topic_id)]

    def create_module(self, module_code: Optional[str], module_name: Optional[str],
                      university: Optional[str], description: Optional[str] = None) -> dict:
        """Create a module; the code must be unique across all modules, active or not."""
        if not module_code or not module_name or not university:
            raise ValueError('module_code, module_name, and university are required')
        module = models.Module(
            module_code=module_code,
            module_name=module_name,
            description=description or None,
            university=university,
        )
        try:
            created = self.module_repo.create(module)
        except IntegrityError:
            self.session.rollback()
            raise ValueError('Module code already exists')
        logger.info("module created id=%s code=%s", created.module_id, created.module_code)
        return created.model_dump()

    def create_topic(self, module_id: int, topic_name: Optional[str], description: Optional[str] = None,
                     order_sequence: Optional[int] = None) -> dict:
        """Add a topic to an active module."""
        if not topic_name:
            raise ValueError('topic_name is required')
        if not self.module_repo.get_active(module_id):
            raise LookupError('Module not found')
        topic = models.Topic(
            module_id=module_id,
            topic_name=topic_name,
            description=description or None,
            order_sequence=order_sequence or 0,
        )
        return self.topic_repo.create(topic).model_dump()

    def create_chapter(self, topic_id: int, chapter_name: Optional[str], description: Optional[str] = None,
                       order_sequence: Optional[int] = None, content_summary: Optional[str] = None) -> dict:
        """Add a chapter to an active topic."""
        if not chapter_name:
            raise ValueError('chapter_name is required')
        if not self.topic_repo.get_active(topic_id):
            raise LookupError('Topic not found')
        chapter = models.Chapter(
            topic_id=topic_id,
            chapter_name=chapter_name,
            description=description or None,
            order_sequence=order_sequence or 0,
            content_summary=content_summary or None,
        )
        return self.chapter_repo.create(chapter).model_dump()

    def update_module(self, module_id: int, fields: dict) -> dict:
        """Apply whitelisted fields (`module_name`, `description`) to an active module."""
        updates = {k: v for k, v in fields.items() if k in ('module_name', 'description')}
        if not updates:
            raise ValueError('No valid fields to update')
        if 'module_name' in updates and not updates['module_name']:
            raise ValueError('module_name cannot be empty')
        module = self.module_repo.get_active(module_id)
        if not module:
            raise LookupError('Module not found')
        return self.module_repo.update(module, updates).model_dump()

    def delete_module(self, module_id: int) -> None:
        """Soft-delete an active module."""
        module = self.module_repo.get_active(module_id)
        if not module:
            raise LookupError('Module not found')
        self.module_repo.soft_delete(module)
        logger.info("module soft-deleted id=%s", module_id)


class NotificationService:
    """Per-user inbox, group broadcast and the scheduled-delivery handoff."""
    def __init__(self, session: Session):
        self.session = session
        self.repo = repositories.NotificationRepository(session)
        self.user_repo = repositories.UserRepository(session)
        self.group_repo = repositories.GroupRepository(session)
        self.session_repo = repositories.SessionRepository(session)

    def list_for_user(self, user_id: int, unread_only: bool = False, notification_type: Optional[str] = None,
                      limit: int = 50, offset: int = 0) -> List[dict]:
        """Return the caller's notifications, newest first."""
        rows = self.repo.list_for_user(user_id, unread_only=unread_only, notification_type=notification_type,
                                       limit=limit, offset=offset)
        return [serialize_notification(n) for n in rows]

    def counts(self, user_id: int) -> dict:
        """Return total, unread and per-category unread tallies for the caller."""
        return self.repo.counts_for_user(user_id)

    def mark_read(self, notification_id: int, user_id: int) -> dict:
        """Mark one of the caller's notifications read; repeating the call is harmless."""
        n = self.repo.get_for_user(notification_id, user_id)
        if not n:
            raise LookupError('Notification not found')
        return serialize_notification(self.repo.mark_read(n))

    def mark_all_read(self, user_id: int) -> int:
        """Mark every unread notification of the caller read and return how many changed."""
        return self.repo.mark_all_read(user_id)

    def delete(self, notification_id: int, user_id: int) -> None:
        """Hard delete one of the caller's notifications."""
        if self.repo.delete_for_user(notification_id, user_id) == 0:
            raise LookupError('Notification not found')

    def _validate_content(self, notification_type: Optional[str], title: Optional[str], message: Optional[str],
                          required_message: str) -> None:
        if not notification_type or not title or not message:
            raise ValueError(required_message)
        if notification_type not in models.NOTIFICATION_TYPES:
            raise ValueError('Invalid notification type')

    def create(self, user_id: Optional[int], notification_type: Optional[str], title: Optional[str],
               message: Optional[str], metadata: Any = None,
               scheduled_for: Optional[datetime] = None) -> dict:
        """Create a notification for one recipient, optionally scheduled for later delivery."""
        if not user_id:
            raise ValueError('user_id, notification_type, title, and message are required')
        self._validate_content(notification_type, title, message,
                               'user_id, notification_type, title, and message are required')
        if not self.user_repo.get(user_id):
            raise ValueError('Recipient not found')
        n = models.Notification(
            user_id=user_id,
            notification_type=notification_type,
            title=title,
            message=message,
            metadata_json=json.dumps(metadata) if metadata is not None else None,
            scheduled_for=_as_utc_naive(scheduled_for),
        )
        return serialize_notification(self.repo.create(n))

    def notify_group(self, group_id: int, sender_id: int, notification_type: Optional[str], title: Optional[str],
                     message: Optional[str], metadata: Optional[dict] = None) -> int:
        """Fan one notification out to every active member of a group.

        Only the group creator or an active admin member may broadcast.
        All rows are written in one commit. Returns the number created.
        """
        self._validate_content(notification_type, title, message,
                               'notification_type, title, and message are required')
        group = self.group_repo.get_active(group_id)
        if not group:
            raise LookupError('Study group not found')
        membership = self.group_repo.get_active_membership(group_id, sender_id)
        is_admin = membership is not None and membership.role == 'admin'
        if group.creator_id != sender_id and not is_admin:
            raise PermissionError('Only group creators and admins can send group notifications')
        payload = json.dumps({**(metadata or {}), 'group_id': group_id})
        member_ids = self.group_repo.list_active_member_ids(group_id)
        created = self.repo.create_many([
            models.Notification(
                user_id=member_id,
                notification_type=notification_type,
                title=title,
                message=message,
                metadata_json=payload,
            )
            for member_id in member_ids
        ])
        logger.info("group notification sent group_id=%s sender=%s recipients=%d", group_id, sender_id, len(created))
        return len(created)

    def list_pending(self, now: Optional[datetime] = None) -> List[dict]:
        """Return notifications whose schedule has elapsed and that have not been sent."""
        now = now or models.utcnow()
        return [serialize_notification(n) for n in self.repo.list_pending(now)]

    def mark_sent(self, notification_ids: Any, now: Optional[datetime] = None) -> int:
        """Stamp `sent_at` on dispatched notifications.

        Rows that already carry a `sent_at` are left untouched. There is no
        claim step between listing and stamping, so two workers may deliver
        the same notification.
        """
        if not isinstance(notification_ids, list):
            raise ValueError('notification_ids array is required')
        ids = []
        for raw in notification_ids:
            if isinstance(raw, bool):
                raise ValueError('notification_ids must contain integer ids')
            try:
                value = int(raw)
            except (TypeError, ValueError, OverflowError):
                raise ValueError('notification_ids must contain integer ids')
            if not 0 <= value <= MAX_SQL_INT:
                raise ValueError('notification_ids must contain integer ids')
            ids.append(value)
        updated = self.repo.mark_sent(ids, now or models.utcnow())
        logger.info("notifications marked sent requested=%d updated=%d", len(ids), updated)
        return updated

    def send_session_reminders(self, now: Optional[datetime] = None) -> int:
        """Queue reminders for study sessions starting within the next hour.

        Each attending attendee gets one `session_reminder` per session per
        day, scheduled five minutes ahead. Returns the number created.
        """
        now = now or models.utcnow()
        since = now - timedelta(days=1)
        reminders = []
        for study_session, user_id, group_name in self.session_repo.list_attending_between(now, now + timedelta(hours=1)):
            recent = self.repo.list_recent_of_type(user_id, 'session_reminder', since)
            already_sent = any(_reminded_session(n) == study_session.session_id for n in recent)
            if already_sent:
                continue
            start = study_session.scheduled_start
            reminders.append(models.Notification(
                user_id=user_id,
                notification_type='session_reminder',
                title='Study Session Reminder',
                message=f'Your study session "{study_session.session_title}" in {group_name} '
                        f'starts at {start.strftime("%H:%M")} UTC.',
                metadata_json=json.dumps({
                    'session_id': study_session.session_id,
                    'group_id': study_session.group_id,
                    'scheduled_start': start.isoformat(),
                }),
                scheduled_for=now + timedelta(minutes=5),
            ))
        if reminders:
            self.repo.create_many(reminders)
        logger.info("session reminders queued count=%d", len(reminders))
        return len(reminders)
